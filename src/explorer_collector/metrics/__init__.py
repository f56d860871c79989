"""Metrics — Prometheus metrics collection and exposure."""

from __future__ import annotations

from explorer_collector.metrics.collector import CollectorMetrics, MetricsCollector

__all__ = ["CollectorMetrics", "MetricsCollector"]
