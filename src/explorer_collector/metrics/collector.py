"""Metrics collector — Prometheus counters, gauges, histograms.

- ``explorer_sync_watermark`` / ``explorer_node_top_layer`` gauges
- ``explorer_pending_gaps`` gauge
- ``explorer_stats_total`` gauge-vec (layers, accounts, transactions, ...)
- ``explorer_layer_ingest_histogram`` (source: live, backfill)
- ``explorer_backfill_histogram``
- ``explorer_epoch_recalculation_histogram``
- ``explorer_supervisor_restarts_total``
- ``explorer_cron_histogram`` / ``explorer_cron_last_execution_gauge``
- ``http_request_total`` / ``http_request_duration_seconds`` for the search API
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator


_PREFIX = "explorer"

APP_LABEL = "explorer-collector"

_STAT_LABELS = ("entity",)


class MetricsCollector:
    """Low-level Prometheus collector that owns the registry.

    Use :class:`CollectorMetrics` for the high-level tracking interface.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._registry

    def gauge(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Gauge:
        """Register and return a Gauge."""
        return Gauge(name, doc, labels, registry=self._registry)

    def histogram(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Histogram:
        """Register and return a Histogram."""
        return Histogram(name, doc, labels, registry=self._registry)

    def counter(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Counter:
        """Register and return a Counter."""
        return Counter(name, doc, labels, registry=self._registry)


class CollectorMetrics:
    """High-level collector metrics.

    All histograms track operation duration in seconds.
    """

    def __init__(self, collector: MetricsCollector | None = None) -> None:
        self._collector = collector or MetricsCollector()

        # Sync progress
        self._watermark = self._collector.gauge(
            f"{_PREFIX}_sync_watermark",
            "Highest layer fully ingested by live sync",
        )
        self._node_top_layer = self._collector.gauge(
            f"{_PREFIX}_node_top_layer",
            "Highest layer processed by the node",
        )
        self._pending_gaps = self._collector.gauge(
            f"{_PREFIX}_pending_gaps",
            "Layer ranges waiting for backfill",
        )

        # Entity counts per collection
        self._stats = self._collector.gauge(
            f"{_PREFIX}_stats_total",
            "Entity counts in the explorer store",
            _STAT_LABELS,
        )

        # Operation histograms
        self._ingest = self._collector.histogram(
            f"{_PREFIX}_layer_ingest_histogram",
            "Duration of single-layer ingestion",
            ("source",),
        )
        self._backfill = self._collector.histogram(
            f"{_PREFIX}_backfill_histogram",
            "Duration of gap backfill runs",
        )
        self._recalculate = self._collector.histogram(
            f"{_PREFIX}_epoch_recalculation_histogram",
            "Duration of epoch statistics recalculation",
        )

        self._restarts = self._collector.counter(
            f"{_PREFIX}_supervisor_restarts",
            "Restarts of supervised background loops",
            ("task",),
        )

        # HTTP API
        self._http_requests = self._collector.counter(
            "http_request_total",
            "Total HTTP requests",
            ("method", "path", "status_code", "app"),
        )
        self._http_duration = self._collector.histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ("method", "path", "app"),
        )

        # Cron metrics
        self._cron_histogram = self._collector.histogram(
            f"{_PREFIX}_cron_histogram",
            "Duration of cron job executions",
            ("job_name",),
        )
        self._cron_last = self._collector.gauge(
            f"{_PREFIX}_cron_last_execution_gauge",
            "Timestamp of last cron execution",
            ("job_name",),
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._collector.registry

    # -- Gauge setters --

    def set_watermark(self, layer: int) -> None:
        self._watermark.set(layer)

    def set_node_top_layer(self, layer: int) -> None:
        self._node_top_layer.set(layer)

    def set_pending_gaps(self, count: int) -> None:
        self._pending_gaps.set(count)

    def set_entity_count(self, entity: str, count: int) -> None:
        """Set the current number of records in a collection."""
        self._stats.labels(entity=entity).set(count)

    def inc_restarts(self, task: str) -> None:
        self._restarts.labels(task=task).inc()

    def observe_request(self, method: str, path: str, status_code: int, duration: float) -> None:
        """Count one API request and record how long it took."""
        self._http_requests.labels(
            method=method, path=path, status_code=str(status_code), app=APP_LABEL
        ).inc()
        self._http_duration.labels(method=method, path=path, app=APP_LABEL).observe(duration)

    # -- Operation trackers (context managers) --

    @contextmanager
    def track_ingest(self, source: str) -> Iterator[None]:
        """Track the duration of one layer ingestion."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._ingest.labels(source=source).observe(time.monotonic() - start)

    @contextmanager
    def track_backfill(self) -> Iterator[None]:
        """Track the duration of a backfill run."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._backfill.observe(time.monotonic() - start)

    @contextmanager
    def track_recalculate(self) -> Iterator[None]:
        """Track the duration of an epoch recalculation."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._recalculate.observe(time.monotonic() - start)

    @contextmanager
    def track_cron(self, job_name: str) -> Iterator[None]:
        """Track the duration of a cron job and record last execution time."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._cron_histogram.labels(job_name=job_name).observe(time.monotonic() - start)
            self._cron_last.labels(job_name=job_name).set(time.time())
