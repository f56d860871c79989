"""Background task definitions — cron job handlers.

- ``scan_gaps`` (``sync.gap_scan_period``) — detect and backfill missing layers
- ``calculate_metrics`` (15 s) — count entities for Prometheus gauges
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from explorer_collector.storage.store import Collection

if TYPE_CHECKING:
    from explorer_collector.metrics.collector import CollectorMetrics
    from explorer_collector.storage.store import EntityStore
    from explorer_collector.sync.gaps import GapScanner

logger = logging.getLogger(__name__)

CALCULATE_METRICS_PERIOD = 15


async def task_scan_gaps(scanner: GapScanner) -> None:
    """Find missing layers and backfill the due gaps."""
    results = await scanner.run_once()
    failed = [r for r in results if not r.completed]
    if results:
        logger.info("Gap scan: %d backfilled, %d rescheduled", len(results) - len(failed), len(failed))


async def task_calculate_metrics(store: EntityStore, metrics: CollectorMetrics) -> None:
    """Count entities and push them to the Prometheus gauges."""
    for collection in Collection:
        metrics.set_entity_count(collection.value, await store.count(collection))
    metrics.set_watermark(await store.get_watermark())
    metrics.set_pending_gaps(len(await store.list_gaps()))
