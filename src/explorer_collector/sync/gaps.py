"""GapScanner — detects missing layers below the watermark and backfills them.

Missing ranges are persisted as gap rows so they survive restarts. Each
gap is backfilled layer by layer through the same
:class:`~explorer_collector.sync.ingest.LayerIngestor` live sync uses; gaps
run concurrently, bounded by ``backfill_workers``. A failing gap shrinks to
its unapplied suffix and is retried later with exponential backoff. Backfill
never touches the watermark; closed epochs it fills in get their cached
statistics recomputed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import nullcontext
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from explorer_collector.datastore.client import store_error
from explorer_collector.errors.collector_errors import CollectorError
from explorer_collector.sync.models import BackfillResult, LayerRange, epoch_of, merge_ranges

if TYPE_CHECKING:
    from collections.abc import Callable

    from explorer_collector.config.settings import SyncConfig
    from explorer_collector.metrics.collector import CollectorMetrics
    from explorer_collector.stats.epochs import StatsRecalculator
    from explorer_collector.storage.store import EntityStore
    from explorer_collector.sync.ingest import LayerIngestor
    from explorer_collector.sync.models import Gap

logger = logging.getLogger(__name__)


class GapScanner:
    """Finds and closes holes in the stored layer sequence.

    Args:
        config: Sync settings (chunk size, workers, retry backoff).
        store: Entity store.
        ingestor: Shared layer ingestion path.
        stats: Recalculates closed epochs a backfill filled in.
        metrics: Optional metrics sink.
        clock: Wall-clock source in seconds, used for retry scheduling.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: EntityStore,
        ingestor: LayerIngestor,
        *,
        stats: StatsRecalculator | None = None,
        metrics: CollectorMetrics | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._store = store
        self._ingestor = ingestor
        self._stats = stats
        self._metrics = metrics
        self._clock = clock

    def retry_delay(self, attempts: int) -> float:
        """Backoff before the next try of a gap that has failed *attempts* times."""
        return min(self._config.gap_retry_base * 2**attempts, self._config.gap_retry_max)

    async def find_gaps(self) -> list[LayerRange]:
        """Pending gaps plus newly detected holes in ``[0, watermark]``.

        New holes are persisted in chunks of at most ``backfill_chunk_size``
        layers.

        Returns:
            All known missing ranges, merged and ordered.
        """
        queued = [gap.range for gap in await self._store.list_gaps()]
        watermark = await self._store.get_watermark()
        detected = await self._store.find_missing_layers(watermark)

        fresh = [
            chunk
            for missing in detected
            for piece in missing.subtract(queued)
            for chunk in piece.chunks(self._config.backfill_chunk_size)
        ]
        if fresh:
            added = await self._store.add_gaps(fresh)
            logger.info("Detected %d new gap ranges below watermark %d", added, watermark)
        return merge_ranges([*queued, *fresh])

    async def backfill(self, gap: Gap) -> BackfillResult:
        """Re-ingest every layer of *gap*.

        On success the gap row is removed. On the first failing layer the
        gap is shrunk to start there and rescheduled; it is never dropped.
        Closed epochs that received layers are recalculated before the gap
        row changes, so a failed recalculation leaves the gap due.
        """
        result = BackfillResult(range=gap.range)
        tracker = self._metrics.track_backfill() if self._metrics else nullcontext()
        with tracker:
            for layer in gap.range:
                try:
                    await self._ingestor.ingest(layer, source="backfill")
                except CollectorError as exc:
                    result.failed_layer = layer
                    result.error = exc
                    break
                except SQLAlchemyError as exc:
                    result.failed_layer = layer
                    result.error = store_error(exc, f"backfill:{layer}")
                    break
                result.applied.append(layer)

            await self._refresh_epochs(result.applied)

        if result.completed:
            await self._store.delete_gap(gap.id)
            logger.info("Backfilled gap %s", gap.range)
            return result

        delay = self.retry_delay(gap.attempts)
        await self._store.reschedule_gap(
            gap.id,
            start_layer=result.failed_layer,
            attempts=gap.attempts + 1,
            next_attempt_at=self._clock() + delay,
            error=result.error.message,
        )
        logger.warning(
            "Backfill of %s failed at layer %d (attempt %d), retrying in %.0fs: %s",
            gap.range,
            result.failed_layer,
            gap.attempts + 1,
            delay,
            result.error.message,
        )
        return result

    async def _refresh_epochs(self, layers: list[int]) -> None:
        """Recalculate the epochs of *layers* that live sync has already closed."""
        if self._stats is None or not layers:
            return
        per_epoch = self._stats.layers_per_epoch
        watermark = await self._store.get_watermark()
        for epoch in sorted({epoch_of(layer, per_epoch) for layer in layers}):
            if LayerRange.for_epoch(epoch, per_epoch).end <= watermark:
                await self._stats.recalculate(epoch)

    async def run_once(self) -> list[BackfillResult]:
        """Scan, then backfill every due gap with bounded concurrency."""
        await self.find_gaps()
        now = self._clock()
        due = [gap for gap in await self._store.list_gaps() if gap.is_due(now)]

        results: list[BackfillResult] = []
        semaphore = asyncio.Semaphore(self._config.backfill_workers)

        async def worker(gap: Gap) -> None:
            async with semaphore:
                try:
                    results.append(await self.backfill(gap))
                except CollectorError as exc:
                    logger.warning("Backfill of %s could not be recorded: %s", gap.range, exc.message)

        async with asyncio.TaskGroup() as group:
            for gap in due:
                group.create_task(worker(gap))

        if self._metrics:
            self._metrics.set_pending_gaps(len(await self._store.list_gaps()))
        return sorted(results, key=lambda r: r.range)
