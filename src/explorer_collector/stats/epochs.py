"""StatsRecalculator — compute-then-swap epoch aggregates.

Aggregates are computed from the stored layers, transactions, activations,
accounts and rewards in one read session, then written with a single upsert.
A failure anywhere before that upsert leaves the previous epoch row as it
was; running the recalculation again with no new data yields the same row.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from typing import TYPE_CHECKING

from explorer_collector.stats.models import EpochStats
from explorer_collector.sync.models import LayerRange, epoch_of

if TYPE_CHECKING:
    from explorer_collector.metrics.collector import CollectorMetrics
    from explorer_collector.storage.store import EntityStore

logger = logging.getLogger(__name__)

__all__ = ["EpochStats", "StatsRecalculator"]


class StatsRecalculator:
    """Recomputes the cached per-epoch aggregates.

    Usage::

        stats = StatsRecalculator(store, layers_per_epoch=4032)
        await stats.recalculate(12)
    """

    def __init__(
        self,
        store: EntityStore,
        *,
        layers_per_epoch: int,
        metrics: CollectorMetrics | None = None,
    ) -> None:
        self._store = store
        self._metrics = metrics
        self.layers_per_epoch = layers_per_epoch

    async def recalculate(self, epoch: int) -> EpochStats:
        """Recompute and overwrite the aggregates of *epoch*.

        Raises:
            StoreTimeoutError: Nothing was overwritten.
        """
        layers = LayerRange.for_epoch(epoch, self.layers_per_epoch)
        tracker = self._metrics.track_recalculate() if self._metrics else nullcontext()
        with tracker:
            stats = await self._store.aggregate_epoch(epoch, layers)
            await self._store.save_epoch_stats(stats)
        logger.info(
            "Epoch %d stats: %d layers, %d txs, %d atxs, %d smeshers, %d new accounts",
            epoch,
            stats.layers,
            stats.transactions,
            stats.activations,
            stats.smeshers,
            stats.accounts,
        )
        return stats

    async def recalculate_all(self, upto_layer: int | None = None) -> list[EpochStats]:
        """Recompute every epoch from 0 to the one holding *upto_layer*.

        *upto_layer* defaults to the stored watermark; nothing happens before
        the first layer has been synced.
        """
        if upto_layer is None:
            upto_layer = await self._store.get_watermark()
        if upto_layer < 0:
            return []
        current = epoch_of(upto_layer, self.layers_per_epoch)
        logger.info("Recalculating stats for epochs 0..%d", current)
        return [await self.recalculate(epoch) for epoch in range(current + 1)]
