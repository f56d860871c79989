"""SyncEngine — sequential, cursor-driven live sync.

The engine keeps an in-memory cursor (next layer to apply). It starts at
``watermark + 1``, or at ``sync.from_layer`` when the operator forces a
replay. Layers are applied strictly in increasing order through the
shared :class:`~explorer_collector.sync.ingest.LayerIngestor`; the stored
watermark is raised only after a layer's writes have all succeeded, and
never lowered (a replay below it re-applies idempotently).
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from explorer_collector.errors.collector_errors import CollectorError
from explorer_collector.sync.models import SyncOutcome, epoch_of

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from explorer_collector.config.settings import AppConfig
    from explorer_collector.metrics.collector import CollectorMetrics
    from explorer_collector.node.client import NodeClient
    from explorer_collector.node.models import NetworkInfo
    from explorer_collector.stats.epochs import StatsRecalculator
    from explorer_collector.storage.store import EntityStore
    from explorer_collector.sync.ingest import LayerIngestor

logger = logging.getLogger(__name__)


class SyncEngine:
    """Advances the watermark layer by layer.

    Usage::

        engine = SyncEngine(config, node, store, ingestor, stats)
        await engine.prepare()
        outcome = await engine.advance()
    """

    def __init__(
        self,
        config: AppConfig,
        node: NodeClient,
        store: EntityStore,
        ingestor: LayerIngestor,
        stats: StatsRecalculator,
        *,
        metrics: CollectorMetrics | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._node = node
        self._store = store
        self._ingestor = ingestor
        self._stats = stats
        self._metrics = metrics
        self._sleep = sleep
        self._layers_per_epoch = config.network.layers_per_epoch
        self._cursor: int | None = None

    @property
    def cursor(self) -> int | None:
        """Next layer live sync will apply; ``None`` before the first advance."""
        return self._cursor

    @property
    def layers_per_epoch(self) -> int:
        return self._layers_per_epoch

    def _set_layers_per_epoch(self, value: int) -> None:
        self._layers_per_epoch = value
        self._ingestor.layers_per_epoch = value
        self._stats.layers_per_epoch = value

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def prepare(self) -> NetworkInfo:
        """Store the node's network constants and position the cursor.

        Runs the forced full stats pass when ``recalculate_epoch_stats``
        is set.

        Raises:
            NodeError: The node did not answer.
            StoreTimeoutError: The store did not answer.
        """
        info = await self._node.get_network_info()
        await self._store.save_network_info(info)
        self._set_layers_per_epoch(info.layers_per_epoch)
        logger.info(
            "Network %s: %d layers per epoch, layer duration %ds",
            info.hrp,
            info.layers_per_epoch,
            info.layer_duration,
        )

        state = await self._store.get_sync_state()
        watermark = state.last_layer
        if not state.has_synced:
            logger.info("Nothing synced yet, starting from genesis")
        elif state.gaps:
            logger.info("%d gap ranges pending below watermark %d", len(state.gaps), watermark)
        self._cursor = self._initial_cursor(watermark)
        if self._metrics:
            self._metrics.set_watermark(watermark)

        if self._config.sync.recalculate_epoch_stats:
            await self._stats.recalculate_all(watermark)
        return info

    def _initial_cursor(self, watermark: int) -> int:
        from_layer = self._config.sync.from_layer
        if from_layer is not None:
            logger.info("Replaying from layer %d (watermark %d)", from_layer, watermark)
            return from_layer
        logger.info("Resuming after watermark %d", watermark)
        return watermark + 1

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def advance(self) -> SyncOutcome:
        """Apply up to ``max_layers_per_advance`` layers the node has processed.

        Transient failures (node or store timeouts) stop the call early and
        are returned in the outcome; the failed layer is retried in full on
        the next call. Anything else propagates.
        """
        applied = 0
        watermark = -1
        try:
            watermark = await self._store.get_watermark()
            if self._cursor is None:
                self._cursor = self._initial_cursor(watermark)

            status = await self._node.get_status()
            if self._metrics:
                self._metrics.set_node_top_layer(status.top_layer)

            target = min(status.top_layer, self._cursor + self._config.sync.max_layers_per_advance - 1)
            while self._cursor <= target:
                layer = self._cursor
                await self._ingestor.ingest(layer)
                if self._closes_epoch(layer):
                    await self._stats.recalculate(epoch_of(layer, self._layers_per_epoch))
                watermark = await self._store.advance_watermark(layer)
                self._cursor = layer + 1
                applied += 1
                if self._metrics:
                    self._metrics.set_watermark(watermark)
        except CollectorError as exc:
            if not exc.transient:
                raise
            logger.warning("Live sync stopped at layer %s: %s", self._cursor, exc.message)
            return SyncOutcome(layers_applied=applied, watermark=watermark, error=exc)

        if applied:
            logger.info("Synced %d layers, watermark %d", applied, watermark)
        return SyncOutcome(layers_applied=applied, watermark=watermark)

    def _closes_epoch(self, layer: int) -> bool:
        """Whether *layer* is the last layer of its epoch."""
        return (layer + 1) % self._layers_per_epoch == 0

    async def run(self) -> None:
        """Advance forever; sleep ``poll_interval`` whenever caught up.

        Raises:
            CollectorError: The transient error of a failed advance, for the
                supervisor to back off on.
        """
        batch = self._config.sync.max_layers_per_advance
        while True:
            outcome = await self.advance()
            if not outcome.ok:
                raise outcome.error
            if outcome.layers_applied < batch:
                await self._sleep(self._config.sync.poll_interval)
