"""LayerIngestor — the single write path for one layer.

Live sync and gap backfill both go through :meth:`LayerIngestor.ingest`, so
a layer applied twice (retry, replay, backfill racing live sync) hits the
same idempotent upserts and converges to the same state.

Everything the node has to say about the layer is fetched before the first
write. Writes then happen in dependency order and the layer record goes
last: its presence is what marks the layer as fully applied.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from typing import TYPE_CHECKING

from explorer_collector.sync.models import epoch_of

if TYPE_CHECKING:
    from explorer_collector.metrics.collector import CollectorMetrics
    from explorer_collector.node.client import NodeClient
    from explorer_collector.node.models import Activation, LayerBundle
    from explorer_collector.storage.store import EntityStore

logger = logging.getLogger(__name__)


class LayerIngestor:
    """Fetches a layer from the node and applies it to the store.

    Args:
        node: Connected node client.
        store: Entity store.
        layers_per_epoch: Epoch size used to stamp the layer record.
        atx_sync: Whether activations (and smesher updates) are ingested.
        metrics: Optional metrics sink.
    """

    def __init__(
        self,
        node: NodeClient,
        store: EntityStore,
        *,
        layers_per_epoch: int,
        atx_sync: bool = True,
        metrics: CollectorMetrics | None = None,
    ) -> None:
        self._node = node
        self._store = store
        self._atx_sync = atx_sync
        self._metrics = metrics
        self.layers_per_epoch = layers_per_epoch

    async def ingest(self, number: int, *, source: str = "live") -> LayerBundle:
        """Apply layer *number* in full.

        Raises:
            NodeError: The node could not provide the layer; nothing was written.
            StoreTimeoutError: A write timed out; the layer is not marked applied.
        """
        tracker = self._metrics.track_ingest(source) if self._metrics else nullcontext()
        with tracker:
            bundle = await self._node.get_layer(number)
            activations: list[Activation] = []
            if self._atx_sync:
                activations = await self._node.get_activations(number)
            addresses = bundle.touched_addresses
            accounts = await self._node.get_accounts(addresses, layer=number)

            await self._store.save_blocks(bundle.layer.blocks)
            await self._store.save_transactions(bundle.transactions)
            await self._store.save_rewards(bundle.rewards)
            await self._store.save_accounts(accounts)
            for atx in activations:
                await self._store.save_activation(atx)
                await self._store.update_smesher(
                    atx.smesher_id,
                    coinbase=atx.coinbase,
                    commitment_size=atx.commitment_size,
                    timestamp=atx.received,
                )
            await self._store.save_layer(
                bundle.layer,
                epoch=epoch_of(number, self.layers_per_epoch),
                txs_count=len(bundle.transactions),
                rewards_count=len(bundle.rewards),
            )

        logger.debug(
            "Ingested layer %d (%s): %d txs, %d rewards, %d atxs, %d accounts",
            number,
            source,
            len(bundle.transactions),
            len(bundle.rewards),
            len(activations),
            len(accounts),
        )
        return bundle
