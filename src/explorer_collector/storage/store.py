"""EntityStore — idempotent persistence over the collector's collections.

Every write is an upsert keyed by the entity's natural identifier, so
re-applying a layer (live sync retry, operator replay, backfill racing live
sync) converges to the same state instead of duplicating rows. Immutable
entities use ``ON CONFLICT DO NOTHING``; mutable ones (accounts, smeshers,
the watermark) use guarded ``ON CONFLICT DO UPDATE`` so an older snapshot
never overwrites a newer one.

Each operation runs in its own session under ``asyncio.timeout``; expiry
raises :class:`~explorer_collector.errors.StoreTimeoutError` and driver
failures surface as :class:`~explorer_collector.errors.StoreError`.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from explorer_collector.datastore.client import store_error
from explorer_collector.errors.collector_errors import StoreTimeoutError
from explorer_collector.node.models import AccountState, Block
from explorer_collector.stats.models import EpochStats
from explorer_collector.storage import mapping
from explorer_collector.storage.models import (
    SINGLETON_ID,
    AccountRow,
    ActivationRow,
    BlockRow,
    CoinbaseRow,
    EpochRow,
    GapRow,
    LayerRow,
    NetworkInfoRow,
    RewardRow,
    SmesherRow,
    SyncStateRow,
    TransactionRow,
)
from explorer_collector.storage.objectid import is_object_id, new_object_id
from explorer_collector.sync.models import LayerRange, SyncState

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession

    from explorer_collector.datastore.client import Datastore
    from explorer_collector.node.models import (
        Activation,
        Layer,
        NetworkInfo,
        Reward,
        Smesher,
        Transaction,
    )
    from explorer_collector.sync.models import Gap

logger = logging.getLogger(__name__)

DEFAULT_OPERATION_TIMEOUT = 5.0


class Collection(enum.StrEnum):
    """Typed collections that can be looked up by key."""

    LAYERS = "layers"
    BLOCKS = "blocks"
    EPOCHS = "epochs"
    ACCOUNTS = "accounts"
    TRANSACTIONS = "transactions"
    ACTIVATIONS = "activations"
    SMESHERS = "smeshers"
    COINBASES = "coinbases"
    REWARDS = "rewards"


_KEY_COLUMNS: dict[Collection, Any] = {
    Collection.LAYERS: LayerRow.number,
    Collection.BLOCKS: BlockRow.id,
    Collection.EPOCHS: EpochRow.number,
    Collection.ACCOUNTS: AccountRow.address,
    Collection.TRANSACTIONS: TransactionRow.id,
    Collection.ACTIVATIONS: ActivationRow.id,
    Collection.SMESHERS: SmesherRow.id,
    Collection.COINBASES: CoinbaseRow.address,
    Collection.REWARDS: RewardRow.id,
}


class EntityStore:
    """Data access layer shared by sync, backfill, stats and search.

    Usage::

        store = EntityStore(datastore, timeout=5.0)
        await store.save_transactions(bundle.transactions)
        watermark = await store.advance_watermark(layer.number)
    """

    def __init__(self, datastore: Datastore, *, timeout: float = DEFAULT_OPERATION_TIMEOUT) -> None:
        self._ds = datastore
        self._timeout = timeout

    @property
    def timeout(self) -> float:
        """Per-operation timeout in seconds."""
        return self._timeout

    # ------------------------------------------------------------------
    # Sync state
    # ------------------------------------------------------------------

    async def get_sync_state(self) -> SyncState:
        """Return the watermark together with the pending gap list."""
        async with self._session("get_sync_state") as session:
            last_layer = await session.scalar(
                select(SyncStateRow.last_layer).where(SyncStateRow.id == SINGLETON_ID)
            )
            gap_rows = (
                await session.scalars(select(GapRow).order_by(GapRow.start_layer))
            ).all()
        return SyncState(
            last_layer=-1 if last_layer is None else last_layer,
            gaps=tuple(mapping.gap_from_row(row) for row in gap_rows),
        )

    async def get_watermark(self) -> int:
        """Highest fully-synced layer, ``-1`` if nothing has been synced."""
        async with self._session("get_watermark") as session:
            last_layer = await session.scalar(
                select(SyncStateRow.last_layer).where(SyncStateRow.id == SINGLETON_ID)
            )
        return -1 if last_layer is None else last_layer

    async def advance_watermark(self, layer: int) -> int:
        """Raise the watermark to *layer* unless it is already higher.

        Returns:
            The watermark after the call.
        """
        async with self._session("advance_watermark") as session:
            stmt = self._insert(SyncStateRow).values(id=SINGLETON_ID, last_layer=layer)
            stmt = stmt.on_conflict_do_update(
                index_elements=[SyncStateRow.id],
                set_={"last_layer": stmt.excluded.last_layer, "updated_at": func.now()},
                where=SyncStateRow.last_layer < stmt.excluded.last_layer,
            )
            await session.execute(stmt)
            await session.commit()
            current = await session.scalar(
                select(SyncStateRow.last_layer).where(SyncStateRow.id == SINGLETON_ID)
            )
        return int(current)

    # ------------------------------------------------------------------
    # Gaps
    # ------------------------------------------------------------------

    async def list_gaps(self) -> list[Gap]:
        """Pending gaps ordered by start layer."""
        async with self._session("list_gaps") as session:
            rows = (await session.scalars(select(GapRow).order_by(GapRow.start_layer))).all()
        return [mapping.gap_from_row(row) for row in rows]

    async def add_gaps(self, ranges: list[LayerRange]) -> int:
        """Enqueue ranges for backfill; ranges already queued are skipped.

        Returns:
            Number of newly enqueued ranges.
        """
        if not ranges:
            return 0
        async with self._session("add_gaps") as session:
            existing = (await session.scalars(select(GapRow))).all()
            queued = [LayerRange(row.start_layer, row.end_layer) for row in existing]
            fresh = [r for r in ranges if not any(r.overlaps(q) for q in queued)]
            if fresh:
                stmt = self._insert(GapRow).values(
                    [{"start_layer": r.start, "end_layer": r.end} for r in fresh]
                )
                await session.execute(stmt.on_conflict_do_nothing(index_elements=[GapRow.start_layer]))
                await session.commit()
        return len(fresh)

    async def reschedule_gap(
        self,
        gap_id: int,
        *,
        start_layer: int,
        attempts: int,
        next_attempt_at: float,
        error: str,
    ) -> None:
        """Shrink a gap to its unapplied suffix and push back its next attempt."""
        async with self._session("reschedule_gap") as session:
            await session.execute(
                update(GapRow)
                .where(GapRow.id == gap_id)
                .values(
                    start_layer=start_layer,
                    attempts=attempts,
                    next_attempt_at=next_attempt_at,
                    last_error=error,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def delete_gap(self, gap_id: int) -> None:
        """Remove a closed gap."""
        async with self._session("delete_gap") as session:
            await session.execute(
                delete(GapRow)
                .where(GapRow.id == gap_id)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def find_missing_layers(self, upto: int, *, floor: int = 0) -> list[LayerRange]:
        """Ranges in ``[floor, upto]`` with no stored layer record."""
        if upto < floor:
            return []
        async with self._session("find_missing_layers") as session:
            bounds = (
                await session.execute(
                    select(func.min(LayerRow.number), func.max(LayerRow.number)).where(
                        LayerRow.number >= floor, LayerRow.number <= upto
                    )
                )
            ).one()
            lowest, highest = bounds
            if lowest is None:
                return [LayerRange(floor, upto)]

            prev = func.lag(LayerRow.number).over(order_by=LayerRow.number).label("prev")
            ordered = (
                select(LayerRow.number.label("number"), prev)
                .where(LayerRow.number >= floor, LayerRow.number <= upto)
                .subquery()
            )
            holes = (
                await session.execute(
                    select(ordered.c.prev, ordered.c.number)
                    .where(ordered.c.number - ordered.c.prev > 1)
                    .order_by(ordered.c.number)
                )
            ).all()

        missing: list[LayerRange] = []
        if lowest > floor:
            missing.append(LayerRange(floor, lowest - 1))
        missing.extend(LayerRange(before + 1, after - 1) for before, after in holes)
        if highest < upto:
            missing.append(LayerRange(highest + 1, upto))
        return missing

    # ------------------------------------------------------------------
    # Network info
    # ------------------------------------------------------------------

    async def save_network_info(self, info: NetworkInfo) -> None:
        """Upsert the network constants singleton."""
        values = mapping.network_info_values(info)
        async with self._session("save_network_info") as session:
            stmt = self._insert(NetworkInfoRow).values(id=SINGLETON_ID, **values)
            stmt = stmt.on_conflict_do_update(index_elements=[NetworkInfoRow.id], set_=values)
            await session.execute(stmt)
            await session.commit()

    async def get_network_info(self) -> NetworkInfo | None:
        """Stored network constants, ``None`` before the first sync."""
        async with self._session("get_network_info") as session:
            row = await session.get(NetworkInfoRow, SINGLETON_ID)
        return None if row is None else mapping.network_info_from_row(row)

    # ------------------------------------------------------------------
    # Layers & blocks
    # ------------------------------------------------------------------

    async def save_layer(
        self,
        layer: Layer,
        *,
        epoch: int,
        txs_count: int = 0,
        rewards_count: int = 0,
    ) -> None:
        """Record a layer as fully applied."""
        values = mapping.layer_values(
            layer, epoch=epoch, txs_count=txs_count, rewards_count=rewards_count
        )
        async with self._session("save_layer") as session:
            stmt = self._insert(LayerRow).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[LayerRow.number],
                set_={k: v for k, v in values.items() if k != "number"},
            )
            await session.execute(stmt)
            await session.commit()

    async def get_layer(self, number: int) -> Layer | None:
        """Stored layer with its blocks, or ``None``."""
        async with self._session("get_layer") as session:
            row = await session.get(LayerRow, number)
            if row is None:
                return None
            block_rows = (
                await session.scalars(select(BlockRow).where(BlockRow.layer == number))
            ).all()
        by_id = {b.id: b for b in block_rows}
        blocks = [
            Block(id=block_id, layer=number, tx_ids=tuple(by_id[block_id].tx_ids))
            if block_id in by_id
            else Block(id=block_id, layer=number)
            for block_id in row.block_ids or []
        ]
        return mapping.layer_from_row(row, blocks)

    async def save_blocks(self, blocks: list[Block] | tuple[Block, ...]) -> None:
        """Insert blocks; existing ids are left untouched."""
        rows = _dedupe((mapping.block_values(b) for b in blocks), "id")
        await self._insert_ignore("save_blocks", BlockRow, rows, [BlockRow.id])

    # ------------------------------------------------------------------
    # Transactions, rewards, activations
    # ------------------------------------------------------------------

    async def save_transactions(self, txs: list[Transaction] | tuple[Transaction, ...]) -> None:
        """Insert transactions; existing ids are left untouched."""
        rows = _dedupe((mapping.transaction_values(tx) for tx in txs), "id")
        await self._insert_ignore("save_transactions", TransactionRow, rows, [TransactionRow.id])

    async def save_rewards(self, rewards: list[Reward] | tuple[Reward, ...]) -> None:
        """Insert rewards, assigning object ids to the ones not yet stored.

        ``(layer, smesher_id)`` identifies a reward, so replaying a layer
        keeps the ids assigned the first time.
        """
        seen: dict[tuple[int, str], dict[str, Any]] = {}
        for reward in rewards:
            seen.setdefault(
                (reward.layer, reward.smesher_id),
                mapping.reward_values(reward, reward.id or new_object_id()),
            )
        await self._insert_ignore(
            "save_rewards",
            RewardRow,
            list(seen.values()),
            [RewardRow.layer, RewardRow.smesher_id],
        )

    async def list_rewards(self, layer: int) -> list[Reward]:
        """Rewards stored for *layer*."""
        async with self._session("list_rewards") as session:
            rows = (
                await session.scalars(
                    select(RewardRow).where(RewardRow.layer == layer).order_by(RewardRow.smesher_id)
                )
            ).all()
        return [mapping.reward_from_row(row) for row in rows]

    async def save_activation(self, atx: Activation) -> None:
        """Insert an activation; an existing id is left untouched."""
        await self._insert_ignore(
            "save_activation",
            ActivationRow,
            [mapping.activation_values(atx)],
            [ActivationRow.id],
        )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def save_accounts(self, states: list[AccountState]) -> None:
        """Upsert account snapshots.

        A snapshot replaces the stored one only if it is at least as recent
        (``layer_updated``); ``created_layer`` only ever moves backwards.
        """
        rows = _dedupe((mapping.account_values(s) for s in states), "address")
        if not rows:
            return
        async with self._session("save_accounts") as session:
            stmt = self._insert(AccountRow).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=[AccountRow.address],
                set_={
                    "balance": stmt.excluded.balance,
                    "nonce": stmt.excluded.nonce,
                    "layer_updated": stmt.excluded.layer_updated,
                },
                where=AccountRow.layer_updated <= stmt.excluded.layer_updated,
            )
            await session.execute(stmt)
            for row in rows:
                await session.execute(
                    update(AccountRow)
                    .where(
                        AccountRow.address == row["address"],
                        AccountRow.created_layer > row["created_layer"],
                    )
                    .values(created_layer=row["created_layer"])
                    .execution_options(synchronize_session=False)
                )
            await session.commit()

    async def get_account(self, address: str) -> AccountState | None:
        """Stored snapshot for *address*, or ``None``."""
        async with self._session("get_account") as session:
            row = await session.get(AccountRow, address)
        if row is None:
            return None
        return AccountState(
            address=row.address, balance=row.balance, nonce=row.nonce, layer=row.layer_updated
        )

    # ------------------------------------------------------------------
    # Smeshers & coinbase index
    # ------------------------------------------------------------------

    async def update_smesher(
        self,
        smesher_id: str,
        *,
        coinbase: str,
        commitment_size: int,
        timestamp: int,
    ) -> Smesher:
        """Create or refresh a smesher together with its coinbase index entry.

        Both writes share one transaction. The attributes only change when
        *timestamp* is not older than the stored one; the activation count
        is recounted from the activations collection every time.

        The coinbase index is kept a bijection with the smeshers' coinbase
        fields. A coinbase held by another smesher changes hands only when
        this smesher's ``(timestamp, id)`` is greater than the holder's;
        otherwise this smesher gives up its claim. Replaying an older
        activation therefore leaves the index as it was.

        Raises:
            StoreTimeoutError: The pair was not committed; repeat the call.
        """
        async with self._session("update_smesher") as session:
            stmt = self._insert(SmesherRow).values(
                id=smesher_id,
                coinbase=coinbase,
                commitment_size=commitment_size,
                timestamp=timestamp,
                atx_count=0,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[SmesherRow.id],
                set_={
                    "coinbase": stmt.excluded.coinbase,
                    "commitment_size": stmt.excluded.commitment_size,
                    "timestamp": stmt.excluded.timestamp,
                    "updated_at": func.now(),
                },
                where=SmesherRow.timestamp <= stmt.excluded.timestamp,
            )
            await session.execute(stmt)

            current, stored_at = (
                await session.execute(
                    select(SmesherRow.coinbase, SmesherRow.timestamp).where(SmesherRow.id == smesher_id)
                )
            ).one()
            if current:
                holder = (
                    await session.execute(
                        select(SmesherRow.id, SmesherRow.timestamp)
                        .join(CoinbaseRow, CoinbaseRow.smesher_id == SmesherRow.id)
                        .where(CoinbaseRow.address == current, SmesherRow.id != smesher_id)
                    )
                ).one_or_none()
                if holder is not None and (holder.timestamp, holder.id) > (stored_at, smesher_id):
                    logger.debug("Coinbase %s stays with newer smesher %s", current, holder.id)
                    current = ""
                    await session.execute(
                        update(SmesherRow)
                        .where(SmesherRow.id == smesher_id)
                        .values(coinbase="")
                        .execution_options(synchronize_session=False)
                    )

            await session.execute(
                delete(CoinbaseRow)
                .where(CoinbaseRow.smesher_id == smesher_id, CoinbaseRow.address != current)
                .execution_options(synchronize_session=False)
            )
            if current:
                await session.execute(
                    update(SmesherRow)
                    .where(SmesherRow.coinbase == current, SmesherRow.id != smesher_id)
                    .values(coinbase="")
                    .execution_options(synchronize_session=False)
                )
                index = self._insert(CoinbaseRow).values(address=current, smesher_id=smesher_id)
                index = index.on_conflict_do_update(
                    index_elements=[CoinbaseRow.address],
                    set_={"smesher_id": smesher_id},
                )
                await session.execute(index)

            atx_count = (
                select(func.count())
                .select_from(ActivationRow)
                .where(ActivationRow.smesher_id == smesher_id)
                .scalar_subquery()
            )
            await session.execute(
                update(SmesherRow)
                .where(SmesherRow.id == smesher_id)
                .values(atx_count=atx_count)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            row = await session.get(SmesherRow, smesher_id, populate_existing=True)
        return mapping.smesher_from_row(row)

    async def get_smesher(self, smesher_id: str) -> Smesher | None:
        """Stored smesher, or ``None``."""
        async with self._session("get_smesher") as session:
            row = await session.get(SmesherRow, smesher_id)
        return None if row is None else mapping.smesher_from_row(row)

    async def get_smesher_by_coinbase(self, address: str) -> Smesher | None:
        """Smesher currently owning the *address* coinbase, or ``None``."""
        async with self._session("get_smesher_by_coinbase") as session:
            row = (
                await session.execute(
                    select(SmesherRow)
                    .join(CoinbaseRow, CoinbaseRow.smesher_id == SmesherRow.id)
                    .where(CoinbaseRow.address == address)
                )
            ).scalar_one_or_none()
        return None if row is None else mapping.smesher_from_row(row)

    async def coinbase_index(self) -> dict[str, str]:
        """The whole coinbase index as ``{address: smesher_id}``."""
        async with self._session("coinbase_index") as session:
            rows = (await session.execute(select(CoinbaseRow.address, CoinbaseRow.smesher_id))).all()
        return dict(rows)

    async def list_smeshers(self) -> list[Smesher]:
        """All smeshers ordered by id."""
        async with self._session("list_smeshers") as session:
            rows = (await session.scalars(select(SmesherRow).order_by(SmesherRow.id))).all()
        return [mapping.smesher_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Epochs
    # ------------------------------------------------------------------

    async def aggregate_epoch(self, epoch: int, layers: LayerRange) -> EpochStats:
        """Compute an epoch's aggregates from the stored per-layer data.

        All reads share one session so the figures come from one snapshot
        as far as the backend provides it.
        """
        lo, hi = layers.start, layers.end
        async with self._session("aggregate_epoch") as session:
            layer_count = await session.scalar(
                select(func.count()).select_from(LayerRow).where(LayerRow.number.between(lo, hi))
            )
            tx_count, tx_amount = (
                await session.execute(
                    select(func.count(), func.coalesce(func.sum(TransactionRow.amount), 0)).where(
                        TransactionRow.layer.between(lo, hi)
                    )
                )
            ).one()
            atx_count, smesher_count, capacity = (
                await session.execute(
                    select(
                        func.count(),
                        func.count(func.distinct(ActivationRow.smesher_id)),
                        func.coalesce(func.sum(ActivationRow.commitment_size), 0),
                    ).where(ActivationRow.layer.between(lo, hi))
                )
            ).one()
            account_count = await session.scalar(
                select(func.count())
                .select_from(AccountRow)
                .where(AccountRow.created_layer.between(lo, hi))
            )
            reward_count, reward_total = (
                await session.execute(
                    select(func.count(), func.coalesce(func.sum(RewardRow.total), 0)).where(
                        RewardRow.layer.between(lo, hi)
                    )
                )
            ).one()
        return EpochStats(
            number=epoch,
            start_layer=lo,
            end_layer=hi,
            layers=int(layer_count or 0),
            transactions=int(tx_count),
            txs_amount=int(tx_amount),
            activations=int(atx_count),
            smeshers=int(smesher_count),
            capacity=int(capacity),
            accounts=int(account_count or 0),
            rewards=int(reward_total),
            rewards_number=int(reward_count),
        )

    async def save_epoch_stats(self, stats: EpochStats) -> None:
        """Overwrite an epoch's cached aggregates in a single statement."""
        values = mapping.epoch_values(stats)
        async with self._session("save_epoch_stats") as session:
            stmt = self._insert(EpochRow).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[EpochRow.number],
                set_={**{k: v for k, v in values.items() if k != "number"}, "updated_at": func.now()},
            )
            await session.execute(stmt)
            await session.commit()

    async def get_epoch_stats(self, epoch: int) -> EpochStats | None:
        """Cached aggregates for *epoch*, or ``None``."""
        async with self._session("get_epoch_stats") as session:
            row = await session.get(EpochRow, epoch)
        return None if row is None else mapping.epoch_from_row(row)

    # ------------------------------------------------------------------
    # Existence & counts
    # ------------------------------------------------------------------

    async def exists(self, collection: Collection, key: str | int) -> bool:
        """Whether *collection* holds a record keyed by *key*."""
        if collection is Collection.REWARDS:
            if not (isinstance(key, str) and is_object_id(key)):
                return False
            key = key.lower()
        column = _KEY_COLUMNS[collection]
        async with self._session(f"exists:{collection}") as session:
            found = await session.scalar(select(column).where(column == key).limit(1))
        return found is not None

    async def count(self, collection: Collection) -> int:
        """Number of records in *collection*."""
        column = _KEY_COLUMNS[collection]
        async with self._session(f"count:{collection}") as session:
            total = await session.scalar(select(func.count(column)))
        return int(total or 0)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session bounded by the per-operation timeout."""
        try:
            async with asyncio.timeout(self._timeout), self._ds.session() as session:
                yield session
        except TimeoutError as exc:
            logger.warning("Store operation %s timed out after %.1fs", operation, self._timeout)
            msg = f"store operation {operation} timed out after {self._timeout}s"
            raise StoreTimeoutError(msg) from exc
        except SQLAlchemyError as exc:
            logger.warning("Store operation %s failed: %s", operation, exc)
            raise store_error(exc, operation) from exc

    def _insert(self, table: type) -> Any:
        return self._ds.insert(table)

    async def _insert_ignore(
        self,
        operation: str,
        table: type,
        rows: list[dict[str, Any]],
        conflict_columns: list[Any],
    ) -> None:
        if not rows:
            return
        async with self._session(operation) as session:
            stmt = self._insert(table).values(rows)
            await session.execute(stmt.on_conflict_do_nothing(index_elements=conflict_columns))
            await session.commit()


def _dedupe(rows: Any, key: str) -> list[dict[str, Any]]:
    """Keep the first row per *key* (one statement may not touch a key twice)."""
    unique: dict[Any, dict[str, Any]] = {}
    for row in rows:
        unique.setdefault(row[key], row)
    return list(unique.values())
