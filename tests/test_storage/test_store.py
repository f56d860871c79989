"""Tests for EntityStore — idempotent upserts and guarded mutable records."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from conftest import (
    LAYERS_PER_EPOCH,
    address,
    atx_id,
    make_activation,
    make_bundle,
    smesher_id,
    store_snapshot,
    tx_id,
)
from sqlalchemy.exc import OperationalError

from explorer_collector.errors.collector_errors import StoreError, StoreTimeoutError
from explorer_collector.node.models import AccountState, NetworkInfo
from explorer_collector.storage.models import AccountRow
from explorer_collector.storage.objectid import is_object_id, new_object_id
from explorer_collector.storage.store import Collection, EntityStore
from explorer_collector.sync.models import LayerRange

# ---------------------------------------------------------------------------
# Watermark
# ---------------------------------------------------------------------------


class TestWatermark:
    async def test_initially_unsynced(self, store: EntityStore) -> None:
        assert await store.get_watermark() == -1
        state = await store.get_sync_state()
        assert state.last_layer == -1
        assert not state.has_synced
        assert state.gaps == ()

    async def test_monotonic(self, store: EntityStore) -> None:
        assert await store.advance_watermark(5) == 5
        assert await store.advance_watermark(3) == 5
        assert await store.advance_watermark(5) == 5
        assert await store.advance_watermark(9) == 9
        assert await store.get_watermark() == 9

    async def test_concurrent_advances_keep_max(self, store: EntityStore) -> None:
        await asyncio.gather(*(store.advance_watermark(n) for n in (4, 12, 7, 1, 11)))
        assert await store.get_watermark() == 12


# ---------------------------------------------------------------------------
# Gaps
# ---------------------------------------------------------------------------


class TestGaps:
    async def test_add_and_list(self, store: EntityStore) -> None:
        added = await store.add_gaps([LayerRange(10, 14), LayerRange(2, 3)])
        assert added == 2
        gaps = await store.list_gaps()
        assert [g.range for g in gaps] == [LayerRange(2, 3), LayerRange(10, 14)]
        assert all(g.attempts == 0 for g in gaps)

    async def test_overlapping_ranges_skipped(self, store: EntityStore) -> None:
        await store.add_gaps([LayerRange(10, 14)])
        added = await store.add_gaps([LayerRange(12, 20), LayerRange(30, 31)])
        assert added == 1
        assert [g.range for g in await store.list_gaps()] == [LayerRange(10, 14), LayerRange(30, 31)]

    async def test_reschedule_and_delete(self, store: EntityStore) -> None:
        await store.add_gaps([LayerRange(10, 14)])
        (gap,) = await store.list_gaps()
        await store.reschedule_gap(
            gap.id, start_layer=12, attempts=1, next_attempt_at=100.0, error="layer 12 unavailable"
        )
        (moved,) = await store.list_gaps()
        assert moved.range == LayerRange(12, 14)
        assert moved.attempts == 1
        assert moved.next_attempt_at == 100.0
        assert moved.last_error == "layer 12 unavailable"
        assert not moved.is_due(99.0)
        assert moved.is_due(100.0)

        await store.delete_gap(gap.id)
        assert await store.list_gaps() == []

    async def test_find_missing_layers(self, store: EntityStore) -> None:
        for n in (2, 3, 6, 7, 8):
            await store.save_layer(make_bundle(n).layer, epoch=0)
        missing = await store.find_missing_layers(10)
        assert missing == [
            LayerRange(0, 1),
            LayerRange(4, 5),
            LayerRange(9, 10),
        ]

    async def test_find_missing_layers_empty_store(self, store: EntityStore) -> None:
        assert await store.find_missing_layers(4) == [LayerRange(0, 4)]
        assert await store.find_missing_layers(-1) == []

    async def test_find_missing_layers_complete(self, store: EntityStore) -> None:
        for n in range(5):
            await store.save_layer(make_bundle(n).layer, epoch=0)
        assert await store.find_missing_layers(4) == []


# ---------------------------------------------------------------------------
# Layers, network info
# ---------------------------------------------------------------------------


class TestLayers:
    async def test_save_and_get_layer(self, store: EntityStore) -> None:
        bundle = make_bundle(7)
        await store.save_blocks(bundle.layer.blocks)
        await store.save_layer(bundle.layer, epoch=0, txs_count=1, rewards_count=1)
        layer = await store.get_layer(7)
        assert layer is not None
        assert layer.number == 7
        assert layer.hash == bundle.layer.hash
        assert layer.block_ids == bundle.layer.block_ids
        assert layer.blocks[0].tx_ids == (tx_id(7),)

    async def test_missing_layer(self, store: EntityStore) -> None:
        assert await store.get_layer(1) is None

    async def test_network_info_roundtrip(self, store: EntityStore) -> None:
        assert await store.get_network_info() is None
        info = NetworkInfo(layers_per_epoch=LAYERS_PER_EPOCH, hrp="sm", layer_duration=300)
        await store.save_network_info(info)
        await store.save_network_info(info)
        assert await store.get_network_info() == info


# ---------------------------------------------------------------------------
# Idempotent inserts
# ---------------------------------------------------------------------------


class TestIdempotence:
    async def _apply(self, store: EntityStore, n: int) -> None:
        bundle = make_bundle(n)
        await store.save_blocks(bundle.layer.blocks)
        await store.save_transactions(bundle.transactions)
        await store.save_rewards(bundle.rewards)
        await store.save_activation(make_activation(n))
        await store.save_layer(bundle.layer, epoch=0, txs_count=1, rewards_count=1)

    async def test_double_apply_is_noop(self, store: EntityStore) -> None:
        await self._apply(store, 3)
        first = await store_snapshot(store, range(5))
        await self._apply(store, 3)
        assert await store_snapshot(store, range(5)) == first
        assert await store.count(Collection.TRANSACTIONS) == 1
        assert await store.count(Collection.REWARDS) == 1

    async def test_reward_ids_stable_across_replay(self, store: EntityStore) -> None:
        rewards = make_bundle(4).rewards
        await store.save_rewards(rewards)
        (first,) = await store.list_rewards(4)
        await store.save_rewards(rewards)
        (again,) = await store.list_rewards(4)
        assert is_object_id(first.id)
        assert again.id == first.id

    async def test_duplicates_in_one_batch(self, store: EntityStore) -> None:
        txs = make_bundle(1).transactions
        await store.save_transactions(txs + txs)
        assert await store.count(Collection.TRANSACTIONS) == 1

    async def test_empty_batches(self, store: EntityStore) -> None:
        await store.save_transactions([])
        await store.save_rewards([])
        await store.save_blocks([])
        await store.save_accounts([])
        assert await store.count(Collection.TRANSACTIONS) == 0


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class TestAccounts:
    async def test_newer_snapshot_wins(self, store: EntityStore) -> None:
        addr = address(1)
        await store.save_accounts([AccountState(addr, balance=50, nonce=1, layer=10)])
        await store.save_accounts([AccountState(addr, balance=80, nonce=2, layer=12)])
        account = await store.get_account(addr)
        assert account == AccountState(addr, balance=80, nonce=2, layer=12)

    async def test_older_snapshot_never_regresses(self, store: EntityStore, datastore) -> None:
        addr = address(1)
        await store.save_accounts([AccountState(addr, balance=50, nonce=1, layer=10)])
        await store.save_accounts([AccountState(addr, balance=20, nonce=0, layer=5)])
        account = await store.get_account(addr)
        assert account == AccountState(addr, balance=50, nonce=1, layer=10)

        async with datastore.session() as session:
            row = await session.get(AccountRow, addr)
        assert row.created_layer == 5

    async def test_unknown_account(self, store: EntityStore) -> None:
        assert await store.get_account(address(99)) is None


# ---------------------------------------------------------------------------
# Smeshers & coinbase index
# ---------------------------------------------------------------------------


async def _assert_bijection(store: EntityStore) -> None:
    index = await store.coinbase_index()
    smeshers = await store.list_smeshers()
    with_coinbase = {s.id: s.coinbase for s in smeshers if s.coinbase}
    assert {cb: sid for sid, cb in with_coinbase.items()} == index
    assert len(set(index.values())) == len(index)


class TestSmeshers:
    async def test_create(self, store: EntityStore) -> None:
        smesher = await store.update_smesher(
            smesher_id(1), coinbase=address(10), commitment_size=256, timestamp=100
        )
        assert smesher.id == smesher_id(1)
        assert smesher.coinbase == address(10)
        assert smesher.atx_count == 0
        assert await store.coinbase_index() == {address(10): smesher_id(1)}
        await _assert_bijection(store)

    async def test_coinbase_change_replaces_index_entry(self, store: EntityStore) -> None:
        await store.update_smesher(smesher_id(1), coinbase=address(10), commitment_size=1, timestamp=1)
        await store.update_smesher(smesher_id(1), coinbase=address(11), commitment_size=1, timestamp=2)
        assert await store.coinbase_index() == {address(11): smesher_id(1)}
        found = await store.get_smesher_by_coinbase(address(11))
        assert found is not None
        assert found.id == smesher_id(1)
        assert await store.get_smesher_by_coinbase(address(10)) is None
        await _assert_bijection(store)

    async def test_coinbase_moves_to_other_smesher(self, store: EntityStore) -> None:
        await store.update_smesher(smesher_id(1), coinbase=address(10), commitment_size=1, timestamp=1)
        await store.update_smesher(smesher_id(2), coinbase=address(10), commitment_size=1, timestamp=2)
        assert await store.coinbase_index() == {address(10): smesher_id(2)}
        previous = await store.get_smesher(smesher_id(1))
        assert previous is not None
        assert previous.coinbase == ""
        await _assert_bijection(store)

    async def test_stale_update_ignored(self, store: EntityStore) -> None:
        await store.update_smesher(smesher_id(1), coinbase=address(10), commitment_size=512, timestamp=50)
        smesher = await store.update_smesher(
            smesher_id(1), coinbase=address(11), commitment_size=256, timestamp=10
        )
        assert smesher.coinbase == address(10)
        assert smesher.commitment_size == 512
        assert smesher.timestamp == 50
        assert await store.coinbase_index() == {address(10): smesher_id(1)}

    async def test_atx_count_recounted(self, store: EntityStore) -> None:
        for n in (0, 2, 4):
            await store.save_activation(make_activation(n))
        smesher = await store.update_smesher(
            smesher_id(0), coinbase=address(10), commitment_size=256, timestamp=5
        )
        assert smesher.atx_count == 3
        again = await store.update_smesher(
            smesher_id(0), coinbase=address(10), commitment_size=256, timestamp=5
        )
        assert again.atx_count == 3

    async def test_replayed_older_activation_keeps_newer_holder(self, store: EntityStore) -> None:
        await store.update_smesher(smesher_id(1), coinbase=address(10), commitment_size=1, timestamp=1)
        await store.update_smesher(smesher_id(2), coinbase=address(10), commitment_size=1, timestamp=2)
        replayed = await store.update_smesher(
            smesher_id(1), coinbase=address(10), commitment_size=1, timestamp=1
        )
        assert replayed.coinbase == ""
        assert await store.coinbase_index() == {address(10): smesher_id(2)}
        holder = await store.get_smesher(smesher_id(2))
        assert holder is not None
        assert holder.coinbase == address(10)
        await _assert_bijection(store)

    async def test_coinbase_owner_independent_of_arrival_order(self, store: EntityStore) -> None:
        await store.update_smesher(smesher_id(2), coinbase=address(10), commitment_size=1, timestamp=2)
        await store.update_smesher(smesher_id(1), coinbase=address(10), commitment_size=1, timestamp=1)
        assert await store.coinbase_index() == {address(10): smesher_id(2)}
        late = await store.get_smesher(smesher_id(1))
        assert late is not None
        assert late.coinbase == ""
        await _assert_bijection(store)


# ---------------------------------------------------------------------------
# Existence
# ---------------------------------------------------------------------------


class TestExistence:
    async def test_exists(self, store: EntityStore) -> None:
        await store.save_transactions(make_bundle(1).transactions)
        assert await store.exists(Collection.TRANSACTIONS, tx_id(1))
        assert not await store.exists(Collection.TRANSACTIONS, tx_id(2))
        assert not await store.exists(Collection.ACTIVATIONS, atx_id(1))

    async def test_exists_reward_requires_object_id(self, store: EntityStore) -> None:
        await store.save_rewards(make_bundle(1).rewards)
        (reward,) = await store.list_rewards(1)
        assert await store.exists(Collection.REWARDS, reward.id)
        assert not await store.exists(Collection.REWARDS, new_object_id())
        assert not await store.exists(Collection.REWARDS, "not-an-object-id")

    async def test_exists_reward_any_case(self, store: EntityStore) -> None:
        await store.save_rewards(make_bundle(1).rewards)
        (reward,) = await store.list_rewards(1)
        assert await store.exists(Collection.REWARDS, reward.id.upper())

    async def test_count_layers(self, store: EntityStore) -> None:
        for n in range(3):
            await store.save_layer(make_bundle(n).layer, epoch=0)
        assert await store.count(Collection.LAYERS) == 3
        assert await store.exists(Collection.LAYERS, 2)


# ---------------------------------------------------------------------------
# Timeouts
# ---------------------------------------------------------------------------


class _HangingSession:
    async def __aenter__(self):
        await asyncio.sleep(10)

    async def __aexit__(self, *exc_info) -> bool:
        return False


class _LockedSession:
    async def __aenter__(self):
        raise OperationalError("UPDATE sync_state", {}, Exception("database is locked"))

    async def __aexit__(self, *exc_info) -> bool:
        return False


class TestTimeouts:
    async def test_timeout_raises_store_timeout(self) -> None:
        datastore = MagicMock()
        datastore.session.return_value = _HangingSession()
        store = EntityStore(datastore, timeout=0.01)
        with pytest.raises(StoreTimeoutError, match="get_watermark"):
            await store.get_watermark()

    async def test_driver_error_raises_transient_store_error(self) -> None:
        datastore = MagicMock()
        datastore.session.return_value = _LockedSession()
        store = EntityStore(datastore, timeout=1.0)
        with pytest.raises(StoreError, match="advance_watermark") as exc_info:
            await store.advance_watermark(3)
        assert exc_info.value.transient
        assert isinstance(exc_info.value.__cause__, OperationalError)
