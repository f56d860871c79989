"""Mapping between typed records and ORM rows.

The only module that knows both representations: the store converts
through these helpers so sync, stats and search code never touch row
columns directly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from explorer_collector.node.models import (
    Block,
    Layer,
    NetworkInfo,
    Reward,
    Smesher,
)
from explorer_collector.stats.models import EpochStats
from explorer_collector.sync.models import Gap, LayerRange

if TYPE_CHECKING:
    from explorer_collector.node.models import AccountState, Activation, Transaction
    from explorer_collector.storage.models import (
        EpochRow,
        GapRow,
        LayerRow,
        NetworkInfoRow,
        RewardRow,
        SmesherRow,
    )

# ---------------------------------------------------------------------------
# Record → column values
# ---------------------------------------------------------------------------


def layer_values(
    layer: Layer,
    *,
    epoch: int,
    txs_count: int,
    rewards_count: int,
) -> dict[str, Any]:
    return {
        "number": layer.number,
        "epoch": epoch,
        "timestamp": layer.timestamp,
        "hash": layer.hash,
        "status": layer.status,
        "block_ids": layer.block_ids,
        "txs_count": txs_count,
        "rewards_count": rewards_count,
    }


def block_values(block: Block) -> dict[str, Any]:
    return {"id": block.id, "layer": block.layer, "tx_ids": list(block.tx_ids)}


def transaction_values(tx: Transaction) -> dict[str, Any]:
    return {
        "id": tx.id,
        "layer": tx.layer,
        "block_id": tx.block_id,
        "sender": tx.sender,
        "recipient": tx.recipient,
        "amount": tx.amount,
        "fee": tx.fee,
        "counter": tx.counter,
        "status": tx.status,
        "timestamp": tx.timestamp,
    }


def reward_values(reward: Reward, object_id: str) -> dict[str, Any]:
    return {
        "id": object_id,
        "layer": reward.layer,
        "smesher_id": reward.smesher_id,
        "coinbase": reward.coinbase,
        "total": reward.total,
        "layer_reward": reward.layer_reward,
        "timestamp": reward.timestamp,
    }


def account_values(state: AccountState) -> dict[str, Any]:
    return {
        "address": state.address,
        "balance": state.balance,
        "nonce": state.nonce,
        "layer_updated": state.layer,
        "created_layer": state.layer,
    }


def activation_values(atx: Activation) -> dict[str, Any]:
    return {
        "id": atx.id,
        "smesher_id": atx.smesher_id,
        "coinbase": atx.coinbase,
        "layer": atx.layer,
        "publish_epoch": atx.publish_epoch,
        "num_units": atx.num_units,
        "commitment_size": atx.commitment_size,
        "received": atx.received,
    }


def epoch_values(stats: EpochStats) -> dict[str, Any]:
    return {
        "number": stats.number,
        "start_layer": stats.start_layer,
        "end_layer": stats.end_layer,
        "layers": stats.layers,
        "transactions": stats.transactions,
        "txs_amount": stats.txs_amount,
        "activations": stats.activations,
        "smeshers": stats.smeshers,
        "capacity": stats.capacity,
        "accounts": stats.accounts,
        "rewards": stats.rewards,
        "rewards_number": stats.rewards_number,
    }


def network_info_values(info: NetworkInfo) -> dict[str, Any]:
    return {
        "hrp": info.hrp,
        "genesis_id": info.genesis_id,
        "genesis_time": info.genesis_time,
        "layer_duration": info.layer_duration,
        "layers_per_epoch": info.layers_per_epoch,
        "effective_genesis": info.effective_genesis,
        "labels_per_unit": info.labels_per_unit,
    }


# ---------------------------------------------------------------------------
# Row → record
# ---------------------------------------------------------------------------


def layer_from_row(row: LayerRow, blocks: list[Block] | None = None) -> Layer:
    if blocks is None:
        blocks = [Block(id=block_id, layer=row.number) for block_id in row.block_ids or []]
    return Layer(
        number=row.number,
        timestamp=row.timestamp,
        hash=row.hash,
        status=row.status,
        blocks=tuple(blocks),
    )


def reward_from_row(row: RewardRow) -> Reward:
    return Reward(
        id=row.id,
        layer=row.layer,
        smesher_id=row.smesher_id,
        coinbase=row.coinbase,
        total=row.total,
        layer_reward=row.layer_reward,
        timestamp=row.timestamp,
    )


def smesher_from_row(row: SmesherRow) -> Smesher:
    return Smesher(
        id=row.id,
        coinbase=row.coinbase,
        commitment_size=row.commitment_size,
        atx_count=row.atx_count,
        timestamp=row.timestamp,
    )


def epoch_from_row(row: EpochRow) -> EpochStats:
    return EpochStats(
        number=row.number,
        start_layer=row.start_layer,
        end_layer=row.end_layer,
        layers=row.layers,
        transactions=row.transactions,
        txs_amount=row.txs_amount,
        activations=row.activations,
        smeshers=row.smeshers,
        capacity=row.capacity,
        accounts=row.accounts,
        rewards=row.rewards,
        rewards_number=row.rewards_number,
    )


def gap_from_row(row: GapRow) -> Gap:
    return Gap(
        id=row.id,
        range=LayerRange(row.start_layer, row.end_layer),
        attempts=row.attempts,
        next_attempt_at=row.next_attempt_at,
        last_error=row.last_error,
    )


def network_info_from_row(row: NetworkInfoRow) -> NetworkInfo:
    return NetworkInfo(
        layers_per_epoch=row.layers_per_epoch,
        hrp=row.hrp,
        genesis_id=row.genesis_id,
        genesis_time=row.genesis_time,
        layer_duration=row.layer_duration,
        effective_genesis=row.effective_genesis,
        labels_per_unit=row.labels_per_unit,
    )
