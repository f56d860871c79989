"""ORM rows for every collection the collector maintains.

Import :data:`ALL_MODELS` for table creation.
"""

from explorer_collector.storage.models.account import AccountRow
from explorer_collector.storage.models.activation import ActivationRow
from explorer_collector.storage.models.base import Base, TimestampMixin
from explorer_collector.storage.models.epoch import EpochRow
from explorer_collector.storage.models.layer import BlockRow, LayerRow
from explorer_collector.storage.models.reward import RewardRow
from explorer_collector.storage.models.smesher import CoinbaseRow, SmesherRow
from explorer_collector.storage.models.sync_state import (
    SINGLETON_ID,
    GapRow,
    NetworkInfoRow,
    SyncStateRow,
)
from explorer_collector.storage.models.transaction import TransactionRow

ALL_MODELS: list[type[Base]] = [
    LayerRow,
    BlockRow,
    EpochRow,
    AccountRow,
    TransactionRow,
    ActivationRow,
    SmesherRow,
    CoinbaseRow,
    RewardRow,
    SyncStateRow,
    GapRow,
    NetworkInfoRow,
]

__all__ = [
    "ALL_MODELS",
    "SINGLETON_ID",
    "AccountRow",
    "ActivationRow",
    "Base",
    "BlockRow",
    "CoinbaseRow",
    "EpochRow",
    "GapRow",
    "LayerRow",
    "NetworkInfoRow",
    "RewardRow",
    "SmesherRow",
    "SyncStateRow",
    "TimestampMixin",
    "TransactionRow",
]
