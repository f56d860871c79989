"""Reward rows."""

from __future__ import annotations

from sqlalchemy import BigInteger, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from explorer_collector.storage.models.base import Base


class RewardRow(Base):
    """A layer reward paid to a smesher's coinbase.

    ``id`` is assigned by the store; ``(layer, smesher_id)`` is the natural
    key that keeps re-ingestion from duplicating rewards.
    """

    __tablename__ = "rewards"
    __table_args__ = (UniqueConstraint("layer", "smesher_id", name="uq_rewards_layer_smesher"),)

    id: Mapped[str] = mapped_column(String(24), primary_key=True, comment="Store object id")
    layer: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    smesher_id: Mapped[str] = mapped_column(String(66), nullable=False)
    coinbase: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    total: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    layer_reward: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
