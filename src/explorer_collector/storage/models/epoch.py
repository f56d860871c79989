"""Epoch aggregate rows (a recomputable cache)."""

from __future__ import annotations

from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import Mapped, mapped_column

from explorer_collector.storage.models.base import Base, TimestampMixin


class EpochRow(Base, TimestampMixin):
    """Per-epoch statistics, overwritten wholesale on recalculation."""

    __tablename__ = "epochs"

    number: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    start_layer: Mapped[int] = mapped_column(Integer, nullable=False)
    end_layer: Mapped[int] = mapped_column(Integer, nullable=False)
    layers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    txs_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    activations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    smeshers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    capacity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    accounts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rewards: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    rewards_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
