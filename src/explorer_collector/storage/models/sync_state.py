"""Sync watermark, pending gaps and network constants."""

from __future__ import annotations

from sqlalchemy import BigInteger, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from explorer_collector.storage.models.base import Base, TimestampMixin

# Primary key of the singleton rows
SINGLETON_ID = 1


class SyncStateRow(Base, TimestampMixin):
    """Singleton holding the highest fully-synced layer (``-1`` before any)."""

    __tablename__ = "sync_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_layer: Mapped[int] = mapped_column(Integer, nullable=False, default=-1)


class GapRow(Base):
    """A layer range pending backfill."""

    __tablename__ = "gaps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    start_layer: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    end_layer: Mapped[int] = mapped_column(Integer, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_error: Mapped[str] = mapped_column(Text, nullable=False, default="")


class NetworkInfoRow(Base):
    """Singleton copy of the node's network constants."""

    __tablename__ = "network_info"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    hrp: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    genesis_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    genesis_time: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    layer_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    layers_per_epoch: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_genesis: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    labels_per_unit: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
