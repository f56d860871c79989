"""Smesher and coinbase index rows."""

from __future__ import annotations

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from explorer_collector.storage.models.base import Base, TimestampMixin


class SmesherRow(Base, TimestampMixin):
    """The one mutable chain entity, refreshed on every activation."""

    __tablename__ = "smeshers"

    id: Mapped[str] = mapped_column(String(66), primary_key=True)
    coinbase: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    commitment_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    atx_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SmesherRow id={self.id[:18]}... atxs={self.atx_count}>"


class CoinbaseRow(Base):
    """Secondary index: coinbase address → smesher id."""

    __tablename__ = "coinbases"

    address: Mapped[str] = mapped_column(String(64), primary_key=True)
    smesher_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
