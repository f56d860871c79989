"""Layer and block rows."""

from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from explorer_collector.storage.models.base import Base


class LayerRow(Base):
    """A fully applied layer.

    The row is written last during ingestion, so its presence means every
    entity of the layer has been stored.
    """

    __tablename__ = "layers"

    number: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    epoch: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    hash: Mapped[str] = mapped_column(String(66), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    block_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    txs_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rewards_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<LayerRow number={self.number} blocks={len(self.block_ids or [])}>"


class BlockRow(Base):
    """A block proposed in a layer."""

    __tablename__ = "blocks"

    id: Mapped[str] = mapped_column(String(42), primary_key=True, comment="0x-prefixed block id")
    layer: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    tx_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
