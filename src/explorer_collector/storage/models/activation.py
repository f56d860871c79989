"""Activation (ATX) rows."""

from __future__ import annotations

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from explorer_collector.storage.models.base import Base


class ActivationRow(Base):
    """An activation binding a smesher to committed storage."""

    __tablename__ = "activations"

    id: Mapped[str] = mapped_column(String(66), primary_key=True, comment="0x-prefixed ATX id")
    smesher_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    coinbase: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    layer: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    publish_epoch: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    num_units: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    commitment_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    received: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
