"""Account snapshot rows."""

from __future__ import annotations

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from explorer_collector.storage.models.base import Base


class AccountRow(Base):
    """Latest known balance/nonce for an address.

    ``layer_updated`` orders snapshots; ``created_layer`` is set once on
    first insert and never rewritten.
    """

    __tablename__ = "accounts"

    address: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    nonce: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    layer_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_layer: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
