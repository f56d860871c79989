"""Transaction rows."""

from __future__ import annotations

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from explorer_collector.storage.models.base import Base


class TransactionRow(Base):
    """A transaction included in a layer."""

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(66), primary_key=True, comment="0x-prefixed tx id")
    layer: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    block_id: Mapped[str] = mapped_column(String(42), nullable=False, default="")
    sender: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    recipient: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    fee: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    counter: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
