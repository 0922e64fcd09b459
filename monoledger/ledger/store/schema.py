"""SQLAlchemy tables backing SQLStore."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class LedgerStateRow(Base):
    """Singleton table holding the latest full checkpoint.

    Always contains at most one row (id=1).
    """

    __tablename__ = "ledger_state"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        default=1,
        comment="Singleton row (always id=1)",
    )
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    contract_address: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="Contract whose transfer events fund the ledger",
    )
    root_chain_block: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Last block whose events are reflected in balances",
    )
    balances: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="JSON list of balance entries in ledger order",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class BlockSnapshotRow(Base):
    """Balances committed for a block, written once."""

    __tablename__ = "block_snapshot"

    block_number: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        autoincrement=False,
    )
    balances: Mapped[str] = mapped_column(Text, nullable=False)
    total_earnings: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="Decimal string; token amounts exceed 64-bit integers",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )


__all__ = ["Base", "BlockSnapshotRow", "LedgerStateRow"]
