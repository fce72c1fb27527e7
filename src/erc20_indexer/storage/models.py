"""SQLAlchemy models for persistent storage.

This module defines the database schema for indexed Transfer events and
the single-row ingestion checkpoint.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

CHECKPOINT_ROW_ID = 1


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TransferModel(Base):
    """Indexed ERC20 Transfer events (append-only)."""

    __tablename__ = "transfers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    from_address: Mapped[str] = mapped_column(String(42), nullable=False)
    to_address: Mapped[str] = mapped_column(String(42), nullable=False)

    # uint256 as a decimal string; SQLite NUMERIC would round it through REAL.
    value: Mapped[str] = mapped_column(String(78), nullable=False)

    log_index: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint(
            "tx_hash",
            "from_address",
            "to_address",
            "value",
            name="uq_transfers_event",
        ),
        Index("idx_transfers_from", "from_address"),
        Index("idx_transfers_to", "to_address"),
        Index("idx_transfers_block", "block_number"),
    )


class IndexCheckpointModel(Base):
    """Highest block whose Transfer events are fully committed."""

    __tablename__ = "index_checkpoint"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=CHECKPOINT_ROW_ID)
    last_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
