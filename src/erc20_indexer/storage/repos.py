"""Repository pattern implementations for data access.

Repositories operate on a caller-owned AsyncSession and never commit;
transaction boundaries belong to ``DatabaseManager.get_async_session``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from erc20_indexer.storage.models import (
    CHECKPOINT_ROW_ID,
    IndexCheckpointModel,
    TransferModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_TRANSFER_KEY_COLUMNS = ["tx_hash", "from_address", "to_address", "value"]

# Rows per INSERT statement; keeps bound parameters under SQLite's limit.
_INSERT_BATCH_SIZE = 100


@dataclass(frozen=True)
class TransferRecordDTO:
    """Data transfer object for an indexed Transfer event."""

    tx_hash: str
    block_number: int
    timestamp: int
    from_address: str
    to_address: str
    value: int
    log_index: int | None = None

    @classmethod
    def from_model(cls, model: TransferModel) -> TransferRecordDTO:
        return cls(
            tx_hash=model.tx_hash,
            block_number=model.block_number,
            timestamp=model.timestamp,
            from_address=model.from_address,
            to_address=model.to_address,
            value=int(model.value),
            log_index=model.log_index,
        )

    @property
    def key(self) -> tuple[str, str, str, int]:
        """Uniqueness key of the record."""
        return (
            self.tx_hash.lower(),
            self.from_address.lower(),
            self.to_address.lower(),
            self.value,
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash.lower(),
            "block_number": self.block_number,
            "timestamp": self.timestamp,
            "from_address": self.from_address.lower(),
            "to_address": self.to_address.lower(),
            "value": str(self.value),
            "log_index": self.log_index,
        }


class TransferRecordRepository:
    """Repository for indexed Transfer records."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _dialect_name(self) -> str:
        return self.session.get_bind().dialect.name

    def _insert_ignore(self, rows: list[dict[str, Any]]) -> Any:
        """Build an INSERT that skips rows colliding on the event key."""
        dialect = self._dialect_name()
        if dialect == "postgresql":
            return pg_insert(TransferModel).values(rows).on_conflict_do_nothing(
                index_elements=_TRANSFER_KEY_COLUMNS
            )
        if dialect == "sqlite":
            return sqlite_insert(TransferModel).values(rows).on_conflict_do_nothing(
                index_elements=_TRANSFER_KEY_COLUMNS
            )
        if dialect in ("mysql", "mariadb"):
            stmt = mysql_insert(TransferModel).values(rows)
            # No-op update: a duplicate key leaves the existing row untouched.
            return stmt.on_duplicate_key_update(tx_hash=stmt.inserted.tx_hash)
        raise ValueError(f"Unsupported database dialect for idempotent insert: {dialect}")

    async def insert_many(self, records: Sequence[TransferRecordDTO]) -> int:
        """Insert records, silently skipping exact duplicates.

        Returns:
            Number of records attempted.
        """
        if not records:
            return 0
        now = datetime.now(UTC)
        rows = [{**record.to_row(), "created_at": now} for record in records]
        for start in range(0, len(rows), _INSERT_BATCH_SIZE):
            await self.session.execute(self._insert_ignore(rows[start : start + _INSERT_BATCH_SIZE]))
        await self.session.flush()
        logger.debug("Wrote %d transfer records (duplicates skipped)", len(rows))
        return len(rows)

    async def insert(self, record: TransferRecordDTO) -> None:
        await self.insert_many([record])

    async def list_for_address(self, address: str, *, limit: int) -> list[TransferRecordDTO]:
        """Return records where ``address`` is sender or recipient, newest first."""
        addr = address.lower()
        result = await self.session.execute(
            select(TransferModel)
            .where(or_(TransferModel.from_address == addr, TransferModel.to_address == addr))
            .order_by(
                TransferModel.block_number.desc(),
                TransferModel.log_index.desc(),
                TransferModel.id.desc(),
            )
            .limit(limit)
        )
        return [TransferRecordDTO.from_model(m) for m in result.scalars().all()]

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(TransferModel))
        return int(result.scalar_one())


class IndexCheckpointRepository:
    """Repository for the single-row ingestion checkpoint."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self) -> int | None:
        result = await self.session.execute(
            select(IndexCheckpointModel.last_block).where(IndexCheckpointModel.id == CHECKPOINT_ROW_ID)
        )
        value = result.scalar_one_or_none()
        return int(value) if value is not None else None

    async def set(self, block_number: int) -> None:
        """Upsert the checkpoint row."""
        values = {
            "id": CHECKPOINT_ROW_ID,
            "last_block": block_number,
            "updated_at": datetime.now(UTC),
        }
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(IndexCheckpointModel).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={"last_block": stmt.excluded.last_block, "updated_at": stmt.excluded.updated_at},
            )
            await self.session.execute(stmt)
        elif dialect == "sqlite":
            sqlite_stmt = sqlite_insert(IndexCheckpointModel).values(**values)
            sqlite_stmt = sqlite_stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={
                    "last_block": sqlite_stmt.excluded.last_block,
                    "updated_at": sqlite_stmt.excluded.updated_at,
                },
            )
            await self.session.execute(sqlite_stmt)
        else:
            model = await self.session.get(IndexCheckpointModel, CHECKPOINT_ROW_ID)
            if model is None:
                self.session.add(IndexCheckpointModel(**values))
            else:
                model.last_block = block_number
                model.updated_at = values["updated_at"]
        await self.session.flush()
