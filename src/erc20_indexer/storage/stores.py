"""Store contracts and their SQL implementations.

The ingestion loop and the query service depend only on the
``TransferStore`` and ``CheckpointStore`` protocols. The SQL stores open one
session (one transaction) per call, so every method returns only after its
writes are committed.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sqlalchemy.exc import SQLAlchemyError

from erc20_indexer.storage.errors import wrap_store_error
from erc20_indexer.storage.repos import (
    IndexCheckpointRepository,
    TransferRecordDTO,
    TransferRecordRepository,
)

if TYPE_CHECKING:
    from erc20_indexer.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


@runtime_checkable
class TransferStore(Protocol):
    """Durable, duplicate-free set of Transfer records."""

    async def insert(self, record: TransferRecordDTO) -> None: ...

    async def insert_many(self, records: Sequence[TransferRecordDTO]) -> int: ...

    async def query(self, address: str, limit: int) -> list[TransferRecordDTO]: ...


@runtime_checkable
class CheckpointStore(Protocol):
    """Highest block number whose records are fully committed."""

    async def get(self) -> int | None: ...

    async def set(self, block_number: int) -> None: ...


class SqlTransferStore:
    """TransferStore backed by SQLAlchemy."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def insert(self, record: TransferRecordDTO) -> None:
        """Insert one record; an exact duplicate is absorbed.

        Raises:
            StoreError: If the store is unreachable or rejects the row.
        """
        await self.insert_many([record])

    async def insert_many(self, records: Sequence[TransferRecordDTO]) -> int:
        """Insert records in a single transaction, absorbing exact duplicates.

        Raises:
            StoreError: If the store is unreachable or rejects the batch.
        """
        if not records:
            return 0
        try:
            async with self._db.get_async_session() as session:
                return await TransferRecordRepository(session).insert_many(records)
        except (SQLAlchemyError, OSError) as e:
            raise wrap_store_error("insert transfers", e) from e

    async def query(self, address: str, limit: int) -> list[TransferRecordDTO]:
        """Return up to ``limit`` records involving ``address``, newest block first."""
        try:
            async with self._db.get_async_session() as session:
                return await TransferRecordRepository(session).list_for_address(address, limit=limit)
        except (SQLAlchemyError, OSError) as e:
            raise wrap_store_error("query transfers", e) from e

    async def count(self) -> int:
        try:
            async with self._db.get_async_session() as session:
                return await TransferRecordRepository(session).count()
        except (SQLAlchemyError, OSError) as e:
            raise wrap_store_error("count transfers", e) from e


class SqlCheckpointStore:
    """CheckpointStore backed by the single-row ``index_checkpoint`` table."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get(self) -> int | None:
        try:
            async with self._db.get_async_session() as session:
                return await IndexCheckpointRepository(session).get()
        except (SQLAlchemyError, OSError) as e:
            raise wrap_store_error("read checkpoint", e) from e

    async def set(self, block_number: int) -> None:
        """Atomically replace the checkpoint; committed before returning."""
        try:
            async with self._db.get_async_session() as session:
                await IndexCheckpointRepository(session).set(block_number)
        except (SQLAlchemyError, OSError) as e:
            raise wrap_store_error("write checkpoint", e) from e
        logger.debug("Checkpoint advanced to block %d", block_number)
