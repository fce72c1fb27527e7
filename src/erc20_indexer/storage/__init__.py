"""Storage layer - Database schemas, repositories and stores."""

from erc20_indexer.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from erc20_indexer.storage.errors import StoreError
from erc20_indexer.storage.memory import MemoryCheckpointStore, MemoryTransferStore
from erc20_indexer.storage.models import Base, IndexCheckpointModel, TransferModel
from erc20_indexer.storage.repos import (
    IndexCheckpointRepository,
    TransferRecordDTO,
    TransferRecordRepository,
)
from erc20_indexer.storage.stores import (
    CheckpointStore,
    SqlCheckpointStore,
    SqlTransferStore,
    TransferStore,
)

__all__ = [
    "Base",
    "CheckpointStore",
    "DatabaseManager",
    "IndexCheckpointModel",
    "IndexCheckpointRepository",
    "MemoryCheckpointStore",
    "MemoryTransferStore",
    "SqlCheckpointStore",
    "SqlTransferStore",
    "StoreError",
    "TransferModel",
    "TransferRecordDTO",
    "TransferRecordRepository",
    "TransferStore",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
