"""Process-wide resources bundled into one explicitly owned object."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError

from erc20_indexer.chain.reader import ChainLogReader
from erc20_indexer.config import Settings
from erc20_indexer.ingestion.scanner import TransferScanner
from erc20_indexer.storage.database import DatabaseManager
from erc20_indexer.storage.errors import wrap_store_error
from erc20_indexer.storage.stores import SqlCheckpointStore, SqlTransferStore

logger = logging.getLogger(__name__)


@dataclass
class IndexerContext:
    """Database, stores, and (when configured) the chain reader.

    Example:
        ```python
        ctx = await IndexerContext.open(get_settings())
        try:
            result = await ctx.build_scanner().scan()
        finally:
            await ctx.aclose()
        ```
    """

    settings: Settings
    db: DatabaseManager
    transfers: SqlTransferStore
    checkpoint: SqlCheckpointStore
    redis: Redis | None = None
    reader: ChainLogReader | None = None

    @classmethod
    async def open(cls, settings: Settings) -> IndexerContext:
        """Create the schema and open every resource ``settings`` asks for."""
        db = DatabaseManager(
            settings.database.url,
            pool_size=settings.database.pool_size,
            echo=settings.database.echo,
        )
        try:
            await db.init_schema_async()
        except (SQLAlchemyError, OSError) as e:
            await db.dispose_async()
            raise wrap_store_error("initialize schema", e) from e

        redis = Redis.from_url(settings.redis.url) if settings.redis.url else None

        rpc_url = settings.chain.rpc_url
        reader = None
        if rpc_url is not None and settings.chain.configured:
            reader = ChainLogReader(
                rpc_url,
                redis=redis,
                max_requests_per_second=settings.chain.max_requests_per_second,
                request_timeout=settings.chain.request_timeout,
            )
        else:
            logger.warning("RPC_URL or TOKEN_ADDRESS not set; ingestion disabled")

        return cls(
            settings=settings,
            db=db,
            transfers=SqlTransferStore(db),
            checkpoint=SqlCheckpointStore(db),
            redis=redis,
            reader=reader,
        )

    @property
    def configured(self) -> bool:
        return self.reader is not None

    def build_scanner(self) -> TransferScanner:
        """Scanner wired to this context's reader and stores.

        Raises:
            RuntimeError: If chain settings are missing.
        """
        if self.reader is None or self.settings.chain.contract_address is None:
            raise RuntimeError("Chain reader is not configured")
        indexer = self.settings.indexer
        return TransferScanner(
            self.reader,
            self.transfers,
            self.checkpoint,
            contract_address=self.settings.chain.contract_address,
            initial_block=indexer.start_block,
            chunk_size=indexer.chunk_size,
            min_chunk_size=min(indexer.min_chunk_size, indexer.chunk_size),
        )

    async def aclose(self) -> None:
        """Release every resource, in reverse order of acquisition."""
        if self.reader is not None:
            await self.reader.aclose()
            self.reader = None
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
        await self.db.dispose_async()
        logger.debug("Resources cleaned up")
