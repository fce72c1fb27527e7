"""Read-only query service over the transfer and checkpoint stores."""

from __future__ import annotations

from typing import TYPE_CHECKING

from erc20_indexer.api.formatting import format_units
from erc20_indexer.api.schemas import (
    IndexingStatusResponse,
    IngestionStatus,
    TransferItem,
    TransfersResponse,
)
from erc20_indexer.chain.events import is_hex_address

if TYPE_CHECKING:
    from erc20_indexer.ingestion.service import IngestionService
    from erc20_indexer.storage.stores import CheckpointStore, TransferStore

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000


class InvalidAddressError(ValueError):
    """Raised when a query address is not a 20-byte hex address."""


class QueryService:
    """Answers per-address transfer queries and ingestion status.

    Never writes, and never depends on ingestion being healthy: store reads
    are the only calls that can fail.
    """

    def __init__(
        self,
        transfers: TransferStore,
        checkpoint: CheckpointStore,
        *,
        contract_address: str | None,
        configured: bool,
        decimals: int = 18,
        ingestion: IngestionService | None = None,
    ) -> None:
        self._transfers = transfers
        self._checkpoint = checkpoint
        self._contract_address = contract_address
        self._configured = configured
        self._decimals = decimals
        self._ingestion = ingestion

    async def list_transfers(self, address: str, limit: int = DEFAULT_LIMIT) -> TransfersResponse:
        """Return up to ``limit`` transfers where ``address`` is sender or recipient.

        Raises:
            InvalidAddressError: If ``address`` is malformed.
            StoreError: If the store cannot be read.
        """
        if not is_hex_address(address):
            raise InvalidAddressError(f"Invalid address: {address}")
        if not 1 <= limit <= MAX_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_LIMIT}")

        records = await self._transfers.query(address, limit)
        data = [
            TransferItem(
                tx_hash=r.tx_hash,
                block_number=r.block_number,
                timestamp=r.timestamp,
                from_address=r.from_address,
                to_address=r.to_address,
                value=str(r.value),
                value_formatted=format_units(r.value, self._decimals),
            )
            for r in records
        ]
        return TransfersResponse(address=address, total=len(data), data=data)

    async def status(self) -> IndexingStatusResponse:
        last = await self._checkpoint.get()
        return IndexingStatusResponse(
            last_indexed_block=last,
            contract_address=self._contract_address,
            configured=self._configured,
            ingestion=self._ingestion_status(),
        )

    def _ingestion_status(self) -> IngestionStatus | None:
        if self._ingestion is None:
            return None
        stats = self._ingestion.stats
        return IngestionStatus(
            state=self._ingestion.state.value,
            last_error=stats.last_error,
            last_scan_at=stats.last_scan_at,
            scans_completed=stats.scans_completed,
            scans_failed=stats.scans_failed,
            ticks_skipped=stats.ticks_skipped,
        )
