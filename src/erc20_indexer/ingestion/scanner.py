"""Resumable chunked scan of Transfer logs.

A scan walks ``[start, head]`` in contiguous chunks. For each chunk it
fetches logs, resolves block timestamps, writes the decoded records and only
then advances the checkpoint to the chunk's last block. A crash at any point
leaves the checkpoint at the last fully committed chunk, and re-running the
scan re-inserts at most one chunk of records, which the store absorbs as
duplicates.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Protocol

from erc20_indexer.chain.events import (
    TRANSFER_EVENT_SIGNATURE,
    RawLog,
    decode_transfer,
)
from erc20_indexer.chain.reader import RpcError
from erc20_indexer.storage.repos import TransferRecordDTO
from erc20_indexer.storage.stores import CheckpointStore, TransferStore

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 2000
MAX_CONCURRENT_TIMESTAMP_LOOKUPS = 8


class LogReader(Protocol):
    async def fetch_logs(
        self, address: str, event_signature: str, from_block: int, to_block: int
    ) -> list[RawLog]: ...

    async def block_timestamp(self, block_number: int) -> int: ...

    async def head_block(self) -> int: ...


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one scan invocation."""

    start_block: int
    head_block: int
    chunks_committed: int = 0
    records_written: int = 0
    last_indexed_block: int | None = None
    stopped_early: bool = False

    @property
    def noop(self) -> bool:
        return self.chunks_committed == 0 and self.start_block > self.head_block


class TransferScanner:
    """Scan a contract's Transfer logs from the checkpoint up to the chain head.

    Example:
        ```python
        scanner = TransferScanner(
            reader,
            transfers,
            checkpoint,
            contract_address="0xa0b8...",
            initial_block=19_000_000,
        )
        result = await scanner.scan()
        print(result.last_indexed_block)
        ```
    """

    def __init__(
        self,
        reader: LogReader,
        transfers: TransferStore,
        checkpoint: CheckpointStore,
        *,
        contract_address: str,
        initial_block: int | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        min_chunk_size: int = 1,
        event_signature: str = TRANSFER_EVENT_SIGNATURE,
    ) -> None:
        """Initialize the scanner.

        Args:
            reader: Chain log reader.
            transfers: Destination store for decoded records.
            checkpoint: Store for the last fully indexed block.
            contract_address: Contract whose logs are scanned.
            initial_block: First block when no checkpoint exists. ``None``
                starts at the current head.
            chunk_size: Maximum block range per log query.
            min_chunk_size: Smallest range the scanner shrinks to when the
                endpoint rejects a range as too wide.
            event_signature: Event to scan for.
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 1 <= min_chunk_size <= chunk_size:
            raise ValueError("min_chunk_size must be between 1 and chunk_size")
        if initial_block is not None and initial_block < 0:
            raise ValueError("initial_block must be >= 0")

        self._reader = reader
        self._transfers = transfers
        self._checkpoint = checkpoint
        self._contract_address = contract_address.lower()
        self._initial_block = initial_block
        self._chunk_size = chunk_size
        self._min_chunk_size = min_chunk_size
        self._event_signature = event_signature

    @property
    def contract_address(self) -> str:
        return self._contract_address

    async def resolve_start_block(self, head: int) -> int:
        """Block the next scan starts from."""
        last = await self._checkpoint.get()
        if last is not None:
            return last + 1
        if self._initial_block is not None:
            return self._initial_block
        return head

    async def scan(self, *, should_stop: Callable[[], bool] | None = None) -> ScanResult:
        """Index every block from the resume point to the current head.

        Args:
            should_stop: Polled between chunks; when it returns True the scan
                ends after the chunk in progress has been committed.

        Raises:
            RpcError: If the chain endpoint fails. The checkpoint keeps the
                last committed chunk.
            StoreError: If the store fails.
        """
        head = await self._reader.head_block()
        start = await self.resolve_start_block(head)
        if start > head:
            logger.debug("Nothing to index: next block %d is past head %d", start, head)
            return ScanResult(start_block=start, head_block=head)

        logger.info("Scanning blocks %d..%d for %s", start, head, self._contract_address)

        timestamps: dict[int, int] = {}
        width = self._chunk_size
        chunks = 0
        written = 0
        last_indexed: int | None = None
        from_block = start

        while from_block <= head:
            if should_stop is not None and should_stop():
                logger.info("Scan stopping before block %d", from_block)
                return ScanResult(
                    start_block=start,
                    head_block=head,
                    chunks_committed=chunks,
                    records_written=written,
                    last_indexed_block=last_indexed,
                    stopped_early=True,
                )

            to_block = min(from_block + width - 1, head)
            try:
                logs = await self._reader.fetch_logs(
                    self._contract_address, self._event_signature, from_block, to_block
                )
            except RpcError as e:
                if not e.range_rejected or width <= self._min_chunk_size:
                    raise
                width = max(self._min_chunk_size, width // 2)
                logger.warning(
                    "Range [%d, %d] rejected by endpoint; retrying with width %d",
                    from_block,
                    to_block,
                    width,
                )
                continue

            records = await self._build_records(logs, timestamps)
            written += await self._transfers.insert_many(records)
            await self._checkpoint.set(to_block)

            chunks += 1
            last_indexed = to_block
            logger.info(
                "Indexed blocks %d..%d (%d transfers)",
                from_block,
                to_block,
                len(records),
            )
            from_block = to_block + 1

        return ScanResult(
            start_block=start,
            head_block=head,
            chunks_committed=chunks,
            records_written=written,
            last_indexed_block=last_indexed,
        )

    async def _resolve_timestamps(self, blocks: list[int], timestamps: dict[int, int]) -> None:
        """Fetch timestamps for ``blocks``, cancelling outstanding lookups on failure."""
        semaphore = asyncio.Semaphore(MAX_CONCURRENT_TIMESTAMP_LOOKUPS)

        async def lookup(block_number: int) -> None:
            async with semaphore:
                timestamps[block_number] = await self._reader.block_timestamp(block_number)

        tasks = [asyncio.create_task(lookup(n)) for n in blocks]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _build_records(
        self, logs: Iterable[RawLog], timestamps: dict[int, int]
    ) -> list[TransferRecordDTO]:
        decoded = []
        for raw in logs:
            transfer = decode_transfer(raw)
            if transfer is None:
                logger.warning(
                    "Skipping non-ERC20 Transfer log tx=%s index=%d (topics=%d)",
                    raw.tx_hash,
                    raw.log_index,
                    len(raw.topics),
                )
                continue
            decoded.append(transfer)

        missing = sorted({t.block_number for t in decoded} - timestamps.keys())
        if missing:
            await self._resolve_timestamps(missing, timestamps)
            logger.debug("Resolved %d block timestamps", len(missing))

        return [
            TransferRecordDTO(
                tx_hash=t.tx_hash,
                block_number=t.block_number,
                timestamp=timestamps[t.block_number],
                from_address=t.from_address,
                to_address=t.to_address,
                value=t.value,
                log_index=t.log_index,
            )
            for t in decoded
        ]
