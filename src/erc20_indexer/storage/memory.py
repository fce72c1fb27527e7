"""In-process store implementations."""

from __future__ import annotations

from collections.abc import Sequence

from erc20_indexer.storage.repos import TransferRecordDTO


class MemoryTransferStore:
    """TransferStore that keeps records in a dict keyed by the event tuple."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str, str, int], TransferRecordDTO] = {}

    async def insert(self, record: TransferRecordDTO) -> None:
        await self.insert_many([record])

    async def insert_many(self, records: Sequence[TransferRecordDTO]) -> int:
        for record in records:
            self._records.setdefault(record.key, record)
        return len(records)

    async def query(self, address: str, limit: int) -> list[TransferRecordDTO]:
        addr = address.lower()
        matches = [
            r
            for r in self._records.values()
            if r.from_address.lower() == addr or r.to_address.lower() == addr
        ]
        matches.sort(key=lambda r: (r.block_number, r.log_index or 0), reverse=True)
        return matches[:limit]

    async def count(self) -> int:
        return len(self._records)

    def all(self) -> list[TransferRecordDTO]:
        return sorted(self._records.values(), key=lambda r: (r.block_number, r.log_index or 0))


class MemoryCheckpointStore:
    """CheckpointStore holding a single integer."""

    def __init__(self, last_block: int | None = None) -> None:
        self._last_block = last_block
        self.history: list[int] = []

    async def get(self) -> int | None:
        return self._last_block

    async def set(self, block_number: int) -> None:
        self._last_block = block_number
        self.history.append(block_number)
