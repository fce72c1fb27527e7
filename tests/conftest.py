"""Pytest configuration and fixtures."""

from __future__ import annotations

import pytest

from erc20_indexer.chain.events import TRANSFER_TOPIC, RawLog
from erc20_indexer.chain.reader import RpcError
from erc20_indexer.config import clear_settings_cache
from erc20_indexer.storage.database import DatabaseManager

TOKEN = "0x3c499c542cef5e3811e1192ce70d8cc03d5c3359"
ALICE = "0x1234567890abcdef1234567890abcdef12345678"
BOB = "0xabcdef1234567890abcdef1234567890abcdef12"
CAROL = "0xcccccccccccccccccccccccccccccccccccccccc"

ENV_VARS = (
    "RPC_URL",
    "TOKEN_ADDRESS",
    "CONTRACT_ADDRESS",
    "TOKEN_DECIMALS",
    "RPC_MAX_REQUESTS_PER_SECOND",
    "RPC_REQUEST_TIMEOUT",
    "START_BLOCK",
    "CHUNK_SIZE",
    "CHUNK_SIZE_MIN",
    "POLL_INTERVAL_MS",
    "INDEXER_MAX_ATTEMPTS",
    "INDEXER_RETRY_DELAY_SECONDS",
    "INDEXER_SHUTDOWN_TIMEOUT_SECONDS",
    "DATABASE_URL",
    "DATABASE_POOL_SIZE",
    "DATABASE_ECHO",
    "REDIS_URL",
    "API_HOST",
    "PORT",
    "API_PREFIX",
    "CORS_ORIGINS",
    "LOG_LEVEL",
)


def _word(hex_body: str) -> str:
    return "0x" + hex_body.rjust(64, "0")


def make_transfer_log(
    block_number: int,
    *,
    sender: str = ALICE,
    recipient: str = BOB,
    value: int = 1,
    log_index: int = 0,
    tx_hash: str | None = None,
    address: str = TOKEN,
) -> RawLog:
    """Build a raw ERC20 Transfer log as the reader would return it."""
    return RawLog(
        address=address,
        block_number=block_number,
        tx_hash=tx_hash or _word(f"{block_number:x}{log_index:04x}"),
        log_index=log_index,
        topics=(TRANSFER_TOPIC, _word(sender[2:]), _word(recipient[2:])),
        data=_word(f"{value:x}"),
    )


class FakeChainReader:
    """In-memory chain with call recording and injectable failures."""

    def __init__(self, logs: list[RawLog] | None = None, *, head: int = 0) -> None:
        self.logs = list(logs or [])
        self.head = head
        self.fetch_calls: list[tuple[int, int]] = []
        self.timestamp_calls: list[int] = []
        # Reject log queries wider than this many blocks.
        self.max_range: int | None = None
        # Raise a plain RpcError on this (1-based) fetch call.
        self.fail_on_fetch: int | None = None

    async def head_block(self) -> int:
        return self.head

    async def fetch_logs(
        self, address: str, event_signature: str, from_block: int, to_block: int
    ) -> list[RawLog]:
        self.fetch_calls.append((from_block, to_block))
        if self.fail_on_fetch is not None and len(self.fetch_calls) == self.fail_on_fetch:
            raise RpcError("connection reset by peer")
        if self.max_range is not None and to_block - from_block + 1 > self.max_range:
            raise RpcError("query exceeds max block range", range_rejected=True)
        return [
            log
            for log in self.logs
            if from_block <= log.block_number <= to_block and log.address == address.lower()
        ]

    async def block_timestamp(self, block_number: int) -> int:
        self.timestamp_calls.append(block_number)
        return 1_700_000_000 + block_number * 12


@pytest.fixture
def fake_reader() -> FakeChainReader:
    return FakeChainReader()


@pytest.fixture
async def db(tmp_path):
    """File-backed SQLite database with the schema created."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'index.sqlite'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> pytest.MonkeyPatch:
    """Remove indexer variables from the environment and isolate the settings cache."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    yield monkeypatch
    clear_settings_cache()
