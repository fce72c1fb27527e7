"""Tests for the chain log reader."""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from conftest import ALICE, BOB, TOKEN
from web3 import Web3
from web3.exceptions import Web3Exception

from erc20_indexer.chain.events import TRANSFER_EVENT_SIGNATURE, TRANSFER_TOPIC
from erc20_indexer.chain.reader import (
    BLOCK_TIMESTAMP_CACHE_TTL_SECONDS,
    ChainLogReader,
    RateLimiter,
    RpcError,
    is_range_rejection,
)


class FakeEth:
    """Stand-in for ``AsyncWeb3.eth``; ``block_number`` is an awaitable property."""

    def __init__(self, head: int = 100) -> None:
        self.head = head
        self.head_error: Exception | None = None
        self.get_logs = AsyncMock(return_value=[])
        self.get_block = AsyncMock(return_value={"timestamp": 1_700_000_000})

    async def _head(self) -> int:
        if self.head_error is not None:
            raise self.head_error
        return self.head

    @property
    def block_number(self):
        return self._head()


@pytest.fixture
def eth() -> FakeEth:
    return FakeEth()


@pytest.fixture
def w3(eth: FakeEth) -> MagicMock:
    w3 = MagicMock()
    w3.eth = eth
    w3.provider = MagicMock()
    w3.provider.disconnect = AsyncMock()
    return w3


@pytest.fixture
def reader(w3: MagicMock) -> ChainLogReader:
    return ChainLogReader("http://localhost:8545", w3=w3, max_requests_per_second=1000)


class TestRangeRejection:
    @pytest.mark.parametrize(
        "message",
        [
            "query returned more than 10000 results",
            "eth_getLogs block range too large, max 2000",
            "exceed maximum block range: 5000",
            "Log response size exceeded.",
        ],
    )
    def test_detects_range_messages(self, message: str) -> None:
        assert is_range_rejection(Exception(message))

    @pytest.mark.parametrize("message", ["rate limit exceeded", "429 Too Many Requests", "connection refused"])
    def test_ignores_other_failures(self, message: str) -> None:
        assert not is_range_rejection(Exception(message))


class TestChainLogReader:
    @pytest.mark.asyncio
    async def test_head_block(self, reader: ChainLogReader) -> None:
        assert await reader.head_block() == 100
        assert await reader.head_block() == 100

    @pytest.mark.asyncio
    async def test_fetch_logs_builds_filter(self, reader: ChainLogReader, eth: FakeEth) -> None:
        eth.get_logs.return_value = [
            {
                "address": Web3.to_checksum_address(TOKEN),
                "blockNumber": 12,
                "transactionHash": bytes.fromhex("ab" * 32),
                "logIndex": 0,
                "topics": [
                    bytes.fromhex(TRANSFER_TOPIC[2:]),
                    bytes.fromhex("00" * 12 + ALICE[2:]),
                    bytes.fromhex("00" * 12 + BOB[2:]),
                ],
                "data": bytes.fromhex("00" * 31 + "05"),
            }
        ]

        logs = await reader.fetch_logs(TOKEN, TRANSFER_EVENT_SIGNATURE, 10, 20)

        eth.get_logs.assert_awaited_once_with(
            {
                "address": Web3.to_checksum_address(TOKEN),
                "topics": [TRANSFER_TOPIC],
                "fromBlock": 10,
                "toBlock": 20,
            }
        )
        assert len(logs) == 1
        assert logs[0].block_number == 12
        assert logs[0].tx_hash == "0x" + "ab" * 32

    @pytest.mark.asyncio
    async def test_fetch_logs_rejects_inverted_range(self, reader: ChainLogReader) -> None:
        with pytest.raises(ValueError):
            await reader.fetch_logs(TOKEN, TRANSFER_EVENT_SIGNATURE, 20, 10)

    @pytest.mark.asyncio
    async def test_range_rejection_is_flagged(self, reader: ChainLogReader, eth: FakeEth) -> None:
        eth.get_logs.side_effect = Web3Exception("query returned more than 10000 results")

        with pytest.raises(RpcError) as exc_info:
            await reader.fetch_logs(TOKEN, TRANSFER_EVENT_SIGNATURE, 0, 100_000)

        assert exc_info.value.range_rejected is True

    @pytest.mark.asyncio
    async def test_network_failure_is_rpc_error(self, reader: ChainLogReader, eth: FakeEth) -> None:
        eth.get_logs.side_effect = aiohttp.ClientConnectionError("connection reset")

        with pytest.raises(RpcError) as exc_info:
            await reader.fetch_logs(TOKEN, TRANSFER_EVENT_SIGNATURE, 0, 10)

        assert exc_info.value.range_rejected is False

    @pytest.mark.asyncio
    async def test_block_timestamp(self, reader: ChainLogReader, eth: FakeEth) -> None:
        assert await reader.block_timestamp(55) == 1_700_000_000
        eth.get_block.assert_awaited_once_with(55)

    @pytest.mark.asyncio
    async def test_block_not_visible(self, reader: ChainLogReader, eth: FakeEth) -> None:
        eth.get_block.return_value = None

        with pytest.raises(RpcError, match="not visible"):
            await reader.block_timestamp(10_000)

    @pytest.mark.asyncio
    async def test_health_check(self, reader: ChainLogReader, eth: FakeEth) -> None:
        assert await reader.health_check() is True

        eth.head_error = OSError("unreachable")
        assert await reader.health_check() is False

    @pytest.mark.asyncio
    async def test_aclose_disconnects_provider(self, reader: ChainLogReader, w3: MagicMock) -> None:
        await reader.aclose()
        w3.provider.disconnect.assert_awaited_once()


class TestTimestampCache:
    @pytest.mark.asyncio
    async def test_cache_hit_skips_rpc(self, w3: MagicMock, eth: FakeEth) -> None:
        redis = AsyncMock()
        redis.get = AsyncMock(return_value=b"1234")
        reader = ChainLogReader("http://localhost:8545", w3=w3, redis=redis)

        assert await reader.block_timestamp(7) == 1234
        eth.get_block.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cache_miss_stores_timestamp(self, w3: MagicMock) -> None:
        redis = AsyncMock()
        redis.get = AsyncMock(return_value=None)
        redis.set = AsyncMock()
        reader = ChainLogReader("http://localhost:8545", w3=w3, redis=redis)

        assert await reader.block_timestamp(7) == 1_700_000_000
        redis.set.assert_awaited_once_with(
            "erc20_indexer:block_ts:7", "1700000000", ex=BLOCK_TIMESTAMP_CACHE_TTL_SECONDS
        )

    @pytest.mark.asyncio
    async def test_cache_failure_falls_back_to_rpc(self, w3: MagicMock, eth: FakeEth) -> None:
        redis = AsyncMock()
        redis.get = AsyncMock(side_effect=ConnectionError("redis down"))
        redis.set = AsyncMock(side_effect=ConnectionError("redis down"))
        reader = ChainLogReader("http://localhost:8545", w3=w3, redis=redis)

        assert await reader.block_timestamp(7) == 1_700_000_000
        eth.get_block.assert_awaited_once()


class TestRateLimiter:
    def test_create(self) -> None:
        limiter = RateLimiter.create(10)
        assert limiter.max_tokens == 10
        assert limiter.tokens == 10

    @pytest.mark.asyncio
    async def test_acquire_consumes_tokens(self) -> None:
        limiter = RateLimiter.create(5)
        for _ in range(3):
            await limiter.acquire()
        assert limiter.tokens < 3
