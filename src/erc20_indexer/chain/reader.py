"""Chain log reader with rate limiting and block timestamp caching.

This module wraps a JSON-RPC endpoint for the three calls the indexer
needs:
- Range log queries (eth_getLogs) filtered by emitter and event topic
- Block timestamps (eth_getBlockByNumber)
- The current head block (eth_blockNumber)

Every failure surfaces as a single RpcError. Calls are not retried here;
the ingestion loop owns retry policy and shrinks the block range when the
endpoint rejects it.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import aiohttp
from redis.asyncio import Redis
from web3 import AsyncWeb3, Web3
from web3.exceptions import Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

from erc20_indexer.chain.events import RawLog, event_topic

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default configuration
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_REQUEST_TIMEOUT = 30
# Block timestamps never change once visible (reorgs are not handled).
BLOCK_TIMESTAMP_CACHE_TTL_SECONDS = 3600

# Substrings providers use when an eth_getLogs range is too wide or
# would return too many results.
_RANGE_REJECTION_MARKERS = (
    "block range",
    "blocks range",
    "range too large",
    "range is too large",
    "range too wide",
    "max range",
    "exceed maximum block range",
    "query returned more than",
    "more than 10000 results",
    "response size exceeded",
    "log response size",
    "query timeout exceeded",
)


class ChainReaderError(Exception):
    """Base exception for chain reader errors."""


class RpcError(ChainReaderError):
    """Raised when an RPC call fails or the endpoint rejects the request.

    Attributes:
        range_rejected: True when the endpoint refused a log query because
            the block range was too wide or matched too many logs.
    """

    def __init__(self, message: str, *, range_rejected: bool = False) -> None:
        super().__init__(message)
        self.range_rejected = range_rejected


def is_range_rejection(error: BaseException) -> bool:
    """Check whether an RPC failure means the requested range was too wide."""
    message = str(error).lower()
    return any(marker in message for marker in _RANGE_REJECTION_MARKERS)


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> "RateLimiter":
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class ChainLogReader:
    """Read-only access to contract logs, block timestamps and the chain head.

    Example:
        ```python
        reader = ChainLogReader("https://rpc.example.org")
        head = await reader.head_block()
        logs = await reader.fetch_logs(
            token_address,
            "Transfer(address,address,uint256)",
            head - 100,
            head,
        )
        ts = await reader.block_timestamp(logs[0].block_number)
        await reader.aclose()
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        redis: Redis | None = None,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        request_timeout: int = DEFAULT_REQUEST_TIMEOUT,
        w3: AsyncWeb3 | None = None,
    ) -> None:
        """Initialize the reader.

        Args:
            rpc_url: JSON-RPC endpoint URL.
            redis: Optional Redis client for caching block timestamps.
            max_requests_per_second: Rate limit for RPC calls.
            request_timeout: HTTP timeout per request in seconds.
            w3: Pre-built AsyncWeb3 instance (mainly for tests).
        """
        self._rpc_url = rpc_url
        self._redis = redis
        self._w3 = w3 or self._new_web3_client(rpc_url, request_timeout)
        self._rate_limiter = RateLimiter.create(max_requests_per_second)
        self._cache_prefix = "erc20_indexer:"

    def _new_web3_client(self, rpc_url: str, request_timeout: int) -> AsyncWeb3:
        client = AsyncWeb3(
            AsyncHTTPProvider(
                rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=request_timeout)},
            )
        )
        try:
            client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        except Exception as e:
            logger.warning("Failed to inject PoA middleware (rpc=%s): %s", rpc_url, e)
        return client

    def _timestamp_key(self, block_number: int) -> str:
        return f"{self._cache_prefix}block_ts:{block_number}"

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str, ttl: int) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    async def _call(self, what: str, make_call: Callable[[], Awaitable[T]]) -> T:
        """Run a single rate-limited RPC call, translating failures to RpcError."""
        await self._rate_limiter.acquire()
        try:
            return await make_call()
        except (Web3Exception, aiohttp.ClientError, OSError) as e:
            raise RpcError(
                f"RPC call {what} failed: {e}",
                range_rejected=is_range_rejection(e),
            ) from e

    async def head_block(self) -> int:
        """Return the most recent block number the endpoint considers canonical."""
        head = await self._call("eth_blockNumber", lambda: self._w3.eth.block_number)
        return int(head)

    async def fetch_logs(
        self,
        address: str,
        event_signature: str,
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        """Fetch every log for ``event_signature`` emitted by ``address`` in the inclusive range.

        Args:
            address: Emitting contract address.
            event_signature: Text signature or 0x topic hash.
            from_block: First block of the range.
            to_block: Last block of the range.

        Raises:
            RpcError: If the endpoint rejects the range or is unreachable.
        """
        if from_block > to_block:
            raise ValueError(f"Invalid block range [{from_block}, {to_block}]")

        params: dict[str, Any] = {
            "address": Web3.to_checksum_address(address),
            "topics": [event_topic(event_signature)],
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        logs = await self._call(
            f"eth_getLogs[{from_block},{to_block}]",
            lambda: self._w3.eth.get_logs(params),
        )
        return [RawLog.from_rpc(log) for log in logs]

    async def block_timestamp(self, block_number: int) -> int:
        """Return the Unix timestamp of ``block_number``.

        Raises:
            RpcError: On network failure or if the block is not yet visible.
        """
        key = self._timestamp_key(block_number)
        cached = await self._get_cached(key)
        if cached is not None:
            return int(cached)

        block = await self._call(
            f"eth_getBlockByNumber[{block_number}]",
            lambda: self._w3.eth.get_block(block_number),
        )
        if block is None:
            raise RpcError(f"Block {block_number} is not visible to the endpoint yet")

        timestamp = int(block["timestamp"])
        await self._set_cached(key, str(timestamp), BLOCK_TIMESTAMP_CACHE_TTL_SECONDS)
        return timestamp

    async def health_check(self) -> bool:
        """Check if the endpoint answers eth_blockNumber."""
        try:
            await self.head_block()
            return True
        except RpcError:
            return False

    async def aclose(self) -> None:
        """Close async HTTP provider sessions to avoid leaked aiohttp sessions."""
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if not callable(disconnect):
            return
        try:
            result = disconnect()
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning("Failed to close RPC provider session: %s", e)
