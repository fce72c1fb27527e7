"""Chain access layer - log queries, block timestamps and head tracking."""

from erc20_indexer.chain.events import (
    TRANSFER_EVENT_SIGNATURE,
    TRANSFER_TOPIC,
    RawLog,
    TransferLog,
    decode_transfer,
    event_topic,
)
from erc20_indexer.chain.reader import (
    ChainLogReader,
    ChainReaderError,
    RateLimiter,
    RpcError,
)

__all__ = [
    "TRANSFER_EVENT_SIGNATURE",
    "TRANSFER_TOPIC",
    "ChainLogReader",
    "ChainReaderError",
    "RateLimiter",
    "RawLog",
    "RpcError",
    "TransferLog",
    "decode_transfer",
    "event_topic",
]
