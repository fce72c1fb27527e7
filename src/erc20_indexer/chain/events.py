"""Raw log shapes and ERC20 Transfer decoding."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from web3 import Web3

TRANSFER_EVENT_SIGNATURE = "Transfer(address,address,uint256)"


def to_hex(value: Any) -> str:
    """Normalize HexBytes/bytes/str RPC values to 0x-prefixed lowercase hex."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    s = str(value).lower()
    return s if s.startswith("0x") else "0x" + s


def event_topic(signature: str) -> str:
    """Return topic0 for a text event signature (hashes pass through)."""
    if signature.startswith("0x") and len(signature) == 66:
        return signature.lower()
    return to_hex(Web3.keccak(text=signature))


TRANSFER_TOPIC = event_topic(TRANSFER_EVENT_SIGNATURE)


def is_hex_address(value: str) -> bool:
    """True for a 0x-prefixed 20-byte address in any letter case (checksum not enforced)."""
    return value[:2].lower() == "0x" and Web3.is_address(value.lower())


def topic_to_address(topic: str) -> str:
    # topics are 32-byte words; the address is the last 20 bytes
    return ("0x" + topic[-40:]).lower()


@dataclass(frozen=True)
class RawLog:
    """A single log entry as returned by eth_getLogs."""

    address: str
    block_number: int
    tx_hash: str
    log_index: int
    topics: tuple[str, ...]
    data: str

    @classmethod
    def from_rpc(cls, log: Mapping[str, Any]) -> RawLog:
        return cls(
            address=str(log["address"]).lower(),
            block_number=int(log["blockNumber"]),
            tx_hash=to_hex(log["transactionHash"]),
            log_index=int(log.get("logIndex") or 0),
            topics=tuple(to_hex(t) for t in log.get("topics") or ()),
            data=to_hex(log.get("data") or b""),
        )


@dataclass(frozen=True)
class TransferLog:
    """Decoded ERC20 Transfer event."""

    tx_hash: str
    block_number: int
    log_index: int
    from_address: str
    to_address: str
    value: int


def decode_transfer(raw: RawLog) -> TransferLog | None:
    """Decode an ERC20 Transfer log.

    ERC721 shares the Transfer topic0 but indexes tokenId as a fourth topic
    and carries no data word; such logs (and anything else malformed) are
    not ERC20 transfers and yield None.
    """
    if len(raw.topics) != 3 or raw.topics[0] != TRANSFER_TOPIC:
        return None
    word = raw.data[2:]
    if len(word) != 64:
        return None
    try:
        value = int(word, 16)
    except ValueError:
        return None
    return TransferLog(
        tx_hash=raw.tx_hash,
        block_number=raw.block_number,
        log_index=raw.log_index,
        from_address=topic_to_address(raw.topics[1]),
        to_address=topic_to_address(raw.topics[2]),
        value=value,
    )
