"""Ingestion layer - chunked scanning and the polling service."""

from erc20_indexer.ingestion.scanner import ScanResult, TransferScanner
from erc20_indexer.ingestion.service import (
    IngestionService,
    IngestionState,
    IngestionStats,
    run_once,
)

__all__ = [
    "IngestionService",
    "IngestionState",
    "IngestionStats",
    "ScanResult",
    "TransferScanner",
    "run_once",
]
