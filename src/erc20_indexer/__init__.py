"""ERC20 Transfer indexer - resumable log ingestion with an address query API."""

__version__ = "0.1.0"
