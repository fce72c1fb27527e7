"""Query API - HTTP surface over the indexed transfers."""

from erc20_indexer.api.app import create_app
from erc20_indexer.api.formatting import format_units
from erc20_indexer.api.service import InvalidAddressError, QueryService

__all__ = [
    "InvalidAddressError",
    "QueryService",
    "create_app",
    "format_units",
]
