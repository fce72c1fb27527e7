"""Command line entry point.

Usage:
    erc20-indexer index     # index up to the current head and exit
    erc20-indexer serve     # continuous ingestion plus the HTTP query API
    erc20-indexer status    # print checkpoint and configuration as JSON
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import uvicorn
from pydantic import ValidationError

from erc20_indexer import __version__
from erc20_indexer.api.app import create_app
from erc20_indexer.api.service import QueryService
from erc20_indexer.chain.reader import RpcError
from erc20_indexer.config import ConfigurationError, Settings, get_settings
from erc20_indexer.context import IndexerContext
from erc20_indexer.ingestion.service import IngestionService, run_once
from erc20_indexer.storage.errors import StoreError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="erc20-indexer",
        description="Index ERC20 Transfer events and serve per-address queries",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override LOG_LEVEL",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("index", help="Index up to the current chain head and exit")
    sub.add_parser("serve", help="Run continuous ingestion and the HTTP API")
    sub.add_parser("status", help="Print indexing status as JSON")
    return parser


async def _index(settings: Settings) -> int:
    ctx = await IndexerContext.open(settings)
    try:
        result = await run_once(
            ctx.build_scanner(),
            max_attempts=settings.indexer.max_attempts,
            retry_delay_seconds=settings.indexer.retry_delay_seconds,
        )
    except (RpcError, StoreError) as e:
        logger.error("Indexing failed: %s", e)
        return EXIT_FAILURE
    finally:
        await ctx.aclose()

    if result.noop:
        logger.info("Already up to date at head %d", result.head_block)
    else:
        logger.info(
            "Indexed blocks %d..%d: %d chunks, %d records",
            result.start_block,
            result.head_block,
            result.chunks_committed,
            result.records_written,
        )
    return EXIT_OK


async def _serve(settings: Settings) -> int:
    ctx = await IndexerContext.open(settings)
    ingestion = None
    if ctx.configured:
        ingestion = IngestionService(
            ctx.build_scanner(),
            poll_interval_seconds=settings.indexer.poll_interval_seconds,
            shutdown_timeout_seconds=settings.indexer.shutdown_timeout_seconds,
        )

    service = QueryService(
        ctx.transfers,
        ctx.checkpoint,
        contract_address=settings.chain.contract_address,
        configured=ctx.configured,
        decimals=settings.chain.token_decimals,
        ingestion=ingestion,
    )
    app = create_app(
        service,
        cors_origins=settings.api.cors_origin_list(),
        api_prefix=settings.api.prefix,
    )
    # uvicorn installs SIGINT/SIGTERM handlers and returns from serve() on either.
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level=settings.log_level.lower(),
        )
    )

    try:
        if ingestion is not None:
            await ingestion.start()
        await server.serve()
    finally:
        if ingestion is not None:
            await ingestion.stop()
        await ctx.aclose()
    return EXIT_OK


async def _status(settings: Settings) -> int:
    ctx = await IndexerContext.open(settings)
    try:
        report: dict[str, Any] = {
            "lastIndexedBlock": await ctx.checkpoint.get(),
            "contractAddress": settings.chain.contract_address,
            "configured": settings.chain.configured,
            "records": await ctx.transfers.count(),
            "settings": settings.redacted_summary(),
        }
    except StoreError as e:
        logger.error("Failed to read status: %s", e)
        return EXIT_FAILURE
    finally:
        await ctx.aclose()
    print(json.dumps(report, indent=2))
    return EXIT_OK


_COMMANDS = {
    "index": _index,
    "serve": _serve,
    "status": _status,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        logging.basicConfig(format=LOG_FORMAT)
        logger.error("Invalid configuration: %s", e)
        return EXIT_CONFIG_ERROR

    level = getattr(logging, args.log_level) if args.log_level else settings.get_logging_level()
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger.info("Starting %s with %s", args.command, settings.redacted_summary())

    try:
        settings.validate_requirements(command=args.command)
    except ConfigurationError as e:
        logger.error("%s", e)
        return EXIT_CONFIG_ERROR

    try:
        return asyncio.run(_COMMANDS[args.command](settings))
    except StoreError as e:
        logger.error("Store unavailable: %s", e)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
