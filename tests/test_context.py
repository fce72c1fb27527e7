"""Tests for the resource context and the command line entry point."""

import json

import pytest

from erc20_indexer.__main__ import EXIT_CONFIG_ERROR, EXIT_OK, main
from erc20_indexer.chain.reader import ChainLogReader
from erc20_indexer.config import Settings
from erc20_indexer.context import IndexerContext
from erc20_indexer.ingestion.scanner import TransferScanner

TOKEN = "0x3c499c542cef5e3811e1192ce70d8cc03d5c3359"


@pytest.fixture
def sqlite_env(clean_env, tmp_path):
    clean_env.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'ctx.sqlite'}")
    return clean_env


class TestIndexerContext:
    @pytest.mark.asyncio
    async def test_unconfigured_context(self, sqlite_env) -> None:
        ctx = await IndexerContext.open(Settings())
        try:
            assert ctx.configured is False
            assert ctx.reader is None
            assert await ctx.checkpoint.get() is None
            with pytest.raises(RuntimeError):
                ctx.build_scanner()
        finally:
            await ctx.aclose()

    @pytest.mark.asyncio
    async def test_rpc_url_without_contract_has_no_reader(self, sqlite_env) -> None:
        sqlite_env.setenv("RPC_URL", "http://localhost:8545")

        ctx = await IndexerContext.open(Settings())
        try:
            assert ctx.configured is False
            assert ctx.reader is None
        finally:
            await ctx.aclose()

    @pytest.mark.asyncio
    async def test_configured_context_builds_scanner(self, sqlite_env) -> None:
        sqlite_env.setenv("RPC_URL", "http://localhost:8545")
        sqlite_env.setenv("TOKEN_ADDRESS", TOKEN)
        sqlite_env.setenv("START_BLOCK", "0")
        sqlite_env.setenv("CHUNK_SIZE", "500")

        ctx = await IndexerContext.open(Settings())
        try:
            assert ctx.configured is True
            assert isinstance(ctx.reader, ChainLogReader)
            scanner = ctx.build_scanner()
            assert isinstance(scanner, TransferScanner)
            assert scanner.contract_address == TOKEN
        finally:
            await ctx.aclose()

        assert ctx.reader is None


class TestMain:
    def test_index_without_configuration_exits_2(self, sqlite_env) -> None:
        assert main(["index"]) == EXIT_CONFIG_ERROR

    def test_invalid_settings_exit_2(self, sqlite_env) -> None:
        sqlite_env.setenv("RPC_URL", "ftp://nowhere")
        assert main(["status"]) == EXIT_CONFIG_ERROR

    def test_status_prints_json(self, sqlite_env, capsys) -> None:
        assert main(["status"]) == EXIT_OK

        report = json.loads(capsys.readouterr().out)
        assert report["lastIndexedBlock"] is None
        assert report["configured"] is False
        assert report["records"] == 0
