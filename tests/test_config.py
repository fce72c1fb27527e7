"""Tests for configuration loading."""

import logging

import pytest
from pydantic import ValidationError

from erc20_indexer.config import (
    ChainSettings,
    ConfigurationError,
    DatabaseSettings,
    IndexerSettings,
    RedisSettings,
    Settings,
    get_settings,
)


class TestDefaults:
    def test_unconfigured_defaults(self, clean_env) -> None:
        settings = Settings()

        assert settings.chain.rpc_url is None
        assert settings.chain.contract_address is None
        assert settings.chain.configured is False
        assert settings.chain.token_decimals == 18
        assert settings.indexer.start_block is None
        assert settings.indexer.chunk_size == 2000
        assert settings.indexer.poll_interval_ms == 15000
        assert settings.indexer.poll_interval_seconds == 15.0
        assert settings.api.port == 3001
        assert settings.api.prefix == ""
        assert settings.database.url.startswith("sqlite+aiosqlite://")
        assert settings.redis.url is None
        assert settings.get_logging_level() == logging.INFO

    def test_get_settings_is_cached(self, clean_env) -> None:
        assert get_settings() is get_settings()


class TestChainSettings:
    def test_configured_from_env(self, clean_env) -> None:
        clean_env.setenv("RPC_URL", "https://rpc.example.org")
        clean_env.setenv("TOKEN_ADDRESS", "0x3C499c542cEF5E3811e1192ce70d8cC03d5c3359")

        chain = ChainSettings()

        assert chain.configured is True
        assert chain.contract_address == "0x3c499c542cef5e3811e1192ce70d8cc03d5c3359"

    def test_contract_address_alias(self, clean_env) -> None:
        clean_env.setenv("CONTRACT_ADDRESS", "0x3c499c542cef5e3811e1192ce70d8cc03d5c3359")

        assert ChainSettings().contract_address == "0x3c499c542cef5e3811e1192ce70d8cc03d5c3359"

    def test_blank_values_mean_unset(self, clean_env) -> None:
        clean_env.setenv("RPC_URL", "")
        clean_env.setenv("TOKEN_ADDRESS", "  ")

        chain = ChainSettings()

        assert chain.rpc_url is None
        assert chain.contract_address is None

    def test_rejects_non_http_rpc(self, clean_env) -> None:
        clean_env.setenv("RPC_URL", "ws://localhost:8546")
        with pytest.raises(ValidationError):
            ChainSettings()

    def test_rejects_malformed_address(self, clean_env) -> None:
        clean_env.setenv("TOKEN_ADDRESS", "0x1234")
        with pytest.raises(ValidationError):
            ChainSettings()


class TestOtherSettings:
    def test_start_block_zero_is_kept(self, clean_env) -> None:
        clean_env.setenv("START_BLOCK", "0")
        assert IndexerSettings().start_block == 0

    def test_blank_start_block_is_unset(self, clean_env) -> None:
        clean_env.setenv("START_BLOCK", "")
        assert IndexerSettings().start_block is None

    def test_rejects_unknown_database_scheme(self, clean_env) -> None:
        clean_env.setenv("DATABASE_URL", "oracle://db")
        with pytest.raises(ValidationError):
            DatabaseSettings()

    def test_rejects_non_redis_url(self, clean_env) -> None:
        clean_env.setenv("REDIS_URL", "http://cache")
        with pytest.raises(ValidationError):
            RedisSettings()

    def test_api_prefix_and_cors(self, clean_env) -> None:
        clean_env.setenv("API_PREFIX", "/api/")
        clean_env.setenv("CORS_ORIGINS", "http://a.test, http://b.test")

        settings = Settings()

        assert settings.api.prefix == "/api"
        assert settings.api.cors_origin_list() == ["http://a.test", "http://b.test"]


class TestRequirements:
    def test_index_requires_chain_settings(self, clean_env) -> None:
        settings = Settings()
        with pytest.raises(ConfigurationError, match="RPC_URL, TOKEN_ADDRESS"):
            settings.validate_requirements(command="index")

    def test_serve_tolerates_missing_chain_settings(self, clean_env) -> None:
        settings = Settings()
        settings.validate_requirements(command="serve")
        settings.validate_requirements(command="status")

    def test_redacted_summary_masks_password(self, clean_env) -> None:
        clean_env.setenv("DATABASE_URL", "postgresql+asyncpg://indexer:s3cret@db:5432/transfers")

        summary = Settings().redacted_summary()

        assert "s3cret" not in summary["database_url"]
        assert summary["database_url"] == "postgresql+asyncpg://indexer:***@db:5432/transfers"
