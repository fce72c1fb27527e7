"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
indexer, loading and validating environment variables at startup.

Missing chain configuration (RPC endpoint or contract address) is not a
validation error: the query service must still come up and report itself
as not configured. Commands that cannot work without it call
``Settings.validate_requirements`` and get a ``ConfigurationError``.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from erc20_indexer.chain.events import is_hex_address

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class ConfigurationError(ValueError):
    """Raised when a command is started without the configuration it needs."""


def _blank_to_none(v: object) -> object:
    if isinstance(v, str) and not v.strip():
        return None
    return v


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./erc20_index.sqlite",
        alias="DATABASE_URL",
        description="SQLAlchemy connection string (sqlite, postgresql or mysql)",
    )
    pool_size: int = Field(
        default=5,
        alias="DATABASE_POOL_SIZE",
        ge=1,
        le=100,
        description="Connection pool size for server databases",
    )
    echo: bool = Field(
        default=False,
        alias="DATABASE_ECHO",
        description="Echo SQL statements for debugging",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("sqlite", "postgresql", "mysql")):
            raise ValueError("DATABASE_URL must be a sqlite, postgresql or mysql connection string")
        return v


class RedisSettings(BaseSettings):
    """Optional Redis cache settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string for the block timestamp cache",
    )

    @field_validator("url", mode="before")
    @classmethod
    def validate_url(cls, v: object) -> object:
        """Validate Redis URL format."""
        v = _blank_to_none(v)
        if v is not None and not str(v).startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class ChainSettings(BaseSettings):
    """Chain RPC and observed contract settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    rpc_url: str | None = Field(
        default=None,
        alias="RPC_URL",
        description="Chain JSON-RPC endpoint",
    )
    contract_address: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TOKEN_ADDRESS", "CONTRACT_ADDRESS"),
        description="ERC20 contract whose Transfer events are indexed",
    )
    token_decimals: int = Field(
        default=18,
        alias="TOKEN_DECIMALS",
        ge=0,
        le=77,
        description="Token decimals used to render valueFormatted",
    )
    max_requests_per_second: float = Field(
        default=25,
        alias="RPC_MAX_REQUESTS_PER_SECOND",
        gt=0,
        le=10_000,
        description="Client-side rate limit for RPC calls",
    )
    request_timeout: int = Field(
        default=30,
        alias="RPC_REQUEST_TIMEOUT",
        ge=1,
        le=600,
        description="HTTP timeout in seconds for a single RPC request",
    )

    @field_validator("rpc_url", mode="before")
    @classmethod
    def validate_rpc_url(cls, v: object) -> object:
        """Validate RPC URL format."""
        v = _blank_to_none(v)
        if v is not None and not str(v).startswith(("http://", "https://")):
            raise ValueError("RPC_URL must be an HTTP(S) endpoint")
        return v

    @field_validator("contract_address", mode="before")
    @classmethod
    def validate_contract_address(cls, v: object) -> object:
        """Validate and normalize the contract address."""
        v = _blank_to_none(v)
        if v is None:
            return None
        if not is_hex_address(str(v)):
            raise ValueError("TOKEN_ADDRESS must be a 20-byte hex address")
        return str(v).lower()

    @property
    def configured(self) -> bool:
        """Whether both the endpoint and the contract address are set."""
        return bool(self.rpc_url and self.contract_address)


class IndexerSettings(BaseSettings):
    """Ingestion loop settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    start_block: int | None = Field(
        default=None,
        alias="START_BLOCK",
        ge=0,
        description="First block to index when no checkpoint exists (default: chain head)",
    )
    chunk_size: int = Field(
        default=2000,
        alias="CHUNK_SIZE",
        ge=1,
        le=1_000_000,
        description="Maximum block range width per eth_getLogs call",
    )
    min_chunk_size: int = Field(
        default=1,
        alias="CHUNK_SIZE_MIN",
        ge=1,
        description="Lower bound when shrinking the range after the endpoint rejects it",
    )
    poll_interval_ms: int = Field(
        default=15_000,
        alias="POLL_INTERVAL_MS",
        ge=100,
        description="Interval between scans in continuous mode",
    )
    max_attempts: int = Field(
        default=3,
        alias="INDEXER_MAX_ATTEMPTS",
        ge=1,
        le=20,
        description="Attempts for a one-shot run before giving up",
    )
    retry_delay_seconds: float = Field(
        default=1.0,
        alias="INDEXER_RETRY_DELAY_SECONDS",
        ge=0,
        le=300,
        description="Initial backoff delay between one-shot attempts",
    )
    shutdown_timeout_seconds: float = Field(
        default=30.0,
        alias="INDEXER_SHUTDOWN_TIMEOUT_SECONDS",
        ge=0,
        description="How long stop() waits for an in-flight chunk",
    )

    @field_validator("start_block", mode="before")
    @classmethod
    def validate_start_block(cls, v: object) -> object:
        return _blank_to_none(v)

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0


class ApiSettings(BaseSettings):
    """HTTP query service settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    host: str = Field(default="0.0.0.0", alias="API_HOST", description="Bind address")
    port: int = Field(default=3001, alias="PORT", ge=1, le=65535, description="Bind port")
    prefix: str = Field(
        default="",
        alias="API_PREFIX",
        description="Route prefix, e.g. /api",
    )
    cors_origins: str = Field(
        default="*",
        alias="CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins",
    )

    @field_validator("prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if v and not v.startswith("/"):
            raise ValueError("API_PREFIX must start with /")
        return v

    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from erc20_indexer.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.chain.configured)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Each nested BaseSettings must be given the same env_file, otherwise it
    # only reads from the process environment.
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    chain: ChainSettings = Field(
        default_factory=lambda: ChainSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    indexer: IndexerSettings = Field(
        default_factory=lambda: IndexerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    api: ApiSettings = Field(
        default_factory=lambda: ApiSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "chain": {
                "rpc_url": self._redact_url(self.chain.rpc_url) if self.chain.rpc_url else "(not set)",
                "contract_address": self.chain.contract_address or "(not set)",
                "token_decimals": str(self.chain.token_decimals),
                "configured": str(self.chain.configured),
            },
            "indexer": {
                "start_block": str(self.indexer.start_block)
                if self.indexer.start_block is not None
                else "(chain head)",
                "chunk_size": str(self.indexer.chunk_size),
                "poll_interval_ms": str(self.indexer.poll_interval_ms),
            },
            "api": {
                "bind": f"{self.api.host}:{self.api.port}",
                "prefix": self.api.prefix or "/",
            },
            "log_level": self.log_level,
        }

    def validate_requirements(self, *, command: Literal["index", "serve", "status"]) -> None:
        """Validate command-specific requirements.

        One-shot indexing refuses to run without an endpoint and contract.
        ``serve`` and ``status`` tolerate the gap and report it instead.

        Raises:
            ConfigurationError: If ``command`` needs chain settings that are missing.
        """
        if command != "index":
            return
        missing = []
        if not self.chain.rpc_url:
            missing.append("RPC_URL")
        if not self.chain.contract_address:
            missing.append("TOKEN_ADDRESS")
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
