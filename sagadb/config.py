"""
Configuration settings for sagadb.

Uses Pydantic Settings to load environment variables (and an optional
``.env`` file) for driver selection, connection credentials, batching limits
and connection lifecycle tuning. Size limits are process configuration: they
are never negotiated with the server.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Driver selection
    db_driver: Literal["sqlite", "postgres"] = Field("sqlite", alias="DB_DRIVER")

    # Postgres
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("sagadb", alias="DB_NAME")
    db_connect_timeout: int = Field(10, alias="DB_CONNECT_TIMEOUT")
    pool_min_size: int = Field(0, alias="DB_POOL_MIN_SIZE")
    pool_max_size: int = Field(0, alias="DB_POOL_MAX_SIZE")

    # SQLite
    db_path: str = Field(":memory:", alias="DB_PATH")

    # Naming
    table_prefix: str = Field("", alias="DB_TABLE_PREFIX")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    json_logs: bool = Field(False, alias="JSON_LOGS")

    # Batching
    default_batch_size: int = Field(500, alias="BATCH_DEFAULT_SIZE", ge=1)
    max_batch_size: int = Field(1000, alias="BATCH_MAX_SIZE", ge=1)
    max_query_bytes: int = Field(1_048_576, alias="BATCH_MAX_QUERY_BYTES", ge=1024)

    # Connection lifecycle
    health_check_interval: float = Field(60.0, alias="DB_HEALTH_CHECK_INTERVAL")
    idle_timeout: float = Field(300.0, alias="DB_IDLE_TIMEOUT")
    max_connections: int = Field(10, alias="DB_MAX_CONNECTIONS", ge=1)
    reconnect_attempts: int = Field(3, alias="DB_RECONNECT_ATTEMPTS", ge=1)
    reconnect_backoff: float = Field(1.0, alias="DB_RECONNECT_BACKOFF", ge=0)

    # Query log
    slow_query_ms: float = Field(50.0, alias="DB_SLOW_QUERY_MS")
    query_log_enabled: bool = Field(False, alias="DB_QUERY_LOG")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
