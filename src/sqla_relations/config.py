"""Connection configuration.

Settings are read with pydantic-settings from ``SQLA_RELATIONS_*`` environment
variables (or a ``.env`` file). Nested values use ``__`` as delimiter, or a
JSON document for the whole ``connections`` map::

    SQLA_RELATIONS_CONNECTION=primary
    SQLA_RELATIONS_CONNECTIONS='{"primary": {"url": "sqlite+aiosqlite:///app.db"}}'
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConnectionSettings(BaseModel):
    """Settings for one named connection."""

    url: str
    echo: bool = False
    debug: bool = False
    engine_options: dict[str, Any] = Field(default_factory=dict)


class DatabaseSettings(BaseSettings):
    connection: str = Field("primary", description="Name of the default connection")
    connections: dict[str, ConnectionSettings] = Field(default_factory=dict)
    debug: bool = Field(False, description="Log every executed statement at DEBUG level")

    model_config = SettingsConfigDict(
        env_prefix="SQLA_RELATIONS_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> DatabaseSettings:
    """Cached settings instance, parsed from the environment once."""
    return DatabaseSettings()


__all__ = ["ConnectionSettings", "DatabaseSettings", "get_settings"]
