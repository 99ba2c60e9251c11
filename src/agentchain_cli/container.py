"""Dependency container for the agentchain CLI.

Commands never build the runtime themselves. They ask the container for a
runtime factory, which tests can replace with ``set_override``.

Factory functions:
- get_config(): Load and cache CLI configuration
- get_runtime_factory(): Async context manager factory yielding a Runtime
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from functools import lru_cache
from typing import Any, Callable

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agentchain.container import Runtime, open_runtime

RuntimeFactory = Callable[[], AbstractAsyncContextManager[Runtime]]


class CliConfig(BaseSettings):
    """CLI configuration.

    Environment variables:
    - AGENTCHAIN_CLI_DATABASE_URL: Database URL override
    - AGENTCHAIN_CLI_CREATE_TABLES: Create tables on startup (true/false)
    """

    database_url: str | None = Field(default=None)
    create_tables: bool = Field(default=False)

    model_config = SettingsConfigDict(
        env_prefix="AGENTCHAIN_CLI_",
        case_sensitive=False,
    )


# Global container state for testing/mocking
_overrides: dict[str, Any] = {}


def set_override(key: str, value: Any) -> None:
    """Override a container dependency for testing.

    Example:
        >>> set_override("runtime_factory", fake_factory)
        >>> factory = get_runtime_factory()  # Returns fake_factory
        >>> clear_overrides()
    """
    _overrides[key] = value


def clear_overrides() -> None:
    """Clear all dependency overrides."""
    _overrides.clear()


@lru_cache(maxsize=1)
def get_config() -> CliConfig:
    """Load and cache configuration."""
    if "config" in _overrides:
        override = _overrides["config"]
        if not isinstance(override, CliConfig):
            raise TypeError("Override for 'config' must be a CliConfig instance")
        return override

    return CliConfig()


def get_runtime_factory() -> RuntimeFactory:
    """Factory for a fully wired runtime (NOT cached)."""
    if "runtime_factory" in _overrides:
        return _overrides["runtime_factory"]

    config = get_config()

    def factory() -> AbstractAsyncContextManager[Runtime]:
        return open_runtime(config.database_url, create_tables=config.create_tables)

    return factory


def reset_container() -> None:
    """Reset container state for testing."""
    clear_overrides()
    get_config.cache_clear()
