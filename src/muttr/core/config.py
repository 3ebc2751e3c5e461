# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Muttr Contributors

"""Core configuration - centralized settings for the muttr package.

All environment-based configuration flows through this module.
Component configuration objects (``ConnectionConfig``, ``DirectoryConfig``,
``SessionConfig``) are built from these settings with ``from_settings()``.

Usage:
    from muttr.core.config import get_config
    config = get_config()

    port = config.dht_port
    log_level = config.log_level
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MuttrSettings(BaseSettings):
    """Settings for muttr, configurable via ``MUTTR_`` environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # DHT SETTINGS
    # ==========================================================================

    dht_address: str = Field(
        default="0.0.0.0",
        description="Local address the DHT node binds to",
        validation_alias="MUTTR_DHT_ADDRESS",
    )
    dht_port: int = Field(
        default=44678,
        description="DHT node port",
        validation_alias="MUTTR_DHT_PORT",
    )
    dht_forward_port: bool = Field(
        default=False,
        description="Attempt to map the DHT port on the local gateway",
        validation_alias="MUTTR_DHT_FORWARD_PORT",
    )
    dht_seeds: str = Field(
        default="",
        description="Comma-separated list of host:port seeds",
        validation_alias="MUTTR_DHT_SEEDS",
    )
    dht_join_timeout: float = Field(
        default=30.0,
        description="Seconds to wait for the DHT join to complete",
        validation_alias="MUTTR_DHT_JOIN_TIMEOUT",
    )
    dht_request_timeout: float = Field(
        default=15.0,
        description="Seconds to wait for a single DHT get/put",
        validation_alias="MUTTR_DHT_REQUEST_TIMEOUT",
    )

    # ==========================================================================
    # POD SETTINGS
    # ==========================================================================

    pod_scheme: str = Field(
        default="https",
        description="URL scheme used to reach pods",
        validation_alias="MUTTR_POD_SCHEME",
    )
    http_timeout: float = Field(
        default=20.0,
        description="Total timeout for a single pod HTTP request",
        validation_alias="MUTTR_HTTP_TIMEOUT",
    )
    ws_heartbeat: float = Field(
        default=30.0,
        description="WebSocket ping interval for the inbox subscription",
        validation_alias="MUTTR_WS_HEARTBEAT",
    )
    realtime: bool = Field(
        default=True,
        description="Open the realtime inbox subscription when a session starts",
        validation_alias="MUTTR_REALTIME",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="MUTTR_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="MUTTR_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="MUTTR_LOG_FILE",
    )

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def seed_list(self) -> list[tuple[str, int]]:
        """Parse ``dht_seeds`` into ``(host, port)`` tuples."""
        seeds = []
        for entry in self.dht_seeds.split(","):
            entry = entry.strip()
            if not entry:
                continue
            host, _, port = entry.rpartition(":")
            if not host or not port.isdigit():
                raise ValueError(f"Invalid DHT seed: {entry!r}")
            seeds.append((host, int(port)))
        return seeds


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: MuttrSettings | None = None


def get_config() -> MuttrSettings:
    """Get the global configuration instance.

    Returns:
        The singleton MuttrSettings instance.
    """
    global _config
    if _config is None:
        _config = MuttrSettings()
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
