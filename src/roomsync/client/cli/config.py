"""Configuration utilities for the roomsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from roomsync.core.config import ServerConfig, SyncConfig

_SYNC_KEYS = (
    "sync_interval",
    "batch_size",
    "probe_interval",
    "debounce_window",
    "refresh_cooldown",
)


def get_config_dir() -> Path:
    """Get the configuration directory for roomsync.

    Returns:
        Path to ~/.roomsync or equivalent.
    """
    return Path.home() / ".roomsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_db_path() -> Path:
    """Get the local database path.

    Returns:
        Path to the configured database, or rooms.db in the config directory.
    """
    config = load_config()
    if config.get("db_path"):
        return Path(config["db_path"]).expanduser()
    return get_config_dir() / "rooms.db"


def get_server_config() -> ServerConfig | None:
    """Build the server configuration from the config file.

    Returns:
        ServerConfig, or None if no server has been configured.
    """
    config = load_config()
    if not config.get("server_url") or not config.get("token"):
        return None
    return ServerConfig(
        server_url=config["server_url"],
        token=config["token"],
        timeout=float(config.get("timeout", 30.0)),
        verify_ssl=bool(config.get("verify_ssl", True)),
    )


def get_sync_config() -> SyncConfig:
    """Build the orchestrator configuration, overriding defaults from the config file."""
    config = load_config()
    overrides: dict[str, Any] = {key: config[key] for key in _SYNC_KEYS if key in config}
    if "retry_delays" in config:
        overrides["retry_delays"] = tuple(float(d) for d in config["retry_delays"])
    return SyncConfig(**overrides)
