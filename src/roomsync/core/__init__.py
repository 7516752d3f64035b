"""Core module - Shared configuration and types."""

from roomsync.core.config import DEFAULT_RETRY_DELAYS, ServerConfig, SyncConfig
from roomsync.core.types import SyncState

__all__ = [
    # Config
    "DEFAULT_RETRY_DELAYS",
    "ServerConfig",
    "SyncConfig",
    # Types
    "SyncState",
]
