"""Shared types for roomsync.

This module defines types and enums used across the client packages.
"""

from __future__ import annotations

from enum import Enum


class SyncState(str, Enum):
    """Sync state of the background orchestrator.

    Used by the orchestrator (state machine), the event bus
    (SyncStatusChanged) and the CLI status command.
    """

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"
