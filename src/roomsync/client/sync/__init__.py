"""Offline-first sync for room assignments.

Architecture:
    OfflineCoordinator → LocalStore ← SyncQueue ← BackgroundSyncOrchestrator → RoomClient

Components:
- **OfflineCoordinator**: Serves reads locally, applies edits optimistically,
  merges remote snapshots (last-writer-wins)
- **SyncQueue**: Durable FIFO of pending local changes
- **BackgroundSyncOrchestrator**: Push/pull passes with per-item retry
- **EventBus**: Typed notifications (RoomUpdated, DataUpdated, ...)
- **RefreshDebouncer**: Coalesces bursts of notifications for the UI
- **ConnectivityProbe**: Online/offline detection (HealthCheckProbe)

All public symbols are re-exported here.
"""

from roomsync.client.sync.conflict import describe_discard, resolve
from roomsync.client.sync.connectivity import (
    ConnectivityProbe,
    HealthCheckProbe,
    StaticProbe,
)
from roomsync.client.sync.coordinator import LAST_FULL_SYNC_KEY, OfflineCoordinator
from roomsync.client.sync.engine import BackgroundSyncOrchestrator, SyncReport
from roomsync.client.sync.events import (
    DataUpdated,
    EventBus,
    ItemDropped,
    RefreshDebouncer,
    RoomUpdated,
    SyncBusEvent,
    SyncStatusChanged,
)
from roomsync.client.sync.queue import SyncQueue
from roomsync.client.sync.retry import RetryPolicy
from roomsync.client.sync.schemas import RoomUpdate, validate_delta
from roomsync.client.sync.types import (
    APIError,
    ConflictDiscarded,
    EditOutcome,
    InvalidEdit,
    MergeOutcome,
    NetworkFailure,
    NotFound,
    RemoteRejected,
    Resolution,
    RoomOccupancy,
    RoomPriority,
    RoomReplica,
    RoomStatus,
    ServiceStatus,
    StorageFailure,
    SyncChangeType,
    SyncError,
    SyncItemStatus,
    SyncQueueItem,
)

__all__ = [
    # Coordinator
    "LAST_FULL_SYNC_KEY",
    "OfflineCoordinator",
    # Conflicts
    "describe_discard",
    "resolve",
    # Connectivity
    "ConnectivityProbe",
    "HealthCheckProbe",
    "StaticProbe",
    # Orchestrator
    "BackgroundSyncOrchestrator",
    "RetryPolicy",
    "SyncReport",
    # Events
    "DataUpdated",
    "EventBus",
    "ItemDropped",
    "RefreshDebouncer",
    "RoomUpdated",
    "SyncBusEvent",
    "SyncStatusChanged",
    # Queue
    "SyncQueue",
    # Schemas
    "RoomUpdate",
    "validate_delta",
    # Types
    "APIError",
    "ConflictDiscarded",
    "EditOutcome",
    "InvalidEdit",
    "MergeOutcome",
    "NetworkFailure",
    "NotFound",
    "RemoteRejected",
    "Resolution",
    "RoomOccupancy",
    "RoomPriority",
    "RoomReplica",
    "RoomStatus",
    "ServiceStatus",
    "StorageFailure",
    "SyncChangeType",
    "SyncError",
    "SyncItemStatus",
    "SyncQueueItem",
]
