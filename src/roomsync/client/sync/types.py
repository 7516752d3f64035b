"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, NotFound, StorageFailure, NetworkFailure, RemoteRejected,
  InvalidEdit: Exception classes
- RoomStatus, RoomPriority, RoomOccupancy, ServiceStatus: Room enums
- RoomReplica: Local copy of a remote room assignment
- SyncChangeType, SyncItemStatus, SyncQueueItem: Sync queue types
- Resolution, ConflictDiscarded, MergeOutcome, EditOutcome: Merge results
- Timestamp helpers (utcnow, parse_timestamp, format_timestamp, isoformat_utc)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# =============================================================================
# Errors
# =============================================================================


class SyncError(Exception):
    """Base exception for sync errors."""


class NotFound(SyncError):
    """An operation referenced a room id that is absent locally."""

    def __init__(self, room_id: int) -> None:
        self.room_id = room_id
        super().__init__(f"Room {room_id} not found in local storage")


class StorageFailure(SyncError):
    """The local persistence layer failed. Fatal to the current operation."""


class InvalidEdit(SyncError):
    """A local edit delta failed validation."""


class APIError(SyncError):
    """Base exception for remote API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkFailure(APIError):
    """Remote call failed or timed out. Retryable."""


class RemoteRejected(APIError):
    """Remote authority refused the request. Not retryable."""


# =============================================================================
# Timestamps
# =============================================================================


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values are assumed to be UTC. A trailing "Z" is accepted.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    """Format an optional datetime, see isoformat_utc."""
    if value is None:
        return None
    return isoformat_utc(value)


def isoformat_utc(value: datetime) -> str:
    """Format a datetime as ISO-8601 (UTC, fixed width so strings sort by time)."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


# =============================================================================
# Room enums
# =============================================================================


class _CaseInsensitiveEnum(str, Enum):
    """String enum that accepts values regardless of case."""

    @classmethod
    def _missing_(cls, value: object) -> Any:
        if isinstance(value, str):
            upper = value.upper()
            for member in cls:
                if member.value == upper:
                    return member
        return None


class RoomStatus(_CaseInsensitiveEnum):
    """Cleanliness of a room."""

    CLEAN = "CLEAN"
    DIRTY = "DIRTY"
    INSPECTED = "INSPECTED"


class RoomPriority(_CaseInsensitiveEnum):
    """Cleaning priority (ordered LOW < MEDIUM < HIGH < URGENT)."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class RoomOccupancy(_CaseInsensitiveEnum):
    """Occupancy of a room."""

    VACANT = "VACANT"
    OCCUPIED = "OCCUPIED"
    OUT_OF_ORDER = "OUT_OF_ORDER"


class ServiceStatus(_CaseInsensitiveEnum):
    """Housekeeping service status."""

    PENDING = "PENDING"
    DO_NOT_DISTURB = "DO_NOT_DISTURB"
    REFUSED_SERVICE = "REFUSED_SERVICE"
    COMPLETE = "COMPLETE"
    IN_PROGRESS = "IN_PROGRESS"


# =============================================================================
# Room replica
# =============================================================================

# Python attribute -> wire (camelCase) name for the semantic room fields.
ROOM_FIELDS: dict[str, str] = {
    "status": "status",
    "priority": "priority",
    "occupancy": "occupancy",
    "checkout_time": "checkoutTime",
    "estimated_time": "estimatedTime",
    "notes": "notes",
    "guest_checkout": "guestCheckout",
    "next_checkin": "nextCheckin",
    "guest_name": "guestName",
    "occupancy_status": "occupancyStatus",
    "bed_type": "bedType",
    "service_status": "serviceStatus",
    "assigned_to": "assignedTo",
}

# Bookkeeping fields never sent to the remote authority.
INTERNAL_FIELDS: frozenset[str] = frozenset(
    {
        "id",
        "version",
        "is_dirty",
        "last_synced_at",
        "created_at",
        "updated_at",
        "isDirty",
        "lastSyncedAt",
        "createdAt",
        "updatedAt",
    }
)

_ENUM_FIELDS: dict[str, type[Enum]] = {
    "status": RoomStatus,
    "priority": RoomPriority,
    "occupancy": RoomOccupancy,
    "service_status": ServiceStatus,
}


def coerce_field(name: str, value: Any) -> Any:
    """Convert a raw field value to its typed form (enums)."""
    enum_type = _ENUM_FIELDS.get(name)
    if enum_type is not None and value is not None and not isinstance(value, enum_type):
        return enum_type(value)
    return value


@dataclass
class RoomReplica:
    """Local copy of one remote room assignment record.

    Attributes:
        id: Identifier assigned by the remote authority.
        room_number: Room number (immutable after creation).
        updated_at: Authoritative modification timestamp.
        last_synced_at: Last successful reconciliation (None if never synced).
        is_dirty: True when local changes are not yet confirmed remotely.
        version: Incremented on every local mutation (diagnostic only).
    """

    id: int
    room_number: str
    updated_at: datetime
    status: RoomStatus = RoomStatus.DIRTY
    priority: RoomPriority = RoomPriority.MEDIUM
    occupancy: RoomOccupancy = RoomOccupancy.VACANT
    service_status: ServiceStatus = ServiceStatus.PENDING
    checkout_time: str | None = None
    estimated_time: str | None = None
    notes: str | None = None
    guest_checkout: str | None = None
    next_checkin: str | None = None
    guest_name: str | None = None
    occupancy_status: str | None = None
    bed_type: str | None = None
    assigned_to: str | None = None
    created_at: datetime | None = None
    last_synced_at: datetime | None = None
    is_dirty: bool = False
    version: int = 0

    def __post_init__(self) -> None:
        for name in _ENUM_FIELDS:
            setattr(self, name, coerce_field(name, getattr(self, name)))

    @classmethod
    def from_remote(cls, data: dict[str, Any]) -> RoomReplica:
        """Create a clean replica from an API response dictionary."""
        kwargs: dict[str, Any] = {
            attr: data[wire] for attr, wire in ROOM_FIELDS.items() if wire in data
        }
        updated_at = parse_timestamp(data.get("updatedAt"))
        if updated_at is None:
            raise ValueError(f"Remote room {data.get('id')} has no updatedAt")
        return cls(
            id=int(data["id"]),
            room_number=str(data["roomNumber"]),
            updated_at=updated_at,
            created_at=parse_timestamp(data.get("createdAt")),
            **kwargs,
        )

    def fields(self) -> dict[str, Any]:
        """Semantic field values, keyed by attribute name."""
        return {attr: getattr(self, attr) for attr in ROOM_FIELDS}

    def with_changes(self, **changes: Any) -> RoomReplica:
        """Return a copy with the given attributes replaced."""
        return replace(self, **changes)

    def same_content(self, other: RoomReplica) -> bool:
        """Compare semantic fields and modification time, ignoring bookkeeping."""
        return (
            self.id == other.id
            and self.room_number == other.room_number
            and self.updated_at == other.updated_at
            and self.fields() == other.fields()
        )


# =============================================================================
# Sync queue
# =============================================================================


class SyncChangeType(str, Enum):
    """Kind of change recorded in the sync queue."""

    UPDATE = "update"
    BULK_UPDATE = "bulk_update"


class SyncItemStatus(str, Enum):
    """Status of a sync queue item."""

    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"


@dataclass
class SyncQueueItem:
    """A durable pending unit of reconciliation work.

    Attributes:
        id: Locally generated unique id.
        room_id: Target room id (the first room for bulk updates).
        change_type: Single-record or bulk update.
        payload: Field-level delta (bulk: {"updates": [{"id": ..., ...}]}).
        status: Queue status.
        retry_count: Number of failed attempts so far.
        created_at: When the item was enqueued.
        last_attempt_at: When delivery was last attempted.
        error: Last error message.
    """

    room_id: int
    payload: dict[str, Any]
    change_type: SyncChangeType = SyncChangeType.UPDATE
    status: SyncItemStatus = SyncItemStatus.PENDING
    retry_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_attempt_at: datetime | None = None
    error: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def create(
        cls,
        room_id: int,
        payload: dict[str, Any],
        change_type: SyncChangeType = SyncChangeType.UPDATE,
        created_at: datetime | None = None,
    ) -> SyncQueueItem:
        """Create a new pending item with auto-generated id."""
        return cls(
            room_id=room_id,
            payload=dict(payload),
            change_type=change_type,
            created_at=created_at or utcnow(),
        )

    @property
    def room_ids(self) -> list[int]:
        """All room ids touched by this item."""
        if self.change_type == SyncChangeType.BULK_UPDATE:
            return [int(u["id"]) for u in self.payload.get("updates", [])]
        return [self.room_id]

    def __repr__(self) -> str:
        return (
            f"SyncQueueItem({self.change_type.value}, room={self.room_id}, "
            f"status={self.status.value}, retries={self.retry_count}, id={self.id[:8]})"
        )


# =============================================================================
# Merge results
# =============================================================================


class Resolution(Enum):
    """Winner of a local/remote conflict."""

    LOCAL_WINS = "local_wins"
    REMOTE_WINS = "remote_wins"


@dataclass
class ConflictDiscarded:
    """A remote snapshot not applied because a newer dirty local edit exists.

    This is a normal outcome, not an error.
    """

    room_id: int
    local_updated_at: datetime
    remote_updated_at: datetime


@dataclass
class MergeOutcome:
    """Result of merging one remote snapshot into the local replica.

    Attributes:
        inserted: The record was new locally.
        applied: The remote content was written (false when already up to date).
        discarded: Set when a newer local edit was kept instead.
    """

    room_id: int
    inserted: bool = False
    applied: bool = False
    discarded: ConflictDiscarded | None = None


@dataclass
class EditOutcome:
    """Per-edit result of a bulk local edit."""

    room_id: int
    replica: RoomReplica | None = None
    error: SyncError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
