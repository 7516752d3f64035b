"""Pydantic schemas for room assignment edits."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from roomsync.client.sync.types import (
    InvalidEdit,
    RoomOccupancy,
    RoomPriority,
    RoomStatus,
    ServiceStatus,
)


class RoomUpdate(BaseModel):
    """Partial update of a room assignment.

    Every field is optional. The room number is immutable and therefore
    not accepted, nor are bookkeeping fields or unknown keys. Both
    snake_case and camelCase keys are accepted.
    """

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    status: RoomStatus | None = None
    priority: RoomPriority | None = None
    occupancy: RoomOccupancy | None = None
    service_status: ServiceStatus | None = None
    checkout_time: str | None = None
    estimated_time: str | None = None
    notes: str | None = None
    guest_checkout: str | None = None
    next_checkin: str | None = None
    guest_name: str | None = None
    occupancy_status: str | None = None
    bed_type: str | None = None
    assigned_to: str | None = None

    @field_validator("status", "priority", "occupancy", "service_status", mode="before")
    @classmethod
    def _normalize_enum(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may not be null")
        if isinstance(value, str):
            return value.upper()
        return value


def validate_delta(delta: dict[str, Any]) -> dict[str, Any]:
    """Validate an edit and return it with snake_case keys and plain values.

    Raises:
        InvalidEdit: If the delta contains unknown, immutable or invalid fields.
    """
    try:
        update = RoomUpdate.model_validate(delta)
    except ValidationError as e:
        raise InvalidEdit(str(e)) from e
    changes = update.model_dump(mode="json", exclude_unset=True)
    if not changes:
        raise InvalidEdit("Edit contains no changes")
    return changes
