"""Room commands for the roomsync CLI.

Commands:
- list: Show every locally stored room assignment
- show: Show one room assignment in detail
- edit: Edit a room locally (queued for the next sync)

All three work without a network connection.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import click

from roomsync.client.cli.config import get_db_path
from roomsync.client.state import LocalStore
from roomsync.client.sync import (
    EventBus,
    OfflineCoordinator,
    RoomOccupancy,
    RoomPriority,
    RoomReplica,
    RoomStatus,
    ServiceStatus,
    SyncError,
    SyncQueue,
)


@asynccontextmanager
async def open_local() -> AsyncIterator[OfflineCoordinator]:
    """Open the local store and yield a coordinator (no network access)."""
    async with LocalStore(get_db_path()) as store:
        yield OfflineCoordinator(store, SyncQueue(store), EventBus())


def _choices(enum_type: type) -> click.Choice:
    return click.Choice([member.value for member in enum_type], case_sensitive=False)


def format_room_line(room: RoomReplica) -> str:
    """One table row; a trailing * marks unsynced local changes."""
    marker = "*" if room.is_dirty else " "
    return (
        f"{room.id:>5}  {room.room_number:<8} {room.status.value:<10} "
        f"{room.priority.value:<7} {room.service_status.value:<16} "
        f"{room.assigned_to or '-':<12}{marker}"
    )


@click.command(name="list")
@click.option("--dirty", is_flag=True, help="Only show rooms with unsynced changes.")
def list_rooms(dirty: bool) -> None:
    """List room assignments from local storage."""

    async def run() -> list[RoomReplica]:
        async with open_local() as coordinator:
            if dirty:
                return await coordinator.dirty_rooms()
            return await coordinator.read_all()

    try:
        rooms = asyncio.run(run())
    except SyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not rooms:
        click.echo("No rooms stored locally. Run 'roomsync sync' first.")
        return

    click.echo(
        f"{'ID':>5}  {'Room':<8} {'Status':<10} {'Prio':<7} {'Service':<16} {'Assignee':<12}"
    )
    for room in sorted(rooms, key=lambda r: r.room_number):
        click.echo(format_room_line(room))

    unsynced = sum(1 for room in rooms if room.is_dirty)
    if unsynced:
        click.echo(f"\n* {unsynced} room(s) with changes not yet synced")


@click.command()
@click.argument("room_id", type=int)
def show(room_id: int) -> None:
    """Show one room assignment."""

    async def run() -> RoomReplica:
        async with open_local() as coordinator:
            return await coordinator.read(room_id)

    try:
        room = asyncio.run(run())
    except SyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Room {room.room_number} (id {room.id})")
    for name, value in room.fields().items():
        if value is None:
            continue
        label = name.replace("_", " ").capitalize()
        click.echo(f"  {label + ':':<18} {getattr(value, 'value', value)}")
    click.echo(f"  {'Updated:':<18} {room.updated_at.isoformat()}")
    synced = room.last_synced_at.isoformat() if room.last_synced_at else "never"
    click.echo(f"  {'Last synced:':<18} {synced}")
    if room.is_dirty:
        click.echo(click.style("  Local changes not yet synced", fg="yellow"))


@click.command()
@click.argument("room_id", type=int)
@click.option("--status", type=_choices(RoomStatus), help="Cleaning status.")
@click.option("--priority", type=_choices(RoomPriority), help="Cleaning priority.")
@click.option("--occupancy", type=_choices(RoomOccupancy), help="Occupancy.")
@click.option("--service-status", type=_choices(ServiceStatus), help="Service status.")
@click.option("--notes", help="Housekeeping notes.")
@click.option("--assignee", help="Person the room is assigned to.")
def edit(
    room_id: int,
    status: str | None,
    priority: str | None,
    occupancy: str | None,
    service_status: str | None,
    notes: str | None,
    assignee: str | None,
) -> None:
    """Edit a room locally.

    The change is visible immediately and sent to the server on the next sync.
    """
    delta = {
        "status": status,
        "priority": priority,
        "occupancy": occupancy,
        "service_status": service_status,
        "notes": notes,
        "assigned_to": assignee,
    }
    delta = {key: value for key, value in delta.items() if value is not None}
    if not delta:
        click.echo("Error: Nothing to change. Pass at least one option.", err=True)
        sys.exit(1)

    async def run() -> RoomReplica:
        async with open_local() as coordinator:
            return await coordinator.apply_local_edit(room_id, delta)

    try:
        room = asyncio.run(run())
    except SyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Updated room {room.room_number} locally (version {room.version}).")
    click.echo("Run 'roomsync sync' to send it to the server.")
