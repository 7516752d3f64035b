"""Sync commands for the roomsync CLI.

Commands:
- sync: Push local changes and pull the server's room assignments
- status: Show pending changes, failures and the last sync time
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any

import click

from roomsync.client.cli.config import (
    get_db_path,
    get_server_config,
    get_sync_config,
)
from roomsync.client.cli.rooms import open_local
from roomsync.core.types import SyncState


@click.command()
@click.option("--watch", "-w", is_flag=True, help="Keep syncing in the background until interrupted.")
@click.option("--room", "room_id", type=int, help="Only send and refresh this room (by id).")
def sync(watch: bool, room_id: int | None) -> None:
    """Synchronize room assignments with the server.

    Sends queued local edits first, then downloads the server's records.
    Use --watch to keep syncing periodically and whenever the server
    becomes reachable again. Use --room to sync a single room right away,
    without waiting out retry delays.
    """
    if watch and room_id is not None:
        raise click.UsageError("--room cannot be combined with --watch")

    from roomsync.client.session import SyncSession
    from roomsync.client.sync import ItemDropped, SyncReport, SyncStatusChanged

    server_config = get_server_config()
    if server_config is None:
        click.echo("Error: No server configured. Run 'roomsync configure' first.", err=True)
        sys.exit(1)

    sync_config = get_sync_config()

    def on_dropped(event: ItemDropped) -> None:
        click.echo(
            click.style(f"  ✗ Change to room {event.item.room_id} dropped: {event.reason}", fg="red")
        )

    def display(report: SyncReport) -> None:
        if not report.ok:
            click.echo(click.style(f"Sync failed: {report.error}", fg="red"), err=True)
        click.echo(
            f"Sync complete: {len(report.synced)} sent, {len(report.failed)} to retry, "
            f"{len(report.dropped)} dropped, {report.merged} updated from server"
        )
        if report.discarded:
            click.echo(f"  {report.discarded} room(s) kept local changes newer than the server")

    async def run_once() -> SyncReport | None:
        async with SyncSession(get_db_path(), server_config, sync_config) as session:
            session.bus.subscribe(ItemDropped, on_dropped)
            if not session.probe.is_online():
                return None
            await session.orchestrator.recover()
            if room_id is not None:
                return await session.orchestrator.sync_room(room_id)
            return await session.orchestrator.force_sync("cli")

    async def run_watch() -> None:
        async with SyncSession(
            get_db_path(), server_config, sync_config, background=True
        ) as session:

            def on_status(event: SyncStatusChanged) -> None:
                report = session.orchestrator.last_report
                if event.state == SyncState.ERROR:
                    click.echo(click.style("  Sync failed, will retry", fg="yellow"))
                elif event.state == SyncState.IDLE and report is not None:
                    display(report)

            session.bus.subscribe(ItemDropped, on_dropped)
            session.bus.subscribe(SyncStatusChanged, on_status)
            if not session.probe.is_online():
                click.echo("Server unreachable, waiting for it to come back online...")
            await asyncio.Event().wait()

    click.echo(f"Syncing with {server_config.server_url}...")

    if watch:
        click.echo("Watching for changes... (Ctrl+C to stop)\n")
        try:
            asyncio.run(run_watch())
        except KeyboardInterrupt:
            click.echo("\nStopping...")
        return

    report = asyncio.run(run_once())
    if report is None:
        click.echo("Error: Server unreachable. Local changes stay queued.", err=True)
        sys.exit(1)
    display(report)
    if not report.ok:
        sys.exit(1)


@click.command()
def status() -> None:
    """Show local sync status."""
    from roomsync.client.api import RoomClient
    from roomsync.client.sync import SyncItemStatus

    server_config = get_server_config()

    async def check_online() -> bool:
        if server_config is None:
            return False
        async with RoomClient(server_config) as client:
            return await client.health_check()

    async def run() -> dict[str, Any]:
        async with open_local() as coordinator:
            pending = await coordinator.pending_changes()
            return {
                "online": await check_online(),
                "last_sync": await coordinator.last_sync_time(),
                "pending": sum(1 for i in pending if i.status != SyncItemStatus.FAILED),
                "failed": sum(1 for i in pending if i.status == SyncItemStatus.FAILED),
                "dirty": await coordinator.dirty_rooms(),
            }

    info = asyncio.run(run())
    state = SyncState.IDLE if info["online"] else SyncState.OFFLINE

    click.echo(f"Server: {server_config.server_url if server_config else 'not configured'}")
    click.echo(f"State: {state.value}")
    last_sync = info["last_sync"]
    click.echo(f"Last sync: {last_sync.isoformat() if last_sync else 'never'}")
    click.echo(f"Pending changes: {info['pending']}")
    if info["failed"]:
        click.echo(click.style(f"Failed changes: {info['failed']}", fg="red"))
    dirty = info["dirty"]
    if dirty:
        rooms = ", ".join(room.room_number for room in dirty)
        click.echo(f"Rooms with unsynced changes: {rooms}")
