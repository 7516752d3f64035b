"""Command-line interface for roomsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store the server URL and access token
- reset: Delete local room data and queued changes
- list: List locally stored room assignments
- show: Show one room assignment
- edit: Edit a room locally
- sync: Synchronize with the server
- status: Show local sync status
"""

from __future__ import annotations

import logging

import click

from roomsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_db_path,
    get_server_config,
    get_sync_config,
    load_config,
    save_config,
)
from roomsync.client.cli.configure import configure, reset
from roomsync.client.cli.rooms import edit, list_rooms, show
from roomsync.client.cli.sync import status, sync


@click.group()
@click.version_option(package_name="roomsync")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def cli(verbose: bool) -> None:
    """roomsync - Offline-first housekeeping room assignments."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Setup commands
cli.add_command(configure)
cli.add_command(reset)

# Room commands
cli.add_command(list_rooms)
cli.add_command(show)
cli.add_command(edit)

# Sync commands
cli.add_command(sync)
cli.add_command(status)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_db_path",
    "get_server_config",
    "get_sync_config",
    "load_config",
    "save_config",
]
