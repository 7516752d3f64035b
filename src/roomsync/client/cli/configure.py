"""Setup commands for the roomsync CLI.

Commands:
- configure: Store the server URL and access token
- reset: Delete every locally stored room and queued change
"""

from __future__ import annotations

import asyncio
import sys

import click

from roomsync.client.cli.config import get_db_path, load_config, save_config
from roomsync.client.cli.rooms import open_local
from roomsync.client.sync import StorageFailure


@click.command()
@click.option("--server", "server_url", required=True, help="Server URL (e.g., https://hotel.example.com).")
@click.option("--token", prompt=True, hide_input=True, help="Access token for the server.")
@click.option("--no-verify-ssl", is_flag=True, help="Skip SSL certificate verification.")
def configure(server_url: str, token: str, no_verify_ssl: bool) -> None:
    """Configure the server to sync with."""
    server_url = server_url.rstrip("/")
    if not server_url.startswith(("http://", "https://")):
        click.echo("Error: Server URL must start with http:// or https://", err=True)
        sys.exit(1)

    config = load_config()
    config["server_url"] = server_url
    config["token"] = token
    if no_verify_ssl:
        config["verify_ssl"] = False
    else:
        config.pop("verify_ssl", None)
    save_config(config)

    click.echo(f"Configured server: {server_url}")
    if server_url.startswith("http://"):
        click.echo(click.style("Warning: the connection is not encrypted (http).", fg="yellow"))


@click.command()
@click.option("--force", "-f", is_flag=True, help="Skip confirmation prompt.")
def reset(force: bool) -> None:
    """Delete all local room data and queued changes.

    Changes that have not been synced yet are lost. The server
    configuration is kept; run 'roomsync sync' to download the rooms again.
    """
    db_path = get_db_path()
    if not db_path.exists():
        click.echo("Nothing to reset. No local data found.")
        return

    if not force:
        click.echo("WARNING: This will delete all locally stored room assignments,")
        click.echo("including changes that have not been synced yet.")
        click.echo(f"\nDatabase: {db_path}\n")
        if not click.confirm("Are you sure you want to reset?"):
            click.echo("Aborted.")
            return

    async def run() -> None:
        async with open_local() as coordinator:
            await coordinator.clear_all_data()

    try:
        asyncio.run(run())
    except StorageFailure as e:
        click.echo(f"Error clearing local data: {e}", err=True)
        sys.exit(1)
    click.echo("Local data has been reset.")
