"""Assembly of a complete sync stack.

This module provides:
- SyncSession: Async context manager wiring store, queue, coordinator,
  HTTP client, connectivity probe and orchestrator

Usage:
    async with SyncSession(db_path, server_config) as session:
        rooms = await session.coordinator.read_all()
        await session.coordinator.apply_local_edit(5, {"status": "clean"})
        report = await session.orchestrator.force_sync()
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

import httpx

from roomsync.client.api import RoomClient
from roomsync.client.state import LocalStore
from roomsync.client.sync import (
    BackgroundSyncOrchestrator,
    ConnectivityProbe,
    EventBus,
    HealthCheckProbe,
    OfflineCoordinator,
    RefreshDebouncer,
    SyncQueue,
)
from roomsync.core.config import ServerConfig, SyncConfig

logger = logging.getLogger(__name__)


class SyncSession:
    """Owns the lifecycle of every sync component.

    On enter the store is opened and, unless a probe was supplied, a
    HealthCheckProbe is started. With background=True the orchestrator is
    started as well. On exit everything is stopped and closed in reverse
    order; a running pass is allowed to finish.
    """

    def __init__(
        self,
        db_path: Path | str,
        server_config: ServerConfig,
        sync_config: SyncConfig | None = None,
        probe: ConnectivityProbe | None = None,
        background: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the session (no I/O until entered).

        Args:
            db_path: Local database path (or ":memory:").
            server_config: Server URL, token and timeouts.
            sync_config: Orchestrator timing (defaults to SyncConfig()).
            probe: Connectivity probe; defaults to polling the room collection.
            background: Start periodic background sync on enter.
            transport: Optional httpx transport (tests).
        """
        self.server_config = server_config
        self.sync_config = sync_config or SyncConfig()
        self._background = background

        self.store = LocalStore(db_path)
        self.bus = EventBus()
        self.queue = SyncQueue(self.store)
        self.coordinator = OfflineCoordinator(self.store, self.queue, self.bus)
        self.client = RoomClient(server_config, transport=transport)

        # Set only when the session created the probe and must start/stop it
        self._health_probe: HealthCheckProbe | None = None
        if probe is None:
            self._health_probe = HealthCheckProbe(
                self.client, interval=self.sync_config.probe_interval
            )
            probe = self._health_probe
        self.probe: ConnectivityProbe = probe
        self.orchestrator = BackgroundSyncOrchestrator(
            coordinator=self.coordinator,
            queue=self.queue,
            client=self.client,
            bus=self.bus,
            probe=self.probe,
            config=self.sync_config,
        )

    async def __aenter__(self) -> SyncSession:
        try:
            await self.store.open()
            if self._health_probe is not None:
                await self._health_probe.start()
            if self._background:
                await self.orchestrator.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Stop background work and release every resource."""
        await self.orchestrator.stop()
        if self._health_probe is not None:
            await self._health_probe.stop()
        await self.client.aclose()
        await self.store.close()
        self.bus.clear()
        logger.debug("Sync session closed")

    def debounced(self, on_refresh: Callable[[], None]) -> Callable[[], None]:
        """Call on_refresh after bursts of change events settle.

        Returns:
            A function that detaches the debouncer.
        """
        debouncer = RefreshDebouncer(
            on_refresh,
            window=self.sync_config.debounce_window,
            cooldown=self.sync_config.refresh_cooldown,
        )
        return debouncer.attach(self.bus)
