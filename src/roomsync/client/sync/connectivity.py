"""Connectivity detection for the sync orchestrator.

This module provides:
- ConnectivityProbe: Protocol the orchestrator depends on
- HealthCheckProbe: Polls the server with a HEAD request on the room collection
- StaticProbe: Manually controlled probe (CLI one-shot runs, tests)

Only transitions are reported: callbacks fire when the probe flips from
offline to online or back, never on every poll.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from roomsync.client.api import RoomClient

logger = logging.getLogger(__name__)

ConnectivityCallback = Callable[[bool], None]


class ConnectivityProbe(Protocol):
    """Source of online/offline information."""

    def is_online(self) -> bool: ...

    def on_change(self, callback: ConnectivityCallback) -> Callable[[], None]: ...


class _CallbackMixin:
    """Callback registry shared by the probes."""

    def __init__(self) -> None:
        self._callbacks: list[ConnectivityCallback] = []

    def on_change(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """Register a transition callback.

        Returns:
            A function that removes the callback.
        """
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _notify(self, online: bool) -> None:
        for callback in list(self._callbacks):
            try:
                callback(online)
            except Exception:
                logger.exception("Error in connectivity callback")


class StaticProbe(_CallbackMixin):
    """Probe whose state is set explicitly."""

    def __init__(self, online: bool = True) -> None:
        super().__init__()
        self._online = online

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """Change state, notifying callbacks on a transition."""
        if online == self._online:
            return
        self._online = online
        self._notify(online)


class HealthCheckProbe(_CallbackMixin):
    """Probe that polls the server for reachability.

    Usage:
        probe = HealthCheckProbe(client, interval=5.0)
        await probe.start()
        probe.on_change(lambda online: print("online" if online else "offline"))
        ...
        await probe.stop()
    """

    def __init__(self, client: RoomClient, interval: float = 5.0) -> None:
        """Initialize the probe.

        Args:
            client: API client used for health checks.
            interval: Seconds between polls.
        """
        super().__init__()
        self._client = client
        self._interval = interval
        self._online = False
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    def is_online(self) -> bool:
        return self._online

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check(self) -> bool:
        """Poll once and report a transition if the state changed."""
        online = await self._client.health_check()
        if online != self._online:
            self._online = online
            logger.info("Server is now %s", "reachable" if online else "unreachable")
            self._notify(online)
        return online

    async def start(self) -> None:
        """Run an initial check, then keep polling in the background."""
        if self.running:
            logger.warning("HealthCheckProbe already running")
            return
        await self.check()
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._poll_loop(self._stop_event))

    async def stop(self) -> None:
        """Stop polling."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        self._stop_event = None

    async def _poll_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            # Interruptible sleep
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
            if stop_event.is_set():
                break
            try:
                await self.check()
            except Exception:
                logger.exception("Health check failed unexpectedly")
