"""In-process event bus for sync notifications.

This module provides:
- RoomUpdated, DataUpdated, SyncStatusChanged, ItemDropped: Event variants
- EventBus: Typed publish/subscribe channel
- RefreshDebouncer: Consumer-side coalescing of refresh triggers

Architecture:
    OfflineCoordinator ─┐
                        ├─publish─► EventBus ─► subscribers (UI glue, CLI)
    SyncOrchestrator  ──┘                          │
                                          RefreshDebouncer ─► refresh()

Debounce contract:
    Bursts of events within `window` seconds (default 500ms) collapse into
    a single refresh. Once a refresh fires, new triggers are ignored for
    `cooldown` seconds (default 1s). A refresh therefore lands between
    0.5s and 1.5s after the change that caused it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar, Union

from roomsync.client.sync.types import RoomReplica, SyncQueueItem
from roomsync.core.types import SyncState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoomUpdated:
    """A replica changed locally (edit) or was refreshed after a push."""

    replica: RoomReplica


@dataclass(frozen=True)
class DataUpdated:
    """A room was confirmed by the remote authority."""

    room_id: int


@dataclass(frozen=True)
class SyncStatusChanged:
    """The background orchestrator changed state."""

    state: SyncState


@dataclass(frozen=True)
class ItemDropped:
    """A queued change was abandoned (retries exhausted or rejected)."""

    item: SyncQueueItem
    reason: str


SyncBusEvent = Union[RoomUpdated, DataUpdated, SyncStatusChanged, ItemDropped]

E = TypeVar("E", RoomUpdated, DataUpdated, SyncStatusChanged, ItemDropped)


class EventBus:
    """Typed publish/subscribe channel.

    Handlers are keyed by event class; a handler only ever receives the
    variant it subscribed to. A failing handler is logged and does not
    prevent delivery to the others.

    Usage:
        bus = EventBus()
        unsubscribe = bus.subscribe(RoomUpdated, lambda e: print(e.replica.id))
        bus.publish(RoomUpdated(replica))
        unsubscribe()
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[..., None]]] = {}

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register a handler for one event variant.

        Returns:
            A function that removes the subscription (idempotent).
        """
        handlers = self._handlers.setdefault(event_type, [])
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: SyncBusEvent) -> None:
        """Deliver an event synchronously to every subscriber of its type."""
        for handler in list(self._handlers.get(type(event), ())):
            try:
                handler(event)
            except Exception:
                logger.exception("Error in %s handler", type(event).__name__)

    def publish_soon(self, event: SyncBusEvent) -> None:
        """Deliver an event on the next loop iteration, without blocking the caller."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.publish(event)
            return
        loop.call_soon(self.publish, event)

    def handler_count(self, event_type: type) -> int:
        """Number of handlers subscribed to an event variant."""
        return len(self._handlers.get(event_type, ()))

    def clear(self) -> None:
        """Remove every subscription."""
        self._handlers.clear()


class TimerHandle(Protocol):
    """Anything with a cancel() method (asyncio.TimerHandle fits)."""

    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


def _loop_scheduler(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class RefreshDebouncer:
    """Collapse bursts of change events into single refreshes.

    State machine:
        idle --trigger--> pending --window elapsed--> fired (cooldown)
        pending --trigger--> pending (timer restarted)
        cooldown --trigger--> ignored until cooldown elapses

    Attributes:
        last_fired_at: Clock value of the last refresh (None if never).
    """

    def __init__(
        self,
        on_refresh: Callable[[], None],
        window: float = 0.5,
        cooldown: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._on_refresh = on_refresh
        self._window = window
        self._cooldown = cooldown
        self._clock = clock
        self._schedule = scheduler or _loop_scheduler
        self._pending: TimerHandle | None = None
        self.last_fired_at: float | None = None

    @property
    def is_pending(self) -> bool:
        return self._pending is not None

    def in_cooldown(self) -> bool:
        """Check whether a refresh fired less than `cooldown` seconds ago."""
        if self.last_fired_at is None:
            return False
        return self._clock() - self.last_fired_at < self._cooldown

    def trigger(self, source: str = "unknown") -> bool:
        """Request a refresh.

        Returns:
            True if a refresh is now scheduled, False if suppressed by cooldown.
        """
        if self.in_cooldown():
            logger.debug("Skipping refresh from %s (cooldown active)", source)
            return False
        if self._pending is not None:
            self._pending.cancel()
        self._pending = self._schedule(self._window, self._fire)
        return True

    def _fire(self) -> None:
        self._pending = None
        self.last_fired_at = self._clock()
        try:
            self._on_refresh()
        except Exception:
            logger.exception("Refresh callback failed")

    def cancel(self) -> None:
        """Drop a scheduled refresh, if any."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def attach(self, bus: EventBus) -> Callable[[], None]:
        """Trigger on room/data updates and on the return to idle.

        Returns:
            A function that detaches from the bus and cancels any pending refresh.
        """
        unsubscribers = [
            bus.subscribe(RoomUpdated, lambda e: self.trigger("room-updated")),
            bus.subscribe(DataUpdated, lambda e: self.trigger("data-updated")),
            bus.subscribe(SyncStatusChanged, self._on_status),
        ]

        def detach() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()
            self.cancel()

        return detach

    def _on_status(self, event: SyncStatusChanged) -> None:
        if event.state == SyncState.IDLE:
            self.trigger("sync-completed")
