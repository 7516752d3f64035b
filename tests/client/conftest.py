"""Shared fixtures for client tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from roomsync.client.state import LocalStore
from roomsync.client.sync.connectivity import StaticProbe
from roomsync.client.sync.coordinator import OfflineCoordinator
from roomsync.client.sync.engine import BackgroundSyncOrchestrator
from roomsync.client.sync.events import EventBus
from roomsync.client.sync.queue import SyncQueue
from roomsync.client.sync.types import (
    ROOM_FIELDS,
    RemoteRejected,
    RoomReplica,
    coerce_field,
)
from roomsync.core.config import SyncConfig

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock returning aware UTC datetimes."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeServer:
    """In-memory stand-in for RoomClient.

    Records every call. Exceptions queued in `failures` are raised by the
    next update calls, in order. Unknown room ids answer with a 404.
    """

    def __init__(self, clock: Callable[[], datetime]) -> None:
        self.clock = clock
        self.rooms: dict[int, RoomReplica] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.failures: list[Exception] = []
        self.list_error: Exception | None = None
        self.online = True
        # Awaited after a single update is applied, before the echo is returned
        self.after_update: Callable[[], Awaitable[None]] | None = None

    def add(self, replica: RoomReplica) -> None:
        self.rooms[replica.id] = replica

    def _apply(self, room_id: int, changes: dict[str, Any]) -> RoomReplica:
        room = self.rooms.get(room_id)
        if room is None:
            raise RemoteRejected(f"HTTP 404: Room {room_id} not found", 404)
        fields = {k: coerce_field(k, v) for k, v in changes.items() if k in ROOM_FIELDS}
        updated = room.with_changes(**fields, updated_at=self.clock())
        self.rooms[room_id] = updated
        return updated.with_changes()

    async def health_check(self) -> bool:
        return self.online

    async def list_rooms(self) -> list[RoomReplica]:
        self.calls.append(("list",))
        if self.list_error is not None:
            raise self.list_error
        return [room.with_changes() for room in self.rooms.values()]

    async def get_room(self, room_id: int) -> RoomReplica:
        self.calls.append(("get", room_id))
        room = self.rooms.get(room_id)
        if room is None:
            raise RemoteRejected(f"HTTP 404: Room {room_id} not found", 404)
        return room.with_changes()

    async def update_room(self, room_id: int, changes: dict[str, Any]) -> RoomReplica:
        self.calls.append(("update", room_id, dict(changes)))
        if self.failures:
            raise self.failures.pop(0)
        echo = self._apply(room_id, changes)
        if self.after_update is not None:
            hook, self.after_update = self.after_update, None
            await hook()
        return echo

    async def bulk_update_rooms(self, updates: list[dict[str, Any]]) -> list[RoomReplica]:
        self.calls.append(("bulk", [dict(u) for u in updates]))
        if self.failures:
            raise self.failures.pop(0)
        return [self._apply(int(u["id"]), u) for u in updates]

    @property
    def update_calls(self) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == "update"]


@pytest.fixture
def make_replica() -> Callable[..., RoomReplica]:
    """Factory for replicas with sensible defaults."""

    def factory(
        room_id: int = 1,
        updated_at: datetime = T0,
        **kwargs: Any,
    ) -> RoomReplica:
        kwargs.setdefault("room_number", str(100 + room_id))
        return RoomReplica(id=room_id, updated_at=updated_at, **kwargs)

    return factory


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock starting at T0."""
    return FakeClock()


@pytest_asyncio.fixture
async def store(tmp_path: Path) -> AsyncIterator[LocalStore]:
    """Create an open LocalStore backed by a temporary file."""
    s = LocalStore(tmp_path / "rooms.db")
    await s.open()
    yield s
    await s.close()


@pytest.fixture
def bus() -> EventBus:
    """Create an event bus."""
    return EventBus()


@pytest.fixture
def queue(store: LocalStore, clock: FakeClock) -> SyncQueue:
    """Create a sync queue over the store."""
    return SyncQueue(store, clock=clock)


@pytest.fixture
def coordinator(
    store: LocalStore,
    queue: SyncQueue,
    bus: EventBus,
    clock: FakeClock,
) -> OfflineCoordinator:
    """Create an offline coordinator."""
    return OfflineCoordinator(store, queue, bus, clock=clock)


@pytest.fixture
def server(clock: FakeClock) -> FakeServer:
    """Create an in-memory server."""
    return FakeServer(clock)


@pytest.fixture
def probe() -> StaticProbe:
    """Create an online probe."""
    return StaticProbe(online=True)


@pytest.fixture
def orchestrator(
    coordinator: OfflineCoordinator,
    queue: SyncQueue,
    server: FakeServer,
    bus: EventBus,
    probe: StaticProbe,
    clock: FakeClock,
) -> BackgroundSyncOrchestrator:
    """Create an orchestrator wired to the fake server."""
    return BackgroundSyncOrchestrator(
        coordinator=coordinator,
        queue=queue,
        client=server,  # type: ignore[arg-type]
        bus=bus,
        probe=probe,
        config=SyncConfig(sync_interval=3600.0),
        clock=clock,
    )
