"""Offline coordinator for local room assignment data.

This module provides:
- OfflineCoordinator: Owns the local replica lifecycle

The coordinator is the only component that marks a replica dirty:
1. Serves reads from the local store (never blocks on the network)
2. Applies local edits optimistically and queues them for sync
3. Merges remote snapshots using the conflict resolver
4. Publishes RoomUpdated events for the UI

Edit flow:
    apply_local_edit ─► validate delta ─► merge onto replica
                     ─► store replica + queue item (one transaction)
                     ─► publish RoomUpdated on the next loop iteration

Merge rules (see conflict.resolve):
    | Local replica     | Remote snapshot        | Action                    |
    |-------------------|------------------------|---------------------------|
    | absent            | any                    | insert clean              |
    | clean             | any                    | overwrite, stay clean     |
    | dirty, older/same | newer or same time     | overwrite, mark clean     |
    | dirty, newer      | older                  | keep local (discarded)    |
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from roomsync.client.sync.schemas import validate_delta
from roomsync.client.sync.conflict import describe_discard, resolve
from roomsync.client.sync.events import EventBus, RoomUpdated
from roomsync.client.sync.types import (
    EditOutcome,
    MergeOutcome,
    NotFound,
    Resolution,
    RoomReplica,
    SyncError,
    SyncQueueItem,
    coerce_field,
    isoformat_utc,
    parse_timestamp,
    utcnow,
)

if TYPE_CHECKING:
    from roomsync.client.state import LocalStore
    from roomsync.client.sync.queue import SyncQueue

logger = logging.getLogger(__name__)

LAST_FULL_SYNC_KEY = "last_full_sync"


class OfflineCoordinator:
    """Local-first access to room assignments.

    Usage:
        coordinator = OfflineCoordinator(store, queue, bus)
        rooms = await coordinator.read_all()
        room = await coordinator.apply_local_edit(5, {"status": "clean"})
    """

    def __init__(
        self,
        store: LocalStore,
        queue: SyncQueue,
        bus: EventBus,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Local store holding replicas.
            queue: Sync queue receiving local changes.
            bus: Event bus for change notifications.
            clock: Source of "now" for timestamps (injectable for tests).
        """
        self._store = store
        self._queue = queue
        self._bus = bus
        self._clock = clock

    # === Reads ===

    async def read_all(self) -> list[RoomReplica]:
        """Get every local replica, deduplicated by id.

        If the same id ever appears twice, the replica with the most
        recent updated_at is kept.
        """
        replicas = await self._store.get_all()
        by_id: dict[int, RoomReplica] = {}
        for replica in replicas:
            existing = by_id.get(replica.id)
            if existing is None or replica.updated_at > existing.updated_at:
                by_id[replica.id] = replica
        if len(by_id) != len(replicas):
            logger.warning(
                "Deduplicated %d duplicate replica(s)", len(replicas) - len(by_id)
            )
        return list(by_id.values())

    async def read(self, room_id: int) -> RoomReplica:
        """Get one replica.

        Raises:
            NotFound: If no replica exists locally.
        """
        replica = await self._store.get(room_id)
        if replica is None:
            raise NotFound(room_id)
        return replica

    async def dirty_rooms(self) -> list[RoomReplica]:
        """Replicas with local changes not yet confirmed remotely."""
        return await self._store.get_dirty()

    async def pending_changes(self) -> list[SyncQueueItem]:
        """Every queued change, oldest first."""
        return await self._queue.all_items()

    # === Local edits ===

    async def apply_local_edit(self, room_id: int, delta: dict[str, Any]) -> RoomReplica:
        """Apply an edit locally and queue it for sync.

        The returned replica is already persisted; remote confirmation
        happens later in the background.

        Args:
            room_id: Room to edit.
            delta: Fields to change (snake_case or camelCase keys).

        Returns:
            The updated replica (dirty).

        Raises:
            NotFound: If the room is not in the local store.
            InvalidEdit: If the delta is invalid.
            StorageFailure: If persistence fails.
        """
        if await self._store.get(room_id) is None:
            raise NotFound(room_id)

        changes = validate_delta(delta)
        typed = {name: coerce_field(name, value) for name, value in changes.items()}
        now = self._clock()

        def edit(
            current: dict[int, RoomReplica],
            queue: list[SyncQueueItem],
        ) -> tuple[list[RoomReplica], list[SyncQueueItem]]:
            replica = current.get(room_id)
            if replica is None:
                raise NotFound(room_id)
            updated = replica.with_changes(
                **typed,
                updated_at=now,
                is_dirty=True,
                version=replica.version + 1,
            )
            item = SyncQueueItem.create(
                room_id=room_id,
                payload={**changes, "version": updated.version},
                created_at=now,
            )
            return [updated], [item]

        replicas, _ = await self._store.update_atomically([room_id], edit)
        updated = replicas[0]

        logger.debug(
            "Edited room %d locally (version %d): %s", room_id, updated.version, changes
        )
        self._bus.publish_soon(RoomUpdated(updated))
        return updated

    async def bulk_apply_local_edits(
        self,
        edits: list[tuple[int, dict[str, Any]]],
    ) -> list[EditOutcome]:
        """Apply several edits; each one succeeds or fails on its own.

        Args:
            edits: (room_id, delta) pairs.

        Returns:
            One outcome per edit, in input order.
        """
        outcomes: list[EditOutcome] = []
        for room_id, delta in edits:
            try:
                replica = await self.apply_local_edit(room_id, delta)
            except SyncError as e:
                logger.warning("Skipping edit for room %d: %s", room_id, e)
                outcomes.append(EditOutcome(room_id=room_id, error=e))
            else:
                outcomes.append(EditOutcome(room_id=room_id, replica=replica))
        return outcomes

    # === Remote merges ===

    def _merge(self, local: RoomReplica | None, remote: RoomReplica) -> tuple[RoomReplica | None, MergeOutcome]:
        """Decide the stored result of merging one snapshot (no I/O)."""
        now = self._clock()
        if local is None:
            inserted = remote.with_changes(is_dirty=False, last_synced_at=now, version=0)
            return inserted, MergeOutcome(room_id=remote.id, inserted=True, applied=True)

        if resolve(local, remote) == Resolution.LOCAL_WINS:
            discarded = describe_discard(local, remote)
            logger.info(
                "Keeping local edit for room %d (local %s newer than remote %s)",
                local.id,
                local.updated_at.isoformat(),
                remote.updated_at.isoformat(),
            )
            return None, MergeOutcome(room_id=local.id, discarded=discarded)

        if not local.is_dirty and local.same_content(remote):
            # Already up to date
            return None, MergeOutcome(room_id=local.id)

        merged = remote.with_changes(
            is_dirty=False,
            last_synced_at=now,
            version=local.version,
        )
        return merged, MergeOutcome(room_id=local.id, applied=True)

    async def merge_from_remote(self, remote: RoomReplica) -> MergeOutcome:
        """Merge one remote snapshot into the local store.

        Idempotent: merging the same snapshot twice leaves the same state.
        """
        outcomes = await self.merge_many_from_remote([remote])
        return outcomes[0]

    async def merge_many_from_remote(self, remotes: list[RoomReplica]) -> list[MergeOutcome]:
        """Merge a full remote collection in one store transaction.

        Records present locally but absent remotely are left untouched.
        """
        outcomes: list[MergeOutcome] = []

        def merge(
            current: dict[int, RoomReplica],
            queue: list[SyncQueueItem],
        ) -> tuple[list[RoomReplica], list[SyncQueueItem]]:
            outcomes.clear()
            to_store: dict[int, RoomReplica] = {}
            for remote in remotes:
                local = to_store.get(remote.id) or current.get(remote.id)
                stored, outcome = self._merge(local, remote)
                if stored is not None:
                    to_store[remote.id] = stored
                outcomes.append(outcome)
            return list(to_store.values()), []

        stored, _ = await self._store.update_atomically({r.id for r in remotes}, merge)
        logger.debug("Merged %d remote record(s), stored %d", len(remotes), len(stored))
        return list(outcomes)

    async def confirm_pushed(
        self,
        room_id: int,
        echo: RoomReplica | None = None,
    ) -> RoomReplica | None:
        """Mark a room clean after its queued changes reached the server.

        Nothing happens while another queue item for the room remains. The
        echoed record replaces the local content only when it is not older
        than the local replica.

        Args:
            room_id: Room whose change was delivered.
            echo: Full record returned by the server, if any.

        Returns:
            The stored replica, or None if the room still has queued changes.
        """
        now = self._clock()

        def confirm(
            current: dict[int, RoomReplica],
            queue: list[SyncQueueItem],
        ) -> tuple[list[RoomReplica], list[SyncQueueItem]]:
            if any(room_id in item.room_ids for item in queue):
                return [], []
            local = current.get(room_id)
            if local is None:
                if echo is None:
                    return [], []
                return [echo.with_changes(is_dirty=False, last_synced_at=now, version=0)], []
            if echo is not None and echo.updated_at >= local.updated_at:
                confirmed = echo.with_changes(
                    is_dirty=False, last_synced_at=now, version=local.version
                )
            else:
                confirmed = local.with_changes(is_dirty=False, last_synced_at=now)
            return [confirmed], []

        stored, _ = await self._store.update_atomically([room_id], confirm)
        if not stored:
            logger.debug("Room %d still has queued changes, keeping local replica", room_id)
            return None
        self._bus.publish_soon(RoomUpdated(stored[0]))
        return stored[0]

    async def release(self, room_id: int) -> bool:
        """Clear the dirty flag once a room has no queued changes left.

        Used after a change is dropped, so the next pull restores the
        remote state instead of keeping the abandoned local edit.

        Returns:
            True if the replica was released.
        """

        def clear_dirty(
            current: dict[int, RoomReplica],
            queue: list[SyncQueueItem],
        ) -> tuple[list[RoomReplica], list[SyncQueueItem]]:
            local = current.get(room_id)
            if local is None or not local.is_dirty:
                return [], []
            if any(room_id in item.room_ids for item in queue):
                return [], []
            return [local.with_changes(is_dirty=False)], []

        stored, _ = await self._store.update_atomically([room_id], clear_dirty)
        if stored:
            logger.info("Released room %d after its queued changes were dropped", room_id)
        return bool(stored)

    # === Sync metadata ===

    async def last_sync_time(self) -> datetime | None:
        """Timestamp of the last complete reconciliation pass."""
        return parse_timestamp(await self._store.get_metadata(LAST_FULL_SYNC_KEY))

    async def set_last_sync_time(self, when: datetime) -> None:
        """Record a complete reconciliation pass."""
        await self._store.set_metadata(LAST_FULL_SYNC_KEY, isoformat_utc(when))

    async def clear_all_data(self) -> None:
        """Explicit bulk reset: drop replicas, queued changes and metadata."""
        await self._store.clear_all()
