"""Durable sync queue for pending local changes.

This module provides:
- SyncQueue: FIFO log of queued room changes, layered over LocalStore

Items move through:
    PENDING -> SYNCING -> (removed on success)
                       -> PENDING again on a retryable failure
                       -> FAILED once retries are exhausted, then dropped

Ordering is strictly by creation time (oldest first) across all rooms.
There is no priority and no deduplication: every local edit is delivered
in the order it was made.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection
from datetime import datetime
from typing import TYPE_CHECKING

from roomsync.client.sync.types import SyncItemStatus, SyncQueueItem, utcnow

if TYPE_CHECKING:
    from roomsync.client.state import LocalStore

logger = logging.getLogger(__name__)


class SyncQueue:
    """FIFO queue of SyncQueueItem persisted in the local store.

    Usage:
        queue = SyncQueue(store)
        await queue.enqueue(item)
        for item in await queue.next_batch(10):
            await queue.mark_syncing(item)
            ...
            await queue.mark_synced(item)
    """

    def __init__(
        self,
        store: LocalStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    async def enqueue(self, item: SyncQueueItem) -> SyncQueueItem:
        """Append an item with status PENDING."""
        item.status = SyncItemStatus.PENDING
        await self._store.put_queue_item(item)
        logger.debug("Queued %r", item)
        return item

    async def next_batch(
        self,
        max_size: int,
        exclude: Collection[str] = (),
    ) -> list[SyncQueueItem]:
        """Get up to max_size PENDING items, oldest first.

        Args:
            max_size: Maximum number of items to return.
            exclude: Item ids to skip (already handled in this pass).
        """
        if max_size <= 0:
            return []
        if not exclude:
            return await self._store.get_queue_items_by_status(
                SyncItemStatus.PENDING, limit=max_size
            )
        pending = await self._store.get_queue_items_by_status(SyncItemStatus.PENDING)
        return [item for item in pending if item.id not in exclude][:max_size]

    async def mark_syncing(self, item: SyncQueueItem) -> None:
        """Record a delivery attempt in progress."""
        item.status = SyncItemStatus.SYNCING
        item.last_attempt_at = self._clock()
        await self._store.put_queue_item(item)

    async def mark_synced(self, item: SyncQueueItem) -> None:
        """Remove a successfully delivered item."""
        item.status = SyncItemStatus.SYNCED
        await self._store.delete_queue_item(item.id)
        logger.debug("Synced and removed %r", item)

    async def mark_failed(
        self,
        item: SyncQueueItem,
        error: str,
        max_retries: int,
    ) -> bool:
        """Record a failed attempt.

        Args:
            item: The item that failed.
            error: Error message to store.
            max_retries: Attempts allowed before the item becomes terminal.

        Returns:
            True if the item may be retried, False if it is now FAILED.
        """
        item.retry_count += 1
        item.error = error
        if item.last_attempt_at is None:
            item.last_attempt_at = self._clock()
        if item.retry_count < max_retries:
            item.status = SyncItemStatus.PENDING
        else:
            item.status = SyncItemStatus.FAILED
        await self._store.put_queue_item(item)
        return item.status == SyncItemStatus.PENDING

    async def mark_rejected(self, item: SyncQueueItem, error: str) -> None:
        """Record a non-retryable failure (terminal FAILED)."""
        item.retry_count += 1
        item.error = error
        item.status = SyncItemStatus.FAILED
        await self._store.put_queue_item(item)

    async def drop(self, item: SyncQueueItem, reason: str) -> None:
        """Remove a terminal item from the queue, leaving a log record."""
        await self._store.delete_queue_item(item.id)
        logger.warning(
            "Dropped queued change for room %d after %d attempt(s): %s",
            item.room_id,
            item.retry_count,
            reason,
        )

    async def reset_in_flight(self) -> int:
        """Return items left SYNCING by an interrupted run to PENDING.

        Returns:
            Number of items recovered.
        """
        stuck = await self._store.get_queue_items_by_status(SyncItemStatus.SYNCING)
        for item in stuck:
            item.status = SyncItemStatus.PENDING
            await self._store.put_queue_item(item)
        if stuck:
            logger.info("Recovered %d interrupted queue item(s)", len(stuck))
        return len(stuck)

    async def items_for_room(self, room_id: int) -> list[SyncQueueItem]:
        """All queued items touching a room, oldest first.

        A bulk item is included when any of its updates targets the room.
        """
        items = await self._store.get_queue_items_for_room(room_id)
        seen = {item.id for item in items}
        for item in await self._store.get_queue():
            if item.id not in seen and room_id in item.room_ids:
                items.append(item)
        return sorted(items, key=lambda item: item.created_at)

    async def failed_items(self) -> list[SyncQueueItem]:
        """Items in terminal FAILED state not yet dropped."""
        return await self._store.get_queue_items_by_status(SyncItemStatus.FAILED)

    async def pending_count(self) -> int:
        """Number of items waiting for delivery."""
        return await self._store.count_queue_items(SyncItemStatus.PENDING)

    async def all_items(self) -> list[SyncQueueItem]:
        """Every queued item, oldest first."""
        return await self._store.get_queue()
