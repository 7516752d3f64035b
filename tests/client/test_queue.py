"""Tests for the durable sync queue."""

from __future__ import annotations

from datetime import timedelta

import pytest

from roomsync.client.state import LocalStore
from roomsync.client.sync.queue import SyncQueue
from roomsync.client.sync.types import SyncItemStatus, SyncQueueItem

from conftest import T0, FakeClock


def item_at(room_id: int, seconds: float) -> SyncQueueItem:
    """Create a queue item stamped seconds after T0."""
    return SyncQueueItem.create(
        room_id=room_id,
        payload={"notes": f"edit {room_id}"},
        created_at=T0 + timedelta(seconds=seconds),
    )


class TestEnqueueAndBatch:
    """Tests for FIFO retrieval."""

    @pytest.mark.asyncio
    async def test_next_batch_is_fifo_across_rooms(self, queue: SyncQueue) -> None:
        """Items should be returned oldest first, whatever the room."""
        b = await queue.enqueue(item_at(2, 1))
        a = await queue.enqueue(item_at(9, 0))
        c = await queue.enqueue(item_at(1, 2))

        batch = await queue.next_batch(10)
        assert [i.id for i in batch] == [a.id, b.id, c.id]

    @pytest.mark.asyncio
    async def test_next_batch_respects_max_size(self, queue: SyncQueue) -> None:
        """No more than max_size items should be returned."""
        for i in range(5):
            await queue.enqueue(item_at(i, i))

        assert len(await queue.next_batch(3)) == 3
        assert await queue.next_batch(0) == []

    @pytest.mark.asyncio
    async def test_next_batch_excludes_ids(self, queue: SyncQueue) -> None:
        """Excluded ids should be skipped without shrinking the batch."""
        items = [await queue.enqueue(item_at(i, i)) for i in range(4)]

        batch = await queue.next_batch(2, exclude={items[0].id})
        assert [i.id for i in batch] == [items[1].id, items[2].id]

    @pytest.mark.asyncio
    async def test_no_deduplication(self, queue: SyncQueue) -> None:
        """Two edits of the same room should both stay queued."""
        await queue.enqueue(item_at(1, 0))
        await queue.enqueue(item_at(1, 1))

        assert len(await queue.items_for_room(1)) == 2
        assert await queue.pending_count() == 2


class TestStatusTransitions:
    """Tests for item state changes."""

    @pytest.mark.asyncio
    async def test_mark_syncing_stamps_attempt(
        self,
        queue: SyncQueue,
        store: LocalStore,
        clock: FakeClock,
    ) -> None:
        """mark_syncing should set SYNCING and last_attempt_at."""
        item = await queue.enqueue(item_at(1, 0))
        clock.advance(30)

        await queue.mark_syncing(item)

        loaded = await store.get_queue_item(item.id)
        assert loaded is not None
        assert loaded.status == SyncItemStatus.SYNCING
        assert loaded.last_attempt_at == clock.now
        assert await queue.next_batch(10) == []

    @pytest.mark.asyncio
    async def test_mark_synced_removes(self, queue: SyncQueue) -> None:
        """A delivered item should leave the queue."""
        item = await queue.enqueue(item_at(1, 0))
        await queue.mark_syncing(item)
        await queue.mark_synced(item)

        assert await queue.all_items() == []

    @pytest.mark.asyncio
    async def test_mark_failed_until_exhausted(self, queue: SyncQueue) -> None:
        """Failures should return to PENDING until max_retries is reached."""
        item = await queue.enqueue(item_at(1, 0))

        results = []
        for _ in range(3):
            await queue.mark_syncing(item)
            results.append(await queue.mark_failed(item, "timeout", max_retries=3))

        assert results == [True, True, False]
        assert item.retry_count == 3
        assert item.status == SyncItemStatus.FAILED
        assert item.error == "timeout"
        assert [i.id for i in await queue.failed_items()] == [item.id]
        assert await queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_mark_rejected_is_terminal(self, queue: SyncQueue) -> None:
        """A rejected item should become FAILED after one attempt."""
        item = await queue.enqueue(item_at(1, 0))
        await queue.mark_rejected(item, "HTTP 400: bad")

        assert item.status == SyncItemStatus.FAILED
        assert item.retry_count == 1

    @pytest.mark.asyncio
    async def test_drop_removes_and_logs(
        self,
        queue: SyncQueue,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """drop should delete the item and log a warning."""
        item = await queue.enqueue(item_at(4, 0))
        await queue.mark_rejected(item, "bad")

        await queue.drop(item, "rejected by server")

        assert await queue.all_items() == []
        assert "room 4" in caplog.text
        assert "rejected by server" in caplog.text

    @pytest.mark.asyncio
    async def test_reset_in_flight(self, queue: SyncQueue) -> None:
        """Items left SYNCING should return to PENDING."""
        a = await queue.enqueue(item_at(1, 0))
        await queue.enqueue(item_at(2, 1))
        await queue.mark_syncing(a)

        assert await queue.reset_in_flight() == 1
        assert await queue.pending_count() == 2
