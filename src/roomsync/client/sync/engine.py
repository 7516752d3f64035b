"""Background sync orchestrator.

This module provides:
- BackgroundSyncOrchestrator: Drives push/pull passes against the server
- SyncReport: Outcome of one pass

Architecture:
                      ┌────────────────────────────────────────┐
    triggers ────────►│ BackgroundSyncOrchestrator             │
    (network restored,│   push: SyncQueue ─► RoomClient (PUT)  │
     periodic timer,  │         echo ─► OfflineCoordinator     │
     retry timer,     │   pull: RoomClient (GET) ─► merge_many │
     force_sync,      │                                        │
     sync_room)       └───────────────┬────────────────────────┘
                                      │ SyncStatusChanged, DataUpdated,
                                      ▼ ItemDropped
                                   EventBus

State machine:
    IDLE/ERROR --trigger--> SYNCING --pass ok--> IDLE
                                    --pull failed / storage failure--> ERROR

Only one pass runs at a time. A trigger while a pass is running, or while
the connectivity probe reports offline, does nothing.

sync_room is a targeted pass: it pushes one room's queued changes and
refreshes that room alone instead of pulling the whole collection.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from roomsync.client.sync.events import DataUpdated, EventBus, ItemDropped, SyncStatusChanged
from roomsync.client.sync.retry import RetryPolicy
from roomsync.client.sync.types import (
    APIError,
    MergeOutcome,
    NetworkFailure,
    RemoteRejected,
    RoomReplica,
    StorageFailure,
    SyncChangeType,
    SyncItemStatus,
    SyncQueueItem,
    utcnow,
)
from roomsync.core.config import SyncConfig
from roomsync.core.types import SyncState

if TYPE_CHECKING:
    from roomsync.client.api import RoomClient
    from roomsync.client.sync.connectivity import ConnectivityProbe
    from roomsync.client.sync.coordinator import OfflineCoordinator
    from roomsync.client.sync.queue import SyncQueue

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of one sync pass.

    Attributes:
        reason: What triggered the pass.
        synced: Room ids whose queued changes were delivered.
        failed: Room ids whose changes failed and will be retried.
        dropped: Room ids whose changes were abandoned.
        merged: Remote records applied during the pull.
        discarded: Remote records ignored because a newer local edit exists.
        error: Message of the failure that ended the pass, if any.
    """

    reason: str = "manual"
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    synced: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    dropped: list[int] = field(default_factory=list)
    merged: int = 0
    discarded: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __str__(self) -> str:
        status = "ok" if self.ok else f"error: {self.error}"
        return (
            f"{len(self.synced)} synced, {len(self.failed)} failed, "
            f"{len(self.dropped)} dropped, {self.merged} merged, "
            f"{self.discarded} kept local ({status})"
        )


class BackgroundSyncOrchestrator:
    """Reconcile the local store with the server in the background.

    Usage:
        orchestrator = BackgroundSyncOrchestrator(
            coordinator=coordinator,
            queue=queue,
            client=client,
            bus=bus,
            probe=probe,
        )
        await orchestrator.start()
        ...
        report = await orchestrator.force_sync()
        ...
        await orchestrator.stop()
    """

    def __init__(
        self,
        coordinator: OfflineCoordinator,
        queue: SyncQueue,
        client: RoomClient,
        bus: EventBus,
        probe: ConnectivityProbe,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            coordinator: Offline coordinator owning the replicas.
            queue: Sync queue of pending local changes.
            client: API client for the server.
            bus: Event bus for status and data notifications.
            probe: Connectivity probe gating every pass.
            config: Sync timing configuration.
            clock: Source of "now" (injectable for tests).
        """
        self._coordinator = coordinator
        self._queue = queue
        self._client = client
        self._bus = bus
        self._probe = probe
        self._config = config or SyncConfig()
        self._retry = RetryPolicy(self._config.retry_delays)
        self._clock = clock

        self._state = SyncState.IDLE
        self._syncing = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._running = False
        self._last_report: SyncReport | None = None

        self._stop_event: asyncio.Event | None = None
        self._periodic_task: asyncio.Task[None] | None = None
        self._unsubscribe_probe: Callable[[], None] | None = None
        self._retry_timers: set[asyncio.TimerHandle] = set()
        self._retry_requested = False
        self._background: set[asyncio.Task[SyncReport | None]] = set()

    # === Properties ===

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_report(self) -> SyncReport | None:
        """Report of the most recent completed pass."""
        return self._last_report

    # === Lifecycle ===

    async def start(self) -> None:
        """Start periodic sync and react to connectivity changes."""
        if self._running:
            logger.warning("Sync orchestrator already running")
            return

        await self.recover()

        self._running = True
        self._unsubscribe_probe = self._probe.on_change(self._on_connectivity_change)
        self._stop_event = asyncio.Event()
        self._periodic_task = asyncio.create_task(self._periodic_loop(self._stop_event))
        logger.info(
            "Sync orchestrator started (interval %.0fs)", self._config.sync_interval
        )

        if self._probe.is_online():
            self._trigger("startup")

    async def stop(self) -> None:
        """Stop triggering passes and wait for a running pass to finish."""
        if not self._running:
            return
        self._running = False

        if self._unsubscribe_probe is not None:
            self._unsubscribe_probe()
            self._unsubscribe_probe = None

        for timer in self._retry_timers:
            timer.cancel()
        self._retry_timers.clear()

        if self._stop_event is not None:
            self._stop_event.set()
        if self._periodic_task is not None:
            self._periodic_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._periodic_task
            self._periodic_task = None
        self._stop_event = None

        # An in-flight pass is never cancelled
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self._idle.wait()
        logger.info("Sync orchestrator stopped")

    async def recover(self) -> int:
        """Clean up queue items left behind by an interrupted run.

        Items stuck in SYNCING go back to PENDING. Items left FAILED (the
        run ended before they could be dropped) are dropped now.

        Returns:
            Number of items requeued.
        """
        requeued = await self._queue.reset_in_flight()
        if requeued:
            logger.info("Requeued %d change(s) interrupted by a previous run", requeued)
        for item in await self._queue.failed_items():
            await self._drop(item, item.error or "failed in a previous run")
        return requeued

    # === Triggers ===

    def _trigger(self, reason: str) -> None:
        """Schedule a pass in the background."""
        if self._syncing or not self._probe.is_online():
            return
        task = asyncio.get_running_loop().create_task(self._background_pass(reason))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_pass(self, reason: str) -> SyncReport | None:
        if not self._running:
            return None
        try:
            return await self.force_sync(reason)
        except Exception:
            logger.exception("Unexpected error in background sync pass")
            return None

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            logger.info("Network restored, syncing")
            self._trigger("network-restored")
        else:
            logger.info("Network lost, sync paused")

    def _schedule_retry(self, delay: float) -> None:
        if not self._running:
            return
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._retry_timers.discard(handle)
            if self._syncing:
                # Picked up when the running pass finishes
                self._retry_requested = True
                return
            self._trigger("retry")

        handle = loop.call_later(max(delay, 0.0), fire)
        self._retry_timers.add(handle)

    async def _periodic_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            # Interruptible sleep
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self._config.sync_interval)
            if stop_event.is_set():
                break
            self._trigger("periodic")

    # === Sync pass ===

    async def force_sync(self, reason: str = "manual") -> SyncReport | None:
        """Run one push/pull pass now.

        Returns:
            The pass report, or None if a pass is already running or the
            probe reports offline.

        Raises:
            Exception: Unexpected errors propagate after the state moves
                to ERROR.
        """
        return await self._guarded_pass(reason, self._run_pass)

    async def sync_room(self, room_id: int) -> SyncReport | None:
        """Push the queued changes of one room now, then refresh it.

        Retry delays are not waited out: the room's pending items are
        attempted immediately, oldest first. The room is then fetched
        from the server and merged like a pulled record.

        Returns:
            The pass report, or None if a pass is already running or the
            probe reports offline.
        """

        async def run(report: SyncReport) -> None:
            await self._run_room_pass(room_id, report)

        return await self._guarded_pass(f"room {room_id}", run)

    async def _guarded_pass(
        self,
        reason: str,
        body: Callable[[SyncReport], Awaitable[None]],
    ) -> SyncReport | None:
        if self._syncing:
            logger.debug("Sync already in progress, ignoring %s trigger", reason)
            return None
        if not self._probe.is_online():
            logger.debug("Offline, ignoring %s trigger", reason)
            return None

        # Guard is set before the first await
        self._syncing = True
        self._idle.clear()
        report = SyncReport(reason=reason, started_at=self._clock())
        try:
            self._set_state(SyncState.SYNCING)
            logger.info("Sync pass started (%s)", reason)
            await body(report)
        except Exception as e:
            report.error = report.error or str(e)
            raise
        finally:
            report.finished_at = self._clock()
            self._last_report = report
            self._syncing = False
            self._idle.set()
            self._set_state(SyncState.IDLE if report.ok else SyncState.ERROR)
            if self._retry_requested and self._running:
                asyncio.get_running_loop().call_soon(self._trigger, "retry")
            self._retry_requested = False
            if report.ok:
                logger.info("Sync pass finished: %s", report)
            else:
                logger.warning("Sync pass failed: %s", report)
        return report

    def _set_state(self, state: SyncState) -> None:
        if state == self._state:
            return
        logger.debug("Sync state %s -> %s", self._state.value, state.value)
        self._state = state
        self._bus.publish(SyncStatusChanged(state))

    async def _run_pass(self, report: SyncReport) -> None:
        try:
            await self._push(report)
        except StorageFailure as e:
            report.error = f"Storage failure during push: {e}"
            return

        try:
            await self._pull(report)
        except APIError as e:
            report.error = f"Pull failed: {e}"
        except StorageFailure as e:
            report.error = f"Storage failure during pull: {e}"

    async def _run_room_pass(self, room_id: int, report: SyncReport) -> None:
        try:
            await self._push(report, room_id=room_id)
        except StorageFailure as e:
            report.error = f"Storage failure during push: {e}"
            return

        try:
            await self._refresh_room(room_id, report)
        except APIError as e:
            report.error = f"Refresh of room {room_id} failed: {e}"
        except StorageFailure as e:
            report.error = f"Storage failure during refresh: {e}"

    # === Push ===

    async def _push(self, report: SyncReport, room_id: int | None = None) -> None:
        """Deliver pending queue items in FIFO order, one at a time.

        With room_id, only that room's items are attempted and retry
        delays are ignored.
        """
        now = self._clock()
        handled: set[str] = set()
        # Rooms with an earlier item skipped or failed in this pass
        blocked: set[int] = set()
        next_due: datetime | None = None

        while True:
            if room_id is None:
                batch = await self._queue.next_batch(self._config.batch_size, exclude=handled)
            else:
                batch = await self._room_batch(room_id, handled)
            if not batch:
                break
            for item in batch:
                handled.add(item.id)
                rooms = item.room_ids
                if blocked.intersection(rooms):
                    logger.debug("Deferring %r behind an earlier change", item)
                    continue
                if room_id is None and not self._retry.is_due(item, now):
                    logger.debug("Deferring %r until its retry delay elapses", item)
                    blocked.update(rooms)
                    due_at = self._retry.next_attempt_at(item)
                    if due_at is not None and (next_due is None or due_at < next_due):
                        next_due = due_at
                    continue
                if not self._probe.is_online():
                    logger.info("Went offline during push, deferring remaining changes")
                    return
                if not await self._push_item(item, report):
                    blocked.update(rooms)

        if next_due is not None:
            self._schedule_retry((next_due - now).total_seconds())

    async def _room_batch(self, room_id: int, handled: set[str]) -> list[SyncQueueItem]:
        items = await self._queue.items_for_room(room_id)
        pending = [
            item
            for item in items
            if item.status == SyncItemStatus.PENDING and item.id not in handled
        ]
        return pending[: self._config.batch_size]

    async def _push_item(self, item: SyncQueueItem, report: SyncReport) -> bool:
        """Deliver one item.

        Returns:
            True if delivered, False if it failed or was dropped.

        Raises:
            Exception: Unexpected errors propagate once the attempt has
                been recorded as failed, so the item never stays SYNCING.
        """
        await self._queue.mark_syncing(item)
        try:
            echoes = await self._send(item)
        except NetworkFailure as e:
            await self._record_failure(item, str(e), report)
            return False
        except RemoteRejected as e:
            await self._queue.mark_rejected(item, str(e))
            await self._drop(item, f"rejected by server: {e}", report)
            return False
        except Exception as e:
            await self._record_failure(item, f"unexpected error: {e!r}", report)
            raise

        await self._queue.mark_synced(item)
        report.synced.extend(item.room_ids)

        by_id = {echo.id: echo for echo in echoes}
        for room_id in item.room_ids:
            await self._coordinator.confirm_pushed(room_id, by_id.get(room_id))
            self._bus.publish(DataUpdated(room_id))
        return True

    async def _record_failure(self, item: SyncQueueItem, error: str, report: SyncReport) -> None:
        """Count a failed attempt: schedule a retry, or drop once retries run out."""
        if not await self._queue.mark_failed(item, error, self._retry.max_retries):
            await self._drop(item, f"retries exhausted: {error}", report)
            return
        delay = self._retry.delay_for(item.retry_count)
        logger.warning(
            "Sync of %r failed (attempt %d/%d), retrying in %.0fs: %s",
            item,
            item.retry_count,
            self._retry.max_retries,
            delay,
            error,
        )
        report.failed.extend(item.room_ids)
        self._schedule_retry(delay)

    async def _send(self, item: SyncQueueItem) -> list[RoomReplica]:
        if item.change_type == SyncChangeType.BULK_UPDATE:
            return await self._client.bulk_update_rooms(item.payload.get("updates", []))
        return [await self._client.update_room(item.room_id, item.payload)]

    async def _drop(
        self,
        item: SyncQueueItem,
        reason: str,
        report: SyncReport | None = None,
    ) -> None:
        await self._queue.drop(item, reason)
        if report is not None:
            report.dropped.extend(item.room_ids)
        self._bus.publish(ItemDropped(item, reason))
        for room_id in item.room_ids:
            await self._coordinator.release(room_id)

    # === Pull ===

    async def _pull(self, report: SyncReport) -> None:
        """Fetch the full collection and merge it into the local store."""
        remotes = await self._client.list_rooms()
        outcomes = await self._coordinator.merge_many_from_remote(remotes)
        await self._coordinator.set_last_sync_time(self._clock())
        self._record_outcomes(outcomes, report)

    async def _refresh_room(self, room_id: int, report: SyncReport) -> None:
        """Fetch one record and merge it into the local store."""
        remote = await self._client.get_room(room_id)
        outcome = await self._coordinator.merge_from_remote(remote)
        self._record_outcomes([outcome], report)

    def _record_outcomes(self, outcomes: list[MergeOutcome], report: SyncReport) -> None:
        synced = set(report.synced)
        for outcome in outcomes:
            if outcome.discarded is not None:
                report.discarded += 1
            elif outcome.applied:
                report.merged += 1
                if outcome.room_id not in synced:
                    self._bus.publish(DataUpdated(outcome.room_id))
