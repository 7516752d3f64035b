"""Per-item retry schedule for queued changes.

This module provides:
- RetryPolicy: Fixed escalating backoff schedule (1s, 5s, 15s, 30s, 60s)
- is_due: Whether a failed item has waited long enough to be retried

The length of the schedule is also the retry bound: an item that fails
len(delays) times is dropped instead of being retried forever.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from roomsync.client.sync.types import SyncQueueItem
from roomsync.core.config import DEFAULT_RETRY_DELAYS


@dataclass(frozen=True)
class RetryPolicy:
    """Escalating delay schedule applied per queue item.

    Attributes:
        delays: Seconds to wait after the 1st, 2nd, ... failure.
    """

    delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS

    @property
    def max_retries(self) -> int:
        """Failed attempts after which an item is dropped."""
        return len(self.delays)

    def delay_for(self, retry_count: int) -> float:
        """Delay before the next attempt after retry_count failures."""
        if retry_count <= 0:
            return 0.0
        index = min(retry_count, len(self.delays)) - 1
        return self.delays[index]

    def next_attempt_at(self, item: SyncQueueItem) -> datetime | None:
        """When the item becomes eligible again (None = immediately)."""
        if item.retry_count == 0 or item.last_attempt_at is None:
            return None
        return item.last_attempt_at + timedelta(seconds=self.delay_for(item.retry_count))

    def is_due(self, item: SyncQueueItem, now: datetime) -> bool:
        """Check whether a pending item may be attempted at time now."""
        next_at = self.next_attempt_at(item)
        return next_at is None or next_at <= now
