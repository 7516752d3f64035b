"""Shared configuration classes for roomsync.

This module defines configuration classes used by the HTTP client,
the background orchestrator and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_RETRY_DELAYS: tuple[float, ...] = (1.0, 5.0, 15.0, 30.0, 60.0)


@dataclass
class ServerConfig:
    """Configuration for connecting to the room assignment server.

    Attributes:
        server_url: Base URL of the server (e.g., "https://hotel.example.com").
        token: Bearer token sent with every request.
        timeout: Per-request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")


@dataclass
class SyncConfig:
    """Tuning knobs for the background sync orchestrator.

    Attributes:
        sync_interval: Seconds between periodic sync passes.
        batch_size: Maximum queue items read per batch.
        retry_delays: Per-item backoff schedule; its length is the retry bound.
        probe_interval: Seconds between connectivity checks.
        debounce_window: Coalescing window for UI refresh events.
        refresh_cooldown: Quiet period after a refresh fires.
    """

    sync_interval: float = 30.0
    batch_size: int = 50
    retry_delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS
    probe_interval: float = 5.0
    debounce_window: float = 0.5
    refresh_cooldown: float = 1.0

    def __post_init__(self) -> None:
        if not self.retry_delays:
            raise ValueError("retry_delays must not be empty")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.retry_delays = tuple(self.retry_delays)

    @property
    def max_retries(self) -> int:
        """Number of failed attempts after which an item is dropped."""
        return len(self.retry_delays)
