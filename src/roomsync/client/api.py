"""HTTP client for the room assignment server API.

This module provides:
- RoomClient: Async HTTP client for the room-assignment REST resource
- to_wire: Convert a local field delta to the server's camelCase body

Error mapping:
    Transport errors, timeouts, 408, 429 and 5xx raise NetworkFailure
    (retryable), as does a 2xx answer whose body is not JSON. Any other
    4xx raises RemoteRejected (the server will keep refusing the same
    request).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from roomsync.client.sync.types import (
    INTERNAL_FIELDS,
    ROOM_FIELDS,
    NetworkFailure,
    RemoteRejected,
    RoomReplica,
)
from roomsync.core.config import ServerConfig

logger = logging.getLogger(__name__)

COLLECTION = "/api/room-assignments"

RETRYABLE_STATUS_CODES = frozenset({408, 429})


def to_wire(changes: dict[str, Any]) -> dict[str, Any]:
    """Strip bookkeeping fields and convert keys to camelCase.

    Args:
        changes: Field delta keyed by attribute name (snake_case).

    Returns:
        Request body containing only the semantic delta.
    """
    body: dict[str, Any] = {}
    for key, value in changes.items():
        if key in INTERNAL_FIELDS:
            continue
        body[ROOM_FIELDS.get(key, key)] = value
    return body


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict):
        return str(data.get("error") or data.get("detail") or data)
    return str(data)


class RoomClient:
    """Async HTTP client for the room assignment API."""

    def __init__(
        self,
        config: ServerConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Server configuration (URL, token, timeout, SSL).
            transport: Optional custom transport (tests).
        """
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.server_url,
            timeout=config.timeout,
            headers={"Authorization": f"Bearer {config.token}"},
            verify=config.verify_ssl,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> RoomClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Raise the appropriate exception for an error response."""
        status = response.status_code
        if status < 400:
            return response
        detail = f"HTTP {status}: {_error_detail(response)}"
        if status >= 500 or status in RETRYABLE_STATUS_CODES:
            raise NetworkFailure(detail, status)
        raise RemoteRejected(detail, status)

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkFailure(f"Request timed out after {self._config.timeout}s") from e
        except httpx.RequestError as e:
            raise NetworkFailure(f"Request failed: {e}") from e
        return self._handle_response(response)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        """Decode a JSON body.

        Raises:
            NetworkFailure: If the body is not JSON (e.g. a captive portal page).
        """
        try:
            return response.json()
        except ValueError as e:
            content_type = response.headers.get("content-type", "unknown")
            raise NetworkFailure(
                f"Expected JSON from server, got {content_type} (HTTP {response.status_code})",
                response.status_code,
            ) from e

    @staticmethod
    def _parse_room(data: Any) -> RoomReplica:
        try:
            return RoomReplica.from_remote(data)
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteRejected(f"Invalid room record in response: {e}") from e

    # === Health check ===

    async def health_check(self) -> bool:
        """Check if the server is reachable.

        Sends a HEAD request to the room collection. Any answer below 500
        (including 401 or 405) proves the server is there.

        Returns:
            True if the server answered without a server error.
        """
        try:
            response = await self._client.head(COLLECTION)
        except httpx.RequestError:
            return False
        return response.status_code < 500

    # === Room assignments ===

    async def list_rooms(self) -> list[RoomReplica]:
        """Fetch the full room assignment collection.

        Malformed records are skipped with a warning.
        """
        response = await self._request("GET", COLLECTION)
        payload = self._json(response)
        if not isinstance(payload, list):
            raise RemoteRejected(
                f"Expected a list of rooms, got {type(payload).__name__}", response.status_code
            )
        rooms: list[RoomReplica] = []
        for data in payload:
            try:
                rooms.append(RoomReplica.from_remote(data))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed room record %r: %s", data, e)
        return rooms

    async def get_room(self, room_id: int) -> RoomReplica:
        """Fetch one room assignment.

        Raises:
            RemoteRejected: If the room does not exist (404).
        """
        response = await self._request("GET", f"{COLLECTION}/{room_id}")
        return self._parse_room(self._json(response))

    async def update_room(self, room_id: int, changes: dict[str, Any]) -> RoomReplica:
        """Apply a delta to a room and return the updated record.

        Args:
            room_id: Room id.
            changes: Field delta keyed by attribute name.

        Returns:
            The full updated record echoed by the server.
        """
        response = await self._request(
            "PUT", f"{COLLECTION}/{room_id}", json=to_wire(changes)
        )
        return self._parse_room(self._json(response))

    async def bulk_update_rooms(self, updates: list[dict[str, Any]]) -> list[RoomReplica]:
        """Apply several deltas in one request.

        Args:
            updates: Deltas, each including the target "id".

        Returns:
            Updated records echoed by the server.
        """
        body = [{"id": update["id"], **to_wire(update)} for update in updates]
        response = await self._request("PUT", f"{COLLECTION}/bulk", json=body)
        payload = self._json(response)
        if not isinstance(payload, list):
            raise RemoteRejected(
                f"Expected a list of rooms, got {type(payload).__name__}", response.status_code
            )
        return [self._parse_room(data) for data in payload]
