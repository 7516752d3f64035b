"""Tests for the room assignment HTTP client."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import httpx
import pytest

from roomsync.client.api import RoomClient, to_wire
from roomsync.client.sync.types import (
    NetworkFailure,
    RemoteRejected,
    RoomPriority,
    RoomStatus,
)
from roomsync.core.config import ServerConfig

BASE = "http://test/api/room-assignments"


def make_config(server_url: str = "http://test", token: str = "token123") -> ServerConfig:
    """Create a ServerConfig for testing."""
    return ServerConfig(server_url=server_url, token=token, timeout=2.0)


def room_json(room_id: int = 5, **overrides: Any) -> dict[str, Any]:
    """Build a room record the way the server serializes it."""
    data: dict[str, Any] = {
        "id": room_id,
        "roomNumber": str(100 + room_id),
        "status": "DIRTY",
        "priority": "MEDIUM",
        "occupancy": "VACANT",
        "serviceStatus": "PENDING",
        "notes": None,
        "assignedTo": None,
        "createdAt": "2025-01-01T08:00:00Z",
        "updatedAt": "2025-01-01T12:00:00Z",
    }
    data.update(overrides)
    return data


class TestToWire:
    """Tests for to_wire()."""

    def test_converts_keys_to_camel_case(self) -> None:
        """Attribute names should become the server's field names."""
        assert to_wire({"service_status": "COMPLETE", "assigned_to": "maria"}) == {
            "serviceStatus": "COMPLETE",
            "assignedTo": "maria",
        }

    def test_strips_bookkeeping_fields(self) -> None:
        """version, id and local flags should never be sent."""
        assert to_wire({"status": "CLEAN", "version": 3, "is_dirty": True, "id": 5}) == {
            "status": "CLEAN"
        }


class TestConfig:
    """Tests for ServerConfig as used by the client."""

    def test_trailing_slash_removed(self) -> None:
        """Base URL should be normalized."""
        assert make_config("http://test/").server_url == "http://test"


class TestRoomClient:
    """Tests for RoomClient against a mocked server."""

    @pytest.mark.asyncio
    async def test_health_check_success(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return True when the room collection answers HEAD."""
        httpx_mock.add_response(method="HEAD", url=BASE)

        async with RoomClient(make_config()) as client:
            assert await client.health_check() is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 404, 405])
    async def test_health_check_client_error_is_online(
        self, httpx_mock, status_code: int  # type: ignore[no-untyped-def]
    ) -> None:
        """A 4xx answer still proves the server is reachable."""
        httpx_mock.add_response(method="HEAD", url=BASE, status_code=status_code)

        async with RoomClient(make_config()) as client:
            assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_server_error_is_offline(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A 5xx answer should count as unreachable."""
        httpx_mock.add_response(method="HEAD", url=BASE, status_code=503)

        async with RoomClient(make_config()) as client:
            assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_health_check_unreachable(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return False when the server cannot be reached."""
        httpx_mock.add_exception(httpx.ConnectError("Connection refused"))

        async with RoomClient(make_config()) as client:
            assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Every request should carry the configured token."""
        httpx_mock.add_response(url=BASE, json=[])

        async with RoomClient(make_config()) as client:
            await client.list_rooms()

        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer token123"

    @pytest.mark.asyncio
    async def test_list_rooms(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should parse every record of the collection."""
        httpx_mock.add_response(
            url=BASE,
            json=[room_json(1), room_json(2, status="clean", priority="HIGH")],
        )

        async with RoomClient(make_config()) as client:
            rooms = await client.list_rooms()

        assert [r.id for r in rooms] == [1, 2]
        assert rooms[1].status == RoomStatus.CLEAN
        assert rooms[1].priority == RoomPriority.HIGH
        assert rooms[0].updated_at == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert not rooms[0].is_dirty

    @pytest.mark.asyncio
    async def test_list_rooms_skips_malformed(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A record without updatedAt should be skipped, not fail the pull."""
        broken = room_json(2)
        del broken["updatedAt"]
        httpx_mock.add_response(url=BASE, json=[room_json(1), broken, {"id": 3}])

        async with RoomClient(make_config()) as client:
            rooms = await client.list_rooms()

        assert [r.id for r in rooms] == [1]

    @pytest.mark.asyncio
    async def test_get_room(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should fetch one record by id."""
        httpx_mock.add_response(url=f"{BASE}/5", json=room_json(5, notes="VIP"))

        async with RoomClient(make_config()) as client:
            room = await client.get_room(5)

        assert room.id == 5
        assert room.notes == "VIP"

    @pytest.mark.asyncio
    async def test_get_room_not_found(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A 404 should raise RemoteRejected with the status code."""
        httpx_mock.add_response(
            url=f"{BASE}/99", status_code=404, json={"error": "Room not found"}
        )

        async with RoomClient(make_config()) as client:
            with pytest.raises(RemoteRejected) as exc_info:
                await client.get_room(99)

        assert exc_info.value.status_code == 404
        assert "Room not found" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_update_room_sends_delta(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """PUT body should hold only the camelCase delta."""
        httpx_mock.add_response(
            method="PUT",
            url=f"{BASE}/5",
            json=room_json(5, status="CLEAN", serviceStatus="COMPLETE"),
        )

        async with RoomClient(make_config()) as client:
            echo = await client.update_room(
                5, {"status": "CLEAN", "service_status": "COMPLETE", "version": 2}
            )

        request = httpx_mock.get_request()
        assert json.loads(request.content) == {"status": "CLEAN", "serviceStatus": "COMPLETE"}
        assert echo.status == RoomStatus.CLEAN

    @pytest.mark.asyncio
    async def test_bulk_update(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Bulk updates should go to the bulk endpoint with ids kept."""
        httpx_mock.add_response(
            method="PUT",
            url=f"{BASE}/bulk",
            json=[room_json(1, status="CLEAN"), room_json(2, status="CLEAN")],
        )

        async with RoomClient(make_config()) as client:
            echoes = await client.bulk_update_rooms(
                [{"id": 1, "status": "CLEAN"}, {"id": 2, "status": "CLEAN", "version": 4}]
            )

        request = httpx_mock.get_request()
        assert json.loads(request.content) == [
            {"id": 1, "status": "CLEAN"},
            {"id": 2, "status": "CLEAN"},
        ]
        assert [e.id for e in echoes] == [1, 2]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [408, 429, 500, 503])
    async def test_retryable_status_raises_network_failure(
        self, httpx_mock, status_code: int  # type: ignore[no-untyped-def]
    ) -> None:
        """Server errors and throttling should be retryable."""
        httpx_mock.add_response(method="PUT", url=f"{BASE}/5", status_code=status_code)

        async with RoomClient(make_config()) as client:
            with pytest.raises(NetworkFailure) as exc_info:
                await client.update_room(5, {"status": "CLEAN"})

        assert exc_info.value.status_code == status_code

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 401, 403, 404, 422])
    async def test_client_error_raises_remote_rejected(
        self, httpx_mock, status_code: int  # type: ignore[no-untyped-def]
    ) -> None:
        """Other 4xx responses should not be retried."""
        httpx_mock.add_response(
            method="PUT", url=f"{BASE}/5", status_code=status_code, json={"detail": "nope"}
        )

        async with RoomClient(make_config()) as client:
            with pytest.raises(RemoteRejected):
                await client.update_room(5, {"status": "CLEAN"})

    @pytest.mark.asyncio
    async def test_timeout_raises_network_failure(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A timeout should surface as a retryable NetworkFailure."""
        httpx_mock.add_exception(httpx.ReadTimeout("Read timed out"))

        async with RoomClient(make_config()) as client:
            with pytest.raises(NetworkFailure, match="timed out"):
                await client.list_rooms()

    @pytest.mark.asyncio
    async def test_connection_error_raises_network_failure(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Transport errors should surface as NetworkFailure."""
        httpx_mock.add_exception(httpx.ConnectError("Connection refused"))

        async with RoomClient(make_config()) as client:
            with pytest.raises(NetworkFailure):
                await client.list_rooms()

    @pytest.mark.asyncio
    async def test_invalid_echo_rejected(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """An unparseable echo should raise RemoteRejected."""
        httpx_mock.add_response(method="PUT", url=f"{BASE}/5", json={"id": 5})

        async with RoomClient(make_config()) as client:
            with pytest.raises(RemoteRejected, match="Invalid room record"):
                await client.update_room(5, {"status": "CLEAN"})

    @pytest.mark.asyncio
    async def test_non_json_success_raises_network_failure(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A 2xx HTML page (e.g. a proxy login) should be retryable, not crash."""
        httpx_mock.add_response(
            method="PUT",
            url=f"{BASE}/5",
            status_code=200,
            text="<html><body>Sign in</body></html>",
            headers={"Content-Type": "text/html"},
        )

        async with RoomClient(make_config()) as client:
            with pytest.raises(NetworkFailure, match="Expected JSON") as exc_info:
                await client.update_room(5, {"status": "CLEAN"})

        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_non_list_collection_rejected(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A JSON object where a list is expected should be rejected."""
        httpx_mock.add_response(method="GET", url=BASE, json={"rooms": []})

        async with RoomClient(make_config()) as client:
            with pytest.raises(RemoteRejected, match="Expected a list"):
                await client.list_rooms()
