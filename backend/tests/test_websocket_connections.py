"""
Tests for WebSocket monitoring endpoints and event broadcasting.
"""

import json

import pytest
from httpx import AsyncClient

from conftest import TEST_PROFILES
from main import app
from services.events import SlotEvent, SlotEventType
from services.history_ledger import HistoryEntry
from services.slots import Loading, Succeeded, Variant, create_slots
from services.websocket_manager import (
    ConnectionManager,
    event_to_dict,
    get_connection_manager,
)


class FakeWebSocket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.accepted = False
        self.sent: list[str] = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, message: str):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(message)


def _loading_slots():
    return tuple(s.evolve(primary=Loading()) for s in create_slots(TEST_PROFILES[Variant.FAST], 2))


@pytest.mark.asyncio
async def test_ws_connections_endpoint_returns_connection_count(client: AsyncClient):
    """Public websocket stats endpoint returns a numeric connection count."""
    response = await client.get("/api/v1/ws/connections")
    assert response.status_code == 200
    data = response.json()
    assert "total_connections" in data
    assert isinstance(data["total_connections"], int)
    assert data["total_connections"] >= 0


@pytest.mark.asyncio
async def test_ws_connections_endpoint_uses_injected_manager(client: AsyncClient):
    """Endpoint should respect dependency-injected connection manager."""

    class FakeManager:
        def get_total_connections(self) -> int:
            return 7

    app.dependency_overrides[get_connection_manager] = lambda: FakeManager()
    try:
        response = await client.get("/api/v1/ws/connections")
        assert response.status_code == 200
        assert response.json() == {"total_connections": 7}
    finally:
        app.dependency_overrides.pop(get_connection_manager, None)


def test_event_to_dict_serializes_slots():
    slots = _loading_slots()

    message = event_to_dict(SlotEvent(SlotEventType.BATCH_STARTED, slots=slots))

    assert message["type"] == "batch_started"
    assert [s["id"] for s in message["slots"]] == [s.id for s in slots]
    assert message["slots"][0]["status"] == "loading"
    assert message["entry"] is None


def test_event_to_dict_serializes_history_entry():
    fast = tuple(s.evolve(primary=Succeeded("data:image/png;base64,AA==")) for s in _loading_slots())
    entry = HistoryEntry(input_image_ref="data:image/png;base64,BB==", fast_results=fast, pro_results=())

    message = event_to_dict(SlotEvent(SlotEventType.HISTORY_APPENDED, entry=entry))

    assert message["entry"]["id"] == entry.id
    assert message["entry"]["fast_results"][0]["image_url"] == "data:image/png;base64,AA=="
    json.dumps(message)


@pytest.mark.asyncio
async def test_broadcast_reaches_every_client():
    manager = ConnectionManager()
    first, second = FakeWebSocket(), FakeWebSocket()
    await manager.connect(first)
    await manager.connect(second)

    sent = await manager.broadcast_event(SlotEvent(SlotEventType.SLOT_UPDATED, slots=_loading_slots()[:1]))

    assert sent == 2
    assert first.accepted and second.accepted
    assert json.loads(first.sent[0])["type"] == "slot_updated"
    assert first.sent == second.sent


@pytest.mark.asyncio
async def test_broadcast_drops_failing_clients():
    manager = ConnectionManager()
    healthy, broken = FakeWebSocket(), FakeWebSocket(fail=True)
    await manager.connect(healthy)
    await manager.connect(broken)

    sent = await manager.broadcast_event(SlotEvent(SlotEventType.BATCH_STARTED, slots=_loading_slots()))

    assert sent == 1
    assert manager.get_total_connections() == 1


@pytest.mark.asyncio
async def test_disconnect_is_idempotent():
    manager = ConnectionManager()
    ws = FakeWebSocket()
    await manager.connect(ws)

    await manager.disconnect(ws)
    await manager.disconnect(ws)

    assert manager.get_total_connections() == 0
