"""
WebSocket connection manager for live kitchen updates.

Every connected client watches the same session: the two live slot groups and
the history. The manager is registered as the listener of the orchestrator and
the guide workflow, so each slot change and each new history entry is pushed
to all clients as it happens.

Architecture:
- ConnectionManager tracks the active WebSocket connections
- broadcast_event() serializes a SlotEvent once and sends it to every client
- Clients that fail to receive are dropped
"""

import asyncio
import json
import logging
from typing import Set

from fastapi import WebSocket

from schemas.kitchen import HistoryEntryResponse, SlotResponse
from services.events import SlotEvent

logger = logging.getLogger(__name__)


def event_to_dict(event: SlotEvent) -> dict:
    """Convert a SlotEvent to a JSON-serializable message."""
    return {
        "type": event.type.value,
        "slots": [SlotResponse.from_slot(slot).model_dump(mode="json") for slot in event.slots],
        "entry": (
            HistoryEntryResponse.from_entry(event.entry).model_dump(mode="json")
            if event.entry is not None
            else None
        ),
    }


class ConnectionManager:
    """
    Manages WebSocket connections subscribed to kitchen updates.

    Usage:
        manager = ConnectionManager()

        # In WebSocket endpoint:
        await manager.connect(websocket)
        try:
            while True:
                data = await websocket.receive_text()
        except WebSocketDisconnect:
            await manager.disconnect(websocket)

        # As orchestrator listener:
        GenerationOrchestrator(backend, listener=manager.broadcast_event)
    """

    def __init__(self):
        self._connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        logger.info(f"WebSocket connected ({len(self._connections)} active)")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._connections:
                self._connections.discard(websocket)
                logger.info(f"WebSocket disconnected ({len(self._connections)} active)")

    async def broadcast_event(self, event: SlotEvent) -> int:
        """
        Broadcast a slot event to all connected clients.

        Returns:
            Number of clients that received the event
        """
        message = json.dumps(event_to_dict(event))
        sent_count = 0
        failed_connections = []

        async with self._lock:
            connections = self._connections.copy()

        for websocket in connections:
            try:
                await websocket.send_text(message)
                sent_count += 1
            except Exception as e:
                logger.warning(f"Failed to send WebSocket message: {e}")
                failed_connections.append(websocket)

        for ws in failed_connections:
            await self.disconnect(ws)

        if sent_count > 0:
            logger.debug(f"Broadcast {event.type.value} to {sent_count} clients")

        return sent_count

    def get_total_connections(self) -> int:
        """Get the total number of active WebSocket connections."""
        return len(self._connections)


# Global connection manager instance
connection_manager = ConnectionManager()


def get_connection_manager() -> ConnectionManager:
    """Get the global connection manager instance."""
    return connection_manager
