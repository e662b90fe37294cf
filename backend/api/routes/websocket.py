"""
WebSocket endpoint for live kitchen updates.

- Client connects to ws://host/api/v1/ws/kitchen
- Server sends the current slot state once, then pushes every change
- No polling needed while a batch or a guide is running

Usage (frontend):
    const ws = new WebSocket(`ws://host/api/v1/ws/kitchen`);

    ws.onmessage = (event) => {
        const update = JSON.parse(event.data);
        // update.type: 'snapshot' | 'batch_started' | 'slot_updated' | 'history_appended'
    };
"""

import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from api.dependencies import get_orchestrator
from schemas.kitchen import SlotResponse
from services.orchestrator import GenerationOrchestrator
from services.websocket_manager import ConnectionManager, get_connection_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["websocket"])


def _snapshot_message(orchestrator: GenerationOrchestrator) -> str:
    slots = [*orchestrator.fast, *orchestrator.pro]
    return json.dumps(
        {
            "type": "snapshot",
            "is_generating": orchestrator.is_generating,
            "slots": [SlotResponse.from_slot(s).model_dump(mode="json") for s in slots],
            "entry": None,
        }
    )


@router.websocket("/kitchen")
async def websocket_kitchen(
    websocket: WebSocket,
    manager: ConnectionManager = Depends(get_connection_manager),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """
    Messages sent by server:
    {
        "type": "snapshot" | "batch_started" | "slot_updated" | "history_appended",
        "slots": [{"id": "...", "status": "loading", ...}],
        "entry": null | {"id": "...", "fast_results": [...], "pro_results": [...]}
    }
    """
    await manager.connect(websocket)
    try:
        await websocket.send_text(_snapshot_message(orchestrator))
        while True:
            data = await websocket.receive_text()
            # Client can send "ping" for keep-alive
            if data == "ping":
                await websocket.send_text('{"type": "pong"}')
    except WebSocketDisconnect:
        logger.debug("WebSocket disconnected by client")
    except Exception as e:
        logger.error("WebSocket error: error_type=%s, error=%s", type(e).__name__, e)
    finally:
        await manager.disconnect(websocket)


@router.get("/connections")
async def get_websocket_stats(
    manager: ConnectionManager = Depends(get_connection_manager),
):
    """Get WebSocket connection statistics (for monitoring/debugging)."""
    return {
        "total_connections": manager.get_total_connections(),
    }
