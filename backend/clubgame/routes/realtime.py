import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from clubgame.services.realtime import get_connection_manager, tournament_channel

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/tournaments/{schedule_id}")
async def tournament_socket(websocket: WebSocket, schedule_id: int, uid: Optional[str] = None):
    """Subscribe to tournament:{id} events. Answers {"type": "ping"} with a pong."""
    manager = get_connection_manager()
    channel = tournament_channel(schedule_id)
    await manager.connect(websocket, channel, uid)
    try:
        while True:
            data = await websocket.receive_json()
            if isinstance(data, dict) and data.get("type") == "ping":
                await manager.send_personal(websocket, {"type": "pong"})
            else:
                await manager.send_personal(websocket, {"type": "error", "message": "Unknown message type"})
    except WebSocketDisconnect:
        logger.debug("Socket left %s (uid=%s)", channel, uid)
    finally:
        manager.disconnect(websocket)
