"""
In-process realtime channel layer.

Clients subscribe over a WebSocket to a channel such as ``tournament:12`` or
``room:3``. Services never talk to sockets directly; routes schedule
``manager.broadcast(...)`` as a background task once the transaction has
committed.
"""
import logging
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

# Event names pushed to tournament channels
EVENT_REFRESH_MEMBER = "refreshMember"
EVENT_REFRESH_GAME = "refreshGame"
EVENT_CHANGED_STATE = "changedState"
EVENT_SCORE = "score"
EVENT_COURT = "court"


def tournament_channel(schedule_id: int) -> str:
    return f"tournament:{schedule_id}"


def room_channel(room_id: int) -> str:
    return f"room:{room_id}"


class ConnectionManager:
    """Tracks WebSocket subscribers per channel and which users are online."""

    def __init__(self):
        # channel -> connected sockets
        self.channels: Dict[str, Set[WebSocket]] = {}
        # socket -> (channel, uid)
        self.sockets: Dict[WebSocket, tuple] = {}
        # uid -> open socket count
        self.users: Dict[str, int] = {}

    async def connect(self, websocket: WebSocket, channel: str, uid: Optional[str] = None):
        await websocket.accept()
        self.channels.setdefault(channel, set()).add(websocket)
        self.sockets[websocket] = (channel, uid)
        if uid:
            self.users[uid] = self.users.get(uid, 0) + 1
        logger.debug("Socket joined %s (uid=%s)", channel, uid)

    def disconnect(self, websocket: WebSocket):
        channel, uid = self.sockets.pop(websocket, (None, None))
        if channel in self.channels:
            self.channels[channel].discard(websocket)
            if not self.channels[channel]:
                del self.channels[channel]
        if uid and uid in self.users:
            self.users[uid] -= 1
            if self.users[uid] <= 0:
                del self.users[uid]

    def is_online(self, uid: str) -> bool:
        return uid in self.users

    def subscriber_count(self, channel: str) -> int:
        return len(self.channels.get(channel, ()))

    async def broadcast(self, channel: str, event: str, payload: Optional[Dict[str, Any]] = None) -> int:
        """Send ``{"event", "data"}`` to every subscriber; returns the number reached."""
        message = {"event": event, "data": payload or {}}
        dead_sockets = set()
        delivered = 0
        for websocket in list(self.channels.get(channel, ())):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning("Dropping socket on %s after send failure: %s", channel, e)
                dead_sockets.add(websocket)

        for ws in dead_sockets:
            self.disconnect(ws)
        return delivered

    async def send_personal(self, websocket: WebSocket, message: dict):
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.warning("Personal send failed: %s", e)
            self.disconnect(websocket)


# Singleton instance
_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    """Get or create the process-wide ConnectionManager."""
    global _manager
    if _manager is None:
        _manager = ConnectionManager()
    return _manager
