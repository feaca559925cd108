"""
WebSocket connection manager: sessions and room-scoped broadcast groups
"""
import logging
from typing import Any, Dict, Optional, Protocol, Set

logger = logging.getLogger(__name__)


class Connection(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


class ConnectionManager:
    """Maps session ids to live sockets and rooms to the sessions in them"""

    def __init__(self):
        self.connections: Dict[str, Connection] = {}
        self.groups: Dict[str, Set[str]] = {}

    def connect(self, session_id: str, connection: Connection):
        self.connections[session_id] = connection
        logger.info(f"Session {session_id} connected")

    def disconnect(self, session_id: str):
        self.connections.pop(session_id, None)
        for members in self.groups.values():
            members.discard(session_id)
        logger.info(f"Session {session_id} disconnected")

    def join_group(self, room_id: str, session_id: str):
        self.groups.setdefault(room_id, set()).add(session_id)

    def leave_group(self, room_id: str, session_id: str):
        members = self.groups.get(room_id)
        if members is None:
            return
        members.discard(session_id)
        if not members:
            self.groups.pop(room_id, None)

    def drop_group(self, room_id: str):
        self.groups.pop(room_id, None)

    async def send(self, session_id: str, event: str, data: Optional[dict] = None) -> bool:
        """Send one frame to one session. False if the socket is gone."""
        connection = self.connections.get(session_id)
        if not connection:
            return False
        try:
            await connection.send_json({"type": event, "data": data or {}})
            return True
        except Exception as e:
            logger.warning(f"Send to session {session_id} failed: {e}")
            self.disconnect(session_id)
            return False

    async def broadcast(self, room_id: str, event: str, data: Optional[dict] = None):
        """Broadcast a message to all sessions in a room"""
        message = {"type": event, "data": data or {}}
        dead_sessions = set()

        for session_id in list(self.groups.get(room_id, ())):
            connection = self.connections.get(session_id)
            if not connection:
                dead_sessions.add(session_id)
                continue
            try:
                await connection.send_json(message)
            except Exception:
                dead_sessions.add(session_id)

        # Remove dead connections
        for session_id in dead_sessions:
            self.leave_group(room_id, session_id)
            self.connections.pop(session_id, None)
