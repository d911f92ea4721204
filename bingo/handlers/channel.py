"""
Realtime Channel

Room-scoped publish used by the protocol dispatcher. The dispatcher
only depends on RealtimeChannel; SocketIOChannel adapts it to a
python-socketio AsyncServer.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import socketio

from ..utils.logging_config import get_logger

# Logger setup
logger = get_logger(__name__)


def session_room(session_id: str) -> str:
    """Room name shared by everyone attached to a session."""
    return f"session:{session_id}"


class RealtimeChannel(ABC):
    """Publish events to rooms and manage room membership."""

    @abstractmethod
    async def emit(self, event: str, payload: Dict[str, Any], room: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def join_room(self, connection_id: str, room: str) -> None:
        ...

    @abstractmethod
    async def leave_room(self, connection_id: str, room: str) -> None:
        ...


class SocketIOChannel(RealtimeChannel):
    """RealtimeChannel backed by a socketio.AsyncServer."""

    def __init__(self, sio: socketio.AsyncServer):
        self.sio = sio

    async def emit(self, event: str, payload: Dict[str, Any], room: Optional[str] = None) -> None:
        await self.sio.emit(event, payload, room=room)

    async def join_room(self, connection_id: str, room: str) -> None:
        await self.sio.enter_room(connection_id, room)
        logger.debug(f"Connection joined room - sid: {connection_id}, room: {room}")

    async def leave_room(self, connection_id: str, room: str) -> None:
        await self.sio.leave_room(connection_id, room)
