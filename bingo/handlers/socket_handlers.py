"""
Socket.IO Handlers

This module wires python-socketio events to the protocol dispatcher.
Each command is a socket.io event whose return value is sent back to
the client as the acknowledgement.
"""

from typing import Any, Dict, Optional

import socketio

from .dispatcher import ProtocolDispatcher
from ..utils.logging_config import get_logger

# Logger setup
logger = get_logger(__name__)


def _command_handler(dispatcher: ProtocolDispatcher, command: str):
    async def handler(sid: str, data: Any = None) -> Dict[str, Any]:
        return await dispatcher.dispatch(sid, command, data)

    handler.__name__ = f"on_{command}"
    return handler


def register_socket_handlers(sio: socketio.AsyncServer, dispatcher: ProtocolDispatcher) -> None:
    """
    Register every protocol command plus connect/disconnect on the server.

    Args:
        sio: Socket.IO server
        dispatcher: Dispatcher that handles the commands
    """

    async def connect(sid: str, environ: Dict[str, Any], auth: Optional[Dict[str, Any]] = None) -> bool:
        logger.info(f"Client connected - sid: {sid}")
        return True

    async def disconnect(sid: str, reason: Optional[str] = None) -> None:
        logger.info(f"Client disconnected - sid: {sid}, reason: {reason}")
        await dispatcher.handle_disconnect(sid)

    sio.on("connect", connect)
    sio.on("disconnect", disconnect)

    for command in dispatcher.commands:
        sio.on(command, _command_handler(dispatcher, command))

    logger.info(f"Registered {len(dispatcher.commands)} socket commands")
