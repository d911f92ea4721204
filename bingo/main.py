"""
Bingo Server Main Application

This is the main entry point for the bingo session engine.
It initializes the database, restores sessions, sets up the
Socket.IO handlers and serves them, with the HTTP routes, through
uvicorn.
"""

import asyncio
import sys
from typing import Optional

import socketio
import uvicorn

from .database.database import init_database, close_database
from .database.gateway import DatabaseGateway
from .game.session_registry import SessionRegistry
from .handlers.channel import SocketIOChannel
from .handlers.dispatcher import ProtocolDispatcher
from .handlers.http_routes import create_api_app
from .handlers.socket_handlers import register_socket_handlers
from .utils.config import get_settings
from .utils.logging_config import setup_logging, get_logger

# Setup logging first
setup_logging()
logger = get_logger(__name__)


class BingoServer:
    """
    Main bingo server application class.

    This handles the complete lifecycle of the server including:
    - Database initialization
    - Session restore and background cleanup
    - Socket.IO handler registration
    - Shutdown of timers and connections
    """

    def __init__(self):
        """Initialize the server application."""
        self.settings = get_settings()
        self.sio: Optional[socketio.AsyncServer] = None
        self.app: Optional[socketio.ASGIApp] = None
        self.registry: Optional[SessionRegistry] = None
        self.dispatcher: Optional[ProtocolDispatcher] = None

    async def initialize(self) -> socketio.ASGIApp:
        """
        Build everything the server needs, restoring unfinished sessions.

        Returns:
            socketio.ASGIApp: The ASGI application to serve
        """
        logger.info("Initializing database...")
        await init_database()

        gateway = DatabaseGateway()
        self.registry = SessionRegistry(gateway, self.settings)
        restored = await self.registry.start()
        logger.info(f"Session registry ready - restored sessions: {restored}")

        origins = self.settings.cors_allowed_origins
        self.sio = socketio.AsyncServer(
            async_mode="asgi",
            cors_allowed_origins="*" if origins == ["*"] else origins,
        )
        channel = SocketIOChannel(self.sio)
        self.dispatcher = ProtocolDispatcher(self.registry, gateway, channel, self.settings)
        register_socket_handlers(self.sio, self.dispatcher)

        api = create_api_app(self.registry, gateway)
        self.app = socketio.ASGIApp(self.sio, other_asgi_app=api, socketio_path="socket.io")
        logger.info("Server initialization complete")
        return self.app

    async def cleanup(self) -> None:
        """
        Cleanup resources when shutting down.

        This stops auto callers and the cleanup loop, then closes the
        database connection.
        """
        try:
            logger.info("Shutting down bingo server...")

            if self.registry:
                await self.registry.shutdown()

            # Close database connections
            await close_database()

            logger.info("Server shutdown complete")

        except Exception as e:
            logger.error(f"Error during cleanup: {e}")


async def main() -> None:
    """
    Main entry point for the bingo server.

    This function creates the server, serves it until interrupted
    and always runs cleanup.
    """
    server = BingoServer()

    try:
        logger.info("Starting bingo server")
        app = await server.initialize()

        config = uvicorn.Config(
            app,
            host=server.settings.host,
            port=server.settings.port,
            log_level=server.settings.log_level.lower(),
        )
        await uvicorn.Server(config).serve()

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Unexpected error in main: {e}")
        sys.exit(1)
    finally:
        await server.cleanup()


if __name__ == "__main__":
    # Run the server
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nServer stopped by user")
