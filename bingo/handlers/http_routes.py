"""
HTTP Routes

Small REST surface served next to Socket.IO:
- GET /                 service banner
- GET /api/health       liveness check for load balancers
- GET /api/stats        storage totals (games, players, winners)
- GET /api/winners      most recent prizes across sessions
"""

from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Query

from .. import __version__
from ..database.gateway import PersistenceGateway
from ..errors import PersistenceError
from ..game.session_registry import SessionRegistry
from ..utils.logging_config import get_logger

# Logger setup
logger = get_logger(__name__)


def create_api_app(registry: SessionRegistry, gateway: PersistenceGateway) -> FastAPI:
    """
    Create the FastAPI application mounted under the Socket.IO ASGI app.

    Args:
        registry: Live sessions, for the active session count
        gateway: Durable store backing the stats and history routes

    Returns:
        FastAPI: Application instance
    """
    app = FastAPI(title="Bingo Session Engine", version=__version__)

    @app.get("/", tags=["System"])
    async def root() -> Dict[str, Any]:
        return {"message": "Bingo server is running", "version": __version__}

    @app.get("/api/health", tags=["System"])
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint for load balancers."""
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "liveSessions": len(registry),
        }

    @app.get("/api/stats", tags=["Stats"])
    async def stats() -> Dict[str, int]:
        try:
            return await gateway.get_stats()
        except PersistenceError as e:
            logger.error(f"Stats lookup failed - error: {e.message}")
            raise HTTPException(status_code=503, detail=e.message)

    @app.get("/api/winners", tags=["Stats"])
    async def winners(limit: int = Query(50, ge=1, le=200)) -> List[Dict[str, Any]]:
        try:
            return await gateway.winners_history(limit=limit)
        except PersistenceError as e:
            logger.error(f"Winners history lookup failed - error: {e.message}")
            raise HTTPException(status_code=503, detail=e.message)

    return app
