"""
Session Registry

This module owns every live Session in the process:
- Creating sessions with short shareable codes
- Looking sessions up and listing them
- Restoring unfinished sessions from storage at startup
- Background cleanup of stale players and finished sessions

One registry instance is created at startup and passed to the
protocol dispatcher; start() and shutdown() bracket its lifetime.
"""

import asyncio
import random
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from .board import BoardConfig, board_config_from_dict
from .session import Session, SessionState, utcnow
from ..database.gateway import PersistenceGateway
from ..errors import BingoError, NotFoundError
from ..utils.config import Settings, get_settings
from ..utils.logging_config import get_logger, log_game_event

# Logger setup
logger = get_logger(__name__)

SESSION_CODE_LENGTH = 8


class SessionRegistry:
    """
    Registry of live sessions.

    Responsibilities:
    - Create and destroy sessions
    - Rehydrate unfinished sessions after a restart
    - Periodically purge expired disconnected players and old finished games
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
    ):
        self.gateway = gateway
        self.settings = settings or get_settings()
        self._rng = rng
        self._sessions: Dict[str, Session] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    # ---- Lifecycle ----

    async def start(self) -> int:
        """
        Restore sessions and start the cleanup loop.

        Returns:
            int: Number of restored sessions
        """
        restored = await self.restore()
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        return restored

    async def shutdown(self) -> None:
        """Stop the cleanup loop and every auto caller."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        for session in self._sessions.values():
            if session.auto_caller is not None:
                session.auto_caller.stop()
        logger.info(f"Session registry shut down - sessions: {len(self._sessions)}")

    # ---- Sessions ----

    def _new_code(self) -> str:
        while True:
            code = uuid.uuid4().hex[:SESSION_CODE_LENGTH].upper()
            if code not in self._sessions:
                return code

    def create(self, config: Optional[Any] = None) -> str:
        """
        Create a new waiting session.

        Args:
            config: BoardConfig, or a client config mapping

        Returns:
            str: Session code
        """
        if not isinstance(config, BoardConfig):
            config = board_config_from_dict(config, default=self.settings.default_board)

        session_id = self._new_code()
        rng = random.Random(self._rng.random()) if self._rng else None
        self._sessions[session_id] = Session(session_id, config, rng=rng)

        log_game_event(session_id, "session_created", board=config.name)
        logger.info(f"Session created - session_id: {session_id}, board: {config.name}")
        return session_id

    def find(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        return self._sessions.get(str(session_id).strip().upper())

    def get(self, session_id: Optional[str]) -> Session:
        """
        Get a session by code.

        Raises:
            NotFoundError: If no live session has this code
        """
        session = self.find(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    async def remove(self, session_id: str) -> Session:
        """
        Destroy a session in memory and in storage.

        The in-memory removal stands even if the storage delete fails.
        """
        session = self.get(session_id)
        if session.auto_caller is not None:
            session.auto_caller.stop()
        del self._sessions[session.id]
        log_game_event(session.id, "session_removed")
        logger.info(f"Session removed - session_id: {session.id}")
        await self.gateway.delete_session(session.id)
        return session

    def list(self) -> List[Dict[str, Any]]:
        """Summaries of every live session, newest first."""
        sessions = sorted(self._sessions.values(), key=lambda s: s.created_at, reverse=True)
        return [
            {
                "id": session.id,
                "state": session.state.value,
                "board": session.config.name,
                "playersCount": session.connected_count,
                "calledCount": len(session.called_numbers),
                "remainingNumbers": len(session.number_pool),
                "createdAt": session.created_at.isoformat(),
            }
            for session in sessions
        ]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return self.find(session_id) is not None

    # ---- Restore ----

    async def restore(self) -> int:
        """
        Rehydrate every unfinished session from storage.

        A session that fails to load is logged and skipped; the others
        still come back.

        Returns:
            int: Number of sessions restored
        """
        snapshots = await self.gateway.list_active_sessions()
        restored = 0
        for snapshot in snapshots:
            if snapshot.id in self._sessions:
                continue
            try:
                config = board_config_from_dict(snapshot.config, default=self.settings.default_board)
                players = await self.gateway.list_players(snapshot.id)
                winners = await self.gateway.list_winners(snapshot.id)
            except BingoError as e:
                logger.error(f"Failed to restore session - session_id: {snapshot.id}, error: {e.message}")
                continue

            session = Session.from_snapshot(snapshot, config, players=players, winners=winners)
            self._sessions[session.id] = session
            restored += 1
            log_game_event(session.id, "session_restored",
                           players=len(session.players), disconnected=len(session.disconnected_players))

        logger.info(f"Restored {restored} sessions from storage")
        return restored

    # ---- Cleanup ----

    async def sweep_disconnected(self) -> int:
        """
        Delete players disconnected longer than the grace period.

        Returns:
            int: Number of players purged from memory
        """
        grace_minutes = self.settings.disconnect_grace_minutes
        grace = timedelta(minutes=grace_minutes)
        purged = 0
        for session in list(self._sessions.values()):
            async with session.lock:
                purged += len(session.purge_disconnected(grace))

        stored = await self.gateway.purge_stale_disconnected(grace_minutes)
        if purged or stored:
            logger.info(f"Purged disconnected players - memory: {purged}, storage: {stored}")
        return purged

    async def sweep_finished(self) -> int:
        """
        Drop finished sessions from memory after their TTL and prune old
        finished games from storage.

        Returns:
            int: Number of sessions dropped from memory
        """
        cutoff = utcnow() - timedelta(minutes=self.settings.finished_session_ttl_minutes)
        stale = [
            session for session in self._sessions.values()
            if session.state == SessionState.FINISHED
            and (session.finished_at or session.created_at) < cutoff
        ]
        for session in stale:
            if session.auto_caller is not None:
                session.auto_caller.stop()
            del self._sessions[session.id]
            logger.info(f"Cleaned up finished session - session_id: {session.id}")

        await self.gateway.purge_finished_sessions(self.settings.finished_session_retention_days)
        return len(stale)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.cleanup_interval_seconds)
            try:
                await self.sweep_disconnected()
                await self.sweep_finished()
            except BingoError as e:
                logger.error(f"Cleanup sweep failed - error: {e.message}")
