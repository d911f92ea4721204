"""
Persistence Gateway

This module defines the durable store the engine talks to:
- PersistenceGateway: the abstract interface consumed by the registry and dispatcher
- DatabaseGateway: the SQLAlchemy implementation backed by the models module

Every storage failure surfaces as PersistenceError so callers never see
driver exceptions.
"""

import secrets
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .database import DatabaseSession
from .models import Game, GamePlayer, GameWinner
from ..errors import AlreadyClaimedError, PersistenceError
from ..game.session import (
    ConnectionStatus, Player, SessionSnapshot, SessionState, Winner, utcnow
)
from ..utils.logging_config import get_logger

# Logger setup
logger = get_logger(__name__)


@dataclass
class PlayerRecord:
    """A stored player together with the session it belongs to."""
    session_id: str
    player: Player


class PersistenceGateway(ABC):
    """
    Durable store for sessions, players and winners.

    Implementations must tolerate concurrent calls for different sessions.
    """

    # ---- Sessions ----

    @abstractmethod
    async def save_session(self, snapshot: SessionSnapshot) -> None:
        ...

    @abstractmethod
    async def update_session(self, snapshot: SessionSnapshot) -> None:
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[SessionSnapshot]:
        ...

    @abstractmethod
    async def list_active_sessions(self) -> List[SessionSnapshot]:
        ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        ...

    # ---- Players ----

    @abstractmethod
    async def save_player(self, session_id: str, player: Player) -> None:
        ...

    @abstractmethod
    async def update_player_marks(self, player_id: str, marked_numbers: Iterable[int]) -> None:
        ...

    @abstractmethod
    async def mark_disconnected(self, player_id: str) -> Optional[str]:
        """Flag a player as disconnected and return their reconnect token."""

    @abstractmethod
    async def mark_connected(self, player_id: str) -> None:
        ...

    @abstractmethod
    async def rebind_player_id(self, old_id: str, new_id: str) -> None:
        """Move a player (and their winner rows) to a new connection id."""

    @abstractmethod
    async def find_player_by_token(self, token: str) -> Optional[PlayerRecord]:
        ...

    @abstractmethod
    async def find_disconnected_player_by_name(self, session_id: str, name: str) -> Optional[Player]:
        """Most recently disconnected player with this name, if any."""

    @abstractmethod
    async def list_players(self, session_id: str) -> List[Player]:
        ...

    @abstractmethod
    async def delete_player(self, player_id: str) -> None:
        ...

    # ---- Winners ----

    @abstractmethod
    async def save_winner(self, winner: Winner) -> None:
        """
        Record a prize.

        Raises:
            AlreadyClaimedError: If the prize is already recorded for the session
        """

    @abstractmethod
    async def list_winners(self, session_id: str) -> List[Winner]:
        ...

    @abstractmethod
    async def winners_history(self, limit: int = 50) -> List[Dict[str, Any]]:
        ...

    # ---- Maintenance ----

    @abstractmethod
    async def purge_stale_disconnected(self, grace_minutes: int) -> int:
        ...

    @abstractmethod
    async def purge_finished_sessions(self, days: int) -> int:
        ...

    @abstractmethod
    async def get_stats(self) -> Dict[str, int]:
        ...


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _snapshot_from_row(game: Game) -> SessionSnapshot:
    return SessionSnapshot(
        id=game.id,
        state=game.state,
        config=dict(game.config or {}),
        number_pool=list(game.number_pool or []),
        called_numbers=list(game.called_numbers or []),
        current_number=game.current_number,
        created_at=_as_utc(game.created_at) or utcnow(),
        started_at=_as_utc(game.started_at),
        finished_at=_as_utc(game.finished_at),
        finish_reason=game.finish_reason,
    )


def _player_from_row(row: GamePlayer) -> Player:
    return Player(
        id=row.id,
        name=row.name,
        card=[list(r) for r in row.card],
        reconnect_token=row.reconnect_token or "",
        marked_numbers=set(row.marked_numbers or []),
        connection_status=ConnectionStatus.CONNECTED if row.is_connected else ConnectionStatus.DISCONNECTED,
        joined_at=_as_utc(row.joined_at) or utcnow(),
        disconnected_at=_as_utc(row.disconnected_at),
    )


def _winner_from_row(row: GameWinner) -> Winner:
    return Winner(
        session_id=row.game_id,
        player_id=row.player_id,
        player_name=row.player_name,
        prize=row.prize,
        won_at=_as_utc(row.won_at) or utcnow(),
    )


def _apply_snapshot(game: Game, snapshot: SessionSnapshot) -> None:
    game.state = snapshot.state
    game.config = dict(snapshot.config)
    game.number_pool = list(snapshot.number_pool)
    game.called_numbers = list(snapshot.called_numbers)
    game.current_number = snapshot.current_number
    game.created_at = snapshot.created_at
    game.started_at = snapshot.started_at
    game.finished_at = snapshot.finished_at
    game.finish_reason = snapshot.finish_reason


class DatabaseGateway(PersistenceGateway):
    """
    PersistenceGateway on SQLAlchemy asyncio.

    Each call opens its own DatabaseSession, so calls for different
    sessions never share a transaction.
    """

    @asynccontextmanager
    async def _db_operation(self, operation: str):
        try:
            yield
        except IntegrityError as e:
            if operation == "save_winner":
                raise AlreadyClaimedError("Prize already recorded for this session") from e
            logger.error(f"Database integrity error - operation: {operation}, error: {str(e)}")
            raise PersistenceError(f"{operation} failed") from e
        except SQLAlchemyError as e:
            logger.error(f"Database error - operation: {operation}, error: {str(e)}")
            raise PersistenceError(f"{operation} failed") from e

    # ---- Sessions ----

    async def save_session(self, snapshot: SessionSnapshot) -> None:
        async with self._db_operation("save_session"):
            async with DatabaseSession() as session:
                game = Game(id=snapshot.id)
                _apply_snapshot(game, snapshot)
                session.add(game)

    async def update_session(self, snapshot: SessionSnapshot) -> None:
        """Write the session row, inserting it if an earlier save was lost."""
        async with self._db_operation("update_session"):
            async with DatabaseSession() as session:
                game = await session.get(Game, snapshot.id)
                if game is None:
                    game = Game(id=snapshot.id)
                    session.add(game)
                _apply_snapshot(game, snapshot)

    async def get_session(self, session_id: str) -> Optional[SessionSnapshot]:
        async with self._db_operation("get_session"):
            async with DatabaseSession() as session:
                game = await session.get(Game, session_id)
                return _snapshot_from_row(game) if game else None

    async def list_active_sessions(self) -> List[SessionSnapshot]:
        async with self._db_operation("list_active_sessions"):
            async with DatabaseSession() as session:
                result = await session.execute(
                    select(Game)
                    .where(Game.state != SessionState.FINISHED)
                    .order_by(Game.created_at)
                )
                return [_snapshot_from_row(game) for game in result.scalars().all()]

    async def delete_session(self, session_id: str) -> None:
        async with self._db_operation("delete_session"):
            async with DatabaseSession() as session:
                await self._delete_games(session, [session_id])

    @staticmethod
    async def _delete_games(session, game_ids: List[str]) -> None:
        await session.execute(delete(GameWinner).where(GameWinner.game_id.in_(game_ids)))
        await session.execute(delete(GamePlayer).where(GamePlayer.game_id.in_(game_ids)))
        await session.execute(delete(Game).where(Game.id.in_(game_ids)))

    # ---- Players ----

    async def save_player(self, session_id: str, player: Player) -> None:
        async with self._db_operation("save_player"):
            async with DatabaseSession() as session:
                row = await session.get(GamePlayer, player.id)
                if row is None:
                    row = GamePlayer(id=player.id, game_id=session_id)
                    session.add(row)
                row.name = player.name
                row.card = [list(r) for r in player.card]
                row.marked_numbers = sorted(player.marked_numbers)
                row.is_connected = player.is_connected
                row.disconnected_at = player.disconnected_at
                row.reconnect_token = player.reconnect_token
                row.joined_at = player.joined_at

    async def update_player_marks(self, player_id: str, marked_numbers: Iterable[int]) -> None:
        async with self._db_operation("update_player_marks"):
            async with DatabaseSession() as session:
                await session.execute(
                    update(GamePlayer)
                    .where(GamePlayer.id == player_id)
                    .values(marked_numbers=sorted(marked_numbers))
                )

    async def mark_disconnected(self, player_id: str) -> Optional[str]:
        """
        Flag a player as disconnected.

        A player stored without a token is given one, an existing token
        is kept.

        Returns:
            Optional[str]: The player's reconnect token, None if unknown
        """
        async with self._db_operation("mark_disconnected"):
            async with DatabaseSession() as session:
                row = await session.get(GamePlayer, player_id)
                if row is None:
                    return None
                row.is_connected = False
                row.disconnected_at = utcnow()
                if not row.reconnect_token:
                    row.reconnect_token = secrets.token_urlsafe(24)
                return row.reconnect_token

    async def mark_connected(self, player_id: str) -> None:
        async with self._db_operation("mark_connected"):
            async with DatabaseSession() as session:
                await session.execute(
                    update(GamePlayer)
                    .where(GamePlayer.id == player_id)
                    .values(is_connected=True, disconnected_at=None)
                )

    async def rebind_player_id(self, old_id: str, new_id: str) -> None:
        async with self._db_operation("rebind_player_id"):
            async with DatabaseSession() as session:
                await session.execute(
                    update(GamePlayer)
                    .where(GamePlayer.id == old_id)
                    .values(id=new_id, is_connected=True, disconnected_at=None)
                )
                await session.execute(
                    update(GameWinner)
                    .where(GameWinner.player_id == old_id)
                    .values(player_id=new_id)
                )

    async def find_player_by_token(self, token: str) -> Optional[PlayerRecord]:
        if not token:
            return None
        async with self._db_operation("find_player_by_token"):
            async with DatabaseSession() as session:
                result = await session.execute(
                    select(GamePlayer).where(GamePlayer.reconnect_token == token)
                )
                row = result.scalars().first()
                return PlayerRecord(row.game_id, _player_from_row(row)) if row else None

    async def find_disconnected_player_by_name(self, session_id: str, name: str) -> Optional[Player]:
        async with self._db_operation("find_disconnected_player_by_name"):
            async with DatabaseSession() as session:
                result = await session.execute(
                    select(GamePlayer)
                    .where(
                        GamePlayer.game_id == session_id,
                        GamePlayer.name == name,
                        GamePlayer.is_connected.is_(False),
                    )
                    .order_by(GamePlayer.disconnected_at.desc())
                    .limit(1)
                )
                row = result.scalars().first()
                return _player_from_row(row) if row else None

    async def list_players(self, session_id: str) -> List[Player]:
        async with self._db_operation("list_players"):
            async with DatabaseSession() as session:
                result = await session.execute(
                    select(GamePlayer)
                    .where(GamePlayer.game_id == session_id)
                    .order_by(GamePlayer.joined_at)
                )
                return [_player_from_row(row) for row in result.scalars().all()]

    async def delete_player(self, player_id: str) -> None:
        async with self._db_operation("delete_player"):
            async with DatabaseSession() as session:
                await session.execute(delete(GamePlayer).where(GamePlayer.id == player_id))

    # ---- Winners ----

    async def save_winner(self, winner: Winner) -> None:
        async with self._db_operation("save_winner"):
            async with DatabaseSession() as session:
                session.add(GameWinner(
                    game_id=winner.session_id,
                    player_id=winner.player_id,
                    player_name=winner.player_name,
                    prize=winner.prize,
                    won_at=winner.won_at,
                ))
                await session.flush()

    async def list_winners(self, session_id: str) -> List[Winner]:
        async with self._db_operation("list_winners"):
            async with DatabaseSession() as session:
                result = await session.execute(
                    select(GameWinner)
                    .where(GameWinner.game_id == session_id)
                    .order_by(GameWinner.won_at)
                )
                return [_winner_from_row(row) for row in result.scalars().all()]

    async def winners_history(self, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Most recent prizes across all sessions.

        Args:
            limit: Maximum number of rows

        Returns:
            List[Dict[str, Any]]: Winner dicts with the session id added
        """
        async with self._db_operation("winners_history"):
            async with DatabaseSession() as session:
                result = await session.execute(
                    select(GameWinner).order_by(GameWinner.won_at.desc()).limit(limit)
                )
                history = []
                for row in result.scalars().all():
                    entry = _winner_from_row(row).to_dict()
                    entry["sessionId"] = row.game_id
                    history.append(entry)
                return history

    # ---- Maintenance ----

    async def purge_stale_disconnected(self, grace_minutes: int) -> int:
        cutoff = utcnow() - timedelta(minutes=grace_minutes)
        async with self._db_operation("purge_stale_disconnected"):
            async with DatabaseSession() as session:
                result = await session.execute(
                    delete(GamePlayer).where(
                        GamePlayer.is_connected.is_(False),
                        GamePlayer.disconnected_at < cutoff,
                    )
                )
                return result.rowcount or 0

    async def purge_finished_sessions(self, days: int) -> int:
        """
        Delete finished games older than `days`, with their players and winners.

        Returns:
            int: Number of games deleted
        """
        cutoff = utcnow() - timedelta(days=days)
        async with self._db_operation("purge_finished_sessions"):
            async with DatabaseSession() as session:
                result = await session.execute(
                    select(Game.id).where(
                        Game.state == SessionState.FINISHED,
                        Game.finished_at < cutoff,
                    )
                )
                game_ids = list(result.scalars().all())
                if game_ids:
                    await self._delete_games(session, game_ids)
                    logger.info(f"Purged finished games from storage - count: {len(game_ids)}")
                return len(game_ids)

    async def get_stats(self) -> Dict[str, int]:
        async with self._db_operation("get_stats"):
            async with DatabaseSession() as session:
                total_games = await session.scalar(select(func.count()).select_from(Game))
                active_games = await session.scalar(
                    select(func.count()).select_from(Game).where(Game.state != SessionState.FINISHED)
                )
                total_players = await session.scalar(select(func.count()).select_from(GamePlayer))
                total_winners = await session.scalar(select(func.count()).select_from(GameWinner))
                return {
                    "totalGames": total_games or 0,
                    "activeGames": active_games or 0,
                    "totalPlayers": total_players or 0,
                    "totalWinners": total_winners or 0,
                }
