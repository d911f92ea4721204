"""
Bingo Session

This module holds the state of one bingo game:
- State machine (waiting -> playing -> finished)
- Shuffled number pool and the ordered list of called numbers
- Connected and disconnected player rosters with reconnect tokens
- The line and full card prize slots

All methods are synchronous. Callers serialize access per session
through Session.lock, so every check-and-set below (notably prize
claims) runs as one indivisible step.
"""

import asyncio
import random
import secrets
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .auto_caller import AutoCaller
from .board import BoardConfig
from .card_generator import Card, generate_card
from .win_evaluator import has_full_card, has_line
from ..errors import (
    AlreadyClaimedError, ConflictError, InvalidStateError, NotFoundError, ValidationError
)
from ..utils.logging_config import get_logger, log_game_event

# Logger setup
logger = get_logger(__name__)

MAX_NAME_LENGTH = 40


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(Enum):
    """State of a bingo session."""
    WAITING = "waiting"  # Players joining, nothing drawn yet
    PLAYING = "playing"  # Numbers being drawn
    FINISHED = "finished"  # Terminal


class ConnectionStatus(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class PrizeKind(Enum):
    """Prizes a session awards, at most one winner each."""
    LINE = "line"
    FULL_CARD = "bingo"


@dataclass
class Player:
    """
    A participant holding one card.

    The card is generated once at join and never replaced. The id is the
    connection identity and changes when the player reconnects; the
    reconnect token does not.
    """
    id: str
    name: str
    card: Card
    reconnect_token: str
    marked_numbers: set = field(default_factory=set)
    connection_status: ConnectionStatus = ConnectionStatus.CONNECTED
    joined_at: datetime = field(default_factory=utcnow)
    disconnected_at: Optional[datetime] = None

    @property
    def is_connected(self) -> bool:
        return self.connection_status == ConnectionStatus.CONNECTED

    def public_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}

    def to_dict(self) -> Dict[str, Any]:
        """Full view sent only to the owning connection."""
        return {
            "id": self.id,
            "name": self.name,
            "card": [list(row) for row in self.card],
            "markedNumbers": sorted(self.marked_numbers),
            "reconnectToken": self.reconnect_token,
        }


@dataclass(frozen=True)
class Winner:
    session_id: str
    player_id: str
    player_name: str
    prize: PrizeKind
    won_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "playerId": self.player_id,
            "playerName": self.player_name,
            "prize": self.prize.value,
            "wonAt": self.won_at.isoformat(),
        }


@dataclass
class SessionSnapshot:
    """Persisted form of a session row (rosters and winners are stored separately)."""
    id: str
    state: SessionState
    config: Dict[str, Any]
    number_pool: List[int]
    called_numbers: List[int]
    current_number: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    finish_reason: Optional[str] = None


class Session:
    """
    One bingo game.

    Contains:
    - Board config and number pool
    - Called numbers in draw order
    - Connected and disconnected players
    - Winner slots for the line and full card prizes
    """

    def __init__(
        self,
        session_id: str,
        config: BoardConfig,
        rng: Optional[random.Random] = None,
        created_at: Optional[datetime] = None,
    ):
        self.id = session_id
        self.config = config
        self.state = SessionState.WAITING
        self._rng = rng or random.Random()

        # Numbers
        self.number_pool: List[int] = list(range(config.min_number, config.max_numbers + 1))
        self._rng.shuffle(self.number_pool)
        self.called_numbers: List[int] = []
        self._called_set: set = set()
        self.current_number: Optional[int] = None

        # Timestamps
        self.created_at = created_at or utcnow()
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.finish_reason: Optional[str] = None

        # Rosters keyed by player id
        self.players: Dict[str, Player] = {}
        self.disconnected_players: Dict[str, Player] = {}

        self.winners: Dict[PrizeKind, Optional[Winner]] = {
            PrizeKind.LINE: None,
            PrizeKind.FULL_CARD: None,
        }

        # Serializes commands and auto caller ticks for this session
        self.lock = asyncio.Lock()
        self.auto_caller: Optional[AutoCaller] = None

    # ---- State machine ----

    def start(self) -> None:
        """
        Start drawing numbers.

        Raises:
            InvalidStateError: If the session is not waiting
        """
        if self.state != SessionState.WAITING:
            raise InvalidStateError(f"Session {self.id} has already started")
        self.state = SessionState.PLAYING
        self.started_at = utcnow()
        log_game_event(self.id, "session_started", players=len(self.players))
        logger.info(f"Session started - session_id: {self.id}, players: {len(self.players)}")

    def draw_next(self) -> Optional[int]:
        """
        Draw the next number from the pool.

        Returns:
            Optional[int]: The drawn number, or None when no number is
            available (the draw that finds the pool empty finishes the
            session)

        Raises:
            InvalidStateError: If the session has not started
        """
        if self.state == SessionState.WAITING:
            raise InvalidStateError("Session has not started yet")
        if self.state == SessionState.FINISHED:
            return None

        if not self.number_pool:
            self.finish("numbers_exhausted")
            return None

        number = self.number_pool.pop()
        self.called_numbers.append(number)
        self._called_set.add(number)
        self.current_number = number
        log_game_event(self.id, "number_called", number=number, count=len(self.called_numbers))
        return number

    def finish(self, reason: str) -> bool:
        """
        Move the session to FINISHED.

        Returns:
            bool: False if it was already finished
        """
        if self.state == SessionState.FINISHED:
            return False
        self.state = SessionState.FINISHED
        self.finished_at = utcnow()
        self.finish_reason = reason
        log_game_event(self.id, "session_finished", reason=reason)
        logger.info(f"Session finished - session_id: {self.id}, reason: {reason}")
        return True

    @property
    def is_finished(self) -> bool:
        return self.state == SessionState.FINISHED

    def is_called(self, number: int) -> bool:
        return number in self._called_set

    # ---- Players ----

    def add_player(self, player_id: str, name: Optional[str] = None) -> Player:
        """
        Add a brand-new player with a fresh card.

        Args:
            player_id: Connection identity of the player
            name: Display name (defaults to "Player N")

        Returns:
            Player: The new player
        """
        if self.state == SessionState.FINISHED:
            raise InvalidStateError("Session has already finished")
        if player_id in self.players or player_id in self.disconnected_players:
            raise ConflictError("Connection already joined this session")

        display_name = self._clean_name(name) or f"Player {len(self.players) + len(self.disconnected_players) + 1}"
        player = Player(
            id=player_id,
            name=display_name,
            card=generate_card(self.config, self._rng),
            reconnect_token=secrets.token_urlsafe(24),
        )
        self.players[player_id] = player

        log_game_event(self.id, "player_joined", player_id=player_id, name=display_name)
        logger.info(f"Player joined - session_id: {self.id}, name: {display_name}")
        return player

    @staticmethod
    def _clean_name(name: Optional[str]) -> str:
        if name is None:
            return ""
        if not isinstance(name, str):
            raise ValidationError("displayName must be a string")
        cleaned = " ".join(name.split())
        if len(cleaned) > MAX_NAME_LENGTH:
            raise ValidationError(f"displayName must be at most {MAX_NAME_LENGTH} characters")
        return cleaned

    def get_player(self, player_id: str) -> Player:
        """
        Get a connected player.

        Raises:
            NotFoundError: If no connected player has this id
        """
        player = self.players.get(player_id)
        if player is None:
            raise NotFoundError(f"Player {player_id} is not in session {self.id}")
        return player

    def find_player(self, player_id: str) -> Optional[Player]:
        """Look a player up in either roster."""
        return self.players.get(player_id) or self.disconnected_players.get(player_id)

    @property
    def connected_count(self) -> int:
        return len(self.players)

    def remove_player(self, player_id: str) -> Player:
        """Permanently remove a player (explicit leave)."""
        player = self.players.pop(player_id, None) or self.disconnected_players.pop(player_id, None)
        if player is None:
            raise NotFoundError(f"Player {player_id} is not in session {self.id}")
        log_game_event(self.id, "player_left", player_id=player_id)
        return player

    # ---- Marks ----

    def mark(self, player_id: str, number: int) -> bool:
        """
        Mark a called number on a player's card.

        Returns:
            bool: False if the number has not been called
        """
        player = self.get_player(player_id)
        if not self.is_called(number):
            return False
        player.marked_numbers.add(number)
        return True

    def unmark(self, player_id: str, number: int) -> bool:
        """
        Toggle a mark off.

        Raises:
            InvalidStateError: If the player already won a prize
        """
        player = self.get_player(player_id)
        if any(winner and winner.player_id == player_id for winner in self.winners.values()):
            raise InvalidStateError("Marks are locked after winning a prize")
        if number not in player.marked_numbers:
            return False
        player.marked_numbers.discard(number)
        return True

    def _effective_marks(self, player: Player) -> set:
        return player.marked_numbers & self._called_set

    def check_line(self, player_id: str) -> bool:
        player = self.get_player(player_id)
        return has_line(player.card, self._effective_marks(player), self.config)

    def check_full_card(self, player_id: str) -> bool:
        player = self.get_player(player_id)
        return has_full_card(player.card, self._effective_marks(player), self.config)

    # ---- Prizes ----

    def claim_line(self, player_id: str) -> Optional[Winner]:
        return self._claim(player_id, PrizeKind.LINE)

    def claim_bingo(self, player_id: str) -> Optional[Winner]:
        winner = self._claim(player_id, PrizeKind.FULL_CARD)
        if winner is not None:
            self.finish("bingo")
        return winner

    def _claim(self, player_id: str, prize: PrizeKind) -> Optional[Winner]:
        """
        Validate a claim and award the prize slot.

        Returns:
            Optional[Winner]: The new winner, or None if the card does not
            qualify

        Raises:
            AlreadyClaimedError: If the slot is taken, valid claim or not
        """
        player = self.get_player(player_id)
        if self.state != SessionState.PLAYING:
            raise InvalidStateError("Prizes can only be claimed while the session is playing")

        if prize == PrizeKind.LINE:
            valid = self.check_line(player_id)
        else:
            valid = self.check_full_card(player_id)

        current = self.winners[prize]
        if current is not None:
            raise AlreadyClaimedError(f"{prize.value} already claimed by {current.player_name}")
        if not valid:
            return None

        winner = Winner(
            session_id=self.id,
            player_id=player.id,
            player_name=player.name,
            prize=prize,
        )
        self.winners[prize] = winner
        log_game_event(self.id, "prize_won", prize=prize.value, player_id=player.id)
        logger.info(f"Prize won - session_id: {self.id}, prize: {prize.value}, player: {player.name}")
        return winner

    # ---- Connection lifecycle ----

    def disconnect_player(self, player_id: str) -> Player:
        """
        Move a player to the disconnected roster, keeping card and marks.

        Raises:
            NotFoundError: If the player is not connected
        """
        player = self.players.pop(player_id, None)
        if player is None:
            raise NotFoundError(f"Player {player_id} is not connected to session {self.id}")
        player.connection_status = ConnectionStatus.DISCONNECTED
        player.disconnected_at = utcnow()
        self.disconnected_players[player_id] = player
        log_game_event(self.id, "player_disconnected", player_id=player_id)
        return player

    def find_disconnected_by_token(self, token: str) -> Optional[Player]:
        if not token:
            return None
        for player in self.disconnected_players.values():
            if secrets.compare_digest(player.reconnect_token, token):
                return player
        return None

    def find_disconnected_by_name(self, name: Optional[str]) -> Optional[Player]:
        """
        Disconnected player with this display name.

        When several disconnected players share the name, the one that
        disconnected most recently wins.
        """
        cleaned = self._clean_name(name)
        if not cleaned:
            return None
        matches = [p for p in self.disconnected_players.values() if p.name == cleaned]
        if not matches:
            return None
        return max(matches, key=lambda p: p.disconnected_at or p.joined_at)

    def reconnect_by_token(self, token: str, new_player_id: str) -> Optional[Player]:
        """Rebind the disconnected player holding `token` to a new connection."""
        player = self.find_disconnected_by_token(token)
        return self.rebind(player, new_player_id) if player else None

    def reconnect_by_name(self, name: str, new_player_id: str) -> Optional[Player]:
        """Rebind the most recently disconnected player named `name`."""
        player = self.find_disconnected_by_name(name)
        return self.rebind(player, new_player_id) if player else None

    def adopt_stored_player(self, stored: Player, new_player_id: str) -> Player:
        """
        Reconnect a player found in durable storage.

        If the player is still in memory under the stored id (for example a
        roster restored as connected after a restart) that record is used,
        otherwise the stored record joins the session.
        """
        player = self.find_player(stored.id) or stored
        return self.rebind(player, new_player_id)

    def rebind(self, player: Player, new_player_id: str) -> Player:
        """
        Bind an existing player record to a new connection id.

        The player moves to the connected roster with card and marks
        untouched, and winner attribution follows the new id.

        Raises:
            ConflictError: If the new id already belongs to another player
        """
        old_id = player.id
        if new_player_id != old_id and self.find_player(new_player_id) is not None:
            raise ConflictError("Connection is already bound to another player")
        self.players.pop(old_id, None)
        self.disconnected_players.pop(old_id, None)

        player.id = new_player_id
        player.connection_status = ConnectionStatus.CONNECTED
        player.disconnected_at = None
        self.players[new_player_id] = player

        for prize, winner in self.winners.items():
            if winner is not None and winner.player_id == old_id:
                self.winners[prize] = replace(winner, player_id=new_player_id)

        log_game_event(self.id, "player_reconnected", old_id=old_id, new_id=new_player_id)
        logger.info(f"Player reconnected - session_id: {self.id}, name: {player.name}")
        return player

    def purge_disconnected(self, grace: timedelta, now: Optional[datetime] = None) -> List[Player]:
        """
        Permanently drop players disconnected for longer than `grace`.

        Returns:
            List[Player]: Removed players
        """
        cutoff = (now or utcnow()) - grace
        stale = [
            player for player in self.disconnected_players.values()
            if player.disconnected_at is not None and player.disconnected_at < cutoff
        ]
        for player in stale:
            del self.disconnected_players[player.id]
            log_game_event(self.id, "player_purged", player_id=player.id)
        return stale

    # ---- Views ----

    def summary(self) -> Dict[str, Any]:
        """Session info shared with every participant."""
        return {
            "id": self.id,
            "state": self.state.value,
            "config": self.config.to_dict(),
            "playersCount": self.connected_count,
            "calledNumbers": list(self.called_numbers),
            "currentNumber": self.current_number,
            "remainingNumbers": len(self.number_pool),
            "winners": {
                prize.value: winner.to_dict() if winner else None
                for prize, winner in self.winners.items()
            },
            "createdAt": self.created_at.isoformat(),
        }

    def caller_state(self) -> Dict[str, Any]:
        """Full view for the caller display."""
        state = self.summary()
        state["players"] = [p.public_dict() for p in self.players.values()]
        state["disconnectedPlayers"] = [p.public_dict() for p in self.disconnected_players.values()]
        state["autoMode"] = {
            "enabled": bool(self.auto_caller and self.auto_caller.enabled),
            "interval": self.auto_caller.interval_ms if self.auto_caller else None,
        }
        state["finishReason"] = self.finish_reason
        return state

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            id=self.id,
            state=self.state,
            config=self.config.to_dict(),
            number_pool=list(self.number_pool),
            called_numbers=list(self.called_numbers),
            current_number=self.current_number,
            created_at=self.created_at,
            started_at=self.started_at,
            finished_at=self.finished_at,
            finish_reason=self.finish_reason,
        )

    @classmethod
    def from_snapshot(
        cls,
        snapshot: SessionSnapshot,
        config: BoardConfig,
        players: Optional[List[Player]] = None,
        winners: Optional[List[Winner]] = None,
    ) -> "Session":
        """
        Rehydrate a session from storage.

        Players are split into rosters by their connection status.
        """
        session = cls(snapshot.id, config, created_at=snapshot.created_at)
        session.state = snapshot.state
        called = list(snapshot.called_numbers)
        called_set = set(called)
        session.called_numbers = called
        session._called_set = called_set
        session.number_pool = [n for n in snapshot.number_pool if n not in called_set]
        session.current_number = snapshot.current_number
        session.started_at = snapshot.started_at
        session.finished_at = snapshot.finished_at
        session.finish_reason = snapshot.finish_reason

        for player in players or []:
            if player.is_connected:
                session.players[player.id] = player
            else:
                session.disconnected_players[player.id] = player

        for winner in winners or []:
            if session.winners.get(winner.prize) is None:
                session.winners[winner.prize] = winner
        return session
