import asyncio
import copy
import random
from typing import Any, Dict, Iterable, List, Optional, Set

import pytest
import pytest_asyncio

from bingo.database.gateway import PersistenceGateway, PlayerRecord
from bingo.errors import AlreadyClaimedError, PersistenceError
from bingo.game.session import ConnectionStatus, Player, SessionSnapshot, SessionState, Winner, utcnow
from bingo.game.session_registry import SessionRegistry
from bingo.handlers.channel import RealtimeChannel
from bingo.handlers.dispatcher import ProtocolDispatcher
from bingo.utils.config import Settings


# ---- Utilities ------------------------------------------------

class FakeGateway(PersistenceGateway):
    """In-memory gateway that records calls and can be told to fail."""

    def __init__(self, yield_on_winner: bool = False):
        self.sessions: Dict[str, SessionSnapshot] = {}
        self.players: Dict[str, PlayerRecord] = {}
        self.winners: List[Winner] = []
        self.calls: List[str] = []
        self.fail_on: Set[str] = set()
        self.yield_on_winner = yield_on_winner

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise PersistenceError(f"{operation} failed")

    async def save_session(self, snapshot: SessionSnapshot) -> None:
        self._record("save_session")
        self.sessions[snapshot.id] = copy.deepcopy(snapshot)

    async def update_session(self, snapshot: SessionSnapshot) -> None:
        self._record("update_session")
        self.sessions[snapshot.id] = copy.deepcopy(snapshot)

    async def get_session(self, session_id: str) -> Optional[SessionSnapshot]:
        self._record("get_session")
        return copy.deepcopy(self.sessions.get(session_id))

    async def list_active_sessions(self) -> List[SessionSnapshot]:
        self._record("list_active_sessions")
        return [copy.deepcopy(s) for s in self.sessions.values() if s.state != SessionState.FINISHED]

    async def delete_session(self, session_id: str) -> None:
        self._record("delete_session")
        self.sessions.pop(session_id, None)
        self.players = {pid: r for pid, r in self.players.items() if r.session_id != session_id}
        self.winners = [w for w in self.winners if w.session_id != session_id]

    async def save_player(self, session_id: str, player: Player) -> None:
        self._record("save_player")
        self.players[player.id] = PlayerRecord(session_id, copy.deepcopy(player))

    async def update_player_marks(self, player_id: str, marked_numbers: Iterable[int]) -> None:
        self._record("update_player_marks")
        if player_id in self.players:
            self.players[player_id].player.marked_numbers = set(marked_numbers)

    async def mark_disconnected(self, player_id: str) -> Optional[str]:
        self._record("mark_disconnected")
        record = self.players.get(player_id)
        if record is None:
            return None
        record.player.connection_status = ConnectionStatus.DISCONNECTED
        record.player.disconnected_at = utcnow()
        return record.player.reconnect_token

    async def mark_connected(self, player_id: str) -> None:
        self._record("mark_connected")
        record = self.players.get(player_id)
        if record is not None:
            record.player.connection_status = ConnectionStatus.CONNECTED
            record.player.disconnected_at = None

    async def rebind_player_id(self, old_id: str, new_id: str) -> None:
        self._record("rebind_player_id")
        record = self.players.pop(old_id, None)
        if record is not None:
            record.player.id = new_id
            record.player.connection_status = ConnectionStatus.CONNECTED
            record.player.disconnected_at = None
            self.players[new_id] = record
        self.winners = [
            Winner(w.session_id, new_id if w.player_id == old_id else w.player_id,
                   w.player_name, w.prize, w.won_at)
            for w in self.winners
        ]

    async def find_player_by_token(self, token: str) -> Optional[PlayerRecord]:
        self._record("find_player_by_token")
        for record in self.players.values():
            if record.player.reconnect_token == token:
                return copy.deepcopy(record)
        return None

    async def find_disconnected_player_by_name(self, session_id: str, name: str) -> Optional[Player]:
        self._record("find_disconnected_player_by_name")
        matches = [
            r.player for r in self.players.values()
            if r.session_id == session_id and r.player.name == name and not r.player.is_connected
        ]
        if not matches:
            return None
        return copy.deepcopy(max(matches, key=lambda p: p.disconnected_at))

    async def list_players(self, session_id: str) -> List[Player]:
        self._record("list_players")
        return [copy.deepcopy(r.player) for r in self.players.values() if r.session_id == session_id]

    async def delete_player(self, player_id: str) -> None:
        self._record("delete_player")
        self.players.pop(player_id, None)

    async def save_winner(self, winner: Winner) -> None:
        self._record("save_winner")
        if self.yield_on_winner:
            await asyncio.sleep(0)
        if any(w.session_id == winner.session_id and w.prize == winner.prize for w in self.winners):
            raise AlreadyClaimedError()
        self.winners.append(winner)

    async def list_winners(self, session_id: str) -> List[Winner]:
        self._record("list_winners")
        return [w for w in self.winners if w.session_id == session_id]

    async def winners_history(self, limit: int = 50) -> List[Dict[str, Any]]:
        self._record("winners_history")
        return [w.to_dict() for w in reversed(self.winners)][:limit]

    async def purge_stale_disconnected(self, grace_minutes: int) -> int:
        self._record("purge_stale_disconnected")
        return 0

    async def purge_finished_sessions(self, days: int) -> int:
        self._record("purge_finished_sessions")
        return 0

    async def get_stats(self) -> Dict[str, int]:
        self._record("get_stats")
        return {"totalGames": len(self.sessions)}


class RecordingChannel(RealtimeChannel):
    """Channel that records every emit and room change."""

    def __init__(self):
        self.emitted: List[tuple] = []
        self.rooms: Dict[str, Set[str]] = {}
        self.fail_on: Set[str] = set()

    async def emit(self, event: str, payload: Dict[str, Any], room: Optional[str] = None) -> None:
        if event in self.fail_on:
            raise RuntimeError(f"emit {event} failed")
        self.emitted.append((event, payload, room))

    async def join_room(self, connection_id: str, room: str) -> None:
        self.rooms.setdefault(room, set()).add(connection_id)

    async def leave_room(self, connection_id: str, room: str) -> None:
        self.rooms.get(room, set()).discard(connection_id)

    def events(self, name: str) -> List[Dict[str, Any]]:
        return [payload for event, payload, _ in self.emitted if event == name]


# ---- Fixtures -------------------------------------------------

@pytest.fixture
def settings():
    test_settings = Settings()
    test_settings.default_board = "bingo90"
    test_settings.max_players_per_session = 200
    test_settings.auto_call_default_interval_ms = 5000
    test_settings.auto_call_min_interval_ms = 2000
    test_settings.auto_call_max_interval_ms = 30000
    test_settings.disconnect_grace_minutes = 30
    test_settings.finished_session_ttl_minutes = 60
    test_settings.finished_session_retention_days = 7
    return test_settings


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def registry(gateway, settings):
    return SessionRegistry(gateway, settings, rng=random.Random(1234))


@pytest_asyncio.fixture
async def dispatcher(registry, gateway, channel, settings):
    dispatcher = ProtocolDispatcher(registry, gateway, channel, settings)
    yield dispatcher
    await registry.shutdown()
