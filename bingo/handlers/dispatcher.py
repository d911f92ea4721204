"""
Protocol Dispatcher

This module translates realtime commands into registry and session
operations. Every mutating command runs under the target session's
lock in three steps:
1. Mutate the in-memory session
2. Persist the delta through the gateway
3. Broadcast the result to the session room

Storage failures never roll back step 1; they are logged and reported
in the acknowledgement while the broadcast still goes out.
"""

from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .channel import RealtimeChannel, session_room
from .error_handlers import error_ack, success_ack
from ..database.gateway import PersistenceGateway
from ..errors import (
    AuthorizationError, BingoError, ConflictError, InvalidStateError,
    NotFoundError, PersistenceError, ValidationError
)
from ..game.auto_caller import AutoCaller
from ..game.session import Player, PrizeKind, Session, SessionState
from ..game.session_registry import SessionRegistry
from ..utils.config import Settings, get_settings
from ..utils.logging_config import get_logger, log_player_action

# Logger setup
logger = get_logger(__name__)

CommandHandler = Callable[[str, Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]


class Role(Enum):
    CALLER = "caller"
    PLAYER = "player"


@dataclass
class Binding:
    """What a connection is attached to."""
    session_id: str
    role: Role
    player_id: Optional[str] = None


class ProtocolDispatcher:
    """
    Command router for the bingo protocol.

    Responsibilities:
    - Track which session and role each connection is bound to
    - Validate payloads and authorize callers and players
    - Run session operations, persist them and fan out broadcasts
    - Drive auto caller ticks through the same draw path as manual draws
    """

    def __init__(
        self,
        registry: SessionRegistry,
        gateway: PersistenceGateway,
        channel: RealtimeChannel,
        settings: Optional[Settings] = None,
    ):
        self.registry = registry
        self.gateway = gateway
        self.channel = channel
        self.settings = settings or get_settings()
        self._bindings: Dict[str, Binding] = {}

        self._handlers: Dict[str, CommandHandler] = {
            "create_session": self.create_session,
            "attach_caller": self.attach_caller,
            "join_session": self.join_session,
            "reconnect": self.reconnect,
            "start_session": self.start_session,
            "draw_number": self.draw_number,
            "mark_number": self.mark_number,
            "unmark_number": self.unmark_number,
            "claim_line": self.claim_line,
            "claim_bingo": self.claim_bingo,
            "auto_start": self.auto_start,
            "auto_stop": self.auto_stop,
            "auto_set_interval": self.auto_set_interval,
            "leave_session": self.leave_session,
            "end_session": self.end_session,
            "remove_session": self.remove_session,
            "get_session_state": self.get_session_state,
            "list_sessions": self.list_sessions,
        }

    @property
    def commands(self) -> List[str]:
        return list(self._handlers)

    def binding_for(self, connection_id: str) -> Optional[Binding]:
        return self._bindings.get(connection_id)

    async def dispatch(self, connection_id: str, command: str, payload: Any = None) -> Dict[str, Any]:
        """
        Run one command and build its acknowledgement.

        Args:
            connection_id: Connection that sent the command
            command: Command name
            payload: Command fields (a mapping, or None)

        Returns:
            Dict[str, Any]: Success or failure acknowledgement
        """
        handler = self._handlers.get(command)
        try:
            if handler is None:
                raise ValidationError(f"Unknown command: {command}")
            if payload is None:
                payload = {}
            if not isinstance(payload, dict):
                raise ValidationError("Payload must be an object")

            log_player_action(connection_id, command)
            data = await handler(connection_id, payload)
        except Exception as e:
            return error_ack(e, command=command, connection_id=connection_id)
        return success_ack(data)

    # ---- Payload helpers ----

    @staticmethod
    def _str_field(payload: Dict[str, Any], key: str, required: bool = False) -> Optional[str]:
        value = payload.get(key)
        if value is None or value == "":
            if required:
                raise ValidationError(f"{key} is required")
            return None
        if not isinstance(value, str):
            raise ValidationError(f"{key} must be a string")
        return value

    @staticmethod
    def _int_field(payload: Dict[str, Any], key: str) -> int:
        value = payload.get(key)
        if value is None:
            raise ValidationError(f"{key} is required")
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{key} must be an integer")
        return value

    # ---- Binding helpers ----

    def _session_for(self, connection_id: str, payload: Dict[str, Any]) -> Session:
        session_id = self._str_field(payload, "sessionId")
        if session_id is None:
            binding = self._bindings.get(connection_id)
            if binding is None:
                raise ValidationError("sessionId is required")
            session_id = binding.session_id
        return self.registry.get(session_id)

    def _require_caller(self, connection_id: str, payload: Dict[str, Any]) -> Session:
        session = self._session_for(connection_id, payload)
        binding = self._bindings.get(connection_id)
        if binding is None or binding.role != Role.CALLER or binding.session_id != session.id:
            raise AuthorizationError("Only the session caller can do that")
        return session

    def _require_player(self, connection_id: str, payload: Dict[str, Any]) -> Tuple[Session, str]:
        session = self._session_for(connection_id, payload)
        binding = self._bindings.get(connection_id)
        if binding is None or binding.role != Role.PLAYER or binding.session_id != session.id:
            raise AuthorizationError("Connection is not a player in this session")
        player_id = self._str_field(payload, "playerId")
        if player_id is not None and player_id != binding.player_id:
            raise AuthorizationError("Cannot act on behalf of another player")
        return session, binding.player_id

    async def _bind(self, connection_id: str, session: Session, role: Role,
                    player_id: Optional[str] = None) -> None:
        previous = self._bindings.get(connection_id)
        if previous is not None and previous.session_id != session.id:
            await self.channel.leave_room(connection_id, session_room(previous.session_id))
        self._bindings[connection_id] = Binding(session.id, role, player_id)
        await self.channel.join_room(connection_id, session_room(session.id))

    async def _unbind(self, connection_id: str) -> None:
        binding = self._bindings.pop(connection_id, None)
        if binding is not None:
            await self.channel.leave_room(connection_id, session_room(binding.session_id))

    def _check_player_binding(self, connection_id: str, session: Session) -> None:
        previous = self._bindings.get(connection_id)
        if previous is not None and previous.role == Role.PLAYER and previous.session_id != session.id:
            raise ConflictError("Connection is already playing in another session")

    # ---- Persistence and broadcast helpers ----

    async def _persist(self, failures: List[PersistenceError], operation: str,
                       call: Awaitable[Any]) -> None:
        """Await a gateway call, recording (not raising) storage failures."""
        try:
            await call
        except BingoError as e:
            logger.error(f"Persistence failed - operation: {operation}, error: {e.message}")
            if isinstance(e, PersistenceError):
                failures.append(e)
            else:
                failures.append(PersistenceError(f"{operation} failed: {e.message}"))

    @staticmethod
    def _outcome(data: Dict[str, Any], failures: List[PersistenceError]) -> Dict[str, Any]:
        if failures:
            raise failures[0].with_data(**data)
        return data

    async def _broadcast(self, session: Session, event: str, payload: Dict[str, Any]) -> None:
        await self.channel.emit(event, payload, room=session_room(session.id))

    async def _broadcast_player(self, session: Session, event: str, player: Player) -> None:
        await self._broadcast(session, event, {
            "player": player.public_dict(),
            "connectedCount": session.connected_count,
        })

    # ---- Session lifecycle ----

    async def create_session(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create a session; the creating connection becomes its caller."""
        session_id = self.registry.create(payload.get("config"))
        session = self.registry.get(session_id)
        failures: List[PersistenceError] = []

        async with session.lock:
            await self._bind(connection_id, session, Role.CALLER)
            await self._persist(failures, "save_session", self.gateway.save_session(session.snapshot()))

        logger.info(f"Caller created session - session_id: {session_id}, sid: {connection_id}")
        return self._outcome({"sessionId": session_id, "session": session.caller_state()}, failures)

    async def attach_caller(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Attach a (re)connecting caller display to an existing session."""
        session = self.registry.get(self._str_field(payload, "sessionId", required=True))
        async with session.lock:
            await self._bind(connection_id, session, Role.CALLER)
            state = session.caller_state()
        logger.info(f"Caller attached - session_id: {session.id}, sid: {connection_id}")
        return {"sessionId": session.id, "session": state}

    async def start_session(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = self._require_caller(connection_id, payload)
        failures: List[PersistenceError] = []

        async with session.lock:
            session.start()
            await self._persist(failures, "update_session", self.gateway.update_session(session.snapshot()))
            await self._broadcast(session, "session_started", {
                "sessionId": session.id,
                "startedAt": session.started_at.isoformat(),
                "playersCount": session.connected_count,
            })

        return self._outcome({}, failures)

    async def end_session(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = self._require_caller(connection_id, payload)
        failures: List[PersistenceError] = []

        async with session.lock:
            if not session.finish("ended_by_caller"):
                raise InvalidStateError("Session has already finished")
            await self._stop_auto(session)
            await self._persist(failures, "update_session", self.gateway.update_session(session.snapshot()))
            await self._broadcast(session, "session_ended", {"reason": session.finish_reason})

        return self._outcome({}, failures)

    async def remove_session(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Destroy a session; every bound connection is detached."""
        session = self._require_caller(connection_id, payload)
        failures: List[PersistenceError] = []

        async with session.lock:
            await self._stop_auto(session)
            if not session.is_finished:
                session.finish("removed")
                await self._broadcast(session, "session_ended", {"reason": session.finish_reason})
            await self._persist(failures, "delete_session", self.registry.remove(session.id))

            for cid, binding in list(self._bindings.items()):
                if binding.session_id == session.id:
                    await self._unbind(cid)

        return self._outcome({"sessionId": session.id}, failures)

    async def get_session_state(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Current state, shaped for the requesting connection's role."""
        session = self._session_for(connection_id, payload)
        binding = self._bindings.get(connection_id)
        async with session.lock:
            if binding is not None and binding.session_id == session.id:
                if binding.role == Role.CALLER:
                    return {"session": session.caller_state()}
                player = session.find_player(binding.player_id)
                if player is not None:
                    return {"sessionSummary": session.summary(), "player": player.to_dict()}
            return {"sessionSummary": session.summary()}

    async def list_sessions(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {"sessions": self.registry.list()}

    # ---- Joining and reconnection ----

    async def join_session(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Join a session, resuming a disconnected player when possible.

        Reconnection is tried by token first, then by display name; only
        when both fail is a brand-new player created.
        """
        session = self.registry.get(self._str_field(payload, "sessionId", required=True))
        name = self._str_field(payload, "displayName")
        token = self._str_field(payload, "reconnectToken")
        self._check_player_binding(connection_id, session)
        failures: List[PersistenceError] = []

        async with session.lock:
            current = session.players.get(connection_id)
            if current is not None:
                return {
                    "isReconnection": False,
                    "player": current.to_dict(),
                    "sessionSummary": session.summary(),
                }

            player = await self._resume(session, connection_id, token, name, failures)
            if player is not None:
                await self._bind(connection_id, session, Role.PLAYER, player.id)
                await self._broadcast_player(session, "player_reconnected", player)
                data = {
                    "isReconnection": True,
                    "player": player.to_dict(),
                    "sessionSummary": session.summary(),
                }
                return self._outcome(data, failures)

            if session.connected_count >= self.settings.max_players_per_session:
                raise ConflictError("Session is full")
            player = session.add_player(connection_id, name)
            await self._persist(failures, "save_player", self.gateway.save_player(session.id, player))
            await self._bind(connection_id, session, Role.PLAYER, player.id)
            await self._broadcast_player(session, "player_joined", player)

            data = {
                "isReconnection": False,
                "player": player.to_dict(),
                "sessionSummary": session.summary(),
            }
            return self._outcome(data, failures)

    async def reconnect(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Resume a disconnected player; never creates a new one."""
        session = self.registry.get(self._str_field(payload, "sessionId", required=True))
        token = self._str_field(payload, "reconnectToken", required=True)
        name = self._str_field(payload, "displayName")
        self._check_player_binding(connection_id, session)
        failures: List[PersistenceError] = []

        async with session.lock:
            player = await self._resume(session, connection_id, token, name, failures)
            if player is None:
                raise NotFoundError("No disconnected player matches this reconnect token")
            await self._bind(connection_id, session, Role.PLAYER, player.id)
            await self._broadcast_player(session, "player_reconnected", player)
            data = {"player": player.to_dict(), "sessionSummary": session.summary()}
            return self._outcome(data, failures)

    async def _resume(self, session: Session, connection_id: str, token: Optional[str],
                      name: Optional[str], failures: List[PersistenceError]) -> Optional[Player]:
        """
        Find and rebind a previous player for this connection.

        Called with the session lock held. Players still held by a live
        connection are never taken over; storage lookups only resume
        records no connection is bound to (e.g. after a restart).

        Returns:
            Optional[Player]: The rebound player, or None if nothing matched
        """
        candidate = None
        if token:
            candidate = session.find_disconnected_by_token(token)
            if candidate is None:
                candidate = self._unclaimed(await self._stored_player_by_token(session, token), connection_id)
        if candidate is None and name:
            candidate = session.find_disconnected_by_name(name)
            if candidate is None:
                candidate = self._unclaimed(await self._stored_player_by_name(session, name), connection_id)
        if candidate is None:
            return None

        old_id = candidate.id
        player = session.adopt_stored_player(candidate, connection_id)

        if old_id != connection_id:
            await self._persist(failures, "rebind_player_id",
                                self.gateway.rebind_player_id(old_id, connection_id))
        else:
            await self._persist(failures, "mark_connected", self.gateway.mark_connected(connection_id))
        return player

    def _unclaimed(self, stored: Optional[Player], connection_id: str) -> Optional[Player]:
        """Drop a stored match whose identity a connection still holds."""
        if stored is None:
            return None
        if stored.id != connection_id and stored.id in self._bindings:
            logger.info(f"Ignoring resume of a live player - player_id: {stored.id}")
            return None
        return stored

    async def _stored_player_by_token(self, session: Session, token: str) -> Optional[Player]:
        try:
            record = await self.gateway.find_player_by_token(token)
        except PersistenceError as e:
            logger.error(f"Token lookup failed - session_id: {session.id}, error: {e.message}")
            return None
        if record is None or record.session_id != session.id:
            return None
        return record.player

    async def _stored_player_by_name(self, session: Session, name: str) -> Optional[Player]:
        try:
            return await self.gateway.find_disconnected_player_by_name(session.id, " ".join(name.split()))
        except PersistenceError as e:
            logger.error(f"Name lookup failed - session_id: {session.id}, error: {e.message}")
            return None

    async def leave_session(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Permanent, explicit leave; the player cannot reconnect afterwards."""
        session, player_id = self._require_player(connection_id, payload)
        failures: List[PersistenceError] = []

        async with session.lock:
            player = session.remove_player(player_id)
            await self._persist(failures, "delete_player", self.gateway.delete_player(player_id))
            await self._unbind(connection_id)
            await self._broadcast_player(session, "player_left", player)

        return self._outcome({}, failures)

    async def handle_disconnect(self, connection_id: str) -> None:
        """
        Transport-level disconnect.

        A player keeps card and marks in the disconnected roster until the
        grace period expires. The last caller going away stops auto mode and
        tells the room, without ending the session.
        """
        binding = self._bindings.pop(connection_id, None)
        if binding is None:
            return
        session = self.registry.find(binding.session_id)
        if session is None:
            return

        async with session.lock:
            if binding.role == Role.CALLER:
                other_callers = any(
                    b.role == Role.CALLER and b.session_id == session.id
                    for b in self._bindings.values()
                )
                if not other_callers:
                    await self._stop_auto(session)
                    await self._broadcast(session, "caller_disconnected", {"sessionId": session.id})
                logger.info(f"Caller disconnected - session_id: {session.id}, sid: {connection_id}")
                return

            if binding.player_id not in session.players:
                return
            player = session.disconnect_player(binding.player_id)
            failures: List[PersistenceError] = []
            await self._persist(failures, "mark_disconnected", self.gateway.mark_disconnected(player.id))
            await self._broadcast_player(session, "player_disconnected", player)
            logger.info(f"Player disconnected - session_id: {session.id}, name: {player.name}")

    # ---- Drawing ----

    async def draw_number(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = self._require_caller(connection_id, payload)
        async with session.lock:
            number, failures = await self._draw_locked(session)
        if number is None:
            raise InvalidStateError("No more numbers available").with_data(number=None)
        return self._outcome({"number": number}, failures)

    async def _draw_locked(self, session: Session) -> Tuple[Optional[int], List[PersistenceError]]:
        """
        Draw, persist and broadcast one number. Called with the session lock held.

        Shared by manual draws and auto caller ticks so both follow the same
        ordering. The draw that finds the pool empty ends the session.
        """
        failures: List[PersistenceError] = []
        was_finished = session.is_finished
        number = session.draw_next()

        if number is None:
            if not was_finished:
                await self._stop_auto(session)
                await self._persist(failures, "update_session", self.gateway.update_session(session.snapshot()))
                await self._broadcast(session, "session_ended", {"reason": session.finish_reason})
            return None, failures

        await self._persist(failures, "update_session", self.gateway.update_session(session.snapshot()))
        await self._broadcast(session, "number_called", {
            "number": number,
            "calledNumbers": list(session.called_numbers),
            "remainingNumbers": len(session.number_pool),
        })
        return number, failures

    # ---- Auto mode ----

    def _auto_caller(self, session: Session) -> AutoCaller:
        if session.auto_caller is None:
            session.auto_caller = AutoCaller(
                partial(self._auto_tick, session.id),
                interval_ms=self.settings.auto_call_default_interval_ms,
                min_interval_ms=self.settings.auto_call_min_interval_ms,
                max_interval_ms=self.settings.auto_call_max_interval_ms,
                name=session.id,
                on_failure=partial(self._auto_failed, session.id),
            )
        return session.auto_caller

    async def _auto_tick(self, session_id: str, generation: int) -> bool:
        """
        One auto caller tick.

        Returns:
            bool: False once the loop should end
        """
        session = self.registry.find(session_id)
        if session is None:
            return False

        async with session.lock:
            caller = session.auto_caller
            # A stop that landed while we waited for the lock wins
            if caller is None or not caller.is_current(generation):
                return False
            if session.state != SessionState.PLAYING:
                return False
            number, _ = await self._draw_locked(session)
            return number is not None and session.state == SessionState.PLAYING

    async def _stop_auto(self, session: Session) -> bool:
        caller = session.auto_caller
        if caller is None or not caller.stop():
            return False
        await self._broadcast(session, "auto_mode_changed", {"enabled": False, "interval": caller.interval_ms})
        return True

    async def _auto_failed(self, session_id: str) -> None:
        """Tell the room auto mode is off after its loop died on an error."""
        session = self.registry.find(session_id)
        if session is None:
            return
        async with session.lock:
            caller = session.auto_caller
            if caller is None or caller.enabled:
                # Already restarted by the caller
                return
            await self._broadcast(session, "auto_mode_changed", {"enabled": False, "interval": caller.interval_ms})

    async def auto_start(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = self._require_caller(connection_id, payload)
        async with session.lock:
            if session.state != SessionState.PLAYING:
                raise InvalidStateError("Auto mode needs a playing session")
            caller = self._auto_caller(session)
            interval = caller.start(payload.get("interval"))
            await self._broadcast(session, "auto_mode_changed", {"enabled": True, "interval": interval})
        return {"enabled": True, "interval": interval}

    async def auto_stop(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = self._require_caller(connection_id, payload)
        async with session.lock:
            await self._stop_auto(session)
            caller = session.auto_caller
            interval = caller.interval_ms if caller else self.settings.auto_call_default_interval_ms
        return {"enabled": False, "interval": interval}

    async def auto_set_interval(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = self._require_caller(connection_id, payload)
        if payload.get("interval") is None:
            raise ValidationError("interval is required")
        async with session.lock:
            caller = self._auto_caller(session)
            interval = caller.set_interval(payload["interval"])
            if caller.enabled:
                await self._broadcast(session, "auto_mode_changed", {"enabled": True, "interval": interval})
        return {"enabled": caller.enabled, "interval": interval}

    # ---- Marks ----

    async def mark_number(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        session, player_id = self._require_player(connection_id, payload)
        number = self._int_field(payload, "number")
        failures: List[PersistenceError] = []

        async with session.lock:
            if not session.mark(player_id, number):
                raise ValidationError(f"Number {number} has not been called")
            player = session.get_player(player_id)
            await self._persist(failures, "update_player_marks",
                                self.gateway.update_player_marks(player_id, player.marked_numbers))
            marked = sorted(player.marked_numbers)

        return self._outcome({"markedNumbers": marked}, failures)

    async def unmark_number(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        session, player_id = self._require_player(connection_id, payload)
        number = self._int_field(payload, "number")
        failures: List[PersistenceError] = []

        async with session.lock:
            if session.unmark(player_id, number):
                player = session.get_player(player_id)
                await self._persist(failures, "update_player_marks",
                                    self.gateway.update_player_marks(player_id, player.marked_numbers))
            marked = sorted(session.get_player(player_id).marked_numbers)

        return self._outcome({"markedNumbers": marked}, failures)

    # ---- Claims ----

    async def claim_line(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._claim(connection_id, payload, PrizeKind.LINE)

    async def claim_bingo(self, connection_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._claim(connection_id, payload, PrizeKind.FULL_CARD)

    async def _claim(self, connection_id: str, payload: Dict[str, Any], prize: PrizeKind) -> Dict[str, Any]:
        """
        Validate and award a prize.

        The check-and-set happens inside Session under the lock, so of two
        concurrent valid claims only the first processed wins.
        """
        session, player_id = self._require_player(connection_id, payload)
        failures: List[PersistenceError] = []

        async with session.lock:
            try:
                if prize == PrizeKind.LINE:
                    winner = session.claim_line(player_id)
                else:
                    winner = session.claim_bingo(player_id)
            except BingoError as e:
                raise e.with_data(winner=False)
            if winner is None:
                label = "line" if prize == PrizeKind.LINE else "bingo"
                raise ValidationError(f"No valid {label} on this card").with_data(winner=False)

            await self._persist(failures, "save_winner", self.gateway.save_winner(winner))
            if prize == PrizeKind.FULL_CARD:
                await self._persist(failures, "update_session", self.gateway.update_session(session.snapshot()))
            await self._stop_auto(session)

            player = session.get_player(player_id)
            event = "line_winner" if prize == PrizeKind.LINE else "bingo_winner"
            await self._broadcast(session, event, {
                "player": player.public_dict(),
                "winner": winner.to_dict(),
            })
            if prize == PrizeKind.FULL_CARD:
                await self._broadcast(session, "session_ended", {"reason": session.finish_reason})

        return self._outcome({"winner": True}, failures)
