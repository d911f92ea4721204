import pytest
import pytest_asyncio
import socketio

from bingo.handlers.channel import SocketIOChannel, session_room
from bingo.handlers.dispatcher import ProtocolDispatcher
from bingo.handlers.socket_handlers import register_socket_handlers


# ---- Utilities ------------------------------------------------

class ServerRecorder:
    """Records what the dispatcher asks the Socket.IO server to do."""

    def __init__(self):
        self.emitted = []
        self.entered = []
        self.left = []

    async def emit(self, event, data=None, to=None, room=None, **kwargs):
        self.emitted.append((event, data, room))

    async def enter_room(self, sid, room, namespace=None):
        self.entered.append((sid, room))

    async def leave_room(self, sid, room, namespace=None):
        self.left.append((sid, room))

    def events(self, name):
        return [data for event, data, _ in self.emitted if event == name]


# ---- Fixtures -------------------------------------------------

@pytest.fixture
def recorder():
    return ServerRecorder()


@pytest_asyncio.fixture
async def server(monkeypatch, recorder, registry, gateway, settings):
    sio = socketio.AsyncServer(async_mode="asgi")
    monkeypatch.setattr(sio, "emit", recorder.emit)
    monkeypatch.setattr(sio, "enter_room", recorder.enter_room)
    monkeypatch.setattr(sio, "leave_room", recorder.leave_room)

    dispatcher = ProtocolDispatcher(registry, gateway, SocketIOChannel(sio), settings)
    register_socket_handlers(sio, dispatcher)
    yield sio, dispatcher
    await registry.shutdown()


def _handler(sio, event):
    return sio.handlers["/"][event]


# ---- Registration ---------------------------------------------

@pytest.mark.asyncio
async def test_every_command_is_registered(server):
    sio, dispatcher = server
    registered = set(sio.handlers["/"])
    assert set(dispatcher.commands) <= registered
    assert {"connect", "disconnect"} <= registered


@pytest.mark.asyncio
async def test_connect_accepts_clients(server):
    sio, _ = server
    assert await _handler(sio, "connect")("sid-1", {}, None) is True


# ---- Commands -------------------------------------------------

@pytest.mark.asyncio
async def test_handler_return_value_is_the_ack(server, recorder):
    sio, dispatcher = server

    ack = await _handler(sio, "create_session")("tv", {"config": {"variant": "bingo90"}})

    assert ack["success"] is True
    room = session_room(ack["sessionId"])
    assert ("tv", room) in recorder.entered

    ack = await _handler(sio, "join_session")("ana", {"sessionId": ack["sessionId"], "displayName": "Ana"})

    assert ack["success"] is True
    assert ack["player"]["name"] == "Ana"
    assert ("ana", room) in recorder.entered
    assert recorder.emitted[-1] == ("player_joined", {"player": {"id": "ana", "name": "Ana"}, "connectedCount": 1}, room)


@pytest.mark.asyncio
async def test_event_without_payload(server):
    sio, _ = server
    ack = await _handler(sio, "list_sessions")("sid-1")
    assert ack == {"success": True, "sessions": []}


@pytest.mark.asyncio
async def test_bad_payload_is_rejected_in_ack(server):
    sio, _ = server
    ack = await _handler(sio, "join_session")("sid-1", "not an object")
    assert ack["success"] is False
    assert ack["code"] == "validation_error"


@pytest.mark.asyncio
async def test_disconnect_event_marks_player_disconnected(server, recorder):
    sio, dispatcher = server
    session_id = (await _handler(sio, "create_session")("tv", {}))["sessionId"]
    await _handler(sio, "join_session")("ana", {"sessionId": session_id, "displayName": "Ana"})

    await _handler(sio, "disconnect")("ana", "transport close")

    assert dispatcher.binding_for("ana") is None
    assert recorder.events("player_disconnected") == [{"player": {"id": "ana", "name": "Ana"}, "connectedCount": 0}]


@pytest.mark.asyncio
async def test_leave_session_leaves_room(server, recorder):
    sio, _ = server
    session_id = (await _handler(sio, "create_session")("tv", {}))["sessionId"]
    await _handler(sio, "join_session")("ana", {"sessionId": session_id})

    ack = await _handler(sio, "leave_session")("ana", {"sessionId": session_id})

    assert ack == {"success": True}
    assert recorder.left == [("ana", session_room(session_id))]
