"""SocketIOPushChannel 测试 -- 注入假的 AsyncClient"""

import pytest
import socketio

from synergysync.core.config import SyncConfig
from synergysync.core.exceptions import TransientNetworkError
from synergysync.transport.socketio_channel import (
    JOIN_EVENT,
    LEAVE_EVENT,
    SocketIOPushChannel,
)


class FakeSio:
    """最小化的 socketio.AsyncClient 替身"""

    def __init__(self) -> None:
        self.handlers: dict = {}
        self.connected = False
        self.emitted: list[tuple[str, dict]] = []
        self.connect_kwargs: dict = {}
        self.connect_error: Exception | None = None
        self.emit_error: Exception | None = None

    def on(self, event, handler=None):
        self.handlers[event] = handler

    async def connect(self, url, **kwargs):
        if self.connect_error is not None:
            raise self.connect_error
        self.connect_kwargs = {"url": url, **kwargs}
        self.connected = True
        await self.handlers["connect"]()

    async def disconnect(self):
        self.connected = False
        await self.handlers["disconnect"]()

    async def emit(self, event, data=None):
        if self.emit_error is not None:
            raise self.emit_error
        self.emitted.append((event, data))


@pytest.fixture
def sio() -> FakeSio:
    return FakeSio()


@pytest.fixture
def channel(sio) -> SocketIOPushChannel:
    return SocketIOPushChannel(
        "http://push.test",
        token="tok",
        client_id="c-1",
        config=SyncConfig(timeout_s=2),
        sio=sio,
    )


class TestConnection:
    """连接与房间"""

    def test_registers_known_events(self, sio, channel):
        for name in ("connect", "disconnect", "task:moved", "new-message", "typing"):
            assert name in sio.handlers

    async def test_connect_sends_auth(self, sio, channel):
        await channel.connect()
        assert channel.connected
        assert sio.connect_kwargs == {
            "url": "http://push.test",
            "auth": {"token": "tok", "clientId": "c-1"},
            "wait_timeout": 2,
        }
        await channel.connect()
        await channel.disconnect()
        assert not channel.connected

    async def test_connect_failure_is_transient(self, sio, channel):
        sio.connect_error = socketio.exceptions.ConnectionError("refused")
        with pytest.raises(TransientNetworkError):
            await channel.connect()

    async def test_rooms_rejoined_on_connect(self, sio, channel):
        await channel.subscribe("project:p-1:tasks")
        await channel.subscribe("user:u-1:notifications")
        assert sio.emitted == []
        await channel.connect()
        assert sio.emitted == [
            (JOIN_EVENT, {"room": "project:p-1:tasks"}),
            (JOIN_EVENT, {"room": "user:u-1:notifications"}),
        ]

    async def test_subscribe_while_connected(self, sio, channel):
        await channel.connect()
        await channel.subscribe("project:p-1:messages")
        await channel.unsubscribe("project:p-1:messages")
        await channel.unsubscribe("project:p-1:messages")
        assert sio.emitted == [
            (JOIN_EVENT, {"room": "project:p-1:messages"}),
            (LEAVE_EVENT, {"room": "project:p-1:messages"}),
        ]
        assert channel.rooms == set()


class TestEvents:
    """事件收发"""

    async def test_emit_only_when_connected(self, sio, channel):
        await channel.emit("typing", {"userId": "u-1"})
        assert sio.emitted == []
        await channel.connect()
        await channel.emit("typing", {"userId": "u-1"})
        assert sio.emitted == [("typing", {"userId": "u-1"})]

    async def test_emit_failure_is_logged(self, sio, channel):
        await channel.connect()
        sio.emit_error = socketio.exceptions.BadNamespaceError("/")
        await channel.emit("typing", {"userId": "u-1"})

    async def test_dispatch_to_handlers(self, sio, channel):
        received: list[tuple[str, dict]] = []

        def broken(name, data):
            raise RuntimeError("boom")

        async def collect(name, data):
            received.append((name, data))

        channel.on_event(broken)
        channel.on_event(collect)
        await sio.handlers["task:moved"]({"taskId": "t-1", "newStatus": "DONE"})
        assert received == [("task:moved", {"taskId": "t-1", "newStatus": "DONE"})]

    def test_custom_event_list(self, sio):
        SocketIOPushChannel("http://push.test", sio=sio, events=["task:created"])
        assert set(sio.handlers) == {"connect", "disconnect", "task:created"}
