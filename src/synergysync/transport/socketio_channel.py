"""SocketIOPushChannel -- 基于 python-socketio 的推送通道

实现 PushChannel 协议。连接建立（含自动重连）后重新加入所有已订阅房间；
推送事件按事件名注册，统一转发给 on_event 注册的回调。
"""

import asyncio
import inspect
from collections.abc import Iterable, Mapping
from typing import Any

import socketio
import structlog

from synergysync.core.codec import EVENT_TYPES, PRESENCE_EVENTS
from synergysync.core.config import SyncConfig
from synergysync.core.exceptions import TransientNetworkError
from synergysync.core.protocols import PushHandler

log = structlog.get_logger()

JOIN_EVENT = "join-room"
LEAVE_EVENT = "leave-room"


class SocketIOPushChannel:
    """Socket.IO 推送通道"""

    def __init__(
        self,
        url: str | None = None,
        *,
        token: str | None = None,
        client_id: str | None = None,
        config: SyncConfig | None = None,
        sio: socketio.AsyncClient | None = None,
        events: Iterable[str] | None = None,
    ) -> None:
        """
        Args:
            url: 推送服务 URL（缺省取配置）
            token: 认证 token（缺省取配置）
            client_id: 客户端 ID，随握手发送
            config: 同步配置
            sio: 自定义 AsyncClient（测试时注入）
            events: 需要监听的事件名（缺省为全部已知事件）
        """
        config = config or SyncConfig()
        self.url = url or config.push_url
        self._token = token if token is not None else config.api_token.get_secret_value()
        self._client_id = client_id
        self._timeout_s = config.timeout_s
        self._sio = sio or socketio.AsyncClient(logger=False, engineio_logger=False)
        self._rooms: set[str] = set()
        self._handlers: list[PushHandler] = []

        # register handlers
        self._sio.on("connect", self._on_connect)
        self._sio.on("disconnect", self._on_disconnect)
        names = list(events) if events is not None else [*EVENT_TYPES, *PRESENCE_EVENTS]
        for name in names:
            self._register(name)

    @property
    def connected(self) -> bool:
        return bool(self._sio.connected)

    @property
    def rooms(self) -> set[str]:
        return set(self._rooms)

    def _register(self, name: str) -> None:
        async def handler(data: Any = None) -> None:
            await self._dispatch(name, data)

        self._sio.on(name, handler)

    async def connect(self) -> None:
        """连接推送服务

        Raises:
            TransientNetworkError: 连接失败或超时
        """
        if self.connected:
            return
        auth: dict[str, str] = {}
        if self._token:
            auth["token"] = self._token
        if self._client_id:
            auth["clientId"] = self._client_id
        timeout = self._timeout_s
        try:
            await asyncio.wait_for(
                self._sio.connect(self.url, auth=auth or None, wait_timeout=timeout),
                timeout=timeout + 1,
            )
        except (socketio.exceptions.ConnectionError, TimeoutError) as e:
            log.warning("push_connect_failed", url=self.url, error=str(e))
            raise TransientNetworkError(f"推送服务不可达: {e}", original_error=e) from e

    async def disconnect(self) -> None:
        if self._sio.connected:
            await self._sio.disconnect()

    async def subscribe(self, room: str) -> None:
        self._rooms.add(room)
        if self.connected:
            await self._send(JOIN_EVENT, {"room": room})

    async def unsubscribe(self, room: str) -> None:
        if room not in self._rooms:
            return
        self._rooms.discard(room)
        if self.connected:
            await self._send(LEAVE_EVENT, {"room": room})

    async def emit(self, event: str, data: Mapping[str, Any]) -> None:
        if not self.connected:
            log.debug("push_emit_skipped", push_event=event)
            return
        await self._send(event, dict(data))

    def on_event(self, handler: PushHandler) -> None:
        self._handlers.append(handler)

    async def _send(self, event: str, data: dict[str, Any]) -> None:
        """发送事件，失败只记录日志（fire-and-forget）"""
        try:
            await self._sio.emit(event, data)
        except socketio.exceptions.SocketIOError as e:
            log.warning("push_emit_failed", push_event=event, error=str(e))

    async def _on_connect(self) -> None:
        log.info("push_connected", url=self.url, rooms=len(self._rooms))
        # 重连后重新加入房间
        for room in sorted(self._rooms):
            await self._send(JOIN_EVENT, {"room": room})

    async def _on_disconnect(self, *args: Any) -> None:
        log.info("push_disconnected", url=self.url)

    async def _dispatch(self, name: str, data: Any) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(name, data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("push_handler_failed", push_event=name)
