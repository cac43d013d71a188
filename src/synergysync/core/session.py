"""SyncSession -- 会话上下文

拥有当前项目作用域（看板 + 讨论区 Store 及其轮询器）和当前用户的通知 Store；
全部协作者显式注入，没有模块级单例。
进入作用域时订阅推送房间并启动轮询，离开时取消订阅、停止轮询，
作用域代数递增，进行中的写入结果被丢弃。
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog
from ulid import ULID

from .clock import Clock, SystemClock
from .codec import decode, encode_presence
from .config import SyncConfig
from .exceptions import MalformedPayloadError, TransientNetworkError
from .logging_config import bind_session_context, clear_session_context
from .models import Domain, PresenceKind, PresenceSignal, PushEvent, UserRef
from .polling import PollScheduler
from .protocols import ApiBackend, PushChannel, room_for
from .stores import MessageStore, NotificationStore, TaskBoardStore

log = structlog.get_logger()


@dataclass
class ProjectScope:
    """一个已进入的项目作用域"""

    project_id: str
    generation: int
    tasks: TaskBoardStore
    messages: MessageStore
    task_poller: PollScheduler
    message_poller: PollScheduler
    rooms: list[str] = field(default_factory=list)

    @property
    def pollers(self) -> list[PollScheduler]:
        return [self.task_poller, self.message_poller]


class SyncSession:
    """客户端同步会话"""

    def __init__(
        self,
        api: ApiBackend,
        push: PushChannel | None = None,
        *,
        user_id: str,
        user_name: str = "",
        client_id: str | None = None,
        config: SyncConfig | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            api: REST API 后端
            push: 推送通道（None 时仅依赖轮询）
            user_id: 当前用户 ID
            user_name: 当前用户名称
            client_id: 客户端 ID（缺省自动生成）
            config: 同步配置
            clock: 时钟
            sleep: 轮询等待函数
        """
        self.api = api
        self.push = push
        self.user_id = user_id
        self.user_name = user_name
        self.client_id = client_id or str(ULID())
        self.config = config or SyncConfig()
        self.clock = clock or SystemClock()
        self._sleep = sleep

        self.generation = 0
        self.scope: ProjectScope | None = None
        self.notifications: NotificationStore | None = None
        self.notification_poller: PollScheduler | None = None
        self._started = False
        self._push_bound = False

    async def __aenter__(self) -> "SyncSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ---- 生命周期 ----

    async def start(self) -> None:
        """连接推送、加载通知并启动通知轮询"""
        if self._started:
            return
        bind_session_context(user_id=self.user_id, client_id=self.client_id)
        if self.push is not None:
            if not self._push_bound:
                self.push.on_event(self.handle_push)
                self._push_bound = True
            await self.reconnect_push()

        self.notifications = NotificationStore(
            self.api,
            self.user_id,
            user_id=self.user_id,
            config=self.config,
            clock=self.clock,
        )
        self.notification_poller = self._make_poller(
            self.notifications.refresh,
            self.config.notification_poll_interval_s,
            "notifications",
        )
        await self._subscribe(room_for(Domain.NOTIFICATIONS, self.user_id))
        await self.notification_poller.tick()
        self.notification_poller.start()
        self._started = True
        log.info("sync_session_started", user_id=self.user_id, client_id=self.client_id)

    async def aclose(self) -> None:
        """离开当前作用域，停止通知轮询并断开推送"""
        if not self._started:
            return
        await self.exit_project()
        if self.notification_poller is not None:
            await self.notification_poller.stop()
        if self.notifications is not None:
            await self._unsubscribe(room_for(Domain.NOTIFICATIONS, self.user_id))
            self.notifications.close()
        if self.push is not None:
            await self.push.disconnect()
        self._started = False
        log.info("sync_session_closed", user_id=self.user_id)
        clear_session_context()

    async def enter_project(
        self,
        project_id: str,
        members: Iterable[UserRef] = (),
    ) -> ProjectScope:
        """进入项目作用域；已在其他项目时先离开"""
        if self.scope is not None:
            if self.scope.project_id == project_id:
                return self.scope
            await self.exit_project()

        self.generation += 1
        store_kwargs = {"user_id": self.user_id, "config": self.config, "clock": self.clock}
        tasks = TaskBoardStore(self.api, project_id, **store_kwargs)
        messages = MessageStore(
            self.api,
            project_id,
            members=members,
            user_name=self.user_name,
            **store_kwargs,
        )
        scope = ProjectScope(
            project_id=project_id,
            generation=self.generation,
            tasks=tasks,
            messages=messages,
            task_poller=self._make_poller(
                tasks.refresh, self.config.task_poll_interval_s, f"tasks:{project_id}"
            ),
            message_poller=self._make_poller(
                messages.refresh,
                self.config.message_poll_interval_s,
                f"messages:{project_id}",
            ),
        )
        self.scope = scope
        bind_session_context(project_id=project_id)

        for domain in (Domain.TASKS, Domain.MESSAGES):
            room = room_for(domain, project_id)
            await self._subscribe(room)
            scope.rooms.append(room)

        for poller in scope.pollers:
            if self.notification_poller is not None:
                poller.visible = self.notification_poller.visible
                poller.focused = self.notification_poller.focused
            await poller.tick()
            poller.start()

        log.info("project_scope_entered", project_id=project_id, generation=self.generation)
        return scope

    async def exit_project(self) -> None:
        """离开当前项目作用域"""
        scope, self.scope = self.scope, None
        if scope is None:
            return
        self.generation += 1
        for poller in scope.pollers:
            await poller.stop()
        for room in scope.rooms:
            await self._unsubscribe(room)
        scope.tasks.close()
        scope.messages.close()
        log.info("project_scope_exited", project_id=scope.project_id)
        bind_session_context(project_id=None)

    # ---- 轮询控制 ----

    def _all_pollers(self) -> list[PollScheduler]:
        pollers = [self.notification_poller] if self.notification_poller else []
        if self.scope is not None:
            pollers.extend(self.scope.pollers)
        return pollers

    async def reconnect_push(self) -> bool:
        """连接推送通道；不可达时只记录日志，同步退化为纯轮询

        Returns:
            True 如果推送通道已连接
        """
        if self.push is None:
            return False
        if self.push.connected:
            return True
        try:
            await self.push.connect()
        except TransientNetworkError as exc:
            log.warning("push_unavailable_polling_only", user_id=self.user_id, error=exc.message)
            return False
        return True

    async def visibility_changed(self, visible: bool) -> None:
        if visible and self._started:
            await self.reconnect_push()
        for poller in self._all_pollers():
            await poller.visibility_changed(visible)

    async def focus_changed(self, focused: bool) -> None:
        for poller in self._all_pollers():
            await poller.focus_changed(focused)

    async def compose_started(self) -> None:
        """开始撰写消息：暂停讨论区轮询"""
        if self.scope is not None:
            await self.scope.message_poller.compose_started()

    async def compose_ended(self) -> None:
        if self.scope is not None:
            await self.scope.message_poller.compose_ended()

    # ---- 推送 ----

    def handle_push(self, name: str, data: Any) -> bool:
        """解码推送并路由到对应 Store

        Returns:
            True 如果某个 Store 的状态发生了变化
        """
        try:
            decoded = decode(name, data)
        except MalformedPayloadError as exc:
            log.warning("push_malformed", push_event=name, error=exc.message)
            return False

        if isinstance(decoded, PresenceSignal):
            scope = self.scope
            if scope is None or decoded.project_id not in (None, scope.project_id):
                return False
            return scope.messages.handle_presence(decoded)
        return self._route(decoded)

    def _route(self, event: PushEvent) -> bool:
        if event.domain == Domain.NOTIFICATIONS:
            store = self.notifications
            if store is None or event.scope_id not in (None, self.user_id):
                return False
            return store.apply_push(event)

        scope = self.scope
        if scope is None or event.scope_id not in (None, scope.project_id):
            log.debug(
                "push_out_of_scope",
                push_event=event.name,
                scope_id=event.scope_id,
            )
            return False
        store = scope.tasks if event.domain == Domain.TASKS else scope.messages
        return store.apply_push(event)

    async def emit_typing(self, thread_id: str | None = None, typing: bool = True) -> None:
        """广播当前用户的输入提示"""
        if self.push is None or self.scope is None:
            return
        signal = PresenceSignal(
            kind=PresenceKind.TYPING if typing else PresenceKind.STOP_TYPING,
            user_id=self.user_id,
            user_name=self.user_name,
            project_id=self.scope.project_id,
            thread_id=thread_id,
        )
        name, data = encode_presence(signal)
        await self.push.emit(name, data)

    # ---- 内部 ----

    def _make_poller(
        self,
        refresh: Callable[[], Awaitable[Any]],
        interval_s: float,
        name: str,
    ) -> PollScheduler:
        return PollScheduler(
            refresh,
            interval_s,
            name=name,
            clock=self.clock,
            sleep=self._sleep,
        )

    async def _subscribe(self, room: str) -> None:
        if self.push is not None:
            await self.push.subscribe(room)

    async def _unsubscribe(self, room: str) -> None:
        if self.push is not None:
            await self.push.unsubscribe(room)

