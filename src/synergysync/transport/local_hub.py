"""LocalPushHub -- 内存中推送广播器

每个订阅者持有一个 asyncio.Queue，按房间 subscribe/unsubscribe/broadcast。
开发服务器用它向同进程内的客户端广播记录变更；LocalPushChannel 实现
PushChannel 协议，使 SyncSession 无需 Socket.IO 服务即可端到端运行。
"""

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Mapping
from typing import Any

import structlog

from synergysync.core.protocols import PushHandler

log = structlog.get_logger()

PushItem = tuple[str, dict[str, Any]]


class LocalPushHub:
    """推送广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        # room -> set of asyncio.Queue
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    def new_queue(self) -> asyncio.Queue:
        return asyncio.Queue(maxsize=self._queue_maxsize)

    async def subscribe(self, room: str, queue: asyncio.Queue | None = None) -> asyncio.Queue:
        """订阅房间

        Args:
            room: 房间名
            queue: 复用的队列（同一通道订阅多个房间时共享）

        Returns:
            asyncio.Queue 实例，房间内新事件会被推送到此队列
        """
        queue = queue if queue is not None else self.new_queue()
        self._subscribers[room].add(queue)
        return queue

    async def unsubscribe(self, room: str, queue: asyncio.Queue) -> None:
        """取消订阅

        Args:
            room: 房间名
            queue: 之前订阅时使用的队列
        """
        self._subscribers[room].discard(queue)
        if not self._subscribers[room]:
            del self._subscribers[room]

    async def broadcast(
        self,
        room: str,
        name: str,
        data: Mapping[str, Any],
        *,
        exclude: asyncio.Queue | None = None,
    ) -> int:
        """向房间内所有订阅者广播事件

        Args:
            room: 房间名
            name: 事件名
            data: 事件载荷
            exclude: 不接收此事件的队列（发送者自身）

        Returns:
            成功投递的订阅者数量
        """
        delivered = 0
        dead_queues = []
        for queue in self._subscribers.get(room, set()):
            if queue is exclude:
                continue
            try:
                queue.put_nowait((name, dict(data)))
                delivered += 1
            except asyncio.QueueFull:
                dead_queues.append(queue)

        # 清理已满的队列
        for q in dead_queues:
            self._subscribers[room].discard(q)
            log.warning("push_subscriber_dropped", room=room, push_event=name)
        if room in self._subscribers and not self._subscribers[room]:
            del self._subscribers[room]
        return delivered

    def subscriber_count(self, room: str) -> int:
        return len(self._subscribers.get(room, ()))

    def channel(self) -> "LocalPushChannel":
        """创建一个连接到本广播器的推送通道"""
        return LocalPushChannel(self)


class LocalPushChannel:
    """进程内推送通道 -- 实现 PushChannel 协议

    connect 后由后台任务消费队列并调用回调；未连接时可用 flush 同步投递。
    客户端 emit 的事件（输入提示）广播到对应项目的讨论区房间，发送者自身不接收。
    """

    def __init__(self, hub: LocalPushHub) -> None:
        self._hub = hub
        self._queue = hub.new_queue()
        self._rooms: set[str] = set()
        self._handlers: list[PushHandler] = []
        self._pump: asyncio.Task | None = None

    @property
    def connected(self) -> bool:
        return self._pump is not None and not self._pump.done()

    @property
    def rooms(self) -> set[str]:
        return set(self._rooms)

    async def connect(self) -> None:
        if self.connected:
            return
        self._pump = asyncio.create_task(self._run(), name="local-push-pump")

    async def disconnect(self) -> None:
        for room in list(self._rooms):
            await self.unsubscribe(room)
        pump, self._pump = self._pump, None
        if pump is not None:
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass

    async def subscribe(self, room: str) -> None:
        if room in self._rooms:
            return
        self._rooms.add(room)
        await self._hub.subscribe(room, self._queue)

    async def unsubscribe(self, room: str) -> None:
        if room not in self._rooms:
            return
        self._rooms.discard(room)
        await self._hub.unsubscribe(room, self._queue)

    async def emit(self, event: str, data: Mapping[str, Any]) -> None:
        project_id = data.get("projectId")
        if not project_id:
            log.debug("push_emit_without_room", push_event=event)
            return
        await self._hub.broadcast(
            f"project:{project_id}:messages", event, data, exclude=self._queue
        )

    def on_event(self, handler: PushHandler) -> None:
        self._handlers.append(handler)

    async def flush(self) -> int:
        """投递所有已入队的事件，返回投递条数

        已连接时等待后台任务消费完队列；未连接时在当前任务内直接投递。
        """
        if self.connected:
            pending = self._queue.qsize()
            await self._queue.join()
            return pending
        delivered = 0
        while not self._queue.empty():
            name, data = self._queue.get_nowait()
            try:
                await self._deliver(name, data)
            finally:
                self._queue.task_done()
            delivered += 1
        return delivered

    async def _run(self) -> None:
        while True:
            name, data = await self._queue.get()
            try:
                await self._deliver(name, data)
            except Exception:
                log.exception("push_handler_failed", push_event=name)
            finally:
                self._queue.task_done()

    async def _deliver(self, name: str, data: dict[str, Any]) -> None:
        for handler in list(self._handlers):
            result = handler(name, data)
            if inspect.isawaitable(result):
                await result
