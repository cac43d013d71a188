"""传输层 Protocol 接口定义

请求/响应（ApiBackend）与推送通道（PushChannel）的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol

from .models import Domain, Page, ReactionResult, TaskStatus

PushHandler = Callable[[str, Any], Awaitable[None] | None]


class ApiBackend(Protocol):
    """REST API 接口

    所有写入方法接受 op_id，随请求发送，以便识别自身写入的推送回声。
    失败时抛出 synergysync.core.exceptions 中的异常。
    """

    async def list_records(
        self,
        domain: Domain,
        scope_id: str,
        *,
        filters: Mapping[str, Any] | None = None,
        cursor: str | None = None,
        limit: int = 50,
    ) -> Page:
        """分页列出作用域内的记录（最新的在前）"""
        ...

    async def create(
        self,
        domain: Domain,
        scope_id: str,
        payload: Mapping[str, Any],
        *,
        op_id: str | None = None,
    ) -> dict[str, Any]:
        """创建记录，返回服务端记录"""
        ...

    async def update(
        self,
        domain: Domain,
        record_id: str,
        changes: Mapping[str, Any],
        *,
        op_id: str | None = None,
    ) -> dict[str, Any]:
        """部分更新记录，返回服务端记录"""
        ...

    async def move(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        op_id: str | None = None,
    ) -> dict[str, Any]:
        """修改任务状态，返回服务端记录"""
        ...

    async def update_tasks(
        self,
        updates: list[Mapping[str, Any]],
        *,
        op_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """批量更新任务的状态、优先级与负责人，返回服务端记录

        updates 中每项为线上格式 {"id", "status"?, "priority"?, "assigneeId"?}；
        任何一个任务不存在或无权访问时整批失败。
        """
        ...

    async def delete(
        self,
        domain: Domain,
        record_id: str,
        *,
        op_id: str | None = None,
    ) -> dict[str, Any] | None:
        """删除记录（消息为软删除）"""
        ...

    async def react(
        self,
        message_id: str,
        emoji: str,
        *,
        op_id: str | None = None,
    ) -> ReactionResult:
        """切换表情回应"""
        ...

    async def mark_read(
        self,
        notification_id: str,
        is_read: bool = True,
        *,
        op_id: str | None = None,
    ) -> dict[str, Any]:
        """标记单条通知已读/未读，返回服务端记录"""
        ...

    async def mark_many_read(
        self,
        notification_ids: list[str],
        is_read: bool = True,
        *,
        op_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """批量标记已读/未读，返回服务端记录"""
        ...

    async def mark_all_read(
        self,
        project_id: str | None = None,
        *,
        op_id: str | None = None,
    ) -> int:
        """全部标记已读，返回受影响条数"""
        ...

    async def delete_many(
        self,
        domain: Domain,
        record_ids: list[str],
        *,
        op_id: str | None = None,
    ) -> int:
        """批量删除，返回删除条数"""
        ...


class PushChannel(Protocol):
    """推送通道接口 -- 每个 (domain, scope) 一个房间"""

    @property
    def connected(self) -> bool:
        """是否已连接"""
        ...

    async def connect(self) -> None:
        """建立连接"""
        ...

    async def disconnect(self) -> None:
        """断开连接"""
        ...

    async def subscribe(self, room: str) -> None:
        """加入房间"""
        ...

    async def unsubscribe(self, room: str) -> None:
        """离开房间"""
        ...

    async def emit(self, event: str, data: Mapping[str, Any]) -> None:
        """发送事件（fire-and-forget）"""
        ...

    def on_event(self, handler: PushHandler) -> None:
        """注册事件回调 handler(event_name, data)"""
        ...


def room_for(domain: Domain, scope_id: str) -> str:
    """领域与作用域对应的推送房间名"""
    if domain == Domain.NOTIFICATIONS:
        return f"user:{scope_id}:notifications"
    return f"project:{scope_id}:{domain.value}"
