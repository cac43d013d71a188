"""NotificationStore -- 当前用户的通知

视图：按时间倒序的通知流、按自然日分组、统计；未读数始终从镜像派生。
批量操作（全部已读、批量已读、批量删除）作为一次网络调用整体确认或回滚。
"""

from collections.abc import Iterable
from datetime import timedelta
from typing import Any

from ..filters import NotificationFilters, apply_filters
from ..models import Domain, Notification
from ..pending import OperationKind, PendingOperation
from ..views import (
    DayGroup,
    NotificationStats,
    group_by_calendar_day,
    notification_stats,
    recent,
    sort_feed,
    unread_count,
)
from .base import DomainStore


class NotificationStore(DomainStore[Notification]):
    """通知 Store -- 作用域为接收者 user_id"""

    domain = Domain.NOTIFICATIONS
    model = Notification

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.filters = NotificationFilters()
        self.feed: list[Notification] = []
        self.by_day: list[DayGroup] = []
        self.unread_count = 0
        self.stats = NotificationStats()
        super().__init__(*args, **kwargs)

    def _recompute(self) -> None:
        records = self.mirror.list()
        visible = apply_filters(records, self.filters.predicate())
        self.feed = sort_feed(visible)
        self.by_day = group_by_calendar_day(visible)
        self.unread_count = unread_count(records)
        self.stats = notification_stats(records)

    def set_filters(self, **filters: Any) -> NotificationFilters:
        self.filters = NotificationFilters.model_validate(
            {**self.filters.model_dump(), **filters}
        )
        self._recompute()
        self._notify()
        return self.filters

    def clear_filters(self) -> None:
        self.filters = NotificationFilters()
        self._recompute()
        self._notify()

    def recent(self, hours: float = 24) -> list[Notification]:
        """最近 hours 小时内的通知"""
        since = self.clock.now() - timedelta(hours=hours)
        return recent(self.mirror.list(), since)

    # ---- 单条写入 ----

    def _read_changes(self, is_read: bool) -> dict[str, Any]:
        return {"is_read": is_read, "read_at": self.clock.now() if is_read else None}

    async def mark_read(self, notification_id: str) -> Notification | None:
        return await self._set_read(notification_id, True)

    async def mark_unread(self, notification_id: str) -> Notification | None:
        return await self._set_read(notification_id, False)

    async def _set_read(self, notification_id: str, is_read: bool) -> Notification | None:
        self._ensure_open()
        notification = self._require(notification_id)
        if notification.is_read == is_read:
            return notification
        op = PendingOperation(
            domain=self.domain,
            kind=OperationKind.UPDATE,
            record_id=notification.id,
            changes=self._read_changes(is_read),
        )

        async def call(op: PendingOperation) -> dict[str, Any]:
            return await self.api.mark_read(op.record_id, is_read, op_id=op.op_id)

        return await self.gateway.execute(op, call)

    async def delete(self, notification_id: str) -> None:
        self._ensure_open()
        notification = self._require(notification_id)
        op = PendingOperation(
            domain=self.domain,
            kind=OperationKind.DELETE,
            record_id=notification.id,
        )

        async def call(op: PendingOperation) -> Any:
            return await self.api.delete(self.domain, op.record_id, op_id=op.op_id)

        await self.gateway.execute(op, call)

    # ---- 批量写入 ----

    async def mark_all_read(self, project_id: str | None = None) -> int:
        """全部标记已读（可限定项目），返回本地受影响条数"""
        self._ensure_open()
        targets = [
            n
            for n in self.mirror.list()
            if not n.is_read and (project_id is None or n.project_id == project_id)
        ]
        ops = [
            PendingOperation(
                domain=self.domain,
                kind=OperationKind.UPDATE,
                record_id=n.id,
                changes=self._read_changes(True),
            )
            for n in targets
        ]

        async def call(ops: list[PendingOperation]) -> None:
            await self.api.mark_all_read(project_id, op_id=ops[0].op_id)
            return None

        await self.gateway.execute_batch(ops, call)
        return len(ops)

    async def mark_many_read(self, notification_ids: Iterable[str]) -> int:
        """批量标记已读，返回本地受影响条数"""
        self._ensure_open()
        targets = [n for n in self._resolve_many(notification_ids) if not n.is_read]
        ops = [
            PendingOperation(
                domain=self.domain,
                kind=OperationKind.UPDATE,
                record_id=n.id,
                changes=self._read_changes(True),
            )
            for n in targets
        ]

        async def call(ops: list[PendingOperation]) -> dict[str, Any]:
            records = await self.api.mark_many_read(
                [op.record_id for op in ops], True, op_id=ops[0].op_id
            )
            return {r["id"]: r for r in records if isinstance(r, dict) and "id" in r}

        await self.gateway.execute_batch(ops, call)
        return len(ops)

    async def delete_many(self, notification_ids: Iterable[str]) -> int:
        """批量删除，返回本地删除条数"""
        self._ensure_open()
        ops = [
            PendingOperation(
                domain=self.domain,
                kind=OperationKind.DELETE,
                record_id=n.id,
            )
            for n in self._resolve_many(notification_ids)
        ]

        async def call(ops: list[PendingOperation]) -> None:
            await self.api.delete_many(
                self.domain, [op.record_id for op in ops], op_id=ops[0].op_id
            )
            return None

        await self.gateway.execute_batch(ops, call)
        return len(ops)

    def _resolve_many(self, notification_ids: Iterable[str]) -> list[Notification]:
        found: dict[str, Notification] = {}
        for notification_id in notification_ids:
            notification = self.get(notification_id)
            if notification is not None:
                found[notification.id] = notification
        return list(found.values())
