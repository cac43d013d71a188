"""过滤器 -- 纯函数、可组合，在分组之前应用

每个过滤模型通过 predicate() 生成谓词；all_of 组合多个谓词，
apply_filters 将谓词应用到记录序列。
"""

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Literal, TypeVar

from pydantic import BaseModel, Field

from .models import Message, Notification, NotificationType, Task, TaskPriority, TaskStatus

T = TypeVar("T")

Predicate = Callable[[T], bool]

ALL: Literal["ALL"] = "ALL"
UNASSIGNED = "UNASSIGNED"


def all_of(*predicates: Predicate) -> Predicate:
    """组合多个谓词（全部满足）"""

    def combined(record) -> bool:
        return all(p(record) for p in predicates)

    return combined


def apply_filters(records: Iterable[T], *predicates: Predicate) -> list[T]:
    """应用谓词过滤记录，保持原顺序"""
    if not predicates:
        return list(records)
    check = all_of(*predicates)
    return [r for r in records if check(r)]


def _contains(haystack: str | None, needle: str) -> bool:
    return bool(haystack) and needle in haystack.lower()


class TaskFilters(BaseModel):
    """看板过滤条件"""

    status: TaskStatus | Literal["ALL"] = Field(default=ALL, description="状态或 ALL")
    priority: TaskPriority | Literal["ALL"] = Field(default=ALL, description="优先级或 ALL")
    assignee: str = Field(
        default=ALL,
        description="负责人 ID、UNASSIGNED 或 ALL",
    )
    search: str = Field(default="", description="标题/描述/负责人名称，不区分大小写")

    @property
    def is_active(self) -> bool:
        return (
            self.status != ALL
            or self.priority != ALL
            or self.assignee != ALL
            or bool(self.search.strip())
        )

    def predicate(self) -> Predicate[Task]:
        needle = self.search.strip().lower()

        def check(task: Task) -> bool:
            if self.status != ALL and task.status != self.status:
                return False
            if self.priority != ALL and task.priority != self.priority:
                return False
            if self.assignee == UNASSIGNED:
                if task.assignee_id is not None:
                    return False
            elif self.assignee != ALL and task.assignee_id != self.assignee:
                return False
            if needle:
                assignee_name = task.assignee.name if task.assignee else None
                if not (
                    _contains(task.title, needle)
                    or _contains(task.description, needle)
                    or _contains(assignee_name, needle)
                ):
                    return False
            return True

        return check


class MessageFilters(BaseModel):
    """消息过滤条件"""

    search: str = Field(default="", description="内容或作者名称，不区分大小写")
    author_id: str | None = Field(default=None, description="作者")
    has_attachments: bool | None = Field(default=None, description="是否带附件")
    date_from: datetime | None = Field(default=None, description="起始时间（含）")
    date_to: datetime | None = Field(default=None, description="结束时间（含）")
    only_mentions: bool = Field(default=False, description="仅包含提及的消息")
    mentioned_user_id: str | None = Field(default=None, description="提及了该用户")

    @property
    def is_active(self) -> bool:
        return self != MessageFilters()

    def predicate(self) -> Predicate[Message]:
        needle = self.search.strip().lower()

        def check(message: Message) -> bool:
            if needle:
                author_name = message.author.name if message.author else None
                if not (_contains(message.content, needle) or _contains(author_name, needle)):
                    return False
            if self.author_id and message.author_id != self.author_id:
                return False
            if self.has_attachments is not None and (
                bool(message.attachments) != self.has_attachments
            ):
                return False
            if self.date_from and message.created_at < self.date_from:
                return False
            if self.date_to and message.created_at > self.date_to:
                return False
            if self.only_mentions and not message.mentions:
                return False
            if self.mentioned_user_id and self.mentioned_user_id not in message.mentions:
                return False
            return True

        return check


class NotificationFilters(BaseModel):
    """通知过滤条件"""

    type: NotificationType | None = None
    project_id: str | None = None
    is_read: bool | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None

    def predicate(self) -> Predicate[Notification]:
        def check(n: Notification) -> bool:
            if self.type is not None and n.type != self.type:
                return False
            if self.project_id and n.project_id != self.project_id:
                return False
            if self.is_read is not None and n.is_read != self.is_read:
                return False
            if self.date_from and n.created_at < self.date_from:
                return False
            if self.date_to and n.created_at > self.date_to:
                return False
            return True

        return check
