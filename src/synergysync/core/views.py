"""派生视图构建 -- 纯函数，每次重算 O(n)（排序除外）

看板分列、线程聚合、通知按日分组与未读计数全部从镜像记录派生，
不保存任何独立状态。
"""

from collections import defaultdict
from collections.abc import Iterable
from datetime import UTC, date, datetime, tzinfo

from pydantic import BaseModel, Field

from .models import Message, MessageThread, Notification, Task, TaskStatus


class TaskBoard(BaseModel):
    """看板：每个状态一列，列内按 created_at、id 升序"""

    columns: dict[TaskStatus, list[Task]] = Field(
        default_factory=lambda: {status: [] for status in TaskStatus}
    )

    def __getitem__(self, status: TaskStatus) -> list[Task]:
        return self.columns[status]

    @property
    def counts(self) -> dict[TaskStatus, int]:
        return {status: len(tasks) for status, tasks in self.columns.items()}

    @property
    def total(self) -> int:
        return sum(len(tasks) for tasks in self.columns.values())


class DayGroup(BaseModel):
    """某一自然日的通知"""

    day: date
    items: list[Notification]


class NotificationStats(BaseModel):
    """通知统计"""

    total: int = 0
    unread: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    by_project: dict[str, int] = Field(default_factory=dict)


def _task_key(task: Task) -> tuple[datetime, str]:
    return (task.created_at, task.id)


def sort_tasks(records: Iterable[Task]) -> list[Task]:
    """按 created_at、id 升序排列任务"""
    return sorted(records, key=_task_key)


def group_tasks_by_status(records: Iterable[Task]) -> TaskBoard:
    """按状态分列

    每个任务恰好出现在与其 status 对应的一列中。
    """
    board = TaskBoard()
    for task in records:
        board.columns[task.status].append(task)
    for tasks in board.columns.values():
        tasks.sort(key=_task_key)
    return board


def root_messages(records: Iterable[Message]) -> list[Message]:
    """根消息，按 created_at 降序"""
    roots = [m for m in records if m.is_root]
    roots.sort(key=lambda m: (m.created_at, m.id), reverse=True)
    return roots


def _make_thread(root: Message, replies: list[Message]) -> MessageThread:
    replies = sorted(replies, key=lambda m: (m.created_at, m.id))
    participants = list(dict.fromkeys([root.author_id, *(r.author_id for r in replies)]))
    return MessageThread(
        root=root,
        replies=replies,
        participants=participants,
        last_reply_at=replies[-1].created_at if replies else None,
    )


def build_threads(records: Iterable[Message]) -> list[MessageThread]:
    """聚合全部线程，按根消息 created_at 降序

    thread_id 无法解析到根消息的回复不计入任何线程（见 orphan_replies）。
    """
    records = list(records)
    replies_by_thread: dict[str, list[Message]] = defaultdict(list)
    for message in records:
        if not message.is_root:
            replies_by_thread[message.thread_id].append(message)
    return [
        _make_thread(root, replies_by_thread.get(root.id, []))
        for root in root_messages(records)
    ]


def thread_for(root_id: str, records: Iterable[Message]) -> MessageThread | None:
    """单个线程：根消息 + 共享其 thread_id 的全部回复（含回复的回复）

    Returns:
        MessageThread；root_id 不是镜像中的根消息时返回 None
    """
    root: Message | None = None
    replies: list[Message] = []
    for message in records:
        if message.id == root_id and message.is_root:
            root = message
        elif not message.is_root and message.thread_id == root_id:
            replies.append(message)
    if root is None:
        return None
    return _make_thread(root, replies)


def orphan_replies(records: Iterable[Message]) -> list[Message]:
    """thread_id 无法解析到根消息的回复"""
    records = list(records)
    root_ids = {m.id for m in records if m.is_root}
    return [m for m in records if not m.is_root and m.thread_id not in root_ids]


def sort_feed(records: Iterable[Notification]) -> list[Notification]:
    """通知按 created_at 降序"""
    return sorted(records, key=lambda n: (n.created_at, n.id), reverse=True)


def group_by_calendar_day(
    records: Iterable[Notification],
    tz: tzinfo = UTC,
) -> list[DayGroup]:
    """按自然日分组：最新的日期在前，组内最新的在前

    Args:
        records: 通知记录
        tz: 划分自然日使用的时区
    """
    groups: dict[date, list[Notification]] = defaultdict(list)
    for notification in sort_feed(records):
        groups[notification.created_at.astimezone(tz).date()].append(notification)
    return [
        DayGroup(day=day, items=items)
        for day, items in sorted(groups.items(), key=lambda kv: kv[0], reverse=True)
    ]


def unread_count(records: Iterable[Notification]) -> int:
    """未读数 -- 始终从镜像派生"""
    return sum(1 for n in records if not n.is_read)


def notification_stats(records: Iterable[Notification]) -> NotificationStats:
    """总数、未读数、按类型与按项目计数"""
    stats = NotificationStats()
    for n in records:
        stats.total += 1
        if not n.is_read:
            stats.unread += 1
        stats.by_type[n.type.value] = stats.by_type.get(n.type.value, 0) + 1
        if n.project_id:
            stats.by_project[n.project_id] = stats.by_project.get(n.project_id, 0) + 1
    return stats


def recent(records: Iterable[Notification], since: datetime) -> list[Notification]:
    """since 之后创建的通知，最新在前"""
    return sort_feed(n for n in records if n.created_at >= since)
