"""Workspace -- 开发服务器的内存协作状态

实现协作服务的业务规则：项目成员与所有者权限、15 分钟消息编辑窗口、
消息墓碑、表情切换、提及/回复/指派通知、按时间倒序的游标分页。
每次写入后通过 LocalPushHub 向对应房间广播推送事件，
并回传请求头中的 opId / clientId，客户端据此识别自身写入的回声。
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, TypeVar

import structlog
from ulid import ULID

from synergysync.core.clock import Clock, SystemClock
from synergysync.core.codec import encode
from synergysync.core.config import EDIT_WINDOW_MINUTES
from synergysync.core.mentions import resolve_mentions
from synergysync.core.models import (
    Domain,
    Message,
    MessageDraft,
    MessageEdit,
    Notification,
    NotificationData,
    NotificationType,
    Reaction,
    RecordVerb,
    Task,
    TaskBatchUpdate,
    TaskChanges,
    TaskDraft,
    TaskStatus,
    UserRef,
)
from synergysync.core.protocols import room_for
from synergysync.transport.local_hub import LocalPushHub

log = structlog.get_logger()

T = TypeVar("T", Task, Message, Notification)


class DevApiError(Exception):
    """业务错误 -- 由应用层转换为 {"error": {"code", "message"}} 响应"""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


@dataclass
class RequestMeta:
    """写入请求的来源元数据（随推送回传）"""

    actor_id: str
    op_id: str | None = None
    client_id: str | None = None


@dataclass
class Project:
    """项目 -- 所有者拥有删除任意任务/消息的权限"""

    id: str
    name: str
    owner_id: str
    member_ids: set[str] = field(default_factory=set)


@dataclass
class PageResult:
    """一页结果"""

    items: list[Any]
    has_more: bool
    next_cursor: str | None


def paginate(items: Sequence[T], cursor: str | None, limit: int) -> PageResult:
    """最新在前的游标分页；游标为上一页最后一条记录的 ID

    Raises:
        DevApiError: 游标不存在（400）
    """
    # 同一时刻创建的记录保持插入顺序的倒序
    ordered = list(reversed(sorted(items, key=lambda r: r.created_at)))
    start = 0
    if cursor:
        ids = [r.id for r in ordered]
        if cursor not in ids:
            raise DevApiError(400, "INVALID_CURSOR", f"Unknown cursor: {cursor}")
        start = ids.index(cursor) + 1
    page = ordered[start : start + limit]
    has_more = start + limit < len(ordered)
    return PageResult(
        items=page,
        has_more=has_more,
        next_cursor=page[-1].id if has_more and page else None,
    )


class Workspace:
    """内存协作状态"""

    def __init__(self, hub: LocalPushHub | None = None, *, clock: Clock | None = None) -> None:
        """
        Args:
            hub: 推送广播器（None 时不广播）
            clock: 时钟（测试编辑窗口时注入 ManualClock）
        """
        self.hub = hub
        self.clock = clock or SystemClock()
        self.users: dict[str, UserRef] = {}
        self.projects: dict[str, Project] = {}
        self.tasks: dict[str, Task] = {}
        self.messages: dict[str, Message] = {}
        self.notifications: dict[str, Notification] = {}

    # ---- 目录 ----

    def add_user(self, user_id: str, name: str, email: str = "") -> UserRef:
        user = UserRef(id=user_id, name=name, email=email or f"{user_id}@example.com")
        self.users[user_id] = user
        return user

    def add_project(
        self,
        project_id: str,
        name: str,
        owner_id: str,
        members: Iterable[str] = (),
    ) -> Project:
        project = Project(
            id=project_id,
            name=name,
            owner_id=owner_id,
            member_ids={owner_id, *members},
        )
        self.projects[project_id] = project
        return project

    def members(self, project_id: str) -> list[UserRef]:
        project = self.projects[project_id]
        return [self.users[uid] for uid in sorted(project.member_ids) if uid in self.users]

    @classmethod
    def demo(cls, hub: LocalPushHub | None = None) -> "Workspace":
        """带演示数据的工作区（本地开发用）"""
        workspace = cls(hub)
        workspace.add_user("u-alice", "Alice Chen")
        workspace.add_user("u-bob", "Bob Li")
        workspace.add_user("u-carol", "Carol Wang")
        workspace.add_project("p-demo", "Demo Project", "u-alice", ["u-bob", "u-carol"])
        return workspace

    # ---- 权限 ----

    def actor(self, user_id: str | None) -> UserRef:
        """
        Raises:
            DevApiError: 未提供或未知用户（401）
        """
        if not user_id or user_id not in self.users:
            raise DevApiError(401, "UNAUTHENTICATED", "Authentication required")
        return self.users[user_id]

    def _project_for(self, project_id: str, actor_id: str) -> Project:
        project = self.projects.get(project_id)
        if project is None:
            raise DevApiError(404, "PROJECT_NOT_FOUND", f"Project {project_id} does not exist")
        if actor_id not in project.member_ids:
            raise DevApiError(403, "NOT_A_MEMBER", "You do not have access to this project")
        return project

    def _check_assignee(self, project: Project, assignee_id: str | None) -> None:
        if assignee_id is not None and assignee_id not in project.member_ids:
            raise DevApiError(
                400, "INVALID_ASSIGNEE", "Assignee is not a member of this project"
            )

    def _task(self, task_id: str, actor_id: str) -> tuple[Task, Project]:
        task = self.tasks.get(task_id)
        if task is None:
            raise DevApiError(404, "TASK_NOT_FOUND", f"Task {task_id} does not exist")
        return task, self._project_for(task.project_id, actor_id)

    def _message(self, message_id: str, actor_id: str) -> tuple[Message, Project]:
        message = self.messages.get(message_id)
        if message is None or message.is_deleted:
            raise DevApiError(404, "MESSAGE_NOT_FOUND", "Message not found")
        return message, self._project_for(message.project_id, actor_id)

    def _notification(self, notification_id: str, actor_id: str) -> Notification:
        notification = self.notifications.get(notification_id)
        if notification is None or notification.user_id != actor_id:
            raise DevApiError(404, "NOTIFICATION_NOT_FOUND", "Notification not found")
        return notification

    # ---- 推送 ----

    async def _publish(
        self,
        domain: Domain,
        verb: RecordVerb,
        record_id: str,
        scope_id: str,
        meta: RequestMeta | None,
        *,
        record: Task | Message | Notification | None = None,
        changes: dict[str, Any] | None = None,
    ) -> None:
        if self.hub is None:
            return
        name, data = encode(
            domain,
            verb,
            record_id,
            record=record.to_wire() if record is not None else None,
            changes=changes,
            op_id=meta.op_id if meta else None,
            client_id=meta.client_id if meta else None,
            ts=self.clock.now(),
        )
        scope_key = "userId" if domain == Domain.NOTIFICATIONS else "projectId"
        data.setdefault(scope_key, scope_id)
        delivered = await self.hub.broadcast(room_for(domain, scope_id), name, data)
        log.debug("push_published", push_event=name, record_id=record_id, delivered=delivered)

    # ---- 任务 ----

    def list_tasks(
        self,
        project_id: str,
        actor_id: str,
        *,
        status: TaskStatus | None = None,
        assignee_id: str | None = None,
        cursor: str | None = None,
        limit: int = 50,
    ) -> PageResult:
        self._project_for(project_id, actor_id)
        tasks = [
            t
            for t in self.tasks.values()
            if t.project_id == project_id
            and (status is None or t.status == status)
            and (assignee_id is None or t.assignee_id == assignee_id)
        ]
        return paginate(tasks, cursor, limit)

    async def create_task(self, project_id: str, draft: TaskDraft, meta: RequestMeta) -> Task:
        project = self._project_for(project_id, meta.actor_id)
        self._check_assignee(project, draft.assignee_id)
        now = self.clock.now()
        task = Task(
            id=str(ULID()),
            project_id=project_id,
            title=draft.title,
            description=draft.description,
            status=draft.status,
            priority=draft.priority,
            assignee_id=draft.assignee_id,
            creator_id=meta.actor_id,
            due_date=draft.due_date,
            created_at=now,
            updated_at=now,
            assignee=self.users.get(draft.assignee_id) if draft.assignee_id else None,
            creator=self.users[meta.actor_id],
        )
        self.tasks[task.id] = task
        log.info("task_created", task_id=task.id, project_id=project_id)
        await self._publish(Domain.TASKS, RecordVerb.CREATE, task.id, project_id, meta, record=task)
        if task.assignee_id:
            await self._notify_assigned(task, project, meta)
        return task

    async def update_task(self, task_id: str, changes: TaskChanges, meta: RequestMeta) -> Task:
        task, project = self._task(task_id, meta.actor_id)
        return await self._apply_task_changes(task, project, changes.changes(), meta)

    async def update_tasks(self, batch: TaskBatchUpdate, meta: RequestMeta) -> list[Task]:
        """批量修改任务；任何一个任务不存在或无权访问时整批不修改"""
        targets = [self._task(item.id, meta.actor_id) for item in batch.updates]
        for (_, project), item in zip(targets, batch.updates):
            if "assignee_id" in item.model_fields_set:
                self._check_assignee(project, item.assignee_id)
        updated = [
            await self._apply_task_changes(task, project, item.changes(), meta)
            for (task, project), item in zip(targets, batch.updates)
        ]
        log.info("tasks_batch_updated", count=len(updated), actor_id=meta.actor_id)
        return updated

    async def _apply_task_changes(
        self,
        task: Task,
        project: Project,
        update: dict[str, Any],
        meta: RequestMeta,
    ) -> Task:
        if "assignee_id" in update:
            self._check_assignee(project, update["assignee_id"])
            assignee_id = update["assignee_id"]
            update["assignee"] = self.users.get(assignee_id) if assignee_id else None
        previous = task
        task = task.model_copy(update={**update, "updated_at": self.clock.now()})
        self.tasks[task.id] = task
        await self._publish(
            Domain.TASKS, RecordVerb.UPDATE, task.id, task.project_id, meta, record=task
        )
        if task.assignee_id and task.assignee_id != previous.assignee_id:
            await self._notify_assigned(task, project, meta)
        if task.status != previous.status:
            await self._notify_completed(task, previous, project, meta)
        return task

    async def move_task(self, task_id: str, status: TaskStatus, meta: RequestMeta) -> Task:
        task, project = self._task(task_id, meta.actor_id)
        previous = task
        task = task.model_copy(update={"status": status, "updated_at": self.clock.now()})
        self.tasks[task.id] = task
        await self._publish(
            Domain.TASKS,
            RecordVerb.MOVE,
            task.id,
            task.project_id,
            meta,
            record=task,
            changes={"status": status},
        )
        await self._notify_completed(task, previous, project, meta)
        return task

    async def delete_task(self, task_id: str, meta: RequestMeta) -> None:
        task, project = self._task(task_id, meta.actor_id)
        if meta.actor_id not in (task.creator_id, project.owner_id):
            raise DevApiError(
                403, "FORBIDDEN", "Only the task creator or project owner can delete this task"
            )
        del self.tasks[task_id]
        log.info("task_deleted", task_id=task_id)
        await self._publish(Domain.TASKS, RecordVerb.DELETE, task_id, task.project_id, meta)

    # ---- 消息 ----

    def list_messages(
        self,
        project_id: str,
        actor_id: str,
        *,
        search: str | None = None,
        thread_id: str | None = None,
        cursor: str | None = None,
        limit: int = 50,
    ) -> PageResult:
        self._project_for(project_id, actor_id)
        needle = (search or "").strip().lower()
        messages = [
            m
            for m in self.messages.values()
            if m.project_id == project_id
            and (not needle or needle in m.content.lower())
            and (thread_id is None or m.thread_id == thread_id)
        ]
        return paginate(messages, cursor, limit)

    def _directory(self, project: Project) -> dict[str, str]:
        return {u.name: u.id for u in self.members(project.id) if u.name}

    async def post_message(
        self, project_id: str, draft: MessageDraft, meta: RequestMeta
    ) -> Message:
        project = self._project_for(project_id, meta.actor_id)
        parent: Message | None = None
        if draft.parent_id:
            parent = self.messages.get(draft.parent_id)
            if parent is None or parent.project_id != project_id:
                raise DevApiError(404, "PARENT_NOT_FOUND", "Parent message not found")
            if parent.is_deleted:
                raise DevApiError(400, "PARENT_DELETED", "Cannot reply to a deleted message")

        mentions = [
            uid
            for uid in resolve_mentions(draft.content, self._directory(project), draft.mentions)
            if uid in project.member_ids
        ]
        now = self.clock.now()
        message_id = str(ULID())
        message = Message(
            id=message_id,
            project_id=project_id,
            author_id=meta.actor_id,
            content=draft.content,
            parent_id=parent.id if parent else None,
            thread_id=(parent.thread_id or parent.id) if parent else message_id,
            mentions=mentions,
            attachments=draft.attachments,
            created_at=now,
            updated_at=now,
            author=self.users[meta.actor_id],
        )
        self.messages[message.id] = message
        log.info("message_posted", message_id=message.id, project_id=project_id)
        await self._publish(
            Domain.MESSAGES, RecordVerb.CREATE, message.id, project_id, meta, record=message
        )

        if parent is not None:
            parent = parent.model_copy(update={"reply_count": parent.reply_count + 1})
            self.messages[parent.id] = parent

        notified = await self._notify_mentions(message, project, mentions, meta)
        if parent is not None and parent.author_id not in (meta.actor_id, *notified):
            await self._notify(
                parent.author_id,
                NotificationType.REPLY,
                "New reply",
                f"{message.author.name if message.author else ''} replied to your message",
                project,
                meta,
                data=self._message_data(message, project),
            )
        return message

    async def edit_message(
        self, message_id: str, edit: MessageEdit, meta: RequestMeta
    ) -> Message:
        message, project = self._message(message_id, meta.actor_id)
        if message.author_id != meta.actor_id:
            raise DevApiError(
                403, "FORBIDDEN", "Only the message author can edit this message"
            )
        now = self.clock.now()
        if now - message.created_at > timedelta(minutes=EDIT_WINDOW_MINUTES):
            raise DevApiError(422, "EDIT_WINDOW_EXPIRED", "Message is too old to edit")

        mentions = [
            uid
            for uid in resolve_mentions(edit.content, self._directory(project), edit.mentions or ())
            if uid in project.member_ids
        ]
        new_mentions = [uid for uid in mentions if uid not in message.mentions]
        message = message.model_copy(
            update={
                "content": edit.content,
                "mentions": mentions,
                "is_edited": True,
                "edited_at": now,
                "updated_at": now,
            }
        )
        self.messages[message.id] = message
        await self._publish(
            Domain.MESSAGES,
            RecordVerb.UPDATE,
            message.id,
            message.project_id,
            meta,
            record=message,
        )
        await self._notify_mentions(message, project, new_mentions, meta)
        return message

    async def delete_message(self, message_id: str, meta: RequestMeta) -> Message:
        message, project = self._message(message_id, meta.actor_id)
        if meta.actor_id not in (message.author_id, project.owner_id):
            raise DevApiError(
                403, "FORBIDDEN", "Only the author or project owner can delete this message"
            )
        now = self.clock.now()
        message = message.tombstoned(now).model_copy(update={"updated_at": now})
        self.messages[message.id] = message
        log.info("message_deleted", message_id=message.id)
        await self._publish(
            Domain.MESSAGES,
            RecordVerb.DELETE,
            message.id,
            message.project_id,
            meta,
            record=message,
        )
        return message

    async def toggle_reaction(
        self, message_id: str, emoji: str, meta: RequestMeta
    ) -> Reaction | None:
        """切换表情回应；返回新增的回应，移除时返回 None"""
        message, _ = self._message(message_id, meta.actor_id)
        existing = [
            r for r in message.reactions if (r.user_id, r.emoji) == (meta.actor_id, emoji)
        ]
        now = self.clock.now()
        reaction: Reaction | None = None
        if existing:
            reactions = [r for r in message.reactions if r not in existing]
        else:
            reaction = Reaction(
                id=str(ULID()),
                emoji=emoji,
                user_id=meta.actor_id,
                user_name=self.users[meta.actor_id].name,
                created_at=now,
            )
            reactions = [*message.reactions, reaction]
        message = message.model_copy(update={"reactions": reactions, "updated_at": now})
        self.messages[message.id] = message
        await self._publish(
            Domain.MESSAGES,
            RecordVerb.UPDATE,
            message.id,
            message.project_id,
            meta,
            record=message,
        )
        return reaction

    # ---- 通知 ----

    def list_notifications(
        self,
        actor_id: str,
        *,
        project_id: str | None = None,
        unread_only: bool = False,
        cursor: str | None = None,
        limit: int = 50,
    ) -> tuple[PageResult, int]:
        """
        Returns:
            (一页通知, 未读总数)
        """
        owned = [
            n
            for n in self.notifications.values()
            if n.user_id == actor_id and (project_id is None or n.project_id == project_id)
        ]
        unread = sum(1 for n in owned if not n.is_read)
        if unread_only:
            owned = [n for n in owned if not n.is_read]
        return paginate(owned, cursor, limit), unread

    async def set_read(
        self, notification_id: str, is_read: bool, meta: RequestMeta
    ) -> Notification:
        notification = self._notification(notification_id, meta.actor_id)
        notification = self._with_read(notification, is_read)
        await self._publish(
            Domain.NOTIFICATIONS,
            RecordVerb.UPDATE,
            notification.id,
            notification.user_id,
            meta,
            record=notification,
        )
        return notification

    async def set_many_read(
        self, notification_ids: Iterable[str], is_read: bool, meta: RequestMeta
    ) -> list[Notification]:
        updated: list[Notification] = []
        for notification_id in dict.fromkeys(notification_ids):
            notification = self.notifications.get(notification_id)
            if notification is None or notification.user_id != meta.actor_id:
                continue
            notification = self._with_read(notification, is_read)
            updated.append(notification)
            await self._publish(
                Domain.NOTIFICATIONS,
                RecordVerb.UPDATE,
                notification.id,
                notification.user_id,
                meta,
                record=notification,
            )
        return updated

    async def mark_all_read(self, project_id: str | None, meta: RequestMeta) -> int:
        targets = [
            n
            for n in self.notifications.values()
            if n.user_id == meta.actor_id
            and not n.is_read
            and (project_id is None or n.project_id == project_id)
        ]
        updated = await self.set_many_read([n.id for n in targets], True, meta)
        return len(updated)

    async def delete_notification(self, notification_id: str, meta: RequestMeta) -> None:
        notification = self._notification(notification_id, meta.actor_id)
        del self.notifications[notification.id]
        await self._publish(
            Domain.NOTIFICATIONS,
            RecordVerb.DELETE,
            notification.id,
            notification.user_id,
            meta,
        )

    async def delete_notifications(
        self, notification_ids: Iterable[str], meta: RequestMeta
    ) -> int:
        count = 0
        for notification_id in dict.fromkeys(notification_ids):
            notification = self.notifications.get(notification_id)
            if notification is None or notification.user_id != meta.actor_id:
                continue
            await self.delete_notification(notification_id, meta)
            count += 1
        return count

    def _with_read(self, notification: Notification, is_read: bool) -> Notification:
        now = self.clock.now()
        notification = notification.model_copy(
            update={
                "is_read": is_read,
                "read_at": now if is_read else None,
                "updated_at": now,
            }
        )
        self.notifications[notification.id] = notification
        return notification

    # ---- 通知生成 ----

    def _message_data(self, message: Message, project: Project) -> NotificationData:
        return NotificationData(
            message_id=message.id,
            message_content=message.content[:100],
            thread_id=message.thread_id,
            project_id=project.id,
            project_name=project.name,
            url=f"/dashboard/projects/{project.id}/messages?thread={message.thread_id}",
        )

    async def _notify_mentions(
        self,
        message: Message,
        project: Project,
        mentions: Iterable[str],
        meta: RequestMeta,
    ) -> list[str]:
        """通知被提及的用户（不通知自己），返回被通知的用户 ID"""
        author = message.author.name if message.author else ""
        notified: list[str] = []
        for user_id in mentions:
            if user_id == message.author_id:
                continue
            await self._notify(
                user_id,
                NotificationType.MENTION,
                "You were mentioned",
                f"{author} mentioned you in a message",
                project,
                meta,
                data=self._message_data(message, project),
            )
            notified.append(user_id)
        return notified

    async def _notify_assigned(self, task: Task, project: Project, meta: RequestMeta) -> None:
        if task.assignee_id is None or task.assignee_id == meta.actor_id:
            return
        await self._notify(
            task.assignee_id,
            NotificationType.TASK_ASSIGNED,
            "Task assigned",
            f"You were assigned to {task.title}",
            project,
            meta,
            data=NotificationData(
                task_id=task.id,
                task_title=task.title,
                project_id=project.id,
                project_name=project.name,
                url=f"/dashboard/projects/{project.id}/tasks",
            ),
        )

    async def _notify_completed(
        self, task: Task, previous: Task, project: Project, meta: RequestMeta
    ) -> None:
        if task.status != TaskStatus.DONE or previous.status == TaskStatus.DONE:
            return
        if not task.creator_id or task.creator_id == meta.actor_id:
            return
        await self._notify(
            task.creator_id,
            NotificationType.TASK_COMPLETED,
            "Task completed",
            f"{task.title} was completed",
            project,
            meta,
            data=NotificationData(
                task_id=task.id,
                task_title=task.title,
                project_id=project.id,
                project_name=project.name,
            ),
        )

    async def _notify(
        self,
        user_id: str,
        type_: NotificationType,
        title: str,
        message: str,
        project: Project,
        meta: RequestMeta,
        *,
        data: NotificationData,
    ) -> Notification:
        now = self.clock.now()
        notification = Notification(
            id=str(ULID()),
            type=type_,
            title=title,
            message=message,
            data=data,
            user_id=user_id,
            from_user_id=meta.actor_id,
            project_id=project.id,
            created_at=now,
            updated_at=now,
            from_user=self.users.get(meta.actor_id),
        )
        self.notifications[notification.id] = notification
        # 通知由他人的写入触发，不携带 opId
        await self._publish(
            Domain.NOTIFICATIONS,
            RecordVerb.CREATE,
            notification.id,
            user_id,
            None,
            record=notification,
        )
        return notification
