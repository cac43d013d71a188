"""MessageStore -- 项目讨论区

视图：根消息（最新在前）、全部线程、当前打开的线程。
回复的 thread_id 在撰写时同步解析；父消息尚未确认时回复排队等待，确认后改指向服务端 ID。
删除为乐观墓碑；表情回应按 (user_id, emoji) 切换。
输入提示由 TypingTracker 管理，撰写中的草稿只保存在本地，两者都不进入镜像。
"""

from collections.abc import Iterable, Sequence
from typing import Any

from pydantic import BaseModel, Field

from ..config import DELETED_MESSAGE_CONTENT
from ..exceptions import MutationValidationError
from ..filters import MessageFilters, apply_filters
from ..mentions import resolve_mentions
from ..models import (
    Attachment,
    Domain,
    Message,
    MessageDraft,
    MessageEdit,
    MessageThread,
    PresenceSignal,
    Reaction,
    ReactionOutcome,
    ReactionRequest,
    ReactionResult,
    UserRef,
)
from ..pending import OperationKind, PendingOperation
from ..presence import TypingEntry, TypingTracker
from ..views import build_threads, orphan_replies, root_messages, thread_for
from .base import DomainStore


def _with_reaction(message: Message, reaction: Reaction) -> Message:
    kept = [
        r
        for r in message.reactions
        if (r.user_id, r.emoji) != (reaction.user_id, reaction.emoji)
    ]
    return message.model_copy(update={"reactions": [*kept, reaction]})


def _without_reaction(message: Message, user_id: str, emoji: str) -> Message:
    kept = [r for r in message.reactions if (r.user_id, r.emoji) != (user_id, emoji)]
    return message.model_copy(update={"reactions": kept})


class ComposerDraft(BaseModel):
    """撰写中的消息草稿（未校验，只在本地保存）"""

    content: str = ""
    mentions: list[str] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)
    parent_id: str | None = None
    thread_id: str | None = None


class MessageStore(DomainStore[Message]):
    """项目讨论区 Store"""

    domain = Domain.MESSAGES
    model = Message
    tombstone = staticmethod(Message.tombstoned)
    correlate_fields = ("project_id", "author_id", "content", "parent_id")
    reference_fields = ("parent_id", "thread_id")

    def __init__(
        self,
        *args: Any,
        members: Iterable[UserRef] = (),
        user_name: str = "",
        **kwargs: Any,
    ) -> None:
        self.filters = MessageFilters()
        self.current_thread_id: str | None = None
        self.draft = ComposerDraft()
        self.messages: list[Message] = []
        self.root_messages: list[Message] = []
        self.threads: list[MessageThread] = []
        self.current_thread: MessageThread | None = None
        self.orphans: list[Message] = []
        self.members: dict[str, UserRef] = {}
        self.user_name = user_name
        super().__init__(*args, **kwargs)
        self.typing = TypingTracker(self.clock, self.config.typing_timeout_s, self.user_id)
        self.set_members(members)

    def _recompute(self) -> None:
        records = self.mirror.list()
        visible = apply_filters(records, self.filters.predicate())
        self.messages = sorted(visible, key=lambda m: (m.created_at, m.id))
        self.root_messages = root_messages(visible)
        self.threads = build_threads(visible)
        self.orphans = orphan_replies(records)
        self.current_thread = (
            thread_for(self.current_thread_id, records) if self.current_thread_id else None
        )

    # ---- 成员与提及 ----

    def set_members(self, members: Iterable[UserRef]) -> None:
        """设置项目成员目录（提及解析用）"""
        self.members = {m.id: m for m in members}
        if not self.user_name and self.user_id in self.members:
            self.user_name = self.members[self.user_id].name

    @property
    def directory(self) -> dict[str, str]:
        """成员名称 -> 用户 ID"""
        return {m.name: m.id for m in self.members.values() if m.name}

    def _me(self) -> UserRef:
        return self.members.get(self.user_id) or UserRef(id=self.user_id, name=self.user_name)

    # ---- 过滤与查询 ----

    def set_filters(self, **filters: Any) -> MessageFilters:
        self.filters = MessageFilters.model_validate({**self.filters.model_dump(), **filters})
        self._recompute()
        self._notify()
        return self.filters

    def clear_filters(self) -> None:
        self.filters = MessageFilters()
        self._recompute()
        self._notify()

    def search(self, query: str) -> list[Message]:
        return apply_filters(self.messages, MessageFilters(search=query).predicate())

    def by_author(self, author_id: str) -> list[Message]:
        return apply_filters(self.messages, MessageFilters(author_id=author_id).predicate())

    def with_mentions(self, user_id: str | None = None) -> list[Message]:
        """提及了某用户（缺省为当前用户）的消息"""
        target = user_id or self.user_id
        return apply_filters(
            self.messages, MessageFilters(mentioned_user_id=target).predicate()
        )

    # ---- 线程 ----

    def open_thread(self, root_id: str) -> MessageThread | None:
        self.current_thread_id = self.reconciler.canonical_id(root_id)
        self._recompute()
        self._notify()
        return self.current_thread

    def close_thread(self) -> None:
        self.current_thread_id = None
        self.current_thread = None
        self._notify()

    # ---- 草稿 ----

    def set_draft(self, **fields: Any) -> ComposerDraft:
        """更新草稿（只覆盖给出的字段）"""
        self.draft = ComposerDraft.model_validate({**self.draft.model_dump(), **fields})
        self._notify()
        return self.draft

    def get_draft(self) -> ComposerDraft:
        return self.draft.model_copy(deep=True)

    def clear_draft(self) -> None:
        self.draft = ComposerDraft()
        self._notify()

    async def send_draft(self) -> Message | None:
        """发送当前草稿（有 parent_id 时作为回复），成功后清空草稿"""
        draft = self.draft
        if draft.parent_id is not None:
            return await self.reply(
                draft.parent_id,
                draft.content,
                mentions=draft.mentions,
                attachments=draft.attachments,
            )
        return await self.post_message(
            draft.content, mentions=draft.mentions, attachments=draft.attachments
        )

    # ---- 写入 ----

    async def post_message(
        self,
        content: str,
        *,
        mentions: Sequence[str] = (),
        attachments: Sequence[Any] = (),
    ) -> Message | None:
        """发送根消息"""
        return await self._send(
            {"content": content, "mentions": list(mentions), "attachments": list(attachments)}
        )

    async def reply(
        self,
        parent_id: str,
        content: str,
        *,
        mentions: Sequence[str] = (),
        attachments: Sequence[Any] = (),
    ) -> Message | None:
        """回复消息 -- thread_id 在此刻同步解析为父消息所在线程

        父消息仍是临时记录时回复立即乐观显示，网络调用等待父消息创建确认后
        使用服务端 ID 发出；父消息创建失败时回复随之失败。
        """
        parent = self._require(parent_id)
        if parent.is_deleted:
            raise MutationValidationError("不能回复已删除的消息")
        return await self._send(
            {
                "content": content,
                "mentions": list(mentions),
                "attachments": list(attachments),
                "parent_id": parent.id,
                "thread_id": parent.thread_id or parent.id,
            }
        )

    async def _send(self, data: dict[str, Any]) -> Message | None:
        self._ensure_open()
        payload = self.gateway.validate(MessageDraft, data)
        mention_ids = resolve_mentions(payload.content, self.directory, payload.mentions)
        payload = payload.model_copy(update={"mentions": mention_ids})
        now = self.clock.now()
        provisional_id = self._new_provisional_id()
        provisional = Message(
            id=provisional_id,
            project_id=self.scope_id,
            author_id=self.user_id,
            content=payload.content,
            parent_id=payload.parent_id,
            thread_id=payload.thread_id or provisional_id,
            mentions=mention_ids,
            attachments=payload.attachments,
            created_at=now,
            updated_at=now,
            author=self._me(),
        )
        op = PendingOperation(
            domain=self.domain,
            kind=OperationKind.CREATE,
            record_id=provisional.id,
            record=provisional,
        )

        async def call(op: PendingOperation) -> dict[str, Any]:
            body = payload
            if payload.parent_id is not None:
                parent_id = await self.gateway.wait_for_create(payload.parent_id)
                thread_id = await self.gateway.wait_for_create(payload.thread_id or parent_id)
                body = payload.model_copy(update={"parent_id": parent_id, "thread_id": thread_id})
            return await self.api.create(self.domain, self.scope_id, body.to_wire(), op_id=op.op_id)

        message = await self.gateway.execute(op, call)
        if message is not None and self._is_draft(payload.content, data.get("parent_id")):
            self.clear_draft()
        return message

    def _is_draft(self, content: str, parent_id: str | None) -> bool:
        """发送的内容是否来自当前草稿"""
        draft = self.draft
        if draft.content.strip() != content:
            return False
        if draft.parent_id is None or parent_id is None:
            return draft.parent_id == parent_id
        canonical = self.reconciler.canonical_id
        return canonical(draft.parent_id) == canonical(parent_id)

    async def edit_message(
        self,
        message_id: str,
        content: str,
        *,
        mentions: Sequence[str] | None = None,
    ) -> Message | None:
        """编辑消息内容（作者限定、编辑窗口由服务端判定）"""
        self._ensure_open()
        payload = self.gateway.validate(
            MessageEdit,
            {"content": content, "mentions": list(mentions) if mentions is not None else None},
        )
        message = self._require(message_id)
        if message.is_deleted:
            raise MutationValidationError("不能编辑已删除的消息")
        mention_ids = resolve_mentions(payload.content, self.directory, payload.mentions or ())
        payload = payload.model_copy(update={"mentions": mention_ids})
        wire = payload.to_wire()
        op = PendingOperation(
            domain=self.domain,
            kind=OperationKind.UPDATE,
            record_id=message.id,
            changes={
                "content": payload.content,
                "mentions": mention_ids,
                "is_edited": True,
                "edited_at": self.clock.now(),
            },
        )

        async def call(op: PendingOperation) -> dict[str, Any]:
            return await self.api.update(self.domain, op.record_id, wire, op_id=op.op_id)

        return await self.gateway.execute(op, call)

    async def delete_message(self, message_id: str) -> None:
        """软删除 -- 立即显示墓碑"""
        self._ensure_open()
        message = self._require(message_id)
        if message.is_deleted:
            return
        op = PendingOperation(
            domain=self.domain,
            kind=OperationKind.DELETE,
            record_id=message.id,
            changes={
                "content": DELETED_MESSAGE_CONTENT,
                "deleted_at": self.clock.now(),
                "attachments": [],
            },
        )

        async def call(op: PendingOperation) -> Any:
            return await self.api.delete(self.domain, op.record_id, op_id=op.op_id)

        await self.gateway.execute(op, call)

    async def toggle_reaction(self, message_id: str, emoji: str) -> ReactionOutcome | None:
        """切换当前用户在消息上的表情回应"""
        self._ensure_open()
        payload = self.gateway.validate(ReactionRequest, {"emoji": emoji})
        message = self._require(message_id)
        emoji = payload.emoji
        user_id = self.user_id
        local = Reaction(
            emoji=emoji,
            user_id=user_id,
            user_name=self._me().name,
            created_at=self.clock.now(),
        )

        def toggle(current: Message) -> Message:
            if any(r.user_id == user_id and r.emoji == emoji for r in current.reactions):
                return _without_reaction(current, user_id, emoji)
            return _with_reaction(current, local)

        def confirm(op: PendingOperation, result: ReactionResult) -> ReactionOutcome:
            if result.outcome == ReactionOutcome.ADDED:
                reaction = (
                    Reaction.model_validate(result.reaction) if result.reaction else local
                )
                self.reconciler.confirm(op, None, fold=lambda m: _with_reaction(m, reaction))
            else:
                self.reconciler.confirm(
                    op, None, fold=lambda m: _without_reaction(m, user_id, emoji)
                )
            return result.outcome

        op = PendingOperation(
            domain=self.domain,
            kind=OperationKind.REACT,
            record_id=message.id,
            transform=toggle,
            confirm=confirm,
        )

        async def call(op: PendingOperation) -> ReactionResult:
            return await self.api.react(op.record_id, emoji, op_id=op.op_id)

        return await self.gateway.execute(op, call)

    # ---- 输入提示 ----

    def handle_presence(self, signal: PresenceSignal) -> bool:
        """应用输入提示信号；活跃集合变化时通知监听者"""
        changed = self.typing.handle(signal)
        if changed:
            self._notify()
        return changed

    def handle_typing(self, user_id: str, user_name: str = "", thread_id: str | None = None) -> None:
        if self.typing.start(user_id, user_name, thread_id):
            self._notify()

    def handle_stop_typing(self, user_id: str, thread_id: str | None = None) -> None:
        if self.typing.stop(user_id, thread_id):
            self._notify()

    def typing_users(self, thread_id: str | None = None) -> list[TypingEntry]:
        return self.typing.active(thread_id)

    def close(self) -> None:
        self.typing.clear()
        super().close()
