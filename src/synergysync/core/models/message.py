"""Message 领域模型

根消息没有 parent_id，thread_id 默认为自身 ID；
回复的 thread_id 指向根消息所在线程。
软删除只留下墓碑（deleted_at + 固定内容），不物理删除。
"""

from datetime import datetime
from typing import Any

from pydantic import Field, field_validator, model_validator

from ..config import DELETED_MESSAGE_CONTENT
from .base import UserRef, WireModel


class Attachment(WireModel):
    """消息附件（仅元数据，上传不在同步引擎范围内）"""

    id: str = Field(description="附件 ID")
    file_name: str = Field(default="", description="文件名")
    file_size: int = Field(default=0, description="文件大小（字节）")
    mime_type: str = Field(default="", description="MIME 类型")
    url: str = Field(default="", description="下载地址")
    thumbnail_url: str | None = Field(default=None, description="缩略图地址")


class Reaction(WireModel):
    """表情回应 -- 每个 (user_id, emoji) 至多一条"""

    id: str = Field(default="", description="回应 ID")
    emoji: str = Field(description="表情")
    user_id: str = Field(description="回应者 ID")
    user_name: str = Field(default="", description="回应者名称")
    created_at: datetime | None = Field(default=None, description="回应时间")


class Message(WireModel):
    """讨论消息"""

    id: str = Field(description="消息 ID（乐观创建时为临时 ID）")
    project_id: str = Field(description="所属项目 ID")
    author_id: str = Field(description="作者 ID")
    content: str = Field(description="消息内容")
    parent_id: str | None = Field(default=None, description="直接父消息 ID")
    thread_id: str = Field(description="线程 ID（根消息为自身 ID）")
    mentions: list[str] = Field(default_factory=list, description="被提及的用户 ID")
    attachments: list[Attachment] = Field(default_factory=list, description="附件")
    reactions: list[Reaction] = Field(default_factory=list, description="表情回应")
    is_edited: bool = Field(default=False, description="是否编辑过")
    edited_at: datetime | None = Field(default=None, description="最后编辑时间")
    deleted_at: datetime | None = Field(default=None, description="软删除时间")
    reply_count: int = Field(default=0, description="回复数")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    author: UserRef | None = Field(default=None, description="作者摘要")

    @model_validator(mode="before")
    @classmethod
    def _default_thread_id(cls, data: Any) -> Any:
        """缺省 thread_id：回复取 parent_id，根消息取自身 ID"""
        if not isinstance(data, dict):
            return data
        if data.get("threadId") or data.get("thread_id"):
            return data
        parent = data.get("parentId") or data.get("parent_id")
        data = dict(data)
        data["thread_id"] = parent or data.get("id")
        data.pop("threadId", None)
        return data

    @field_validator("mentions")
    @classmethod
    def _unique_mentions(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    @field_validator("reactions")
    @classmethod
    def _unique_reactions(cls, value: list[Reaction]) -> list[Reaction]:
        seen: set[tuple[str, str]] = set()
        unique: list[Reaction] = []
        for reaction in value:
            key = (reaction.user_id, reaction.emoji)
            if key in seen:
                continue
            seen.add(key)
            unique.append(reaction)
        return unique

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def tombstoned(self, at: datetime) -> "Message":
        """软删除后的墓碑副本"""
        return self.model_copy(
            update={"content": DELETED_MESSAGE_CONTENT, "deleted_at": at, "attachments": []}
        )


class MessageThread(WireModel):
    """线程视图：根消息 + 按时间升序的回复"""

    root: Message = Field(description="根消息")
    replies: list[Message] = Field(default_factory=list, description="回复（升序）")
    participants: list[str] = Field(default_factory=list, description="参与者 ID")
    last_reply_at: datetime | None = Field(default=None, description="最后回复时间")

    @property
    def total_replies(self) -> int:
        return len(self.replies)
