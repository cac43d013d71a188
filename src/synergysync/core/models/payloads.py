"""Mutation 请求载荷

客户端写入前的形状校验模型。Mutation Gateway 在修改镜像或发起网络调用之前
先用这些模型校验输入；开发服务器也复用它们作为请求体。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..config import MESSAGE_MAX_LENGTH, TASK_TITLE_MAX_LENGTH
from .enums import TaskPriority, TaskStatus
from .message import Attachment


class PayloadModel(BaseModel):
    """请求载荷基类 -- camelCase 线上格式，拒绝未知字段"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    def to_wire(self, *, only_set: bool = False) -> dict[str, Any]:
        """序列化为请求 JSON

        Args:
            only_set: 仅包含显式设置过的字段（部分更新用，保留显式 None）
        """
        if only_set:
            return self.model_dump(mode="json", by_alias=True, exclude_unset=True)
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _clean_title(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("任务标题不能为空")
    if len(value) > TASK_TITLE_MAX_LENGTH:
        raise ValueError(f"任务标题不能超过 {TASK_TITLE_MAX_LENGTH} 个字符")
    return value


def _clean_content(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("消息内容不能为空")
    if len(value) > MESSAGE_MAX_LENGTH:
        raise ValueError(f"消息内容不能超过 {MESSAGE_MAX_LENGTH} 个字符")
    return value


class TaskDraft(PayloadModel):
    """创建任务"""

    title: str = Field(description="任务标题（去除首尾空白后非空）")
    description: str | None = Field(default=None, description="任务描述")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="初始状态")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="优先级")
    assignee_id: str | None = Field(default=None, description="负责人 ID")
    due_date: datetime | None = Field(default=None, description="截止时间")

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str) -> str:
        return _clean_title(value)


class TaskChanges(PayloadModel):
    """部分更新任务 -- 只提交显式设置的字段"""

    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    assignee_id: str | None = None
    due_date: datetime | None = None

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str | None) -> str | None:
        return None if value is None else _clean_title(value)

    @model_validator(mode="after")
    def _not_empty(self) -> "TaskChanges":
        if not self.model_fields_set:
            raise ValueError("至少需要修改一个字段")
        if "title" in self.model_fields_set and self.title is None:
            raise ValueError("任务标题不能为空")
        return self

    def changes(self) -> dict[str, Any]:
        """以 snake_case 字段名返回被修改的字段"""
        return self.model_dump(exclude_unset=True)


class TaskBatchItem(PayloadModel):
    """批量更新中的单个任务 -- 只允许修改状态、优先级与负责人"""

    id: str = Field(description="任务 ID")
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    assignee_id: str | None = None

    @model_validator(mode="after")
    def _not_empty(self) -> "TaskBatchItem":
        if not self.model_fields_set - {"id"}:
            raise ValueError("至少需要修改一个字段")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"id"})


class TaskBatchUpdate(PayloadModel):
    """批量更新任务（PATCH /api/tasks/batch）"""

    updates: list[TaskBatchItem] = Field(min_length=1, description="每个任务的修改")

    @model_validator(mode="after")
    def _unique_ids(self) -> "TaskBatchUpdate":
        ids = [item.id for item in self.updates]
        if len(set(ids)) != len(ids):
            raise ValueError("同一任务在批量更新中出现多次")
        return self


class MessageDraft(PayloadModel):
    """发送消息或回复"""

    content: str = Field(description="消息内容（1..2000 字符）")
    mentions: list[str] = Field(default_factory=list, description="显式提及的用户 ID")
    parent_id: str | None = Field(default=None, description="回复的父消息 ID")
    thread_id: str | None = Field(default=None, description="所属线程 ID")
    attachments: list[Attachment] = Field(default_factory=list, description="附件")

    @field_validator("content")
    @classmethod
    def _check_content(cls, value: str) -> str:
        return _clean_content(value)


class MessageEdit(PayloadModel):
    """编辑消息内容"""

    content: str = Field(description="新内容（1..2000 字符）")
    mentions: list[str] | None = Field(default=None, description="新的提及列表")

    @field_validator("content")
    @classmethod
    def _check_content(cls, value: str) -> str:
        return _clean_content(value)


class ReactionRequest(PayloadModel):
    """切换表情回应"""

    emoji: str = Field(description="表情")

    @field_validator("emoji")
    @classmethod
    def _check_emoji(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("表情不能为空")
        if len(value) > 32:
            raise ValueError("表情过长")
        return value


class ReadStateRequest(PayloadModel):
    """标记通知已读/未读"""

    is_read: bool = Field(default=True, description="目标已读状态")


class MarkAllReadRequest(PayloadModel):
    """全部标记已读，可限定项目"""

    project_id: str | None = Field(default=None, description="限定项目 ID")
