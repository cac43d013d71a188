"""传输层事件模型

推送事件、输入提示信号、分页结果与轮询快照。
记录本体保留原始 dict，由 Reconciler 统一解析，解析失败只记日志跳过。
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from .enums import Domain, RecordVerb


class PushEvent(BaseModel):
    """解码后的推送事件"""

    name: str = Field(description="原始事件名，如 task:moved")
    domain: Domain = Field(description="所属领域")
    verb: RecordVerb = Field(description="动作")
    record_id: str = Field(description="记录 ID")
    scope_id: str | None = Field(default=None, description="作用域 ID（项目或用户）")
    record: dict[str, Any] | None = Field(default=None, description="完整记录（线上格式）")
    changes: dict[str, Any] = Field(default_factory=dict, description="部分字段变更")
    op_id: str | None = Field(default=None, description="发起方操作 ID")
    client_id: str | None = Field(default=None, description="发起方客户端 ID")
    ts: datetime | None = Field(default=None, description="服务端事件时间")


class PresenceKind(StrEnum):
    """输入提示信号类型"""

    TYPING = "typing"
    STOP_TYPING = "stop-typing"


class PresenceSignal(BaseModel):
    """输入提示信号 -- 从不写入镜像"""

    kind: PresenceKind
    user_id: str
    user_name: str = ""
    project_id: str | None = None
    thread_id: str | None = None


class Page(BaseModel):
    """一页列表结果"""

    records: list[dict[str, Any]] = Field(default_factory=list)
    has_more: bool = False
    next_cursor: str | None = None
    unread_count: int | None = Field(default=None, description="通知列表附带的未读数")


class PollSnapshot(BaseModel):
    """一次轮询得到的快照"""

    domain: Domain
    scope_id: str
    records: list[dict[str, Any]] = Field(default_factory=list)
    requested_at: float = Field(description="请求发出时的单调时间")
    complete: bool = Field(
        default=False,
        description="未过滤且单页（has_more 为 False）时为 True",
    )


class PollOutcome(BaseModel):
    """快照合并结果统计"""

    applied: int = 0
    skipped: int = 0
    malformed: int = 0
    pruned: int = 0


class ReactionOutcome(StrEnum):
    """表情切换结果"""

    ADDED = "added"
    REMOVED = "removed"


class ReactionResult(BaseModel):
    """表情切换的服务端确认"""

    outcome: ReactionOutcome
    reaction: dict[str, Any] | None = None
