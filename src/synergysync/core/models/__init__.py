"""SynergySync Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .base import UserRef, WireModel
from .enums import (
    SOURCE_PRECEDENCE,
    Domain,
    NotificationType,
    RecordVerb,
    TaskPriority,
    TaskStatus,
    UpdateSource,
    outranks,
)
from .events import (
    Page,
    PollOutcome,
    PollSnapshot,
    PresenceKind,
    PresenceSignal,
    PushEvent,
    ReactionOutcome,
    ReactionResult,
)
from .message import Attachment, Message, MessageThread, Reaction
from .notification import Notification, NotificationData
from .payloads import (
    MarkAllReadRequest,
    MessageDraft,
    MessageEdit,
    PayloadModel,
    ReactionRequest,
    ReadStateRequest,
    TaskBatchItem,
    TaskBatchUpdate,
    TaskChanges,
    TaskDraft,
)
from .task import Task

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskPriority",
    "NotificationType",
    "Domain",
    "RecordVerb",
    "UpdateSource",
    "SOURCE_PRECEDENCE",
    "outranks",
    # 记录
    "WireModel",
    "UserRef",
    "Task",
    "Message",
    "MessageThread",
    "Reaction",
    "Attachment",
    "Notification",
    "NotificationData",
    # 传输事件
    "PushEvent",
    "PresenceKind",
    "PresenceSignal",
    "Page",
    "PollSnapshot",
    "PollOutcome",
    "ReactionOutcome",
    "ReactionResult",
    # Payloads
    "PayloadModel",
    "TaskDraft",
    "TaskChanges",
    "TaskBatchItem",
    "TaskBatchUpdate",
    "MessageDraft",
    "MessageEdit",
    "ReactionRequest",
    "ReadStateRequest",
    "MarkAllReadRequest",
]
