"""领域 Store 导出"""

from .base import DomainStore, StoreListener
from .messages import MessageStore
from .notifications import NotificationStore
from .tasks import DragState, TaskBoardStore

__all__ = [
    "DomainStore",
    "StoreListener",
    "TaskBoardStore",
    "DragState",
    "MessageStore",
    "NotificationStore",
]
