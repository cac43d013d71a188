"""枚举定义

包含 TaskStatus、TaskPriority、NotificationType 业务枚举，
以及同步引擎内部使用的 Domain、RecordVerb、UpdateSource。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """任务状态 -- 看板列由状态派生，不单独存储"""

    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class TaskPriority(StrEnum):
    """任务优先级"""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class NotificationType(StrEnum):
    """通知类型"""

    MENTION = "mention"
    REPLY = "reply"
    TASK_ASSIGNED = "task_assigned"
    TASK_COMPLETED = "task_completed"
    TASK_COMMENT = "task_comment"
    PROJECT_INVITE = "project_invite"
    PROJECT_UPDATE = "project_update"
    DEADLINE_REMINDER = "deadline_reminder"


class Domain(StrEnum):
    """记录所属领域，每个领域一个实体镜像"""

    TASKS = "tasks"
    MESSAGES = "messages"
    NOTIFICATIONS = "notifications"


class RecordVerb(StrEnum):
    """推送事件动词"""

    CREATE = "create"
    UPDATE = "update"
    MOVE = "move"
    DELETE = "delete"


class UpdateSource(StrEnum):
    """写入镜像的来源通道"""

    OPTIMISTIC = "optimistic"
    CONFIRMATION = "confirmation"
    PUSH = "push"
    POLL = "poll"


# 同一记录在时间窗口内的来源优先级：confirmation > push > poll
SOURCE_PRECEDENCE: dict[UpdateSource, int] = {
    UpdateSource.POLL: 1,
    UpdateSource.PUSH: 2,
    UpdateSource.CONFIRMATION: 3,
}


def outranks(incoming: UpdateSource, existing: UpdateSource) -> bool:
    """incoming 来源是否不低于 existing 来源

    Args:
        incoming: 新到达数据的来源
        existing: 当前基准数据的来源

    Returns:
        True 如果 incoming 优先级大于等于 existing
    """
    return SOURCE_PRECEDENCE.get(incoming, 0) >= SOURCE_PRECEDENCE.get(existing, 0)
