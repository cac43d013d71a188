"""Notification 领域模型

通知以接收者 user_id 为作用域；未读数始终由镜像派生。
"""

from datetime import datetime

from pydantic import Field

from .base import UserRef, WireModel
from .enums import NotificationType


class NotificationData(WireModel):
    """通知上下文（消息/线程/任务/项目定位信息）"""

    message_id: str | None = None
    message_content: str | None = None
    thread_id: str | None = None
    task_id: str | None = None
    task_title: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    url: str | None = None
    action_text: str | None = None


class Notification(WireModel):
    """用户通知"""

    id: str = Field(description="通知 ID")
    type: NotificationType = Field(description="通知类型")
    title: str = Field(description="标题")
    message: str = Field(default="", description="正文")
    data: NotificationData = Field(
        default_factory=NotificationData,
        description="上下文数据",
    )
    user_id: str = Field(description="接收者 ID")
    from_user_id: str | None = Field(default=None, description="触发者 ID")
    project_id: str | None = Field(default=None, description="关联项目 ID")
    is_read: bool = Field(default=False, description="是否已读")
    read_at: datetime | None = Field(default=None, description="已读时间")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime | None = Field(default=None, description="服务端更新时间")
    from_user: UserRef | None = Field(default=None, description="触发者摘要")
