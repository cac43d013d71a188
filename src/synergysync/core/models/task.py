"""Task 领域模型

看板列成员关系由 status 派生，记录中不冗余存储列信息。
"""

from datetime import datetime

from pydantic import Field

from .base import UserRef, WireModel
from .enums import TaskPriority, TaskStatus


class Task(WireModel):
    """任务记录"""

    id: str = Field(description="任务 ID（乐观创建时为临时 ID）")
    project_id: str = Field(description="所属项目 ID")
    title: str = Field(description="任务标题")
    description: str | None = Field(default=None, description="任务描述")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="当前状态")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="优先级")
    assignee_id: str | None = Field(default=None, description="负责人 ID")
    creator_id: str = Field(default="", description="创建者 ID")
    due_date: datetime | None = Field(default=None, description="截止时间")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    assignee: UserRef | None = Field(default=None, description="负责人摘要")
    creator: UserRef | None = Field(default=None, description="创建者摘要")
