"""任务路由

GET    /api/projects/{project_id}/tasks: 分页列出项目任务（最新在前）
POST   /api/projects/{project_id}/tasks: 创建任务（201）
PATCH  /api/tasks/batch: 批量修改状态、优先级、负责人（任一任务不可访问时 404，整批不修改）
PATCH  /api/tasks/{task_id}: 部分更新任务
PATCH  /api/tasks/{task_id}/status: 修改任务状态
DELETE /api/tasks/{task_id}: 删除任务（创建者或项目所有者）
"""

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from starlette.responses import JSONResponse

from synergysync.core.models import (
    PayloadModel,
    TaskBatchUpdate,
    TaskChanges,
    TaskDraft,
    TaskStatus,
)

from ..deps import get_meta, get_workspace
from ..services.workspace import RequestMeta, Workspace

router = APIRouter()


class StatusRequest(PayloadModel):
    """修改任务状态请求体"""

    status: TaskStatus = Field(description="目标状态")


@router.get("/api/projects/{project_id}/tasks")
async def list_tasks(
    project_id: str,
    status: TaskStatus | None = Query(default=None, description="按状态筛选"),
    assignee_id: str | None = Query(default=None, alias="assigneeId"),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    page = workspace.list_tasks(
        project_id,
        meta.actor_id,
        status=status,
        assignee_id=assignee_id,
        cursor=cursor,
        limit=limit,
    )
    return {
        "tasks": [t.to_wire() for t in page.items],
        "hasMore": page.has_more,
        "nextCursor": page.next_cursor,
    }


@router.post("/api/projects/{project_id}/tasks")
async def create_task(
    project_id: str,
    body: TaskDraft,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    task = await workspace.create_task(project_id, body, meta)
    return JSONResponse(status_code=201, content={"task": task.to_wire()})


@router.patch("/api/tasks/batch")
async def update_tasks(
    body: TaskBatchUpdate,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    tasks = await workspace.update_tasks(body, meta)
    return {"tasks": [t.to_wire() for t in tasks]}


@router.patch("/api/tasks/{task_id}")
async def update_task(
    task_id: str,
    body: TaskChanges,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    task = await workspace.update_task(task_id, body, meta)
    return {"task": task.to_wire()}


@router.patch("/api/tasks/{task_id}/status")
async def move_task(
    task_id: str,
    body: StatusRequest,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    task = await workspace.move_task(task_id, body.status, meta)
    return {"task": task.to_wire()}


@router.delete("/api/tasks/{task_id}")
async def delete_task(
    task_id: str,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    await workspace.delete_task(task_id, meta)
    return {"success": True}
