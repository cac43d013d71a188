"""通知路由 -- 作用域为当前用户

GET    /api/notifications: 分页列出通知（附带未读总数）
PATCH  /api/notifications/{notification_id}/read: 标记已读/未读
PATCH  /api/notifications/read: 批量标记已读/未读
PATCH  /api/notifications/mark-all-read: 全部标记已读（可限定项目）
DELETE /api/notifications/{notification_id}: 删除通知
POST   /api/notifications/delete: 批量删除
"""

from fastapi import APIRouter, Depends, Query
from pydantic import Field

from synergysync.core.models import MarkAllReadRequest, PayloadModel, ReadStateRequest

from ..deps import get_meta, get_workspace
from ..services.workspace import RequestMeta, Workspace

router = APIRouter()


class BatchReadRequest(PayloadModel):
    """批量标记已读/未读请求体"""

    ids: list[str] = Field(min_length=1, description="通知 ID 列表")
    is_read: bool = Field(default=True, description="目标已读状态")


class BatchDeleteRequest(PayloadModel):
    """批量删除请求体"""

    ids: list[str] = Field(min_length=1, description="通知 ID 列表")


@router.get("/api/notifications")
async def list_notifications(
    project_id: str | None = Query(default=None, alias="projectId"),
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    page, unread = workspace.list_notifications(
        meta.actor_id,
        project_id=project_id,
        unread_only=unread_only,
        cursor=cursor,
        limit=limit,
    )
    return {
        "notifications": [n.to_wire() for n in page.items],
        "hasMore": page.has_more,
        "nextCursor": page.next_cursor,
        "unreadCount": unread,
    }


@router.patch("/api/notifications/read")
async def mark_many_read(
    body: BatchReadRequest,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    updated = await workspace.set_many_read(body.ids, body.is_read, meta)
    return {"notifications": [n.to_wire() for n in updated]}


@router.patch("/api/notifications/mark-all-read")
async def mark_all_read(
    body: MarkAllReadRequest | None = None,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    project_id = body.project_id if body is not None else None
    count = await workspace.mark_all_read(project_id, meta)
    return {"count": count}


@router.post("/api/notifications/delete")
async def delete_many(
    body: BatchDeleteRequest,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    count = await workspace.delete_notifications(body.ids, meta)
    return {"count": count}


@router.patch("/api/notifications/{notification_id}/read")
async def set_read(
    notification_id: str,
    body: ReadStateRequest,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    notification = await workspace.set_read(notification_id, body.is_read, meta)
    return {"notification": notification.to_wire()}


@router.delete("/api/notifications/{notification_id}")
async def delete_notification(
    notification_id: str,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    await workspace.delete_notification(notification_id, meta)
    return {"success": True}
