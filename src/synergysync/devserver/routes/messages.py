"""讨论消息路由

GET    /api/projects/{project_id}/messages: 分页列出消息（含墓碑，最新在前）
POST   /api/projects/{project_id}/messages: 发送消息或回复（201）
PATCH  /api/messages/{message_id}: 编辑消息（仅作者，15 分钟内）
DELETE /api/messages/{message_id}: 软删除（作者或项目所有者）
POST   /api/messages/{message_id}/reactions: 切换表情回应
"""

from fastapi import APIRouter, Depends, Query
from starlette.responses import JSONResponse

from synergysync.core.models import MessageDraft, MessageEdit, ReactionRequest

from ..deps import get_meta, get_workspace
from ..services.workspace import RequestMeta, Workspace

router = APIRouter()


@router.get("/api/projects/{project_id}/messages")
async def list_messages(
    project_id: str,
    search: str | None = Query(default=None, description="内容关键字"),
    thread_id: str | None = Query(default=None, alias="threadId"),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    page = workspace.list_messages(
        project_id,
        meta.actor_id,
        search=search,
        thread_id=thread_id,
        cursor=cursor,
        limit=limit,
    )
    return {
        "messages": [m.to_wire() for m in page.items],
        "hasMore": page.has_more,
        "nextCursor": page.next_cursor,
    }


@router.post("/api/projects/{project_id}/messages")
async def post_message(
    project_id: str,
    body: MessageDraft,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    message = await workspace.post_message(project_id, body, meta)
    return JSONResponse(status_code=201, content={"message": message.to_wire()})


@router.patch("/api/messages/{message_id}")
async def edit_message(
    message_id: str,
    body: MessageEdit,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    message = await workspace.edit_message(message_id, body, meta)
    return {"message": message.to_wire()}


@router.delete("/api/messages/{message_id}")
async def delete_message(
    message_id: str,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    message = await workspace.delete_message(message_id, meta)
    return {"success": True, "message": message.to_wire()}


@router.post("/api/messages/{message_id}/reactions")
async def toggle_reaction(
    message_id: str,
    body: ReactionRequest,
    meta: RequestMeta = Depends(get_meta),
    workspace: Workspace = Depends(get_workspace),
):
    reaction = await workspace.toggle_reaction(message_id, body.emoji, meta)
    if reaction is None:
        return {"removed": True}
    return {"reaction": reaction.to_wire()}
