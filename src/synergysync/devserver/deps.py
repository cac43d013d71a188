"""依赖注入模块 -- 通过 FastAPI Depends 注入 Workspace 与请求元数据

Workspace 与 LocalPushHub 通过 app.state 管理，在 lifespan 中初始化。
操作者由 X-User-Id 请求头识别；X-Client-Op-Id / X-Client-Id 随推送回传。
"""

from fastapi import Header, Request

from .services.workspace import RequestMeta, Workspace


def get_workspace(request: Request) -> Workspace:
    """从 app.state 获取 Workspace 实例"""
    return request.app.state.workspace


def get_push_hub(request: Request):
    """从 app.state 获取 LocalPushHub 实例"""
    return request.app.state.push_hub


def get_meta(
    request: Request,
    x_user_id: str | None = Header(default=None),
    x_client_op_id: str | None = Header(default=None),
    x_client_id: str | None = Header(default=None),
) -> RequestMeta:
    """识别操作者

    Raises:
        DevApiError: 未提供或未知用户（401）
    """
    workspace = get_workspace(request)
    actor = workspace.actor(x_user_id)
    return RequestMeta(actor_id=actor.id, op_id=x_client_op_id, client_id=x_client_id)
