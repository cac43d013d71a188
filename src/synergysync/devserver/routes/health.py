"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，报告工作区与推送广播器状态。
"""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    workspace = getattr(request.app.state, "workspace", None)
    hub = getattr(request.app.state, "push_hub", None)
    checks = {
        "workspace": "ok" if workspace is not None else "unavailable",
        "push_hub": "ok" if hub is not None else "unavailable",
    }
    return {
        "ready": all(v == "ok" for v in checks.values()),
        "checks": checks,
        "projects": len(workspace.projects) if workspace is not None else 0,
    }
