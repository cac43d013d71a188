"""FastAPI 应用主文件 -- 内存开发服务器

app 创建 + lifespan 管理：初始化演示工作区与推送广播器 + 路由注册。
业务错误统一返回 {"error": {"code", "message"}}；请求体校验失败返回 400。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from synergysync.core.logging_config import setup_logging
from synergysync.transport.local_hub import LocalPushHub

from .middleware.logging_mw import LoggingMiddleware
from .routes import health, messages, notifications, tasks
from .services.workspace import DevApiError, Workspace

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化工作区与推送广播器"""
    hub = LocalPushHub()
    app.state.push_hub = hub
    app.state.workspace = Workspace.demo(hub)
    log.info(
        "devserver_started",
        projects=len(app.state.workspace.projects),
        users=len(app.state.workspace.users),
    )

    yield

    log.info("devserver_stopped")


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


async def _handle_api_error(request: Request, exc: DevApiError) -> JSONResponse:
    log.info("api_error", status_code=exc.status_code, code=exc.code)
    return _error_response(exc.status_code, exc.code, exc.message)


async def _handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    message = "; ".join(str(e.get("msg", "")) for e in exc.errors()) or "Invalid request"
    return _error_response(400, "VALIDATION_ERROR", message)


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="SynergySync Dev Server",
        version="0.1.0",
        description="SynergySphere 协作 API 的内存实现（本地开发与端到端测试）",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)

    # 初始化日志
    setup_logging()

    app.add_exception_handler(DevApiError, _handle_api_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)

    # 注册路由
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(messages.router, tags=["messages"])
    app.include_router(notifications.router, tags=["notifications"])
    app.include_router(health.router, tags=["health"])

    return app
