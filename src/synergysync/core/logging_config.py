"""structlog 配置模块

dev 模式：pretty print 可读输出
json 模式：结构化 JSON 输出

同步会话把 user_id / client_id / project_id 绑定到 structlog contextvars，
轮询与推送产生的每条日志都能对应到会话与作用域。
"""

import logging
import os

import structlog

# 传输层第三方库（推送客户端、HTTP 客户端）的 logger
TRANSPORT_LOGGERS = ("socketio", "engineio", "httpx", "httpcore")

# 会话上下文绑定的键
SESSION_CONTEXT_KEYS = ("user_id", "client_id", "project_id")


def _level(name: str | None, default: int) -> int:
    if not name:
        return default
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else default


def setup_logging(
    log_format: str | None = None,
    log_level: str | None = None,
    *,
    transport_level: str | None = None,
) -> None:
    """初始化 structlog 配置

    参数缺省时读取环境变量：
    - SYNERGYSYNC_LOG_FORMAT: "json" 结构化输出（生产环境），"dev"（默认）可读输出
    - SYNERGYSYNC_LOG_LEVEL: 日志级别（默认 INFO，非法值回退 INFO）
    - SYNERGYSYNC_TRANSPORT_LOG_LEVEL: socketio / engineio / httpx 的日志级别（默认 WARNING）
    """
    log_format = log_format or os.environ.get("SYNERGYSYNC_LOG_FORMAT", "dev")
    root_level = _level(log_level or os.environ.get("SYNERGYSYNC_LOG_LEVEL"), logging.INFO)
    transport = _level(
        transport_level or os.environ.get("SYNERGYSYNC_TRANSPORT_LOG_LEVEL"), logging.WARNING
    )

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(root_level)

    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport)


def bind_session_context(**ids: str | None) -> None:
    """绑定会话上下文；值为 None 的键被解绑"""
    unknown = set(ids) - set(SESSION_CONTEXT_KEYS)
    if unknown:
        raise ValueError(f"未知的会话上下文键: {sorted(unknown)}")
    bound = {k: v for k, v in ids.items() if v is not None}
    if bound:
        structlog.contextvars.bind_contextvars(**bound)
    cleared = [k for k, v in ids.items() if v is None]
    if cleared:
        structlog.contextvars.unbind_contextvars(*cleared)


def clear_session_context() -> None:
    structlog.contextvars.unbind_contextvars(*SESSION_CONTEXT_KEYS)
