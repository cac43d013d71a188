"""同步引擎配置 -- 可通过环境变量覆盖

包含 API/推送地址、轮询间隔、对账时间窗口等可配置项，
以及消息长度上限、编辑时间窗口等固定常量。
"""

import os
from typing import Any

import structlog
from pydantic import BaseModel, Field, SecretStr, ValidationError

log = structlog.get_logger()

# 消息内容最大字符数（与服务端校验一致）
MESSAGE_MAX_LENGTH: int = 2000

# 任务标题最大字符数
TASK_TITLE_MAX_LENGTH: int = 200

# 消息可编辑时间窗口（分钟），超过后服务端返回 422
EDIT_WINDOW_MINUTES: int = 15

# 软删除消息的墓碑内容
DELETED_MESSAGE_CONTENT: str = "[This message was deleted]"

# 乐观创建时的临时 ID 前缀
PROVISIONAL_ID_PREFIX: str = "tmp-"


class SyncConfig(BaseModel):
    """同步引擎配置 -- 从环境变量加载

    环境变量:
        SYNERGYSYNC_API_URL: REST API 基础地址
        SYNERGYSYNC_API_TOKEN: Bearer token
        SYNERGYSYNC_PUSH_URL: Socket.IO 推送服务地址
        SYNERGYSYNC_TIMEOUT_S: 请求超时（秒）
        SYNERGYSYNC_MESSAGE_POLL_S / TASK_POLL_S / NOTIFICATION_POLL_S: 轮询间隔
        SYNERGYSYNC_RECENCY_WINDOW_S: 同一记录的来源优先级窗口
        SYNERGYSYNC_ECHO_WINDOW_S: 自身推送回声识别窗口
        SYNERGYSYNC_TYPING_TIMEOUT_S: 输入提示过期时间
        SYNERGYSYNC_PAGE_SIZE: 分页大小
        SYNERGYSYNC_POLL_PRUNES_ON_COMPLETE: 完整快照是否裁剪缺失记录
    """

    api_base_url: str = Field(
        default="http://localhost:3000",
        description="REST API 基础 URL",
    )
    api_token: SecretStr = Field(
        default=SecretStr(""),
        description="API 访问令牌",
    )
    push_url: str = Field(
        default="http://localhost:3001",
        description="Socket.IO 推送服务 URL",
    )
    timeout_s: float = Field(default=10.0, gt=0, description="请求超时（秒）")
    message_poll_interval_s: float = Field(
        default=8.0, gt=0, description="消息轮询间隔（秒）"
    )
    task_poll_interval_s: float = Field(
        default=15.0, gt=0, description="任务看板轮询间隔（秒）"
    )
    notification_poll_interval_s: float = Field(
        default=10.0, gt=0, description="通知轮询间隔（秒）"
    )
    recency_window_s: float = Field(
        default=5.0,
        ge=0,
        description="来源优先级窗口：窗口内 confirmation > push > poll",
    )
    echo_window_s: float = Field(
        default=30.0,
        ge=0,
        description="已确认操作的回声识别窗口（秒）",
    )
    typing_timeout_s: float = Field(
        default=5.0, gt=0, description="输入提示过期时间（秒）"
    )
    page_size: int = Field(default=50, ge=1, le=200, description="分页大小")
    poll_prunes_on_complete: bool = Field(
        default=False,
        description="完整（未过滤、单页）快照是否裁剪缺失的记录",
    )


_NUMERIC_FIELDS = {
    "SYNERGYSYNC_TIMEOUT_S": "timeout_s",
    "SYNERGYSYNC_MESSAGE_POLL_S": "message_poll_interval_s",
    "SYNERGYSYNC_TASK_POLL_S": "task_poll_interval_s",
    "SYNERGYSYNC_NOTIFICATION_POLL_S": "notification_poll_interval_s",
    "SYNERGYSYNC_RECENCY_WINDOW_S": "recency_window_s",
    "SYNERGYSYNC_ECHO_WINDOW_S": "echo_window_s",
    "SYNERGYSYNC_TYPING_TIMEOUT_S": "typing_timeout_s",
    "SYNERGYSYNC_PAGE_SIZE": "page_size",
}


def _checked_field(env_var: str, field_name: str, raw: str) -> Any:
    """按字段约束校验单个环境变量，非法时返回 None"""
    try:
        checked = SyncConfig.model_validate({field_name: raw})
    except ValidationError as exc:
        log.warning(
            "invalid_numeric_config",
            env_var=env_var,
            value=raw,
            error=exc.errors(include_url=False)[0].get("msg", ""),
            fallback=SyncConfig.model_fields[field_name].default,
        )
        return None
    return getattr(checked, field_name)


def load_sync_config() -> SyncConfig:
    """从环境变量加载同步配置

    数值型变量无法解析或超出字段约束（如负的轮询间隔）时，
    记录 warning 并对该字段使用默认值，不阻塞启动。

    Returns:
        SyncConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("SYNERGYSYNC_API_URL"):
        kwargs["api_base_url"] = val

    if val := os.environ.get("SYNERGYSYNC_API_TOKEN"):
        kwargs["api_token"] = SecretStr(val)

    if val := os.environ.get("SYNERGYSYNC_PUSH_URL"):
        kwargs["push_url"] = val

    for env_var, field_name in _NUMERIC_FIELDS.items():
        if val := os.environ.get(env_var):
            checked = _checked_field(env_var, field_name, val.strip())
            if checked is not None:
                kwargs[field_name] = checked

    if val := os.environ.get("SYNERGYSYNC_POLL_PRUNES_ON_COMPLETE"):
        kwargs["poll_prunes_on_complete"] = val.lower() in ("true", "1", "yes", "on")

    return SyncConfig(**kwargs)
