"""HttpApiClient -- 基于 httpx 的 REST API 客户端

实现 ApiBackend 协议。每个写入请求携带 X-Client-Op-Id 与 X-Client-Id，
服务端据此在推送中回传，客户端即可识别自身写入的回声。

状态码映射：
- 400 -> MutationValidationError
- 401/403 -> AuthorizationError
- 404 -> RecordNotFoundError
- 422 编辑窗口 -> StaleEditError；其他 422 -> MutationValidationError
- 408/429/5xx 与连接/超时 -> TransientNetworkError
"""

from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from synergysync.core.config import SyncConfig
from synergysync.core.exceptions import (
    AuthorizationError,
    MalformedPayloadError,
    MutationValidationError,
    RecordNotFoundError,
    StaleEditError,
    SyncError,
    TransientNetworkError,
)
from synergysync.core.models import (
    Domain,
    Page,
    ReactionOutcome,
    ReactionResult,
    TaskStatus,
)

log = structlog.get_logger()

# 连接类异常类型集合（映射为 TransientNetworkError）
_CONNECTION_ERROR_TYPES = (
    ConnectionError,
    TimeoutError,
    httpx.TimeoutException,
    httpx.TransportError,
)

_TRANSIENT_STATUS = {408, 425, 429}

# 领域 -> (单条记录键, 列表键)
_RECORD_KEYS: dict[Domain, tuple[str, str]] = {
    Domain.TASKS: ("task", "tasks"),
    Domain.MESSAGES: ("message", "messages"),
    Domain.NOTIFICATIONS: ("notification", "notifications"),
}

_STALE_EDIT_CODES = {"EDIT_WINDOW_EXPIRED", "MESSAGE_TOO_OLD"}


def _is_connection_error(e: Exception) -> bool:
    """判断异常是否为连接类错误"""
    return isinstance(e, _CONNECTION_ERROR_TYPES)


def _error_detail(response: httpx.Response) -> tuple[str, str]:
    """提取 (code, message)，兼容 {"error": {...}} 与 {"detail": ...} 两种格式"""
    try:
        body = response.json()
    except ValueError:
        return "", response.text[:200]
    if isinstance(body, Mapping):
        error = body.get("error")
        if isinstance(error, Mapping):
            return str(error.get("code", "")), str(error.get("message", ""))
        if isinstance(error, str):
            return "", error
        detail = body.get("detail")
        if detail is not None:
            return "", str(detail)
    return "", ""


class HttpApiClient:
    """REST API 客户端"""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        client_id: str | None = None,
        user_id: str | None = None,
        timeout_s: float | None = None,
        config: SyncConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            base_url: API 基础 URL（缺省取配置）
            token: Bearer token（缺省取配置）
            client_id: 客户端 ID，随每个请求发送
            user_id: 当前用户 ID（开发服务器用 X-User-Id 识别身份）
            timeout_s: 请求超时（缺省取配置）
            config: 同步配置
            transport: 自定义 httpx 传输层（测试时使用 ASGITransport / MockTransport）
        """
        config = config or SyncConfig()
        self.client_id = client_id
        headers: dict[str, str] = {"Accept": "application/json"}
        token = token if token is not None else config.api_token.get_secret_value()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if client_id:
            headers["X-Client-Id"] = client_id
        if user_id:
            headers["X-User-Id"] = user_id
        self._client = httpx.AsyncClient(
            base_url=(base_url or config.api_base_url).rstrip("/"),
            headers=headers,
            timeout=timeout_s if timeout_s is not None else config.timeout_s,
            transport=transport,
        )

    async def __aenter__(self) -> "HttpApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---- 请求 ----

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        op_id: str | None = None,
        record_id: str = "",
    ) -> Any:
        """发送请求并映射错误

        Raises:
            SyncError 子类，见模块说明
        """
        headers = {"X-Client-Op-Id": op_id} if op_id else None
        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                params={k: v for k, v in (params or {}).items() if v is not None},
                headers=headers,
            )
        except Exception as e:
            if _is_connection_error(e):
                log.warning("api_unreachable", method=method, path=path, error=str(e))
                raise TransientNetworkError(f"API 不可达: {e}", original_error=e) from e
            raise

        self._raise_for_status(response, record_id or path)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise MalformedPayloadError("响应不是合法 JSON", payload=response.text) from e

    def _raise_for_status(self, response: httpx.Response, record_id: str) -> None:
        status = response.status_code
        if status < 400:
            return
        code, message = _error_detail(response)
        log.info(
            "api_error_response",
            status_code=status,
            code=code,
            path=response.request.url.path,
        )
        error: SyncError
        if status == 400:
            error = MutationValidationError(message or "请求参数不合法")
        elif status in (401, 403):
            error = AuthorizationError(message or "无权执行该操作")
        elif status == 404:
            error = RecordNotFoundError(record_id, message)
        elif status == 422:
            if code in _STALE_EDIT_CODES or "too old" in message.lower():
                error = StaleEditError(record_id, message)
            else:
                error = MutationValidationError(message or "请求参数不合法")
        elif status in _TRANSIENT_STATUS or status >= 500:
            error = TransientNetworkError(f"服务端暂时不可用 ({status}): {message}")
        else:
            error = SyncError(f"请求失败 ({status}): {message}", recoverable=False)
        raise error

    @staticmethod
    def _extract(body: Any, key: str) -> Any:
        if not isinstance(body, Mapping) or key not in body:
            raise MalformedPayloadError(f"响应缺少字段: {key}", payload=body)
        return body[key]

    # ---- ApiBackend ----

    def _list_path(self, domain: Domain, scope_id: str) -> str:
        if domain == Domain.NOTIFICATIONS:
            return "/api/notifications"
        return f"/api/projects/{scope_id}/{domain.value}"

    def _record_path(self, domain: Domain, record_id: str) -> str:
        return f"/api/{domain.value}/{record_id}"

    async def list_records(
        self,
        domain: Domain,
        scope_id: str,
        *,
        filters: Mapping[str, Any] | None = None,
        cursor: str | None = None,
        limit: int = 50,
    ) -> Page:
        _, list_key = _RECORD_KEYS[domain]
        body = await self._request(
            "GET",
            self._list_path(domain, scope_id),
            params={**(filters or {}), "cursor": cursor, "limit": limit},
        )
        records = self._extract(body, list_key)
        if not isinstance(records, list):
            raise MalformedPayloadError(f"{list_key} 不是数组", payload=body)
        return Page(
            records=[r for r in records if isinstance(r, dict)],
            has_more=bool(body.get("hasMore", False)),
            next_cursor=body.get("nextCursor"),
            unread_count=body.get("unreadCount"),
        )

    async def create(
        self,
        domain: Domain,
        scope_id: str,
        payload: Mapping[str, Any],
        *,
        op_id: str | None = None,
    ) -> dict[str, Any]:
        record_key, _ = _RECORD_KEYS[domain]
        body = await self._request(
            "POST",
            self._list_path(domain, scope_id),
            json=dict(payload),
            op_id=op_id,
            record_id=scope_id,
        )
        return self._extract(body, record_key)

    async def update(
        self,
        domain: Domain,
        record_id: str,
        changes: Mapping[str, Any],
        *,
        op_id: str | None = None,
    ) -> dict[str, Any]:
        if domain == Domain.NOTIFICATIONS:
            return await self.mark_read(
                record_id, bool(changes.get("isRead", True)), op_id=op_id
            )
        record_key, _ = _RECORD_KEYS[domain]
        body = await self._request(
            "PATCH",
            self._record_path(domain, record_id),
            json=dict(changes),
            op_id=op_id,
            record_id=record_id,
        )
        return self._extract(body, record_key)

    async def move(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        op_id: str | None = None,
    ) -> dict[str, Any]:
        body = await self._request(
            "PATCH",
            f"/api/tasks/{task_id}/status",
            json={"status": str(status)},
            op_id=op_id,
            record_id=task_id,
        )
        return self._extract(body, "task")

    async def update_tasks(
        self,
        updates: list[Mapping[str, Any]],
        *,
        op_id: str | None = None,
    ) -> list[dict[str, Any]]:
        body = await self._request(
            "PATCH",
            "/api/tasks/batch",
            json={"updates": [dict(u) for u in updates]},
            op_id=op_id,
        )
        tasks = self._extract(body, "tasks")
        if not isinstance(tasks, list):
            raise MalformedPayloadError("tasks 不是数组", payload=body)
        return tasks

    async def delete(
        self,
        domain: Domain,
        record_id: str,
        *,
        op_id: str | None = None,
    ) -> dict[str, Any] | None:
        return await self._request(
            "DELETE",
            self._record_path(domain, record_id),
            op_id=op_id,
            record_id=record_id,
        )

    async def react(
        self,
        message_id: str,
        emoji: str,
        *,
        op_id: str | None = None,
    ) -> ReactionResult:
        body = await self._request(
            "POST",
            f"/api/messages/{message_id}/reactions",
            json={"emoji": emoji},
            op_id=op_id,
            record_id=message_id,
        )
        if isinstance(body, Mapping) and body.get("removed"):
            return ReactionResult(outcome=ReactionOutcome.REMOVED)
        reaction = self._extract(body, "reaction")
        return ReactionResult(outcome=ReactionOutcome.ADDED, reaction=reaction)

    async def mark_read(
        self,
        notification_id: str,
        is_read: bool = True,
        *,
        op_id: str | None = None,
    ) -> dict[str, Any]:
        body = await self._request(
            "PATCH",
            f"/api/notifications/{notification_id}/read",
            json={"isRead": is_read},
            op_id=op_id,
            record_id=notification_id,
        )
        return self._extract(body, "notification")

    async def mark_many_read(
        self,
        notification_ids: list[str],
        is_read: bool = True,
        *,
        op_id: str | None = None,
    ) -> list[dict[str, Any]]:
        body = await self._request(
            "PATCH",
            "/api/notifications/read",
            json={"ids": notification_ids, "isRead": is_read},
            op_id=op_id,
        )
        return self._extract(body, "notifications")

    async def mark_all_read(
        self,
        project_id: str | None = None,
        *,
        op_id: str | None = None,
    ) -> int:
        body = await self._request(
            "PATCH",
            "/api/notifications/mark-all-read",
            json={"projectId": project_id} if project_id else {},
            op_id=op_id,
        )
        return int(self._extract(body, "count"))

    async def delete_many(
        self,
        domain: Domain,
        record_ids: list[str],
        *,
        op_id: str | None = None,
    ) -> int:
        if domain != Domain.NOTIFICATIONS:
            raise MutationValidationError(f"{domain} 不支持批量删除")
        body = await self._request(
            "POST",
            "/api/notifications/delete",
            json={"ids": record_ids},
            op_id=op_id,
        )
        return int(self._extract(body, "count"))
