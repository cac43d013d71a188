"""推送事件编解码

事件名与 (Domain, RecordVerb) 的映射，以及线上载荷与 PushEvent / PresenceSignal
之间的转换。解码失败抛出 MalformedPayloadError，由调用方记录日志后跳过。
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from pydantic.alias_generators import to_camel, to_snake

from .exceptions import MalformedPayloadError
from .models import (
    Domain,
    PresenceKind,
    PresenceSignal,
    PushEvent,
    RecordVerb,
    TaskStatus,
)

# 事件名 -> (领域, 动作)
EVENT_TYPES: dict[str, tuple[Domain, RecordVerb]] = {
    "task:created": (Domain.TASKS, RecordVerb.CREATE),
    "task:updated": (Domain.TASKS, RecordVerb.UPDATE),
    "task:moved": (Domain.TASKS, RecordVerb.MOVE),
    "task:deleted": (Domain.TASKS, RecordVerb.DELETE),
    "new-message": (Domain.MESSAGES, RecordVerb.CREATE),
    "message:updated": (Domain.MESSAGES, RecordVerb.UPDATE),
    "message:deleted": (Domain.MESSAGES, RecordVerb.DELETE),
    "notification:new": (Domain.NOTIFICATIONS, RecordVerb.CREATE),
    "notification:updated": (Domain.NOTIFICATIONS, RecordVerb.UPDATE),
    "notification:deleted": (Domain.NOTIFICATIONS, RecordVerb.DELETE),
}

EVENT_NAMES: dict[tuple[Domain, RecordVerb], str] = {v: k for k, v in EVENT_TYPES.items()}

PRESENCE_EVENTS: dict[str, PresenceKind] = {kind.value: kind for kind in PresenceKind}

# 领域 -> (记录键, ID 键, 作用域键)
_DOMAIN_KEYS: dict[Domain, tuple[str, str, str]] = {
    Domain.TASKS: ("task", "taskId", "projectId"),
    Domain.MESSAGES: ("message", "messageId", "projectId"),
    Domain.NOTIFICATIONS: ("notification", "notificationId", "userId"),
}


def is_known_event(name: str) -> bool:
    return name in EVENT_TYPES or name in PRESENCE_EVENTS


def decode(name: str, data: Any) -> PushEvent | PresenceSignal:
    """解码一条推送

    Args:
        name: 事件名
        data: 事件载荷

    Returns:
        PushEvent 或 PresenceSignal

    Raises:
        MalformedPayloadError: 事件名未知或载荷无法解析
    """
    if not isinstance(data, Mapping):
        raise MalformedPayloadError(f"推送载荷不是对象: {name}", payload=data)
    if name in PRESENCE_EVENTS:
        return _decode_presence(name, data)
    if name not in EVENT_TYPES:
        raise MalformedPayloadError(f"未知推送事件: {name}", payload=data)

    domain, verb = EVENT_TYPES[name]
    record_key, id_key, scope_key = _DOMAIN_KEYS[domain]

    record = data.get("record") or data.get(record_key)
    if record is not None and not isinstance(record, Mapping):
        raise MalformedPayloadError(f"推送记录不是对象: {name}", payload=data)
    record = dict(record) if record is not None else None

    record_id = data.get("id") or data.get(id_key) or (record or {}).get("id")
    if not record_id:
        raise MalformedPayloadError(f"推送缺少记录 ID: {name}", payload=data)

    scope_id = data.get(scope_key) or (record or {}).get(scope_key)

    changes: dict[str, Any] = {}
    if verb == RecordVerb.MOVE and record is None:
        new_status = data.get("newStatus") or data.get("status")
        try:
            changes["status"] = TaskStatus(new_status)
        except ValueError as exc:
            raise MalformedPayloadError(f"非法任务状态: {new_status}", payload=data) from exc
    elif verb == RecordVerb.UPDATE and record is None:
        raw_changes = data.get("changes")
        if not isinstance(raw_changes, Mapping) or not raw_changes:
            raise MalformedPayloadError(f"推送缺少记录或变更: {name}", payload=data)
        changes = {to_snake(key): value for key, value in raw_changes.items()}
    elif verb == RecordVerb.CREATE and record is None:
        raise MalformedPayloadError(f"创建事件缺少记录: {name}", payload=data)

    try:
        return PushEvent(
            name=name,
            domain=domain,
            verb=verb,
            record_id=str(record_id),
            scope_id=scope_id,
            record=record,
            changes=changes,
            op_id=data.get("opId"),
            client_id=data.get("clientId"),
            ts=data.get("ts"),
        )
    except ValidationError as exc:
        raise MalformedPayloadError(f"推送元数据非法: {name}", payload=data) from exc


def _decode_presence(name: str, data: Mapping[str, Any]) -> PresenceSignal:
    try:
        return PresenceSignal(
            kind=PRESENCE_EVENTS[name],
            user_id=data["userId"],
            user_name=data.get("userName") or "",
            project_id=data.get("projectId"),
            thread_id=data.get("threadId"),
        )
    except (KeyError, ValidationError) as exc:
        raise MalformedPayloadError(f"输入提示载荷非法: {name}", payload=data) from exc


def encode(
    domain: Domain,
    verb: RecordVerb,
    record_id: str,
    *,
    record: Mapping[str, Any] | None = None,
    changes: Mapping[str, Any] | None = None,
    op_id: str | None = None,
    client_id: str | None = None,
    ts: datetime | None = None,
) -> tuple[str, dict[str, Any]]:
    """编码一条推送

    Returns:
        (事件名, 载荷)
    """
    name = EVENT_NAMES[(domain, verb)]
    record_key, id_key, _ = _DOMAIN_KEYS[domain]
    data: dict[str, Any] = {"id": record_id, id_key: record_id}
    if record is not None:
        data[record_key] = dict(record)
    if changes:
        if verb == RecordVerb.MOVE and "status" in changes:
            data["newStatus"] = str(changes["status"])
        else:
            data["changes"] = {to_camel(k): v for k, v in changes.items()}
    if op_id:
        data["opId"] = op_id
    if client_id:
        data["clientId"] = client_id
    if ts is not None:
        data["ts"] = ts.isoformat()
    return name, data


def encode_presence(signal: PresenceSignal) -> tuple[str, dict[str, Any]]:
    """编码输入提示信号"""
    data: dict[str, Any] = {"userId": signal.user_id, "userName": signal.user_name}
    if signal.project_id:
        data["projectId"] = signal.project_id
    if signal.thread_id:
        data["threadId"] = signal.thread_id
    return signal.kind.value, data
