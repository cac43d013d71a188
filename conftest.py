"""全局 pytest 配置 -- 可控时钟、记录工厂与内存 ApiBackend fixture"""

import asyncio
from collections import defaultdict
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from pydantic.alias_generators import to_camel

from synergysync.core.clock import ManualClock
from synergysync.core.config import DELETED_MESSAGE_CONTENT, SyncConfig
from synergysync.core.exceptions import RecordNotFoundError
from synergysync.core.models import (
    Domain,
    Page,
    ReactionOutcome,
    ReactionResult,
    TaskStatus,
)

USER_ID = "u-1"
PROJECT_ID = "p-1"

# 早于 ManualClock 起点（2026-01-01），保证工厂记录都在“过去”
BASE_TIME = datetime(2025, 12, 31, 12, tzinfo=UTC)


def _camel(fields: dict[str, Any]) -> dict[str, Any]:
    return {to_camel(k): v for k, v in fields.items()}


class RecordFactory:
    """生成线上格式（camelCase）的记录，创建时间逐条递增"""

    def __init__(self) -> None:
        self._n = 0

    def _tick(self) -> str:
        self._n += 1
        return (BASE_TIME + timedelta(minutes=self._n)).isoformat()

    def task(self, id: str | None = None, **fields: Any) -> dict[str, Any]:
        stamp = self._tick()
        record = {
            "id": id or f"task-{self._n}",
            "projectId": PROJECT_ID,
            "title": f"Task {self._n}",
            "status": "TODO",
            "priority": "MEDIUM",
            "creatorId": USER_ID,
            "createdAt": stamp,
            "updatedAt": stamp,
        }
        record.update(_camel(fields))
        return record

    def message(self, id: str | None = None, **fields: Any) -> dict[str, Any]:
        stamp = self._tick()
        record = {
            "id": id or f"msg-{self._n}",
            "projectId": PROJECT_ID,
            "authorId": "u-2",
            "content": f"message {self._n}",
            "createdAt": stamp,
            "updatedAt": stamp,
        }
        record.update(_camel(fields))
        return record

    def notification(self, id: str | None = None, **fields: Any) -> dict[str, Any]:
        stamp = self._tick()
        record = {
            "id": id or f"ntf-{self._n}",
            "type": "mention",
            "title": "You were mentioned",
            "userId": USER_ID,
            "fromUserId": "u-2",
            "projectId": PROJECT_ID,
            "isRead": False,
            "createdAt": stamp,
            "updatedAt": stamp,
        }
        record.update(_camel(fields))
        return record


class FakeApi:
    """内存 ApiBackend -- 记录每次调用，可注入失败、阻塞与固定响应"""

    def __init__(self, clock: ManualClock, user_id: str = USER_ID) -> None:
        self.clock = clock
        self.user_id = user_id
        self.server: dict[str, dict[str, Any]] = {}
        self.scopes: dict[str, tuple[Domain, str]] = {}
        self.pages: dict[tuple[Domain, str, str | None], Page] = {}
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self.responses: dict[str, list[Any]] = defaultdict(list)
        self.gates: dict[str, asyncio.Event] = {}
        self._seq = 0

    # ---- 测试控制 ----

    def seed(self, domain: Domain, scope_id: str, *records: dict[str, Any]) -> None:
        for record in records:
            self.server[record["id"]] = dict(record)
            self.scopes[record["id"]] = (domain, scope_id)

    def set_page(
        self,
        domain: Domain,
        scope_id: str,
        records: list[dict[str, Any]],
        *,
        cursor: str | None = None,
        has_more: bool = False,
        next_cursor: str | None = None,
    ) -> None:
        self.pages[(domain, scope_id, cursor)] = Page(
            records=records, has_more=has_more, next_cursor=next_cursor
        )

    def fail(self, method: str, exc: Exception) -> None:
        """下一次调用 method 时抛出 exc"""
        self.failures[method].append(exc)

    def respond(self, method: str, value: Any) -> None:
        """下一次调用 method 时直接返回 value"""
        self.responses[method].append(value)

    def hold(self, method: str) -> asyncio.Event:
        """阻塞 method 的调用，直到返回的 Event 被 set"""
        gate = asyncio.Event()
        self.gates[method] = gate
        return gate

    def calls_to(self, method: str) -> list[tuple[tuple[Any, ...], dict[str, Any]]]:
        return [(args, kwargs) for name, args, kwargs in self.calls if name == method]

    # ---- 内部 ----

    async def _enter(self, method: str, *args: Any, **kwargs: Any) -> Any:
        self.calls.append((method, args, kwargs))
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()
        if self.failures[method]:
            raise self.failures[method].pop(0)
        if self.responses[method]:
            return self.responses[method].pop(0)
        return None

    def _now(self) -> str:
        return self.clock.now().isoformat()

    def _record(self, record_id: str) -> dict[str, Any]:
        if record_id not in self.server:
            raise RecordNotFoundError(record_id)
        return self.server[record_id]

    def _save(self, record_id: str, **changes: Any) -> dict[str, Any]:
        record = {**self._record(record_id), **changes, "updatedAt": self._now()}
        self.server[record_id] = record
        return dict(record)

    # ---- ApiBackend ----

    async def list_records(self, domain, scope_id, *, filters=None, cursor=None, limit=50):
        canned = await self._enter(
            "list_records", domain, scope_id, filters=filters, cursor=cursor, limit=limit
        )
        if canned is not None:
            return canned
        page = self.pages.get((domain, scope_id, cursor))
        if page is not None:
            return page
        records = [
            dict(r)
            for rid, r in self.server.items()
            if self.scopes.get(rid) == (domain, scope_id)
        ]
        records.reverse()
        return Page(records=records[:limit], has_more=len(records) > limit)

    async def create(self, domain, scope_id, payload, *, op_id=None):
        canned = await self._enter("create", domain, scope_id, payload, op_id=op_id)
        if canned is not None:
            return canned
        self._seq += 1
        now = self._now()
        record = {**payload, "id": f"srv-{self._seq}", "createdAt": now, "updatedAt": now}
        if domain == Domain.TASKS:
            record.update(projectId=scope_id, creatorId=self.user_id)
        else:
            record.update(projectId=scope_id, authorId=self.user_id)
        self.seed(domain, scope_id, record)
        return dict(record)

    async def update(self, domain, record_id, changes, *, op_id=None):
        canned = await self._enter("update", domain, record_id, changes, op_id=op_id)
        if canned is not None:
            return canned
        extra: dict[str, Any] = {}
        if domain == Domain.MESSAGES:
            extra = {"isEdited": True, "editedAt": self._now()}
        return self._save(record_id, **changes, **extra)

    async def move(self, task_id, status, *, op_id=None):
        canned = await self._enter("move", task_id, status, op_id=op_id)
        if canned is not None:
            return canned
        return self._save(task_id, status=str(TaskStatus(status)))

    async def update_tasks(self, updates, *, op_id=None):
        canned = await self._enter("update_tasks", updates, op_id=op_id)
        if canned is not None:
            return canned
        for update in updates:
            self._record(update["id"])
        return [
            self._save(update["id"], **{k: v for k, v in update.items() if k != "id"})
            for update in updates
        ]

    async def delete(self, domain, record_id, *, op_id=None):
        canned = await self._enter("delete", domain, record_id, op_id=op_id)
        if canned is not None:
            return canned
        if domain == Domain.MESSAGES:
            self._save(
                record_id,
                content=DELETED_MESSAGE_CONTENT,
                deletedAt=self._now(),
                attachments=[],
            )
            return {"success": True}
        self._record(record_id)
        del self.server[record_id]
        return None

    async def react(self, message_id, emoji, *, op_id=None):
        canned = await self._enter("react", message_id, emoji, op_id=op_id)
        if canned is not None:
            return canned
        record = self._record(message_id)
        reactions = list(record.get("reactions", []))
        mine = [r for r in reactions if (r["userId"], r["emoji"]) == (self.user_id, emoji)]
        if mine:
            self._save(message_id, reactions=[r for r in reactions if r not in mine])
            return ReactionResult(outcome=ReactionOutcome.REMOVED)
        self._seq += 1
        reaction = {
            "id": f"rx-{self._seq}",
            "emoji": emoji,
            "userId": self.user_id,
            "userName": "Me",
            "createdAt": self._now(),
        }
        self._save(message_id, reactions=[*reactions, reaction])
        return ReactionResult(outcome=ReactionOutcome.ADDED, reaction=reaction)

    async def mark_read(self, notification_id, is_read=True, *, op_id=None):
        canned = await self._enter("mark_read", notification_id, is_read, op_id=op_id)
        if canned is not None:
            return canned
        return self._save(
            notification_id, isRead=is_read, readAt=self._now() if is_read else None
        )

    async def mark_many_read(self, notification_ids, is_read=True, *, op_id=None):
        canned = await self._enter("mark_many_read", notification_ids, is_read, op_id=op_id)
        if canned is not None:
            return canned
        return [
            self._save(nid, isRead=is_read, readAt=self._now() if is_read else None)
            for nid in notification_ids
            if nid in self.server
        ]

    async def mark_all_read(self, project_id=None, *, op_id=None):
        canned = await self._enter("mark_all_read", project_id, op_id=op_id)
        if canned is not None:
            return canned
        count = 0
        for rid, (domain, _) in list(self.scopes.items()):
            record = self.server.get(rid)
            if domain != Domain.NOTIFICATIONS or record is None or record.get("isRead"):
                continue
            if project_id is not None and record.get("projectId") != project_id:
                continue
            self._save(rid, isRead=True, readAt=self._now())
            count += 1
        return count

    async def delete_many(self, domain, record_ids, *, op_id=None):
        canned = await self._enter("delete_many", domain, record_ids, op_id=op_id)
        if canned is not None:
            return canned
        count = 0
        for rid in record_ids:
            if self.server.pop(rid, None) is not None:
                count += 1
        return count


async def never_wake(_: float) -> None:
    """永不返回的 sleep，轮询循环只通过 tick() 驱动"""
    await asyncio.Event().wait()


@pytest.fixture
def clock() -> ManualClock:
    """手动推进的时钟"""
    return ManualClock()


@pytest.fixture
def config() -> SyncConfig:
    """默认同步配置（窗口 5s，回声窗口 30s，轮询不裁剪）"""
    return SyncConfig()


@pytest.fixture
def records() -> RecordFactory:
    """线上格式记录工厂"""
    return RecordFactory()


@pytest.fixture
def fake_api(clock: ManualClock) -> FakeApi:
    """内存 ApiBackend"""
    return FakeApi(clock)


@pytest.fixture
def idle_sleep():
    """注入轮询器的 sleep：循环永不自行唤醒"""
    return never_wake
