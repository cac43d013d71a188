"""HttpApiClient 测试 -- 基于 httpx.MockTransport"""

import json

import httpx
import pytest

from synergysync.core.exceptions import (
    AuthorizationError,
    MalformedPayloadError,
    MutationValidationError,
    RecordNotFoundError,
    StaleEditError,
    SyncError,
    TransientNetworkError,
)
from synergysync.core.models import Domain, ReactionOutcome, TaskStatus
from synergysync.transport.http_client import HttpApiClient


class Recorder:
    """记录请求并返回预设响应"""

    def __init__(self, response: httpx.Response | Exception | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.response = response or httpx.Response(200, json={})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def body(self) -> dict:
        return json.loads(self.last.content)


def _client(recorder: Recorder) -> HttpApiClient:
    return HttpApiClient(
        "http://api.test/",
        token="tok",
        client_id="c-1",
        user_id="u-1",
        transport=httpx.MockTransport(recorder),
    )


class TestRequests:
    """路径、请求头与请求体"""

    async def test_list_tasks(self, records):
        task = records.task("t-1")
        recorder = Recorder(
            httpx.Response(200, json={"tasks": [task, "junk"], "hasMore": True, "nextCursor": "t-1"})
        )
        async with _client(recorder) as client:
            page = await client.list_records(Domain.TASKS, "p-1", cursor="t-9", limit=20)
        request = recorder.last
        assert request.method == "GET"
        assert request.url.path == "/api/projects/p-1/tasks"
        assert request.url.params["cursor"] == "t-9"
        assert request.url.params["limit"] == "20"
        assert request.headers["Authorization"] == "Bearer tok"
        assert request.headers["X-Client-Id"] == "c-1"
        assert request.headers["X-User-Id"] == "u-1"
        assert page.records == [task]
        assert page.has_more
        assert page.next_cursor == "t-1"

    async def test_list_notifications(self, records):
        recorder = Recorder(
            httpx.Response(200, json={"notifications": [records.notification()], "unreadCount": 4})
        )
        async with _client(recorder) as client:
            page = await client.list_records(Domain.NOTIFICATIONS, "u-1")
        assert recorder.last.url.path == "/api/notifications"
        assert "cursor" not in recorder.last.url.params
        assert page.unread_count == 4

    async def test_create_sends_op_id(self, records):
        task = records.task("t-1")
        recorder = Recorder(httpx.Response(201, json={"task": task}))
        async with _client(recorder) as client:
            created = await client.create(Domain.TASKS, "p-1", {"title": "A"}, op_id="op-1")
        assert recorder.last.method == "POST"
        assert recorder.last.headers["X-Client-Op-Id"] == "op-1"
        assert recorder.body == {"title": "A"}
        assert created == task

    async def test_move(self, records):
        recorder = Recorder(httpx.Response(200, json={"task": records.task("t-1", status="DONE")}))
        async with _client(recorder) as client:
            await client.move("t-1", TaskStatus.DONE)
        assert recorder.last.method == "PATCH"
        assert recorder.last.url.path == "/api/tasks/t-1/status"
        assert recorder.body == {"status": "DONE"}
        assert "X-Client-Op-Id" not in recorder.last.headers

    async def test_update_notification_uses_read_route(self, records):
        recorder = Recorder(httpx.Response(200, json={"notification": records.notification("n1")}))
        async with _client(recorder) as client:
            await client.update(Domain.NOTIFICATIONS, "n1", {"isRead": False})
        assert recorder.last.url.path == "/api/notifications/n1/read"
        assert recorder.body == {"isRead": False}

    async def test_delete_no_content(self):
        recorder = Recorder(httpx.Response(204))
        async with _client(recorder) as client:
            assert await client.delete(Domain.TASKS, "t-1") is None
        assert recorder.last.method == "DELETE"
        assert recorder.last.url.path == "/api/tasks/t-1"

    async def test_react(self):
        reaction = {"id": "r-1", "emoji": "👍", "userId": "u-1"}
        recorder = Recorder(httpx.Response(200, json={"reaction": reaction}))
        async with _client(recorder) as client:
            added = await client.react("m1", "👍")
            recorder.response = httpx.Response(200, json={"removed": True})
            removed = await client.react("m1", "👍")
        assert recorder.last.url.path == "/api/messages/m1/reactions"
        assert added.outcome == ReactionOutcome.ADDED
        assert added.reaction == reaction
        assert removed.outcome == ReactionOutcome.REMOVED

    async def test_batch_routes(self, records):
        recorder = Recorder(httpx.Response(200, json={"count": 3}))
        async with _client(recorder) as client:
            assert await client.mark_all_read("p-1") == 3
            assert recorder.body == {"projectId": "p-1"}
            assert recorder.last.url.path == "/api/notifications/mark-all-read"
            assert await client.mark_all_read() == 3
            assert recorder.body == {}
            assert await client.delete_many(Domain.NOTIFICATIONS, ["n1", "n2"]) == 3
            assert recorder.last.url.path == "/api/notifications/delete"
            assert recorder.body == {"ids": ["n1", "n2"]}
            recorder.response = httpx.Response(
                200, json={"notifications": [records.notification("n1")]}
            )
            updated = await client.mark_many_read(["n1"])
            assert recorder.body == {"ids": ["n1"], "isRead": True}
            assert [n["id"] for n in updated] == ["n1"]
            with pytest.raises(MutationValidationError):
                await client.delete_many(Domain.TASKS, ["t-1"])

    async def test_update_tasks(self, records):
        recorder = Recorder(
            httpx.Response(200, json={"tasks": [records.task("t-1", status="DONE")]})
        )
        async with _client(recorder) as client:
            tasks = await client.update_tasks([{"id": "t-1", "status": "DONE"}], op_id="op-7")
            assert recorder.last.method == "PATCH"
            assert recorder.last.url.path == "/api/tasks/batch"
            assert recorder.body == {"updates": [{"id": "t-1", "status": "DONE"}]}
            assert recorder.last.headers["X-Client-Op-Id"] == "op-7"
            assert [t["id"] for t in tasks] == ["t-1"]

            recorder.response = httpx.Response(200, json={"tasks": {"t-1": {}}})
            with pytest.raises(MalformedPayloadError):
                await client.update_tasks([{"id": "t-1", "status": "DONE"}])


class TestErrorMapping:
    """状态码与连接错误映射"""

    @pytest.mark.parametrize(
        ("status", "body", "error"),
        [
            (400, {"error": {"code": "VALIDATION_ERROR", "message": "bad"}}, MutationValidationError),
            (401, {"error": "no token"}, AuthorizationError),
            (403, {"detail": "not a member"}, AuthorizationError),
            (404, {"error": {"code": "NOT_FOUND", "message": "gone"}}, RecordNotFoundError),
            (422, {"error": {"code": "EDIT_WINDOW_EXPIRED", "message": "x"}}, StaleEditError),
            (422, {"error": "Message is too old to edit"}, StaleEditError),
            (422, {"error": {"code": "INVALID", "message": "x"}}, MutationValidationError),
            (429, {}, TransientNetworkError),
            (503, {}, TransientNetworkError),
        ],
    )
    async def test_status(self, status, body, error):
        async with _client(Recorder(httpx.Response(status, json=body))) as client:
            with pytest.raises(error):
                await client.update(Domain.MESSAGES, "m1", {"content": "x"})

    async def test_not_found_carries_record_id(self):
        async with _client(Recorder(httpx.Response(404, json={}))) as client:
            with pytest.raises(RecordNotFoundError) as exc_info:
                await client.move("t-1", TaskStatus.DONE)
        assert exc_info.value.record_id == "t-1"

    async def test_unexpected_status(self):
        async with _client(Recorder(httpx.Response(409, text="conflict"))) as client:
            with pytest.raises(SyncError) as exc_info:
                await client.delete(Domain.TASKS, "t-1")
        assert not exc_info.value.recoverable

    @pytest.mark.parametrize(
        "exc",
        [httpx.ConnectError("refused"), httpx.ReadTimeout("slow")],
    )
    async def test_connection_errors(self, exc):
        async with _client(Recorder(exc)) as client:
            with pytest.raises(TransientNetworkError) as exc_info:
                await client.list_records(Domain.TASKS, "p-1")
        assert exc_info.value.original_error is exc

    async def test_malformed_bodies(self):
        async with _client(Recorder(httpx.Response(200, text="<html>"))) as client:
            with pytest.raises(MalformedPayloadError):
                await client.list_records(Domain.TASKS, "p-1")
        async with _client(Recorder(httpx.Response(200, json={"items": []}))) as client:
            with pytest.raises(MalformedPayloadError):
                await client.list_records(Domain.TASKS, "p-1")
        async with _client(Recorder(httpx.Response(200, json={"tasks": {}}))) as client:
            with pytest.raises(MalformedPayloadError):
                await client.list_records(Domain.TASKS, "p-1")
