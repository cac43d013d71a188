"""派生视图测试 -- 看板分列、线程聚合、通知分组与计数"""

from datetime import UTC, date, datetime, timedelta

from synergysync.core.models import Message, Notification, Task, TaskStatus
from synergysync.core.views import (
    build_threads,
    group_by_calendar_day,
    group_tasks_by_status,
    notification_stats,
    orphan_replies,
    recent,
    root_messages,
    sort_feed,
    sort_tasks,
    thread_for,
    unread_count,
)


def _tasks(records, statuses):
    return [Task.model_validate(records.task(f"t-{i}", status=s)) for i, s in enumerate(statuses)]


class TestTaskBoard:
    """看板分列"""

    def test_status_partition(self, records):
        """每个任务恰好出现在其 status 对应的列中"""
        tasks = _tasks(records, ["TODO", "DONE", "IN_PROGRESS", "TODO", "DONE"])
        board = group_tasks_by_status(tasks)

        seen = [t.id for column in board.columns.values() for t in column]
        assert sorted(seen) == sorted(t.id for t in tasks)
        assert len(seen) == len(set(seen))
        for status, column in board.columns.items():
            assert all(t.status == status for t in column)
        assert board.counts == {
            TaskStatus.TODO: 2,
            TaskStatus.IN_PROGRESS: 1,
            TaskStatus.DONE: 2,
        }
        assert board.total == 5

    def test_columns_ordered_by_created_at(self, records):
        early = Task.model_validate(records.task("b"))
        late = Task.model_validate(records.task("a"))
        board = group_tasks_by_status([late, early])
        assert [t.id for t in board[TaskStatus.TODO]] == ["b", "a"]
        assert [t.id for t in sort_tasks([late, early])] == ["b", "a"]

    def test_empty_board_has_all_columns(self):
        board = group_tasks_by_status([])
        assert set(board.columns) == set(TaskStatus)
        assert board.total == 0


class TestThreads:
    """线程聚合"""

    def _conversation(self, records):
        m1 = Message.model_validate(records.message("m1", author_id="u-2"))
        m2 = Message.model_validate(records.message("m2", parent_id="m1", author_id="u-3"))
        m3 = Message.model_validate(
            records.message("m3", parent_id="m2", thread_id="m1", author_id="u-2")
        )
        m4 = Message.model_validate(records.message("m4", author_id="u-3"))
        return m1, m2, m3, m4

    def test_thread_closure(self, records):
        """回复的回复也属于根线程"""
        m1, m2, m3, m4 = self._conversation(records)
        thread = thread_for("m1", [m3, m4, m1, m2])
        assert thread.root.id == "m1"
        assert [r.id for r in thread.replies] == ["m2", "m3"]
        assert thread.total_replies == 2
        assert thread.participants == ["u-2", "u-3"]
        assert thread.last_reply_at == m3.created_at

    def test_thread_for_non_root_is_none(self, records):
        m1, m2, m3, _ = self._conversation(records)
        assert thread_for("m2", [m1, m2, m3]) is None
        assert thread_for("missing", [m1]) is None

    def test_root_messages_newest_first(self, records):
        m1, m2, m3, m4 = self._conversation(records)
        assert [m.id for m in root_messages([m1, m2, m3, m4])] == ["m4", "m1"]

    def test_build_threads(self, records):
        m1, m2, m3, m4 = self._conversation(records)
        threads = build_threads([m1, m2, m3, m4])
        assert [t.root.id for t in threads] == ["m4", "m1"]
        assert threads[0].replies == []
        assert [r.id for r in threads[1].replies] == ["m2", "m3"]

    def test_orphan_replies(self, records):
        """thread_id 无法解析到根消息的回复"""
        orphan = Message.model_validate(records.message("m9", parent_id="gone"))
        m1 = Message.model_validate(records.message("m1"))
        assert orphan_replies([m1, orphan]) == [orphan]
        assert all(orphan not in t.replies for t in build_threads([m1, orphan]))


class TestNotificationViews:
    """通知视图"""

    def _at(self, records, nid, when, **fields):
        return Notification.model_validate(
            records.notification(nid, created_at=when.isoformat(), **fields)
        )

    def test_unread_count(self, records):
        items = [
            Notification.model_validate(records.notification(is_read=False)),
            Notification.model_validate(records.notification(is_read=True)),
            Notification.model_validate(records.notification(is_read=False)),
        ]
        assert unread_count(items) == 2

    def test_group_by_calendar_day(self, records):
        day1 = datetime(2025, 12, 30, 9, tzinfo=UTC)
        day2 = datetime(2025, 12, 31, 9, tzinfo=UTC)
        a = self._at(records, "a", day1)
        b = self._at(records, "b", day2)
        c = self._at(records, "c", day2 + timedelta(hours=2))

        groups = group_by_calendar_day([a, b, c])
        assert [g.day for g in groups] == [date(2025, 12, 31), date(2025, 12, 30)]
        assert [n.id for n in groups[0].items] == ["c", "b"]
        assert [n.id for n in groups[1].items] == ["a"]

    def test_sort_feed_and_recent(self, records):
        old = self._at(records, "old", datetime(2025, 12, 1, tzinfo=UTC))
        new = self._at(records, "new", datetime(2025, 12, 31, tzinfo=UTC))
        assert [n.id for n in sort_feed([old, new])] == ["new", "old"]
        assert [n.id for n in recent([old, new], datetime(2025, 12, 30, tzinfo=UTC))] == ["new"]

    def test_stats(self, records):
        items = [
            Notification.model_validate(records.notification(type="mention", project_id="p-1")),
            Notification.model_validate(
                records.notification(type="reply", project_id="p-2", is_read=True)
            ),
            Notification.model_validate(records.notification(type="mention", project_id="p-1")),
        ]
        stats = notification_stats(items)
        assert stats.total == 3
        assert stats.unread == 2
        assert stats.by_type == {"mention": 2, "reply": 1}
        assert stats.by_project == {"p-1": 2, "p-2": 1}
