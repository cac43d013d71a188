"""输入提示跟踪测试"""

from synergysync.core.models import PresenceKind, PresenceSignal
from synergysync.core.presence import TypingTracker


class TestTypingTracker:
    """(user, thread) 键与超时"""

    def test_start_stop(self, clock):
        tracker = TypingTracker(clock, timeout_s=5, self_user_id="u-1")
        assert tracker.start("u-2", "Alice") is True
        assert tracker.start("u-2", "Alice") is False
        assert [e.user_id for e in tracker.active()] == ["u-2"]
        assert tracker.stop("u-2") is True
        assert tracker.stop("u-2") is False
        assert tracker.active() == []

    def test_ignores_self(self, clock):
        tracker = TypingTracker(clock, timeout_s=5, self_user_id="u-1")
        assert tracker.start("u-1") is False
        assert tracker.active_all() == []

    def test_threads_are_separate(self, clock):
        tracker = TypingTracker(clock, timeout_s=5)
        tracker.start("u-2", thread_id="m1")
        tracker.start("u-3")
        assert [e.user_id for e in tracker.active("m1")] == ["u-2"]
        assert [e.user_id for e in tracker.active()] == ["u-3"]
        assert len(tracker.active_all()) == 2

    def test_expiry(self, clock):
        tracker = TypingTracker(clock, timeout_s=5)
        tracker.start("u-2")
        clock.advance(4.9)
        assert len(tracker.active()) == 1
        clock.advance(0.1)
        assert tracker.active() == []
        # 过期后再次开始视为新条目
        assert tracker.start("u-2") is True

    def test_handle_signals(self, clock):
        tracker = TypingTracker(clock, timeout_s=5)
        typing = PresenceSignal(kind=PresenceKind.TYPING, user_id="u-2")
        stop = PresenceSignal(kind=PresenceKind.STOP_TYPING, user_id="u-2")
        assert tracker.handle(typing) is True
        assert tracker.handle(stop) is True
        assert tracker.handle(stop) is False
