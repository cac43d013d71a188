"""PollScheduler 测试 -- 通过 tick() 驱动，不依赖计时器"""

import asyncio
from unittest.mock import AsyncMock

from synergysync.core.polling import PollScheduler, PollState


def _scheduler(clock, idle_sleep, refresh=None):
    calls: list[int] = []

    async def default_refresh():
        calls.append(1)

    scheduler = PollScheduler(
        refresh or default_refresh, 8.0, name="test", clock=clock, sleep=idle_sleep
    )
    return scheduler, calls


class TestPollState:
    """ACTIVE/PAUSED 状态机"""

    async def test_active_by_default(self, clock, idle_sleep):
        scheduler, calls = _scheduler(clock, idle_sleep)
        assert scheduler.state == PollState.ACTIVE
        assert await scheduler.tick() is True
        assert calls == [1]
        assert scheduler.last_run_at == clock.monotonic()

    async def test_paused_while_composing(self, clock, idle_sleep):
        scheduler, calls = _scheduler(clock, idle_sleep)
        await scheduler.compose_started()
        assert scheduler.state == PollState.PAUSED
        assert await scheduler.tick() is False
        await scheduler.compose_ended()
        assert await scheduler.tick() is True
        assert calls == [1]

    async def test_paused_when_unfocused(self, clock, idle_sleep):
        scheduler, calls = _scheduler(clock, idle_sleep)
        await scheduler.focus_changed(False)
        assert await scheduler.tick() is False
        assert calls == []

    async def test_refresh_on_visible_again(self, clock, idle_sleep):
        scheduler, calls = _scheduler(clock, idle_sleep)
        await scheduler.visibility_changed(False)
        assert calls == []
        await scheduler.visibility_changed(True)
        assert calls == [1]
        # 已可见时再次通知不重复刷新
        await scheduler.visibility_changed(True)
        assert calls == [1]

    async def test_visible_but_composing_does_not_refresh(self, clock, idle_sleep):
        scheduler, calls = _scheduler(clock, idle_sleep)
        await scheduler.compose_started()
        await scheduler.visibility_changed(False)
        await scheduler.visibility_changed(True)
        assert calls == []


class TestPollRefresh:
    """刷新执行"""

    async def test_failure_is_counted_not_raised(self, clock, idle_sleep):
        broken = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler, _ = _scheduler(clock, idle_sleep, broken)
        assert await scheduler.tick() is True
        broken.assert_awaited_once()
        assert scheduler.failures == 1
        assert scheduler.runs == 0

    async def test_no_overlapping_refresh(self, clock, idle_sleep):
        gate = asyncio.Event()

        async def slow():
            await gate.wait()

        scheduler, _ = _scheduler(clock, idle_sleep, slow)
        first = asyncio.create_task(scheduler.tick())
        await asyncio.sleep(0)
        assert await scheduler.tick() is False
        gate.set()
        assert await first is True
        assert scheduler.runs == 1

    async def test_loop_start_stop(self, clock):
        slept: list[float] = []

        async def quick_sleep(seconds):
            slept.append(seconds)
            await asyncio.sleep(0)

        calls: list[int] = []

        async def refresh():
            calls.append(1)

        scheduler = PollScheduler(refresh, 8.0, clock=clock, sleep=quick_sleep)
        scheduler.start()
        for _ in range(10):
            await asyncio.sleep(0)
        await scheduler.stop()
        assert calls
        assert set(slept) == {8.0}
        count = len(calls)
        await asyncio.sleep(0)
        assert len(calls) == count
        assert await scheduler.tick() is False

    async def test_stop_idle_loop(self, clock, idle_sleep):
        scheduler, calls = _scheduler(clock, idle_sleep)
        scheduler.start()
        await asyncio.sleep(0)
        await scheduler.stop()
        assert calls == []
