"""PollScheduler -- 显式的 {ACTIVE, PAUSED} 轮询状态机

仅在页面可见、窗口聚焦且用户未在输入时轮询；
重新可见时立即刷新一次。sleep 与时钟可注入，tick() 不依赖计时器即可测试。
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

from .clock import Clock, SystemClock

log = structlog.get_logger()


class PollState(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"


class PollScheduler:
    """周期刷新调度器"""

    def __init__(
        self,
        refresh: Callable[[], Awaitable[Any]],
        interval_s: float,
        *,
        name: str = "",
        clock: Clock | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            refresh: 刷新协程函数
            interval_s: 轮询间隔（秒）
            name: 调度器名称（日志用）
            clock: 时钟
            sleep: 等待函数
        """
        self._refresh = refresh
        self.interval_s = interval_s
        self.name = name
        self._clock = clock or SystemClock()
        self._sleep = sleep

        self.visible = True
        self.focused = True
        self.composing = False

        self.runs = 0
        self.failures = 0
        self.last_run_at: float | None = None
        self._running = False
        self._stopped = False
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> PollState:
        if self.visible and self.focused and not self.composing:
            return PollState.ACTIVE
        return PollState.PAUSED

    async def visibility_changed(self, visible: bool) -> None:
        """页面可见性变化；重新可见且处于 ACTIVE 时立即刷新"""
        was_visible = self.visible
        self.visible = visible
        self._log_state()
        if visible and not was_visible and self.state == PollState.ACTIVE:
            await self.tick()

    async def focus_changed(self, focused: bool) -> None:
        self.focused = focused
        self._log_state()

    async def compose_started(self) -> None:
        self.composing = True
        self._log_state()

    async def compose_ended(self) -> None:
        self.composing = False
        self._log_state()

    async def tick(self) -> bool:
        """执行一次刷新

        Returns:
            True 如果实际执行了刷新（PAUSED 或已有刷新在进行时跳过）
        """
        if self.state != PollState.ACTIVE or self._running or self._stopped:
            return False
        self._running = True
        try:
            await self._refresh()
            self.runs += 1
        except Exception as exc:
            self.failures += 1
            log.warning(
                "poll_refresh_failed",
                poller=self.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        finally:
            self._running = False
            self.last_run_at = self._clock.monotonic()
        return True

    async def run(self) -> None:
        """轮询循环，直到 stop()"""
        while not self._stopped:
            await self._sleep(self.interval_s)
            if self._stopped:
                break
            await self.tick()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._stopped = False
            self._task = asyncio.create_task(self.run(), name=f"poll:{self.name}")
            log.debug("poller_started", poller=self.name, interval_s=self.interval_s)

    async def stop(self) -> None:
        """停止轮询并等待循环退出"""
        self._stopped = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        log.debug("poller_stopped", poller=self.name)

    def _log_state(self) -> None:
        log.debug(
            "poller_state",
            poller=self.name,
            state=self.state,
            visible=self.visible,
            focused=self.focused,
            composing=self.composing,
        )
