"""可注入时钟

对账窗口、输入提示过期、轮询调度都通过 Clock 取时间，
测试时注入 ManualClock 即可脱离真实计时器。
"""

import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """时钟接口"""

    def now(self) -> datetime:
        """当前 UTC 时间（带时区）"""
        ...

    def monotonic(self) -> float:
        """单调时间（秒），用于时间窗口比较"""
        ...


class SystemClock:
    """系统时钟"""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def monotonic(self) -> float:
        return time.monotonic()


class ManualClock:
    """手动推进的时钟"""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 1, 1, tzinfo=UTC)
        self._mono = 1000.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float) -> None:
        """同时推进墙钟和单调时间"""
        self._now = self._now + timedelta(seconds=seconds)
        self._mono += seconds
