"""输入提示跟踪

键为 (user_id, thread_id)，超时后自动失效。输入提示从不写入镜像。
"""

from dataclasses import dataclass

from .clock import Clock
from .models import PresenceKind, PresenceSignal


@dataclass(frozen=True)
class TypingEntry:
    user_id: str
    user_name: str
    thread_id: str | None
    expires_at: float


class TypingTracker:
    """正在输入的用户集合"""

    def __init__(self, clock: Clock, timeout_s: float, self_user_id: str | None = None) -> None:
        self._clock = clock
        self._timeout_s = timeout_s
        self._self_user_id = self_user_id
        self._entries: dict[tuple[str, str | None], TypingEntry] = {}

    def handle(self, signal: PresenceSignal) -> bool:
        """应用一个信号

        Returns:
            True 如果活跃集合发生了变化
        """
        if signal.kind == PresenceKind.TYPING:
            return self.start(signal.user_id, signal.user_name, signal.thread_id)
        return self.stop(signal.user_id, signal.thread_id)

    def start(self, user_id: str, user_name: str = "", thread_id: str | None = None) -> bool:
        if user_id == self._self_user_id:
            return False
        key = (user_id, thread_id)
        is_new = key not in self._entries or self._expired(self._entries[key])
        self._entries[key] = TypingEntry(
            user_id=user_id,
            user_name=user_name,
            thread_id=thread_id,
            expires_at=self._clock.monotonic() + self._timeout_s,
        )
        return is_new

    def stop(self, user_id: str, thread_id: str | None = None) -> bool:
        return self._entries.pop((user_id, thread_id), None) is not None

    def active(self, thread_id: str | None = None) -> list[TypingEntry]:
        """某线程（None 表示主讨论区）中正在输入的用户"""
        self.expire()
        return [e for e in self._entries.values() if e.thread_id == thread_id]

    def active_all(self) -> list[TypingEntry]:
        self.expire()
        return list(self._entries.values())

    def expire(self) -> int:
        """清理过期条目，返回清理数量"""
        expired = [key for key, entry in self._entries.items() if self._expired(entry)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def _expired(self, entry: TypingEntry) -> bool:
        return self._clock.monotonic() >= entry.expires_at
