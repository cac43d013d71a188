"""EntityMirror -- 单领域记录的本地镜像

按 ID 索引，幂等、后写覆盖。写入与已存记录相等时不通知；
batch() 内的所有变更合并为一次通知。镜像唯一的副作用是通知订阅者重算视图。
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Generic, TypeVar

from pydantic import BaseModel

R = TypeVar("R", bound=BaseModel)

MirrorListener = Callable[[], None]


class EntityMirror(Generic[R]):
    """记录镜像 -- id -> 记录"""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._records: dict[str, R] = {}
        self._listeners: list[MirrorListener] = []
        self._batch_depth = 0
        self._dirty = False
        self.version = 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def get(self, record_id: str) -> R | None:
        return self._records.get(record_id)

    def ids(self) -> list[str]:
        return list(self._records)

    def list(self, predicate: Callable[[R], bool] | None = None) -> list[R]:
        """列出记录（插入顺序），可选过滤"""
        if predicate is None:
            return list(self._records.values())
        return [r for r in self._records.values() if predicate(r)]

    def upsert(self, record: R) -> bool:
        """写入记录

        Returns:
            True 如果镜像发生了变化
        """
        record_id = getattr(record, "id")
        current = self._records.get(record_id)
        if current is not None and current == record:
            return False
        self._records[record_id] = record
        self._changed()
        return True

    def remove(self, record_id: str) -> R | None:
        """移除记录，返回被移除的记录（不存在时为 None）"""
        record = self._records.pop(record_id, None)
        if record is not None:
            self._changed()
        return record

    def clear(self) -> None:
        if self._records:
            self._records.clear()
            self._changed()

    def subscribe(self, listener: MirrorListener) -> Callable[[], None]:
        """订阅变更通知

        Returns:
            取消订阅函数
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @contextmanager
    def batch(self) -> Iterator[None]:
        """合并块内所有变更为一次通知"""
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._dirty:
                self._dirty = False
                self._notify()

    def _changed(self) -> None:
        self.version += 1
        if self._batch_depth:
            self._dirty = True
            return
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()
