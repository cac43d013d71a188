"""待确认操作账本

每个乐观写入对应一个 PendingOperation，记录其覆盖到镜像上的字段。
Reconciler 把镜像条目计算为 base ⊕ 按 seq 顺序叠加的待确认覆盖。
"""

import itertools
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel
from ulid import ULID

from .exceptions import SyncError
from .models import Domain


class OperationKind(StrEnum):
    """操作类型"""

    CREATE = "create"
    UPDATE = "update"
    MOVE = "move"
    DELETE = "delete"
    REACT = "react"


class OperationState(StrEnum):
    """操作状态"""

    IN_FLIGHT = "in_flight"
    FAILED_RETRYABLE = "failed_retryable"


def new_op_id() -> str:
    return str(ULID())


@dataclass
class PendingOperation:
    """一次尚未被服务端确认的写入

    changes 是覆盖到记录上的字段（snake_case）；transform 用于依赖当前值的覆盖
    （如表情切换），两者同时存在时先 transform 再 changes。
    CREATE 操作的 record 是乐观创建的完整记录。
    """

    domain: Domain
    kind: OperationKind
    record_id: str
    changes: dict[str, Any] = field(default_factory=dict)
    transform: Callable[[Any], Any] | None = None
    record: BaseModel | None = None
    op_id: str = field(default_factory=new_op_id)
    seq: int = 0
    created_at: float = 0.0
    state: OperationState = OperationState.IN_FLIGHT
    error: SyncError | None = None
    dispatch: Callable[["PendingOperation"], Awaitable[Any]] | None = None
    confirm: Callable[["PendingOperation", Any], Any] | None = None
    group: str | None = None

    def overlay(self, record: Any) -> Any:
        """把本操作的覆盖应用到 record 上"""
        if self.transform is not None:
            record = self.transform(record)
        if self.changes:
            record = record.model_copy(update=self.changes)
        return record


class PendingLedger:
    """op_id -> PendingOperation"""

    def __init__(self) -> None:
        self._ops: dict[str, PendingOperation] = {}
        self._seq = itertools.count(1)

    def __len__(self) -> int:
        return len(self._ops)

    def __iter__(self) -> Iterator[PendingOperation]:
        return iter(sorted(self._ops.values(), key=lambda op: op.seq))

    def __contains__(self, op_id: object) -> bool:
        return op_id in self._ops

    def add(self, op: PendingOperation, now: float = 0.0) -> PendingOperation:
        """登记操作并分配递增序号"""
        op.seq = next(self._seq)
        op.created_at = now
        self._ops[op.op_id] = op
        return op

    def get(self, op_id: str) -> PendingOperation | None:
        return self._ops.get(op_id)

    def resolve(self, op_id: str) -> PendingOperation | None:
        """移除操作（确认或回滚后调用），不存在时返回 None"""
        return self._ops.pop(op_id, None)

    def for_record(self, record_id: str) -> list[PendingOperation]:
        """某记录上的全部待确认操作，按 seq 升序"""
        return sorted(
            (op for op in self._ops.values() if op.record_id == record_id),
            key=lambda op: op.seq,
        )

    def has_pending(self, record_id: str) -> bool:
        return any(op.record_id == record_id for op in self._ops.values())

    def rekey(self, old_id: str, new_id: str) -> int:
        """临时 ID 换成服务端 ID 后，把其上的后续操作改指向新 ID"""
        moved = 0
        for op in self._ops.values():
            if op.record_id == old_id:
                op.record_id = new_id
                moved += 1
        return moved

    def drop_record(self, record_id: str) -> list[PendingOperation]:
        """丢弃某记录上的全部操作（记录已被远端删除）"""
        dropped = self.for_record(record_id)
        for op in dropped:
            del self._ops[op.op_id]
        return dropped

    def pending_creates(self) -> list[PendingOperation]:
        return [op for op in self if op.kind == OperationKind.CREATE]

    def pending_create_for(self, record_id: str) -> PendingOperation | None:
        for op in self._ops.values():
            if op.kind == OperationKind.CREATE and op.record_id == record_id:
                return op
        return None

    def in_group(self, group: str) -> list[PendingOperation]:
        return [op for op in self if op.group == group]

    def failed(self) -> list[PendingOperation]:
        return [op for op in self if op.state == OperationState.FAILED_RETRYABLE]

    def clear(self) -> None:
        self._ops.clear()
