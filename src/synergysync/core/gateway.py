"""MutationGateway -- 乐观写入入口

每次写入依次执行：
1. 客户端形状校验（失败时不修改镜像、不发起网络调用）
2. 乐观写入镜像（创建时使用临时 ID）
3. 网络调用
4. 成功时交给 Reconciler 应用确认；失败时按异常类型决定回滚或保留

Gateway 是唯一决定回滚还是保留的地方：
- TransientNetworkError: 保留乐观写入，操作标记为 FAILED_RETRYABLE
- RecordNotFoundError: 按远端删除处理，不重试
- 其他异常（校验、权限、编辑窗口、畸形确认等）: 回滚后重新抛出
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel, ValidationError
from ulid import ULID

from .clock import Clock
from .exceptions import (
    MutationValidationError,
    RecordNotFoundError,
    ScopeClosedError,
    TransientNetworkError,
)
from .models import Domain, UpdateSource
from .pending import OperationKind, OperationState, PendingLedger, PendingOperation
from .reconciler import Reconciler

log = structlog.get_logger()

R = TypeVar("R", bound=BaseModel)
P = TypeVar("P", bound=BaseModel)

BatchCall = Callable[[list[PendingOperation]], Awaitable[Mapping[str, Any] | None]]


def validate_payload(model: type[P], data: Any) -> P:
    """校验写入载荷

    Raises:
        MutationValidationError: 载荷形状不合法
    """
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False)
        message = "; ".join(str(e.get("msg", "")) for e in errors) or "载荷校验失败"
        raise MutationValidationError(message, errors=errors) from exc


class MutationGateway(Generic[R]):
    """单领域的写入网关"""

    def __init__(
        self,
        reconciler: Reconciler[R],
        pending: PendingLedger,
        *,
        domain: Domain,
        clock: Clock,
        generation: Callable[[], int] | None = None,
    ) -> None:
        """
        Args:
            reconciler: 领域对账器
            pending: 待确认操作账本
            domain: 所属领域
            clock: 时钟
            generation: 作用域代数；调用期间代数变化则丢弃结果
        """
        self._reconciler = reconciler
        self._pending = pending
        self._domain = domain
        self._clock = clock
        self._generation = generation or (lambda: 0)
        # 临时 ID -> 等待该创建确认的 future
        self._create_waiters: dict[str, list[asyncio.Future[str]]] = {}
        self._batch_calls: dict[str, BatchCall] = {}

    validate = staticmethod(validate_payload)

    async def execute(
        self,
        op: PendingOperation,
        call: Callable[[PendingOperation], Awaitable[Any]],
    ) -> Any:
        """乐观写入并发起网络调用

        Args:
            op: 待确认操作（record_id 可以是尚未确认的临时 ID）
            call: 网络调用，参数为操作本身（调用时 op.record_id 已指向服务端 ID）

        Returns:
            确认后的镜像记录（或 op.confirm 的返回值）；作用域已变更时为 None
        """
        op.dispatch = call
        self._pending.add(op, now=self._clock.monotonic())
        self._reconciler.sync_record(op.record_id)
        log.debug(
            "mutation_applied_optimistically",
            domain=self._domain,
            kind=op.kind,
            record_id=op.record_id,
            op_id=op.op_id,
        )
        return await self._dispatch(op)

    async def execute_batch(
        self,
        ops: Sequence[PendingOperation],
        call: BatchCall,
    ) -> list[Any]:
        """一次网络调用覆盖多个操作，作为整体确认或回滚

        Args:
            ops: 同组操作
            call: 网络调用，返回 record_id -> 确认记录（缺省时折叠乐观覆盖）
        """
        if not ops:
            return []
        group = str(ULID())
        now = self._clock.monotonic()
        with self._reconciler.batch():
            for op in ops:
                op.group = group
                op.dispatch = None
                self._pending.add(op, now=now)
                self._reconciler.sync_record(op.record_id)
        self._batch_calls[group] = call
        return await self._dispatch_batch(group)

    async def retry(self, op_id: str) -> Any:
        """重新发起一个 FAILED_RETRYABLE 操作

        Raises:
            KeyError: 操作不存在
        """
        op = self._pending.get(op_id)
        if op is None:
            raise KeyError(op_id)
        log.info("mutation_retry", domain=self._domain, op_id=op_id, record_id=op.record_id)
        if op.group is not None:
            for member in self._pending.in_group(op.group):
                member.state = OperationState.IN_FLIGHT
                member.error = None
            return await self._dispatch_batch(op.group)
        op.state = OperationState.IN_FLIGHT
        op.error = None
        return await self._dispatch(op)

    async def wait_for_create(self, record_id: str) -> str:
        """等待 record_id 上的乐观创建被确认

        没有待确认创建时立即返回（已确认的临时 ID 换成服务端 ID）。

        Returns:
            服务端 ID

        Raises:
            TransientNetworkError: 该创建处于可重试失败状态
        """
        create = self._pending.pending_create_for(record_id)
        if create is None:
            return self._reconciler.canonical_id(record_id)
        if create.state == OperationState.FAILED_RETRYABLE:
            raise TransientNetworkError(f"目标记录尚未创建成功: {record_id}")
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._create_waiters.setdefault(record_id, []).append(future)
        return await future

    def discard(self, op_id: str) -> PendingOperation | None:
        """放弃一个待确认操作并回滚其乐观覆盖"""
        op = self._pending.get(op_id)
        if op is None:
            return None
        if op.group:
            members = self._pending.in_group(op.group)
        elif op.kind == OperationKind.CREATE:
            members = self._pending.for_record(op.record_id)
        else:
            members = [op]
        for member in members:
            self._rollback(member, None)
        if op.group:
            self._batch_calls.pop(op.group, None)
        return op

    # ---- 内部 ----

    async def _dispatch(self, op: PendingOperation) -> Any:
        generation = self._generation()
        try:
            await self._await_create(op)
            result = await op.dispatch(op)
        except TransientNetworkError as exc:
            op.state = OperationState.FAILED_RETRYABLE
            op.error = exc
            self._notify_create(op, exc)
            log.warning(
                "mutation_retained",
                domain=self._domain,
                kind=op.kind,
                record_id=op.record_id,
                op_id=op.op_id,
                error=exc.message,
            )
            raise
        except RecordNotFoundError as exc:
            self._pending.resolve(op.op_id)
            self._notify_create(op, exc)
            self._reconciler.apply_remote_delete(op.record_id, UpdateSource.CONFIRMATION)
            log.info(
                "mutation_target_missing",
                domain=self._domain,
                record_id=op.record_id,
                op_id=op.op_id,
            )
            raise
        except Exception as exc:
            self._rollback(op, exc)
            raise

        if self._generation() != generation:
            self._pending.resolve(op.op_id)
            self._notify_create(op, ScopeClosedError(str(self._domain)))
            log.info("mutation_result_discarded", domain=self._domain, op_id=op.op_id)
            return None

        provisional = op.record_id
        try:
            if op.confirm is not None:
                confirmed = op.confirm(op, result)
            else:
                confirmed = self._reconciler.confirm(
                    op, result if isinstance(result, Mapping) else None
                )
        except Exception as exc:
            self._rollback(op, exc)
            raise
        if op.kind == OperationKind.CREATE:
            self._notify_create_confirmed(provisional, getattr(confirmed, "id", provisional))
        return confirmed

    async def _dispatch_batch(self, group: str) -> list[Any]:
        ops = self._pending.in_group(group)
        call = self._batch_calls[group]
        generation = self._generation()
        try:
            results = await call(ops)
        except TransientNetworkError as exc:
            for op in ops:
                op.state = OperationState.FAILED_RETRYABLE
                op.error = exc
            log.warning(
                "batch_mutation_retained",
                domain=self._domain,
                size=len(ops),
                error=exc.message,
            )
            raise
        except Exception as exc:
            self._batch_calls.pop(group, None)
            with self._reconciler.batch():
                for op in ops:
                    self._rollback(op, exc)
            raise

        self._batch_calls.pop(group, None)
        if self._generation() != generation:
            for op in ops:
                self._pending.resolve(op.op_id)
            log.info("batch_result_discarded", domain=self._domain, size=len(ops))
            return []

        results = results or {}
        confirmed: list[Any] = []
        with self._reconciler.batch():
            for op in ops:
                confirmed.append(self._reconciler.confirm(op, results.get(op.record_id)))
        return confirmed

    def _rollback(self, op: PendingOperation, exc: BaseException | None) -> None:
        self._reconciler.rollback(op)
        if op.kind == OperationKind.CREATE:
            self._notify_create(op, exc or RecordNotFoundError(op.record_id, "创建已放弃"))
        if exc is not None:
            log.warning(
                "mutation_failed",
                domain=self._domain,
                kind=op.kind,
                record_id=op.record_id,
                op_id=op.op_id,
                error=str(exc),
            )

    async def _await_create(self, op: PendingOperation) -> None:
        """目标记录的创建尚未确认时等待确认，之后 op.record_id 已被改指向服务端 ID"""
        if op.kind == OperationKind.CREATE:
            return
        await self.wait_for_create(op.record_id)

    def _notify_create(self, op: PendingOperation, exc: BaseException) -> None:
        if op.kind != OperationKind.CREATE:
            return
        for future in self._create_waiters.pop(op.record_id, []):
            if not future.done():
                future.set_exception(_dependent_error(exc))

    def _notify_create_confirmed(self, provisional: str, record_id: str) -> None:
        for future in self._create_waiters.pop(provisional, []):
            if not future.done():
                future.set_result(record_id)


def _dependent_error(exc: BaseException) -> BaseException:
    """依赖于失败创建的后续操作收到的异常"""
    if isinstance(exc, TransientNetworkError):
        return TransientNetworkError(f"依赖的创建操作失败: {exc.message}", original_error=exc)
    return exc
