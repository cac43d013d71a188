"""DomainStore -- 领域 Store 基类

每个 Store 持有自己的镜像、待确认账本、Reconciler 与 MutationGateway；
镜像每次变化后立即重算派生视图，再通知监听者。
"""

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any, ClassVar, Generic, TypeVar

import structlog
from pydantic import BaseModel
from ulid import ULID

from ..clock import Clock, SystemClock
from ..config import PROVISIONAL_ID_PREFIX, SyncConfig
from ..exceptions import RecordNotFoundError, ScopeClosedError
from ..gateway import MutationGateway
from ..mirror import EntityMirror
from ..models import Domain, PollOutcome, PollSnapshot, PushEvent
from ..pending import PendingLedger, PendingOperation
from ..protocols import ApiBackend
from ..reconciler import Reconciler

log = structlog.get_logger()

R = TypeVar("R", bound=BaseModel)

StoreListener = Callable[[], None]


class DomainStore(Generic[R]):
    """单领域、单作用域的同步 Store"""

    domain: ClassVar[Domain]
    model: ClassVar[type[BaseModel]]
    tombstone: ClassVar[Callable[[Any, datetime], Any] | None] = None
    correlate_fields: ClassVar[Sequence[str]] = ()
    reference_fields: ClassVar[Sequence[str]] = ()

    def __init__(
        self,
        api: ApiBackend,
        scope_id: str,
        *,
        user_id: str,
        config: SyncConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        """
        Args:
            api: REST API 后端
            scope_id: 作用域 ID（项目 ID，通知为用户 ID）
            user_id: 当前用户 ID
            config: 同步配置
            clock: 时钟
        """
        self.api = api
        self.scope_id = scope_id
        self.user_id = user_id
        self.config = config or SyncConfig()
        self.clock = clock or SystemClock()
        self.generation = 0
        self.closed = False

        self.mirror: EntityMirror[R] = EntityMirror(name=f"{self.domain}:{scope_id}")
        self.pending = PendingLedger()
        self.reconciler: Reconciler[R] = Reconciler(
            self.mirror,
            self.pending,
            model=self.model,
            domain=self.domain,
            clock=self.clock,
            config=self.config,
            tombstone=type(self).tombstone,
            correlate_fields=self.correlate_fields,
            reference_fields=self.reference_fields,
        )
        self.gateway: MutationGateway[R] = MutationGateway(
            self.reconciler,
            self.pending,
            domain=self.domain,
            clock=self.clock,
            generation=lambda: self.generation,
        )

        self.has_more = False
        self._cursor: str | None = None
        self._paged_back = False
        self._listeners: list[StoreListener] = []
        self._unsubscribe_mirror = self.mirror.subscribe(self._on_mirror_changed)
        self._recompute()

    # ---- 视图与监听 ----

    def _recompute(self) -> None:
        """从镜像重算派生视图（子类实现）"""

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """订阅视图重算通知

        Returns:
            取消订阅函数
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _on_mirror_changed(self) -> None:
        self._recompute()
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    @property
    def records(self) -> list[R]:
        return self.mirror.list()

    def get(self, record_id: str) -> R | None:
        return self.mirror.get(self.reconciler.canonical_id(record_id))

    def _require(self, record_id: str) -> R:
        record = self.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    # ---- 读取 ----

    def _list_filters(self) -> Mapping[str, Any] | None:
        """服务端过滤参数；非空时快照不视为完整"""
        return None

    async def refresh(self) -> PollOutcome:
        """拉取最新一页并合并（只增不删，完整快照可按配置裁剪）"""
        self._ensure_open()
        generation = self.generation
        requested_at = self.clock.monotonic()
        filters = self._list_filters()
        page = await self.api.list_records(
            self.domain,
            self.scope_id,
            filters=filters,
            limit=self.config.page_size,
        )
        if generation != self.generation:
            return PollOutcome()
        if not self._paged_back:
            self._cursor = page.next_cursor
            self.has_more = page.has_more
        return self.reconciler.apply_poll(
            PollSnapshot(
                domain=self.domain,
                scope_id=self.scope_id,
                records=page.records,
                requested_at=requested_at,
                complete=not page.has_more and not filters,
            )
        )

    async def load_older(self) -> PollOutcome:
        """按游标加载更早的一页（只增不删）"""
        self._ensure_open()
        if not self.has_more or self._cursor is None:
            return PollOutcome()
        generation = self.generation
        requested_at = self.clock.monotonic()
        page = await self.api.list_records(
            self.domain,
            self.scope_id,
            filters=self._list_filters(),
            cursor=self._cursor,
            limit=self.config.page_size,
        )
        if generation != self.generation:
            return PollOutcome()
        self._paged_back = True
        self._cursor = page.next_cursor
        self.has_more = page.has_more
        return self.reconciler.apply_poll(
            PollSnapshot(
                domain=self.domain,
                scope_id=self.scope_id,
                records=page.records,
                requested_at=requested_at,
            )
        )

    def apply_push(self, event: PushEvent) -> bool:
        """应用推送事件，返回镜像是否变化"""
        if self.closed:
            return False
        return self.reconciler.apply_push(event)

    # ---- 写入辅助 ----

    def failed_operations(self) -> list[PendingOperation]:
        return self.pending.failed()

    async def retry(self, op_id: str) -> Any:
        self._ensure_open()
        return await self.gateway.retry(op_id)

    def discard(self, op_id: str) -> PendingOperation | None:
        return self.gateway.discard(op_id)

    def _ensure_open(self) -> None:
        if self.closed:
            raise ScopeClosedError(self.scope_id)

    def _new_provisional_id(self) -> str:
        return f"{PROVISIONAL_ID_PREFIX}{ULID()}"

    def close(self) -> None:
        """关闭 Store：进行中的写入完成后结果被丢弃"""
        if self.closed:
            return
        self.closed = True
        self.generation += 1
        self._unsubscribe_mirror()
        self._listeners.clear()
        self.pending.clear()
        self.reconciler.reset()
        self.mirror.clear()
        log.debug("store_closed", domain=self.domain, scope_id=self.scope_id)
