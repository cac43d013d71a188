"""Reconciler -- 唯一的合并规则

对每个记录 ID 维护最近一次服务端真值（base）、其来源（source、应用时间、
服务端 updated_at）、最近删除账本与最近确认的操作 ID。
镜像中的条目始终是 base ⊕ 待确认覆盖。

合并规则（同一 ID）：
1. 最近删除（时间窗口内，或晚于轮询请求时间）的记录不会被轮询或迟到的更新复活
2. 服务端 updated_at 严格更新的一方胜出，严格更旧的一方落败
3. 请求时间早于本地已应用变更的轮询不能覆盖该变更
4. 时间窗口内按来源优先级：confirmation > push > poll

Reconciler 从不向用户抛出异常：畸形的推送/轮询数据只记录日志后跳过。
"""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from .clock import Clock
from .config import SyncConfig
from .exceptions import MalformedPayloadError
from .mirror import EntityMirror
from .models import (
    Domain,
    PollOutcome,
    PollSnapshot,
    PushEvent,
    RecordVerb,
    UpdateSource,
    outranks,
)
from .pending import OperationKind, PendingLedger, PendingOperation

log = structlog.get_logger()

R = TypeVar("R", bound=BaseModel)


@dataclass
class Provenance:
    """base 的来源"""

    source: UpdateSource
    applied_at: float
    server_updated_at: datetime | None


class Reconciler(Generic[R]):
    """单领域的对账器"""

    def __init__(
        self,
        mirror: EntityMirror[R],
        pending: PendingLedger,
        *,
        model: type[R],
        domain: Domain,
        clock: Clock,
        config: SyncConfig,
        tombstone: Callable[[R, datetime], R] | None = None,
        correlate_fields: Sequence[str] = (),
        reference_fields: Sequence[str] = (),
    ) -> None:
        """
        Args:
            mirror: 领域镜像
            pending: 待确认操作账本
            model: 记录模型类型
            domain: 所属领域（日志用）
            clock: 时钟
            config: 同步配置（时间窗口、裁剪开关）
            tombstone: 软删除函数；为 None 时删除即物理移除
            correlate_fields: 待确认创建与到达记录按字段相等匹配时比较的字段
            reference_fields: 引用同领域其他记录 ID 的字段；被引用的创建确认后改指向服务端 ID
        """
        self._mirror = mirror
        self._pending = pending
        self._model = model
        self._domain = domain
        self._clock = clock
        self._config = config
        self._tombstone = tombstone
        self._correlate_fields = tuple(correlate_fields)
        self._reference_fields = tuple(reference_fields)

        self._base: dict[str, R] = {}
        self._provenance: dict[str, Provenance] = {}
        self._deleted: dict[str, float] = {}
        self._confirmed_ops: dict[str, float] = {}
        self._provisional: dict[str, str] = {}
        self._provisional_at: dict[str, float] = {}

    # ---- 查询 ----

    def base(self, record_id: str) -> R | None:
        return self._base.get(record_id)

    def provenance(self, record_id: str) -> Provenance | None:
        return self._provenance.get(record_id)

    def canonical_id(self, record_id: str) -> str:
        """临时 ID 已被确认时返回服务端 ID"""
        return self._provisional.get(record_id, record_id)

    def was_deleted(self, record_id: str) -> bool:
        return record_id in self._deleted

    def parse(self, raw: Any) -> R:
        """解析线上记录

        Raises:
            MalformedPayloadError: 数据无法解析为记录模型
        """
        if isinstance(raw, self._model):
            return raw
        if not isinstance(raw, Mapping):
            raise MalformedPayloadError(f"{self._domain} 记录不是对象", payload=raw)
        try:
            return self._model.model_validate(raw)
        except ValidationError as exc:
            raise MalformedPayloadError(
                f"{self._domain} 记录解析失败: {exc.error_count()} 个错误",
                payload=raw,
            ) from exc

    # ---- 镜像组合 ----

    def compose(self, record_id: str) -> R | None:
        """计算 base ⊕ 待确认覆盖"""
        record = self._base.get(record_id)
        for op in self._pending.for_record(record_id):
            if op.kind == OperationKind.CREATE:
                if record is None:
                    record = op.record
                continue
            if record is None:
                continue
            if op.kind == OperationKind.DELETE and self._tombstone is None:
                return None
            record = op.overlay(record)
        return record

    def batch(self):
        """合并多次镜像写入为一次通知"""
        return self._mirror.batch()

    def sync_record(self, record_id: str) -> None:
        """按 compose 结果刷新镜像条目"""
        record = self.compose(record_id)
        if record is None:
            self._mirror.remove(record_id)
        else:
            self._mirror.upsert(record)

    # ---- 确认 ----

    def confirm(
        self,
        op: PendingOperation,
        raw: Any = None,
        fold: Callable[[R], R] | None = None,
    ) -> R | None:
        """应用服务端确认

        Args:
            op: 被确认的操作
            raw: 服务端返回的记录；为 None 时把 fold（缺省为操作自身的覆盖）折叠进 base
            fold: 自定义折叠函数

        Raises:
            MalformedPayloadError: raw 无法解析（由 Gateway 回滚）
        """
        self._expire()
        if op.kind == OperationKind.CREATE:
            return self.confirm_create(op, raw)
        if op.kind == OperationKind.DELETE:
            self.confirm_delete(op)
            return None

        record = self.parse(raw) if raw is not None else None
        self._pending.resolve(op.op_id)
        self._note_confirmed(op.op_id)
        if record is None:
            base = self._base.get(op.record_id)
            if base is not None:
                record = fold(base) if fold is not None else op.overlay(base)
        if record is not None:
            if self._accepts(record, UpdateSource.CONFIRMATION):
                self._set_base(record, UpdateSource.CONFIRMATION)
            else:
                log.info(
                    "confirmation_superseded",
                    domain=self._domain,
                    record_id=record.id,
                    op_id=op.op_id,
                )
        self.sync_record(op.record_id)
        return self._mirror.get(op.record_id)

    def confirm_create(self, op: PendingOperation, raw: Any) -> R:
        """用确认记录替换乐观占位（临时 ID -> 服务端 ID）"""
        record = self.parse(raw)
        provisional = op.record_id
        self._pending.resolve(op.op_id)
        self._note_confirmed(op.op_id)
        with self._mirror.batch():
            if provisional != record.id:
                self._provisional[provisional] = record.id
                self._provisional_at[provisional] = self._clock.monotonic()
                self._pending.rekey(provisional, record.id)
                self._rekey_references(provisional, record.id)
                self._mirror.remove(provisional)
            self._set_base(record, UpdateSource.CONFIRMATION)
            self.sync_record(record.id)
        log.debug(
            "create_confirmed",
            domain=self._domain,
            provisional_id=provisional,
            record_id=record.id,
        )
        return record

    def confirm_delete(self, op: PendingOperation) -> None:
        self._pending.resolve(op.op_id)
        self._note_confirmed(op.op_id)
        self._delete_base(op.record_id, UpdateSource.CONFIRMATION)
        self.sync_record(op.record_id)

    def rollback(self, op: PendingOperation) -> None:
        """撤销乐观覆盖，镜像回到 base ⊕ 其余覆盖"""
        self._pending.resolve(op.op_id)
        self.sync_record(op.record_id)
        log.info(
            "optimistic_rolled_back",
            domain=self._domain,
            record_id=op.record_id,
            op_id=op.op_id,
            kind=op.kind,
        )

    # ---- 远端数据 ----

    def apply_record(self, raw: Any, source: UpdateSource) -> bool:
        """按合并规则应用一条完整记录

        Returns:
            True 如果记录被采纳
        """
        try:
            record = self.parse(raw)
        except MalformedPayloadError as exc:
            log.warning("record_malformed", domain=self._domain, source=source, error=exc.message)
            return False
        return self._apply(record, source)

    def apply_remote_delete(self, record_id: str, source: UpdateSource) -> None:
        """远端删除：任务与通知移除，消息墓碑化"""
        if self._tombstone is None:
            self._pending.drop_record(record_id)
        self._delete_base(record_id, source)
        self.sync_record(record_id)

    def apply_push(self, event: PushEvent) -> bool:
        """应用推送事件

        Returns:
            True 如果镜像被修改
        """
        self._expire()
        version = self._mirror.version
        if self.is_echo(event):
            log.debug(
                "push_echo_ignored",
                domain=self._domain,
                record_id=event.record_id,
                op_id=event.op_id,
            )
            return False

        if event.verb == RecordVerb.DELETE:
            self.apply_remote_delete(event.record_id, UpdateSource.PUSH)
            return self._mirror.version != version

        if event.record is not None:
            try:
                record = self.parse(event.record)
            except MalformedPayloadError as exc:
                log.warning(
                    "push_record_malformed",
                    domain=self._domain,
                    push_event=event.name,
                    error=exc.message,
                )
                return False
        else:
            base = self._base.get(event.record_id)
            if base is None or not event.changes:
                log.warning(
                    "push_partial_without_base",
                    domain=self._domain,
                    push_event=event.name,
                    record_id=event.record_id,
                )
                return False
            try:
                record = self._model.model_validate({**base.model_dump(), **event.changes})
            except ValidationError as exc:
                log.warning(
                    "push_changes_malformed",
                    domain=self._domain,
                    push_event=event.name,
                    error=str(exc),
                )
                return False

        if event.verb == RecordVerb.CREATE and self._matching_create(record):
            log.debug("push_create_echo_ignored", domain=self._domain, record_id=record.id)
            return False

        self._apply(record, UpdateSource.PUSH)
        return self._mirror.version != version

    def apply_poll(self, snapshot: PollSnapshot) -> PollOutcome:
        """合并轮询快照 -- 默认只增不删，合并结果一次性通知"""
        outcome = PollOutcome()
        seen: set[str] = set()
        self._expire()
        with self._mirror.batch():
            for raw in snapshot.records:
                try:
                    record = self.parse(raw)
                except MalformedPayloadError as exc:
                    log.warning(
                        "poll_record_malformed",
                        domain=self._domain,
                        scope_id=snapshot.scope_id,
                        error=exc.message,
                    )
                    outcome.malformed += 1
                    continue
                seen.add(record.id)
                if self._matching_create(record) is not None:
                    outcome.skipped += 1
                    continue
                if self._apply(record, UpdateSource.POLL, requested_at=snapshot.requested_at):
                    outcome.applied += 1
                else:
                    outcome.skipped += 1

            if snapshot.complete and self._config.poll_prunes_on_complete:
                outcome.pruned = self._prune(seen, snapshot.requested_at)

        log.debug(
            "poll_applied",
            domain=self._domain,
            scope_id=snapshot.scope_id,
            **outcome.model_dump(),
        )
        return outcome

    def is_echo(self, event: PushEvent) -> bool:
        """推送是否为本客户端自身写入的回声"""
        if not event.op_id:
            return False
        if event.op_id in self._pending:
            return True
        confirmed_at = self._confirmed_ops.get(event.op_id)
        if confirmed_at is None:
            return False
        return self._clock.monotonic() - confirmed_at <= self._config.echo_window_s

    def reset(self) -> None:
        """清空全部对账状态（离开作用域）"""
        self._base.clear()
        self._provenance.clear()
        self._deleted.clear()
        self._confirmed_ops.clear()
        self._provisional.clear()
        self._provisional_at.clear()

    # ---- 内部 ----

    def _accepts(
        self,
        record: R,
        source: UpdateSource,
        requested_at: float | None = None,
    ) -> bool:
        record_id = record.id
        now = self._clock.monotonic()
        window = self._config.recency_window_s

        deleted_at = self._deleted.get(record_id)
        if self._tombstone is not None:
            # 墓碑只能被墓碑覆盖
            base = self._base.get(record_id)
            tombstoned = deleted_at is not None or (
                base is not None and getattr(base, "deleted_at", None) is not None
            )
            if tombstoned and getattr(record, "deleted_at", None) is None:
                return False
        elif deleted_at is not None:
            if now - deleted_at <= window:
                return False
            elif requested_at is not None and requested_at <= deleted_at:
                return False
            elif source != UpdateSource.POLL:
                return False

        prov = self._provenance.get(record_id)
        if prov is None:
            return True

        incoming_updated = getattr(record, "updated_at", None)
        if incoming_updated is not None and prov.server_updated_at is not None:
            if incoming_updated > prov.server_updated_at:
                return True
            if incoming_updated < prov.server_updated_at:
                return False

        if requested_at is not None and requested_at < prov.applied_at:
            return False

        if now - prov.applied_at <= window:
            return outranks(source, prov.source)
        return True

    def _apply(
        self,
        record: R,
        source: UpdateSource,
        requested_at: float | None = None,
    ) -> bool:
        if not self._accepts(record, source, requested_at):
            log.debug(
                "stale_record_skipped",
                domain=self._domain,
                record_id=record.id,
                source=source,
            )
            return False
        if self._tombstone is None:
            self._deleted.pop(record.id, None)
        self._set_base(record, source)
        self.sync_record(record.id)
        return True

    def _set_base(self, record: R, source: UpdateSource) -> None:
        self._base[record.id] = record
        self._provenance[record.id] = Provenance(
            source=source,
            applied_at=self._clock.monotonic(),
            server_updated_at=getattr(record, "updated_at", None),
        )

    def _delete_base(self, record_id: str, source: UpdateSource) -> None:
        now = self._clock.monotonic()
        self._deleted[record_id] = now
        if self._tombstone is None:
            self._base.pop(record_id, None)
            self._provenance.pop(record_id, None)
            return
        base = self._base.get(record_id)
        if base is not None and getattr(base, "deleted_at", None) is None:
            self._base[record_id] = self._tombstone(base, self._clock.now())
            self._provenance[record_id] = Provenance(
                source=source,
                applied_at=now,
                server_updated_at=getattr(base, "updated_at", None),
            )

    def _matching_create(self, record: R) -> PendingOperation | None:
        """按字段相等匹配尚未确认的乐观创建"""
        if not self._correlate_fields:
            return None
        for op in self._pending.pending_creates():
            optimistic = op.record
            if optimistic is None or optimistic.id == record.id:
                continue
            if all(
                getattr(optimistic, f, None) == getattr(record, f, None)
                for f in self._correlate_fields
            ):
                return op
        return None

    def _rekey_references(self, old_id: str, new_id: str) -> None:
        """待确认创建中引用 old_id 的字段改指向 new_id"""
        if not self._reference_fields:
            return
        for op in self._pending.pending_creates():
            optimistic = op.record
            if optimistic is None:
                continue
            update = {
                f: new_id for f in self._reference_fields if getattr(optimistic, f, None) == old_id
            }
            if update:
                op.record = optimistic.model_copy(update=update)
                self.sync_record(op.record_id)

    def _note_confirmed(self, op_id: str) -> None:
        self._confirmed_ops[op_id] = self._clock.monotonic()

    def _prune(self, seen: set[str], requested_at: float) -> int:
        pruned = 0
        for record_id in list(self._base):
            if record_id in seen or self._pending.has_pending(record_id):
                continue
            prov = self._provenance.get(record_id)
            if prov is not None and prov.applied_at > requested_at:
                continue
            self._base.pop(record_id, None)
            self._provenance.pop(record_id, None)
            self.sync_record(record_id)
            pruned += 1
        return pruned

    def _expire(self) -> None:
        """清理超出时间窗口的删除、确认与临时 ID 账本"""
        horizon = self._clock.monotonic() - max(
            self._config.echo_window_s, self._config.recency_window_s
        )
        for ledger in (self._confirmed_ops, self._deleted, self._provisional_at):
            for key, at in list(ledger.items()):
                if at < horizon:
                    del ledger[key]
        for provisional in list(self._provisional):
            if provisional not in self._provisional_at:
                del self._provisional[provisional]
