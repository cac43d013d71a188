"""TaskBoardStore -- 项目看板

视图：按状态分列的看板与过滤后的有序任务列表。
拖放结束时乐观移动任务，被拒绝的移动恢复原状态。
批量修改（状态、优先级、负责人）作为一次网络调用整体确认或回滚。
"""

from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import BaseModel

from ..exceptions import MutationValidationError
from ..filters import TaskFilters, apply_filters
from ..models import Domain, Task, TaskBatchUpdate, TaskChanges, TaskDraft, TaskStatus
from ..pending import OperationKind, PendingOperation
from ..views import TaskBoard, group_tasks_by_status, sort_tasks
from .base import DomainStore

log = structlog.get_logger()


class DragState(BaseModel):
    """拖放状态"""

    task_id: str
    source_status: TaskStatus
    target_status: TaskStatus | None = None


class TaskBoardStore(DomainStore[Task]):
    """项目任务看板 Store"""

    domain = Domain.TASKS
    model = Task
    correlate_fields = (
        "project_id",
        "title",
        "description",
        "status",
        "priority",
        "assignee_id",
        "creator_id",
    )

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.filters = TaskFilters()
        self.drag: DragState | None = None
        self.board = TaskBoard()
        self.tasks: list[Task] = []
        super().__init__(*args, **kwargs)

    def _recompute(self) -> None:
        visible = apply_filters(self.mirror.list(), self.filters.predicate())
        self.tasks = sort_tasks(visible)
        self.board = group_tasks_by_status(visible)

    # ---- 过滤 ----

    def set_filters(self, **filters: Any) -> TaskFilters:
        """更新过滤条件（只覆盖给出的字段）"""
        self.filters = TaskFilters.model_validate({**self.filters.model_dump(), **filters})
        self._recompute()
        self._notify()
        return self.filters

    def clear_filters(self) -> None:
        self.filters = TaskFilters()
        self._recompute()
        self._notify()

    # ---- 写入 ----

    async def create_task(
        self,
        draft: TaskDraft | Mapping[str, Any] | None = None,
        **fields: Any,
    ) -> Task:
        """创建任务（乐观显示临时 ID 的占位任务）"""
        self._ensure_open()
        payload = self.gateway.validate(TaskDraft, draft if draft is not None else fields)
        now = self.clock.now()
        provisional = Task(
            id=self._new_provisional_id(),
            project_id=self.scope_id,
            title=payload.title,
            description=payload.description,
            status=payload.status,
            priority=payload.priority,
            assignee_id=payload.assignee_id,
            creator_id=self.user_id,
            due_date=payload.due_date,
            created_at=now,
            updated_at=now,
        )
        wire = payload.to_wire()
        op = PendingOperation(
            domain=self.domain,
            kind=OperationKind.CREATE,
            record_id=provisional.id,
            record=provisional,
        )

        async def call(op: PendingOperation) -> dict[str, Any]:
            return await self.api.create(self.domain, self.scope_id, wire, op_id=op.op_id)

        return await self.gateway.execute(op, call)

    async def update_task(self, task_id: str, **changes: Any) -> Task | None:
        """部分更新任务字段"""
        self._ensure_open()
        payload = self.gateway.validate(TaskChanges, changes)
        task = self._require(task_id)
        wire = payload.to_wire(only_set=True)
        op = PendingOperation(
            domain=self.domain,
            kind=OperationKind.UPDATE,
            record_id=task.id,
            changes=payload.changes(),
        )

        async def call(op: PendingOperation) -> dict[str, Any]:
            return await self.api.update(self.domain, op.record_id, wire, op_id=op.op_id)

        return await self.gateway.execute(op, call)

    async def update_many(self, updates: Mapping[str, Mapping[str, Any]]) -> list[Task]:
        """批量修改多个任务的状态、优先级或负责人

        一次网络调用，整体确认或整体回滚；任何一个任务校验失败时不修改镜像。

        Args:
            updates: 任务 ID -> 修改字段（status / priority / assignee_id）

        Returns:
            确认后的任务；作用域已变更时为空列表
        """
        self._ensure_open()
        if not updates:
            return []
        tasks = [self._require(task_id) for task_id in updates]
        payload = self.gateway.validate(
            TaskBatchUpdate,
            {
                "updates": [
                    {**dict(changes), "id": task.id}
                    for task, changes in zip(tasks, updates.values())
                ]
            },
        )
        ops: list[PendingOperation] = []
        wire: dict[str, dict[str, Any]] = {}
        for item in payload.updates:
            op = PendingOperation(
                domain=self.domain,
                kind=OperationKind.UPDATE,
                record_id=item.id,
                changes=item.changes(),
            )
            wire[op.op_id] = item.to_wire(only_set=True)
            ops.append(op)

        async def call(ops: list[PendingOperation]) -> dict[str, Any]:
            for op in ops:
                await self.gateway.wait_for_create(op.record_id)
            records = await self.api.update_tasks(
                [{**wire[op.op_id], "id": op.record_id} for op in ops],
                op_id=ops[0].op_id,
            )
            return {r["id"]: r for r in records if isinstance(r, dict) and "id" in r}

        log.debug("task_batch_update", size=len(ops))
        confirmed = await self.gateway.execute_batch(ops, call)
        return [task for task in confirmed if task is not None]

    async def move_task(self, task_id: str, status: TaskStatus | str) -> Task | None:
        """修改任务状态 -- 立即移动到目标列，被拒绝时恢复"""
        self._ensure_open()
        try:
            status = TaskStatus(status)
        except ValueError as exc:
            raise MutationValidationError(f"非法任务状态: {status}") from exc
        task = self._require(task_id)
        if task.status == status:
            return task
        op = PendingOperation(
            domain=self.domain,
            kind=OperationKind.MOVE,
            record_id=task.id,
            changes={"status": status},
        )

        async def call(op: PendingOperation) -> dict[str, Any]:
            return await self.api.move(op.record_id, status, op_id=op.op_id)

        log.debug("task_move", task_id=task.id, from_status=task.status, to_status=status)
        return await self.gateway.execute(op, call)

    async def delete_task(self, task_id: str) -> None:
        self._ensure_open()
        task = self._require(task_id)
        op = PendingOperation(
            domain=self.domain,
            kind=OperationKind.DELETE,
            record_id=task.id,
        )

        async def call(op: PendingOperation) -> Any:
            return await self.api.delete(self.domain, op.record_id, op_id=op.op_id)

        await self.gateway.execute(op, call)

    # ---- 拖放 ----

    def start_drag(self, task_id: str) -> DragState:
        task = self._require(task_id)
        self.drag = DragState(task_id=task.id, source_status=task.status)
        self._notify()
        return self.drag

    def set_drag_target(self, status: TaskStatus | None) -> None:
        if self.drag is None:
            return
        self.drag = self.drag.model_copy(update={"target_status": status})
        self._notify()

    def cancel_drag(self) -> None:
        self.end_drag_state()

    def end_drag_state(self) -> DragState | None:
        drag, self.drag = self.drag, None
        if drag is not None:
            self._notify()
        return drag

    async def end_drag(self, drop: bool = True) -> Task | None:
        """结束拖放；drop 且目标列不同于源列时执行移动"""
        drag = self.end_drag_state()
        if drag is None or not drop or drag.target_status is None:
            return None
        if drag.target_status == drag.source_status:
            return None
        return await self.move_task(drag.task_id, drag.target_status)
