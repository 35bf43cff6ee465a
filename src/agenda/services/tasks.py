"""Application-level orchestration of ScheduleTask lifecycles.

``ScheduleTaskService`` loads a task, applies one aggregate operation,
saves it, collects its events into the outbox and then updates account
statistics (best-effort). Batch variants isolate failures per item and
report them as :class:`TaskBatchResult` entries instead of raising.

Execution with retry::

    execute_task(uuid, execute_fn)
      │
      ├─ task not enabled / not ACTIVE ──► StateConflictError
      ├─ await execute_fn(task)   (asyncio.wait_for if metadata.timeout_ms)
      │     ok ──► SUCCESS   raises ──► FAILED   timeout ──► TIMEOUT
      ├─ task.record_execution(...)
      └─ failure?  should_retry ──► schedule_retry (backoff)
                   else         ──► fail("retries exhausted")
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from agenda.core.errors import ExecutionError, StateConflictError, TaskNotFoundError
from agenda.core.events import EventOutbox
from agenda.core.logging import get_logger
from agenda.core.timestamps import now_ms
from agenda.repositories import ScheduleTaskRepository
from agenda.scheduling.config import ScheduleConfig
from agenda.scheduling.enums import ExecutionStatus, SourceModule
from agenda.scheduling.execution import ExecutionRecord
from agenda.scheduling.retry import RetryPolicy
from agenda.scheduling.task import ScheduleTask, TaskMetadata
from agenda.services.statistics import StatisticsUpdater

logger = get_logger(__name__)

ExecuteFn = Callable[[ScheduleTask], Awaitable[Any]]


@dataclass
class TaskBatchResult:
    """Per-item outcome of a batch operation."""

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def total_count(self) -> int:
        return self.success_count + self.failed_count


class ScheduleTaskService:
    """Create, execute and manage ScheduleTasks."""

    def __init__(
        self,
        tasks: ScheduleTaskRepository,
        statistics: StatisticsUpdater,
        outbox: EventOutbox | None = None,
    ) -> None:
        self._tasks = tasks
        self._statistics = statistics
        self._outbox = outbox if outbox is not None else statistics.outbox

    @property
    def outbox(self) -> EventOutbox:
        return self._outbox

    # ── Creation ─────────────────────────────────────────────────────

    async def create_task(
        self,
        *,
        account_uuid: str,
        name: str,
        source_module: SourceModule,
        source_entity_id: str,
        schedule: ScheduleConfig,
        description: str | None = None,
        retry_policy: RetryPolicy | None = None,
        metadata: TaskMetadata | None = None,
    ) -> ScheduleTask:
        task = ScheduleTask.create(
            account_uuid=account_uuid,
            name=name,
            description=description,
            source_module=source_module,
            source_entity_id=source_entity_id,
            schedule=schedule,
            retry_policy=retry_policy,
            metadata=metadata,
        )
        await self._tasks.save(task)
        self._outbox.collect(task)
        await self._statistics.record_task_created(account_uuid, task.source_module)
        logger.info(
            "task.created",
            task_uuid=task.uuid,
            account_uuid=account_uuid,
            source_module=task.source_module.value,
            next_run_at=task.next_run_at,
        )
        return task

    async def create_tasks_batch(self, requests: list[dict[str, Any]]) -> list[ScheduleTask]:
        """Create many tasks; each request holds ``create_task`` keyword arguments.

        Validation errors in any request abort the whole batch before anything
        is saved.
        """
        tasks = [ScheduleTask.create(**request) for request in requests]
        await self._tasks.save_batch(tasks)
        self._outbox.collect(*tasks)

        by_account: dict[str, list[SourceModule]] = {}
        for task in tasks:
            by_account.setdefault(task.account_uuid, []).append(task.source_module)
        for account_uuid, modules in by_account.items():
            await self._statistics.record_tasks_created(account_uuid, modules)
        logger.info("task.batch_created", count=len(tasks), accounts=len(by_account))
        return tasks

    # ── Queries ──────────────────────────────────────────────────────

    async def get_task(self, task_uuid: str) -> ScheduleTask:
        task = await self._tasks.find_by_uuid(task_uuid)
        if task is None:
            raise TaskNotFoundError(task_uuid)
        return task

    async def find_by_source(self, module: SourceModule, entity_id: str) -> list[ScheduleTask]:
        return await self._tasks.find_by_source(module, entity_id)

    async def find_due_tasks(
        self, before_time: int | None = None, limit: int | None = None
    ) -> list[ScheduleTask]:
        before_time = now_ms() if before_time is None else before_time
        return await self._tasks.find_due_tasks_for_execution(before_time, limit)

    # ── Execution ────────────────────────────────────────────────────

    async def execute_task(
        self,
        task_uuid: str,
        execute_fn: ExecuteFn,
        executed_at: int | None = None,
    ) -> ExecutionRecord:
        """Run ``execute_fn`` for the task and record the outcome."""
        task = await self.get_task(task_uuid)
        return await self._execute(task, execute_fn, executed_at)

    async def _execute(
        self,
        task: ScheduleTask,
        execute_fn: ExecuteFn,
        executed_at: int | None,
    ) -> ExecutionRecord:
        if not task.enabled or not task.is_active:
            raise StateConflictError(
                f"Task {task.uuid} is not executable",
                current_state=task.status.value if task.enabled else "disabled",
                action="execute",
            ).with_context(task_uuid=task.uuid, account_uuid=task.account_uuid)

        executed_at = now_ms() if executed_at is None else executed_at
        previous_status = task.status
        result: dict[str, Any] | None = None
        error: str | None = None
        timeout_ms = task.metadata.timeout_ms
        started = time.monotonic()
        try:
            if timeout_ms:
                value = await asyncio.wait_for(execute_fn(task), timeout_ms / 1000)
            else:
                value = await execute_fn(task)
            status = ExecutionStatus.SUCCESS
            if isinstance(value, dict):
                result = value
            elif value is not None:
                result = {"value": value}
        except TimeoutError:
            status = ExecutionStatus.TIMEOUT
            error = f"Execution exceeded {timeout_ms} ms"
        except Exception as e:
            status = ExecutionStatus.FAILED
            failure = ExecutionError(str(e) or type(e).__name__, cause=e).with_context(
                task_uuid=task.uuid, account_uuid=task.account_uuid
            )
            error = failure.message
            logger.warning("task.execution_failed", **failure.to_dict())
        duration = int((time.monotonic() - started) * 1000)

        record = task.record_execution(status, duration, result, error, executed_at)
        if status.is_failure and task.is_active:
            if task.should_retry():
                task.schedule_retry(executed_at)
            else:
                task.fail(f"Retries exhausted after {task.consecutive_failures} failures: {error}")

        await self._tasks.save(task)
        self._outbox.collect(task)
        await self._statistics.record_execution(task.account_uuid, task.source_module, status)
        await self._statistics.record_status_change(
            task.account_uuid, task.source_module, previous_status, task.status
        )
        logger.info(
            "task.executed",
            task_uuid=task.uuid,
            status=status.value,
            duration_ms=duration,
            consecutive_failures=task.consecutive_failures,
            next_run_at=task.next_run_at,
            task_status=task.status.value,
        )
        return record

    async def execute_due_tasks(
        self,
        execute_fn: ExecuteFn,
        before_time: int | None = None,
        limit: int | None = None,
    ) -> TaskBatchResult:
        """Execute every due task; one failing task never stops the rest.

        An execution that ran but failed still counts as processed; only
        errors that prevent recording an outcome land in ``failed``.
        """
        batch = TaskBatchResult()
        for task in await self.find_due_tasks(before_time, limit):
            try:
                await self._execute(task, execute_fn, None)
            except Exception as e:
                logger.exception("task.due_execution_failed", task_uuid=task.uuid)
                batch.failed[task.uuid] = str(e)
            else:
                batch.succeeded.append(task.uuid)
        logger.info(
            "task.due_batch_completed",
            total=batch.total_count,
            failed=batch.failed_count,
        )
        return batch

    # ── Lifecycle ────────────────────────────────────────────────────

    async def _transition(
        self, task_uuid: str, apply: Callable[[ScheduleTask], None]
    ) -> ScheduleTask:
        task = await self.get_task(task_uuid)
        previous_status = task.status
        apply(task)
        await self._tasks.save(task)
        self._outbox.collect(task)
        await self._statistics.record_status_change(
            task.account_uuid, task.source_module, previous_status, task.status
        )
        return task

    async def pause_task(self, task_uuid: str) -> ScheduleTask:
        return await self._transition(task_uuid, lambda t: t.pause())

    async def resume_task(self, task_uuid: str) -> ScheduleTask:
        return await self._transition(task_uuid, lambda t: t.resume())

    async def complete_task(self, task_uuid: str, reason: str | None = None) -> ScheduleTask:
        return await self._transition(task_uuid, lambda t: t.complete(reason))

    async def cancel_task(self, task_uuid: str, reason: str | None = None) -> ScheduleTask:
        return await self._transition(task_uuid, lambda t: t.cancel(reason))

    async def fail_task(self, task_uuid: str, reason: str) -> ScheduleTask:
        return await self._transition(task_uuid, lambda t: t.fail(reason))

    async def _batch(
        self, task_uuids: list[str], op: Callable[[str], Awaitable[Any]]
    ) -> TaskBatchResult:
        batch = TaskBatchResult()
        for task_uuid in task_uuids:
            try:
                await op(task_uuid)
            except Exception as e:
                logger.warning("task.batch_item_failed", task_uuid=task_uuid, error=str(e))
                batch.failed[task_uuid] = str(e)
            else:
                batch.succeeded.append(task_uuid)
        return batch

    async def pause_tasks(self, task_uuids: list[str]) -> TaskBatchResult:
        return await self._batch(task_uuids, self.pause_task)

    async def resume_tasks(self, task_uuids: list[str]) -> TaskBatchResult:
        return await self._batch(task_uuids, self.resume_task)

    async def cancel_tasks(self, task_uuids: list[str], reason: str | None = None) -> TaskBatchResult:
        return await self._batch(task_uuids, lambda uuid: self.cancel_task(uuid, reason))

    async def complete_tasks(self, task_uuids: list[str], reason: str | None = None) -> TaskBatchResult:
        return await self._batch(task_uuids, lambda uuid: self.complete_task(uuid, reason))

    # ── Deletion ─────────────────────────────────────────────────────

    async def delete_task(self, task_uuid: str) -> None:
        task = await self.get_task(task_uuid)
        await self._tasks.delete_by_uuid(task_uuid)
        await self._statistics.record_task_deleted(
            task.account_uuid, task.source_module, task.status
        )
        logger.info("task.deleted", task_uuid=task_uuid)

    async def delete_tasks(self, task_uuids: list[str]) -> TaskBatchResult:
        """Delete in one repository call; unknown uuids are reported as failed."""
        batch = TaskBatchResult()
        found: list[ScheduleTask] = []
        for task_uuid in task_uuids:
            task = await self._tasks.find_by_uuid(task_uuid)
            if task is None:
                batch.failed[task_uuid] = str(TaskNotFoundError(task_uuid))
            else:
                found.append(task)
        await self._tasks.delete_batch([t.uuid for t in found])
        for task in found:
            await self._statistics.record_task_deleted(
                task.account_uuid, task.source_module, task.status
            )
            batch.succeeded.append(task.uuid)
        return batch

    # ── Configuration ────────────────────────────────────────────────

    async def update_schedule_config(self, task_uuid: str, schedule: ScheduleConfig) -> ScheduleTask:
        task = await self.get_task(task_uuid)
        task.update_schedule(schedule)
        await self._tasks.save(task)
        self._outbox.collect(task)
        return task

    async def update_metadata(
        self,
        task_uuid: str,
        payload: dict[str, Any] | None = None,
        add_tags: list[str] | tuple[str, ...] = (),
        remove_tags: list[str] | tuple[str, ...] = (),
    ) -> ScheduleTask:
        task = await self.get_task(task_uuid)
        task.update_metadata(payload=payload, add_tags=add_tags, remove_tags=remove_tags)
        await self._tasks.save(task)
        self._outbox.collect(task)
        return task
