"""ScheduleTask aggregate - a recurring unit of work with retry semantics.

A ScheduleTask is created on behalf of a source module (reminder, task,
goal, notification) and a source entity inside it. It owns:

- ``ScheduleConfig``   when to run
- ``RetryPolicy``      how to back off after failures
- ``ExecutionInfo``    rolling summary (next/last run, failure streak)
- ``TaskMetadata``     opaque payload and tags for the executor
- execution history    ``ExecutionRecord`` entries, oldest first

Lifecycle::

    ACTIVE ──► PAUSED ──► ACTIVE
      │          └──────► CANCELLED
      ├──► COMPLETED   (terminal)
      ├──► CANCELLED   (terminal)
      └──► FAILED ───► CANCELLED

Every state change queues a ``schedule_task.*`` domain event for the
outbox.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict

from agenda.core.aggregate import AggregateRoot
from agenda.core.errors import StateConflictError, ValidationError
from agenda.core.timestamps import now_ms
from agenda.scheduling.config import ScheduleConfig
from agenda.scheduling.enums import ExecutionStatus, ScheduleTaskStatus, SourceModule
from agenda.scheduling.execution import ExecutionInfo, ExecutionRecord
from agenda.scheduling.retry import RetryPolicy

_TRANSITIONS: dict[ScheduleTaskStatus, frozenset[ScheduleTaskStatus]] = {
    ScheduleTaskStatus.ACTIVE: frozenset({
        ScheduleTaskStatus.PAUSED,
        ScheduleTaskStatus.COMPLETED,
        ScheduleTaskStatus.CANCELLED,
        ScheduleTaskStatus.FAILED,
    }),
    ScheduleTaskStatus.PAUSED: frozenset({
        ScheduleTaskStatus.ACTIVE,
        ScheduleTaskStatus.CANCELLED,
    }),
    ScheduleTaskStatus.FAILED: frozenset({ScheduleTaskStatus.CANCELLED}),
    ScheduleTaskStatus.COMPLETED: frozenset(),
    ScheduleTaskStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class TaskMetadata:
    """Executor payload and labels attached to a task."""

    payload: dict[str, Any] = field(default_factory=dict)
    tags: tuple[str, ...] = ()
    priority: str = "normal"
    timeout_ms: int | None = None

    def with_payload(self, payload: dict[str, Any]) -> TaskMetadata:
        return dataclasses.replace(self, payload=dict(payload))

    def with_tag(self, tag: str) -> TaskMetadata:
        if tag in self.tags:
            return self
        return dataclasses.replace(self, tags=self.tags + (tag,))

    def without_tag(self, tag: str) -> TaskMetadata:
        return dataclasses.replace(self, tags=tuple(t for t in self.tags if t != tag))


class ScheduleTaskSnapshot(BaseModel):
    """Immutable cross-boundary view of a ScheduleTask."""

    model_config = ConfigDict(frozen=True)

    uuid: str
    account_uuid: str
    name: str
    description: str | None = None
    source_module: SourceModule
    source_entity_id: str
    status: ScheduleTaskStatus
    enabled: bool
    schedule: ScheduleConfig
    execution: ExecutionInfo
    retry_policy: RetryPolicy
    metadata: TaskMetadata
    history: tuple[ExecutionRecord, ...] = ()
    created_at: int
    updated_at: int


class ScheduleTask(AggregateRoot):
    """Recurring unit of work owned by an account and a source entity."""

    def __init__(
        self,
        *,
        uuid: str | None = None,
        account_uuid: str,
        name: str,
        source_module: SourceModule,
        source_entity_id: str,
        schedule: ScheduleConfig,
        description: str | None = None,
        status: ScheduleTaskStatus = ScheduleTaskStatus.ACTIVE,
        enabled: bool = True,
        execution: ExecutionInfo | None = None,
        retry_policy: RetryPolicy | None = None,
        metadata: TaskMetadata | None = None,
        history: list[ExecutionRecord] | None = None,
        created_at: int | None = None,
        updated_at: int | None = None,
    ) -> None:
        super().__init__(uuid)
        if not name or not name.strip():
            raise ValidationError("ScheduleTask name must not be empty", field="name")
        if not source_entity_id:
            raise ValidationError(
                "ScheduleTask source_entity_id must not be empty", field="source_entity_id"
            )
        now = now_ms()
        self._account_uuid = account_uuid
        self._name = name
        self._description = description
        self._source_module = SourceModule(source_module)
        self._source_entity_id = source_entity_id
        self._status = ScheduleTaskStatus(status)
        self._enabled = enabled
        self._schedule = schedule
        self._execution = execution or ExecutionInfo()
        self._retry_policy = retry_policy or RetryPolicy.create_default()
        self._metadata = metadata or TaskMetadata()
        self._history: list[ExecutionRecord] = list(history or [])
        self._created_at = created_at if created_at is not None else now
        self._updated_at = updated_at if updated_at is not None else now

    # ===== Factories =====

    @classmethod
    def create(
        cls,
        *,
        account_uuid: str,
        name: str,
        source_module: SourceModule,
        source_entity_id: str,
        schedule: ScheduleConfig,
        description: str | None = None,
        retry_policy: RetryPolicy | None = None,
        metadata: TaskMetadata | None = None,
        now: int | None = None,
    ) -> ScheduleTask:
        now = now_ms() if now is None else now
        task = cls(
            account_uuid=account_uuid,
            name=name,
            description=description,
            source_module=source_module,
            source_entity_id=source_entity_id,
            schedule=schedule,
            execution=ExecutionInfo(next_run_at=schedule.calculate_next_run(now)),
            retry_policy=retry_policy,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        task._raise_event(
            "schedule_task.created",
            account_uuid,
            {
                "task_uuid": task.uuid,
                "name": name,
                **task._source_payload(),
                "cron_expression": schedule.cron_expression,
                "next_run_at": task.next_run_at,
            },
        )
        return task

    @classmethod
    def from_snapshot(cls, snapshot: ScheduleTaskSnapshot) -> ScheduleTask:
        return cls(
            uuid=snapshot.uuid,
            account_uuid=snapshot.account_uuid,
            name=snapshot.name,
            description=snapshot.description,
            source_module=snapshot.source_module,
            source_entity_id=snapshot.source_entity_id,
            status=snapshot.status,
            enabled=snapshot.enabled,
            schedule=snapshot.schedule,
            execution=snapshot.execution,
            retry_policy=snapshot.retry_policy,
            metadata=snapshot.metadata,
            history=list(snapshot.history),
            created_at=snapshot.created_at,
            updated_at=snapshot.updated_at,
        )

    def snapshot(self) -> ScheduleTaskSnapshot:
        return ScheduleTaskSnapshot(
            uuid=self._uuid,
            account_uuid=self._account_uuid,
            name=self._name,
            description=self._description,
            source_module=self._source_module,
            source_entity_id=self._source_entity_id,
            status=self._status,
            enabled=self._enabled,
            schedule=self._schedule,
            execution=self._execution,
            retry_policy=self._retry_policy,
            metadata=self._metadata,
            history=tuple(self._history),
            created_at=self._created_at,
            updated_at=self._updated_at,
        )

    # ===== Read access =====

    @property
    def account_uuid(self) -> str:
        return self._account_uuid

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str | None:
        return self._description

    @property
    def source_module(self) -> SourceModule:
        return self._source_module

    @property
    def source_entity_id(self) -> str:
        return self._source_entity_id

    @property
    def status(self) -> ScheduleTaskStatus:
        return self._status

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def schedule(self) -> ScheduleConfig:
        return self._schedule

    @property
    def execution(self) -> ExecutionInfo:
        return self._execution

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def metadata(self) -> TaskMetadata:
        return self._metadata

    @property
    def history(self) -> tuple[ExecutionRecord, ...]:
        return tuple(self._history)

    @property
    def next_run_at(self) -> int | None:
        return self._execution.next_run_at

    @property
    def consecutive_failures(self) -> int:
        return self._execution.consecutive_failures

    @property
    def created_at(self) -> int:
        return self._created_at

    @property
    def updated_at(self) -> int:
        return self._updated_at

    @property
    def is_active(self) -> bool:
        return self._status is ScheduleTaskStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self._status in (ScheduleTaskStatus.COMPLETED, ScheduleTaskStatus.CANCELLED)

    def is_due(self, now: int | None = None) -> bool:
        now = now_ms() if now is None else now
        return (
            self.is_active
            and self._enabled
            and self._execution.next_run_at is not None
            and self._execution.next_run_at <= now
        )

    def recent_executions(self, limit: int = 10) -> list[ExecutionRecord]:
        return self._history[-limit:] if limit > 0 else []

    # ===== Lifecycle =====

    def _transition(self, target: ScheduleTaskStatus, action: str) -> ScheduleTaskStatus:
        if target not in _TRANSITIONS[self._status]:
            raise StateConflictError(
                f"Cannot {action} a {self._status.value} task",
                current_state=self._status.value,
                action=action,
            ).with_context(task_uuid=self._uuid, account_uuid=self._account_uuid)
        previous = self._status
        self._status = target
        self._updated_at = now_ms()
        return previous

    def _source_payload(self) -> dict[str, Any]:
        return {
            "source_module": self._source_module.value,
            "source_entity_id": self._source_entity_id,
        }

    def _lifecycle_event(self, name: str, previous: ScheduleTaskStatus, **extra: Any) -> None:
        self._raise_event(
            f"schedule_task.{name}",
            self._account_uuid,
            {
                "task_uuid": self._uuid,
                "previous_status": previous.value,
                "status": self._status.value,
                **self._source_payload(),
                **extra,
            },
        )

    def pause(self) -> None:
        previous = self._transition(ScheduleTaskStatus.PAUSED, "pause")
        self._lifecycle_event("paused", previous)

    def resume(self, now: int | None = None) -> None:
        previous = self._transition(ScheduleTaskStatus.ACTIVE, "resume")
        now = now_ms() if now is None else now
        self._execution = self._execution.with_next_run(
            self._schedule.calculate_next_run(now, self._execution.execution_count)
        )
        self._lifecycle_event("resumed", previous, next_run_at=self.next_run_at)

    def complete(self, reason: str | None = None) -> None:
        previous = self._transition(ScheduleTaskStatus.COMPLETED, "complete")
        self._execution = self._execution.with_next_run(None)
        self._lifecycle_event("completed", previous, reason=reason)

    def cancel(self, reason: str | None = None) -> None:
        previous = self._transition(ScheduleTaskStatus.CANCELLED, "cancel")
        self._execution = self._execution.with_next_run(None)
        self._lifecycle_event("cancelled", previous, reason=reason or "Task cancelled")

    def fail(self, reason: str) -> None:
        previous = self._transition(ScheduleTaskStatus.FAILED, "fail")
        self._execution = self._execution.with_next_run(None)
        self._lifecycle_event("failed", previous, reason=reason)

    def enable(self) -> None:
        self._enabled = True
        self._updated_at = now_ms()

    def disable(self) -> None:
        self._enabled = False
        self._updated_at = now_ms()

    # ===== Execution =====

    def record_execution(
        self,
        status: ExecutionStatus,
        duration: int,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        executed_at: int | None = None,
    ) -> ExecutionRecord:
        """Append an execution outcome and roll the schedule forward.

        An ACTIVE task whose schedule yields no further run completes.
        """
        if self.is_terminal:
            raise StateConflictError(
                f"Cannot record an execution on a {self._status.value} task",
                current_state=self._status.value,
                action="record_execution",
            ).with_context(task_uuid=self._uuid)

        status = ExecutionStatus(status)
        executed_at = now_ms() if executed_at is None else executed_at
        record = ExecutionRecord.create(
            task_uuid=self._uuid,
            status=status,
            duration=duration,
            result=result,
            error=error,
            execution_time=executed_at,
            retry_count=self._execution.consecutive_failures,
        )
        next_run = self._schedule.calculate_next_run(
            executed_at, self._execution.execution_count + 1
        )
        self._execution = self._execution.after_execution(
            status, record.duration, executed_at, next_run
        )
        self._history.append(record)
        self._updated_at = now_ms()

        self._raise_event(
            "schedule_task.executed",
            self._account_uuid,
            {
                "task_uuid": self._uuid,
                "execution_uuid": record.uuid,
                "status": status.value,
                "duration": record.duration,
                "error": error,
                "next_run_at": next_run,
                "consecutive_failures": self._execution.consecutive_failures,
                **self._source_payload(),
            },
        )

        if next_run is None and self.is_active:
            self.complete(reason="schedule exhausted")
        return record

    def resolve_retrying_execution(
        self,
        execution_uuid: str,
        status: ExecutionStatus,
        duration: int | None = None,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> ExecutionRecord:
        """Settle a RETRYING history entry; terminal entries are refused."""
        for index, record in enumerate(self._history):
            if record.uuid == execution_uuid:
                if ExecutionStatus(status) is ExecutionStatus.RETRYING:
                    updated = record.retry_again()
                else:
                    updated = record.finish(status, duration, result, error)
                self._history[index] = updated
                self._updated_at = now_ms()
                return updated
        raise ValidationError(
            f"Execution {execution_uuid} does not belong to task {self._uuid}",
            field="execution_uuid",
            value=execution_uuid,
        )

    def should_retry(self) -> bool:
        return self._retry_policy.should_retry(self._execution.consecutive_failures)

    def calculate_next_retry_delay(self) -> int:
        """Backoff delay in ms for the current failure streak; 0 if no retry applies."""
        return self._retry_policy.next_delay(self._execution.consecutive_failures)

    def schedule_retry(self, now: int | None = None) -> int | None:
        """Pull next_run_at forward to ``now + backoff``; None if no retry applies."""
        if not self.is_active or not self.should_retry():
            return None
        now = now_ms() if now is None else now
        retry_at = now + self.calculate_next_retry_delay()
        self._execution = self._execution.with_next_run(retry_at)
        self._updated_at = now_ms()
        self._raise_event(
            "schedule_task.retry_scheduled",
            self._account_uuid,
            {
                "task_uuid": self._uuid,
                "retry_at": retry_at,
                "consecutive_failures": self._execution.consecutive_failures,
                **self._source_payload(),
            },
        )
        return retry_at

    # ===== Configuration =====

    def update_schedule(self, schedule: ScheduleConfig, now: int | None = None) -> None:
        if self.is_terminal:
            raise StateConflictError(
                f"Cannot update the schedule of a {self._status.value} task",
                current_state=self._status.value,
                action="update_schedule",
            )
        previous = self._schedule
        self._schedule = schedule
        now = now_ms() if now is None else now
        if self.is_active:
            self._execution = self._execution.with_next_run(
                schedule.calculate_next_run(now, self._execution.execution_count)
            )
        self._updated_at = now_ms()
        self._raise_event(
            "schedule_task.schedule_updated",
            self._account_uuid,
            {
                "task_uuid": self._uuid,
                "previous_cron_expression": previous.cron_expression,
                "cron_expression": schedule.cron_expression,
                "next_run_at": self.next_run_at,
                **self._source_payload(),
            },
        )

    def update_retry_policy(self, policy: RetryPolicy) -> None:
        self._retry_policy = policy
        self._updated_at = now_ms()

    def update_metadata(
        self,
        payload: dict[str, Any] | None = None,
        add_tags: list[str] | tuple[str, ...] = (),
        remove_tags: list[str] | tuple[str, ...] = (),
    ) -> None:
        metadata = self._metadata
        if payload is not None:
            metadata = metadata.with_payload(payload)
        for tag in add_tags:
            metadata = metadata.with_tag(tag)
        for tag in remove_tags:
            metadata = metadata.without_tag(tag)
        self._metadata = metadata
        self._updated_at = now_ms()
