"""Execution history for ScheduleTasks.

``ExecutionRecord`` is one timestamped outcome of a task run. A record in
a terminal status (success, failed, timeout, skipped) is frozen for good;
a ``RETRYING`` record may move on, producing a new record value.

``ExecutionInfo`` is the rolling summary the task keeps next to its
history: last/next run, counts and the consecutive-failure streak that
drives retry backoff.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any

from agenda.core.errors import StateConflictError
from agenda.core.timestamps import generate_uuid, now_ms
from agenda.scheduling.enums import ExecutionStatus


@dataclass(frozen=True)
class ExecutionRecord:
    """One execution attempt of a ScheduleTask."""

    task_uuid: str
    execution_time: int
    status: ExecutionStatus
    duration: int = 0
    result: dict[str, Any] | None = None
    error: str | None = None
    retry_count: int = 0
    uuid: str = dataclasses.field(default_factory=generate_uuid)

    @classmethod
    def create(
        cls,
        task_uuid: str,
        status: ExecutionStatus,
        duration: int = 0,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        execution_time: int | None = None,
        retry_count: int = 0,
    ) -> ExecutionRecord:
        return cls(
            task_uuid=task_uuid,
            execution_time=now_ms() if execution_time is None else execution_time,
            status=ExecutionStatus(status),
            duration=max(0, duration),
            result=dict(result) if result is not None else None,
            error=error,
            retry_count=retry_count,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_success(self) -> bool:
        return self.status is ExecutionStatus.SUCCESS

    def _ensure_open(self, action: str) -> None:
        if self.is_terminal:
            raise StateConflictError(
                f"Execution {self.uuid} is {self.status.value} and cannot {action}",
                current_state=self.status.value,
                action=action,
            )

    def retry_again(self) -> ExecutionRecord:
        """Stay in RETRYING with the attempt counter bumped."""
        self._ensure_open("retry")
        return dataclasses.replace(self, retry_count=self.retry_count + 1)

    def finish(
        self,
        status: ExecutionStatus,
        duration: int | None = None,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> ExecutionRecord:
        """Move a RETRYING record to its final outcome."""
        self._ensure_open("finish")
        return dataclasses.replace(
            self,
            status=ExecutionStatus(status),
            duration=self.duration if duration is None else max(0, duration),
            result=dict(result) if result is not None else self.result,
            error=error if error is not None else self.error,
        )


@dataclass(frozen=True)
class ExecutionInfo:
    """Rolling execution summary of a ScheduleTask."""

    next_run_at: int | None = None
    last_run_at: int | None = None
    execution_count: int = 0
    last_execution_status: ExecutionStatus | None = None
    last_execution_duration: int | None = None
    consecutive_failures: int = 0

    def after_execution(
        self,
        status: ExecutionStatus,
        duration: int,
        executed_at: int,
        next_run_at: int | None,
    ) -> ExecutionInfo:
        """Summary after one more execution with ``status``."""
        if status is ExecutionStatus.SUCCESS:
            failures = 0
        else:
            failures = self.consecutive_failures + 1
        return dataclasses.replace(
            self,
            next_run_at=next_run_at,
            last_run_at=executed_at,
            execution_count=self.execution_count + 1,
            last_execution_status=status,
            last_execution_duration=duration,
            consecutive_failures=failures,
        )

    def with_next_run(self, next_run_at: int | None) -> ExecutionInfo:
        return dataclasses.replace(self, next_run_at=next_run_at)
