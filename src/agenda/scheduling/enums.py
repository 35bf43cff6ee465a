"""Enumerations shared by the scheduling and reminder domains."""

from __future__ import annotations

from enum import Enum


class SourceModule(str, Enum):
    """Business module a ScheduleTask was created on behalf of."""

    REMINDER = "reminder"
    TASK = "task"
    GOAL = "goal"
    NOTIFICATION = "notification"
    SYSTEM = "system"


class ScheduleTaskStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"
    RETRYING = "retrying"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RETRYING

    @property
    def is_failure(self) -> bool:
        return self in (ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT)


class ControlMode(str, Enum):
    """How a ReminderGroup governs its member templates."""

    INDIVIDUAL = "individual"
    GROUP = "group"


class ReminderStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class TriggerResult(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

    def as_execution_status(self) -> ExecutionStatus:
        return ExecutionStatus(self.value)


class OverdueAction(str, Enum):
    TRIGGER = "trigger"
    SKIP = "skip"
    RESCHEDULE = "reschedule"


class ConflictSuggestionType(str, Enum):
    MOVE_EARLIER = "move_earlier"
    MOVE_LATER = "move_later"
    SHORTEN = "shorten"
