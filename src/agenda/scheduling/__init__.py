"""Scheduling domain: recurrence, retry, tasks, calendar schedules, statistics.

Modules
-------
config          ScheduleConfig (croniter-backed recurrence)
retry           RetryPolicy (exponential backoff with cap)
execution       ExecutionRecord, ExecutionInfo
task            ScheduleTask aggregate
schedule        Schedule aggregate with conflict detection
statistics      ScheduleStatistics aggregate (per-account counters)
protocol        SchedulerBackend protocol
thread_backend  ThreadTickBackend, AsyncioTickBackend
"""

from agenda.scheduling.config import RecurrenceDescriptor, ScheduleConfig
from agenda.scheduling.enums import (
    ConflictSuggestionType,
    ControlMode,
    ExecutionStatus,
    OverdueAction,
    ReminderStatus,
    ScheduleTaskStatus,
    SourceModule,
    TriggerResult,
)
from agenda.scheduling.execution import ExecutionInfo, ExecutionRecord
from agenda.scheduling.protocol import BackendHealth, SchedulerBackend
from agenda.scheduling.retry import RetryPolicy
from agenda.scheduling.schedule import (
    NO_CONFLICT,
    ConflictDetail,
    ConflictDetectionResult,
    ConflictSuggestion,
    Schedule,
    ScheduleSnapshot,
)
from agenda.scheduling.statistics import (
    ModuleStatistics,
    ScheduleStatistics,
    ScheduleStatisticsSnapshot,
)
from agenda.scheduling.task import ScheduleTask, ScheduleTaskSnapshot, TaskMetadata
from agenda.scheduling.thread_backend import AsyncioTickBackend, ThreadTickBackend

__all__ = [
    "NO_CONFLICT",
    "AsyncioTickBackend",
    "BackendHealth",
    "ConflictDetail",
    "ConflictDetectionResult",
    "ConflictSuggestion",
    "ConflictSuggestionType",
    "ControlMode",
    "ExecutionInfo",
    "ExecutionRecord",
    "ExecutionStatus",
    "ModuleStatistics",
    "OverdueAction",
    "RecurrenceDescriptor",
    "ReminderStatus",
    "RetryPolicy",
    "Schedule",
    "ScheduleConfig",
    "ScheduleSnapshot",
    "ScheduleStatistics",
    "ScheduleStatisticsSnapshot",
    "ScheduleTask",
    "ScheduleTaskSnapshot",
    "ScheduleTaskStatus",
    "SchedulerBackend",
    "SourceModule",
    "TaskMetadata",
    "ThreadTickBackend",
    "TriggerResult",
]
