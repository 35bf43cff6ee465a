"""Domain and application services of the scheduling core.

Modules
-------
control      ReminderGroupControlResolver (effective status), ReminderGroupService
trigger      TriggerExecutor (single and batch reminder triggers)
scheduler    SchedulerLoop (scan, chunked dispatch, overdue, tick)
tasks        ScheduleTaskService (task lifecycle and execution with retry)
conflicts    ScheduleConflictService (calendar conflict handling)
statistics   StatisticsUpdater (serialized per-account statistics writes)
upcoming     UpcomingReminderCalculator (look-ahead preview of fire instants)
"""

from agenda.services.conflicts import ScheduleConflictService
from agenda.services.control import ReminderGroupControlResolver, ReminderGroupService
from agenda.services.scheduler import (
    OVERDUE_SKIP_REASON,
    OverdueResult,
    ScheduleRunResult,
    SchedulerLoop,
    SchedulerStats,
)
from agenda.services.statistics import StatisticsUpdater
from agenda.services.tasks import ScheduleTaskService, TaskBatchResult
from agenda.services.trigger import (
    DISABLED_REASON,
    BatchTriggerResult,
    TriggerExecutor,
    TriggerOutcome,
    TriggerRequest,
)
from agenda.services.upcoming import UpcomingReminder, UpcomingReminderCalculator

__all__ = [
    "DISABLED_REASON",
    "OVERDUE_SKIP_REASON",
    "BatchTriggerResult",
    "OverdueResult",
    "ReminderGroupControlResolver",
    "ReminderGroupService",
    "ScheduleConflictService",
    "ScheduleRunResult",
    "ScheduleTaskService",
    "SchedulerLoop",
    "SchedulerStats",
    "StatisticsUpdater",
    "TaskBatchResult",
    "TriggerExecutor",
    "TriggerOutcome",
    "TriggerRequest",
    "UpcomingReminder",
    "UpcomingReminderCalculator",
]
