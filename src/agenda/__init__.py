"""agenda-core - scheduling core for a personal productivity backend.

Calendar conflict detection, recurring task execution with retry and
backoff, per-account statistics, and reminder triggering under group
control.

Quick start::

    from agenda import (
        ReminderGroupControlResolver,
        SchedulerLoop,
        StatisticsUpdater,
        TriggerExecutor,
    )
    from agenda.repositories.memory import (
        InMemoryReminderGroupRepository,
        InMemoryReminderTemplateRepository,
        InMemoryScheduleStatisticsRepository,
    )

    groups = InMemoryReminderGroupRepository()
    templates = InMemoryReminderTemplateRepository()
    statistics = StatisticsUpdater(InMemoryScheduleStatisticsRepository())
    resolver = ReminderGroupControlResolver(groups)
    executor = TriggerExecutor(templates, resolver, statistics)
    loop = SchedulerLoop(templates, resolver, executor, statistics)

    result = await loop.schedule(max_count=50)
"""

from agenda.core.errors import (
    AgendaError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from agenda.core.events import DomainEvent, EventOutbox
from agenda.reminder.models import ActiveHours, ReminderGroup, ReminderTemplate, TriggerConfig
from agenda.scheduling.config import RecurrenceDescriptor, ScheduleConfig
from agenda.scheduling.enums import (
    ControlMode,
    ExecutionStatus,
    OverdueAction,
    ReminderStatus,
    ScheduleTaskStatus,
    SourceModule,
)
from agenda.scheduling.execution import ExecutionRecord
from agenda.scheduling.retry import RetryPolicy
from agenda.scheduling.schedule import Schedule
from agenda.scheduling.statistics import ScheduleStatistics
from agenda.scheduling.task import ScheduleTask
from agenda.services import (
    ReminderGroupControlResolver,
    ReminderGroupService,
    ScheduleConflictService,
    SchedulerLoop,
    ScheduleTaskService,
    StatisticsUpdater,
    TriggerExecutor,
    UpcomingReminderCalculator,
)

__version__ = "0.1.0"

__all__ = [
    "ActiveHours",
    "AgendaError",
    "ControlMode",
    "DomainEvent",
    "EventOutbox",
    "ExecutionRecord",
    "ExecutionStatus",
    "NotFoundError",
    "OverdueAction",
    "RecurrenceDescriptor",
    "ReminderGroup",
    "ReminderGroupControlResolver",
    "ReminderGroupService",
    "ReminderStatus",
    "ReminderTemplate",
    "RetryPolicy",
    "Schedule",
    "ScheduleConfig",
    "ScheduleConflictService",
    "ScheduleStatistics",
    "ScheduleTask",
    "ScheduleTaskService",
    "ScheduleTaskStatus",
    "SchedulerLoop",
    "SourceModule",
    "StateConflictError",
    "StatisticsUpdater",
    "TriggerConfig",
    "TriggerExecutor",
    "UpcomingReminderCalculator",
    "ValidationError",
    "__version__",
]
