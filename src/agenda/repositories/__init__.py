"""Repository contracts consumed by the scheduling services.

Persistence is an external concern: the services only talk to these
async protocols. Implementations store aggregate snapshots
(``aggregate.snapshot()``) and rehydrate with ``Aggregate.from_snapshot``;
flattening a snapshot into storage rows is the implementation's job.

Architecture:
    ::

        ScheduleRepository            Schedule
        ScheduleTaskRepository        ScheduleTask
        ScheduleStatisticsRepository  ScheduleStatistics (optimistic version)
        ReminderTemplateRepository    ReminderTemplate
        ReminderGroupRepository       ReminderGroup
        ReminderNotifier              delivery port (push/email/... live outside)

        memory.py  In-memory implementations of every contract

Guardrails:
    ❌ DON'T: Return live aggregates shared with other callers
    ✅ DO: Return a fresh aggregate per call, rebuilt from the stored snapshot

    ❌ DON'T: Silently overwrite ScheduleStatistics written by someone else
    ✅ DO: Raise ConcurrencyError when the stored version moved on
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from agenda.reminder.models import ReminderGroup, ReminderTemplate
from agenda.scheduling.enums import SourceModule
from agenda.scheduling.schedule import Schedule
from agenda.scheduling.statistics import ScheduleStatistics
from agenda.scheduling.task import ScheduleTask


@runtime_checkable
class ScheduleRepository(Protocol):
    async def save(self, schedule: Schedule) -> None: ...

    async def find_by_uuid(self, uuid: str) -> Schedule | None: ...

    async def find_by_account_uuid(self, account_uuid: str) -> list[Schedule]: ...

    async def find_by_time_range(
        self,
        account_uuid: str,
        start: int,
        end: int,
        exclude_uuid: str | None = None,
    ) -> list[Schedule]:
        """Schedules of the account overlapping ``[start, end)``."""
        ...

    async def delete_by_uuid(self, uuid: str) -> None: ...


@runtime_checkable
class ScheduleTaskRepository(Protocol):
    async def save(self, task: ScheduleTask) -> None: ...

    async def find_by_uuid(self, uuid: str) -> ScheduleTask | None: ...

    async def find_by_account_uuid(self, account_uuid: str) -> list[ScheduleTask]: ...

    async def find_by_source(
        self, module: SourceModule, entity_id: str
    ) -> list[ScheduleTask]: ...

    async def find_due_tasks_for_execution(
        self, before_time: int, limit: int | None = None
    ) -> list[ScheduleTask]:
        """ACTIVE, enabled tasks with ``next_run_at <= before_time``, earliest first."""
        ...

    async def save_batch(self, tasks: list[ScheduleTask]) -> None: ...

    async def delete_by_uuid(self, uuid: str) -> None: ...

    async def delete_batch(self, uuids: list[str]) -> None: ...


@runtime_checkable
class ScheduleStatisticsRepository(Protocol):
    async def save(self, statistics: ScheduleStatistics) -> None:
        """Persist; raises ConcurrencyError if the stored version differs."""
        ...

    async def find_by_account_uuid(self, account_uuid: str) -> ScheduleStatistics | None: ...

    async def get_or_create(self, account_uuid: str) -> ScheduleStatistics: ...

    async def save_batch(self, statistics: list[ScheduleStatistics]) -> None: ...


@runtime_checkable
class ReminderTemplateRepository(Protocol):
    async def save(self, template: ReminderTemplate) -> None: ...

    async def find_by_uuid(self, uuid: str) -> ReminderTemplate | None: ...

    async def find_by_next_trigger_before(
        self, before_time: int, account_uuid: str | None = None
    ) -> list[ReminderTemplate]:
        """Templates with ``next_trigger_at <= before_time``, oldest due first."""
        ...

    async def find_by_group_uuid(self, group_uuid: str) -> list[ReminderTemplate]: ...

    async def find_by_account_uuid(self, account_uuid: str) -> list[ReminderTemplate]: ...


@runtime_checkable
class ReminderGroupRepository(Protocol):
    async def save(self, group: ReminderGroup) -> None: ...

    async def find_by_id(self, uuid: str) -> ReminderGroup | None: ...

    async def find_by_ids(self, uuids: list[str]) -> list[ReminderGroup]: ...


@runtime_checkable
class ReminderNotifier(Protocol):
    """Delivers a fired reminder to the user; raising marks the trigger failed."""

    async def notify(self, template: ReminderTemplate, trigger_time: int) -> None: ...


__all__ = [
    "ReminderGroupRepository",
    "ReminderNotifier",
    "ReminderTemplateRepository",
    "ScheduleRepository",
    "ScheduleStatisticsRepository",
    "ScheduleTaskRepository",
]
