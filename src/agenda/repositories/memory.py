"""In-memory repositories (single process, no persistence).

Each repository keeps the latest snapshot per uuid and rebuilds a fresh
aggregate on every read, so callers never share mutable state through
the store.

Examples:
    >>> repo = InMemoryScheduleTaskRepository()
    >>> await repo.save(task)
    >>> (await repo.find_by_uuid(task.uuid)) is task
    False
"""

from __future__ import annotations

from agenda.core.errors import ConcurrencyError, ErrorContext
from agenda.core.logging import get_logger
from agenda.reminder.models import (
    ReminderGroup,
    ReminderGroupSnapshot,
    ReminderTemplate,
    ReminderTemplateSnapshot,
)
from agenda.scheduling.enums import ScheduleTaskStatus, SourceModule
from agenda.scheduling.schedule import Schedule, ScheduleSnapshot
from agenda.scheduling.statistics import ScheduleStatistics, ScheduleStatisticsSnapshot
from agenda.scheduling.task import ScheduleTask, ScheduleTaskSnapshot

logger = get_logger(__name__)


class InMemoryScheduleRepository:
    def __init__(self) -> None:
        self._store: dict[str, ScheduleSnapshot] = {}

    async def save(self, schedule: Schedule) -> None:
        self._store[schedule.uuid] = schedule.snapshot()

    async def find_by_uuid(self, uuid: str) -> Schedule | None:
        snapshot = self._store.get(uuid)
        return Schedule.from_snapshot(snapshot) if snapshot else None

    async def find_by_account_uuid(self, account_uuid: str) -> list[Schedule]:
        snapshots = [s for s in self._store.values() if s.account_uuid == account_uuid]
        return [Schedule.from_snapshot(s) for s in sorted(snapshots, key=lambda s: s.start_time)]

    async def find_by_time_range(
        self,
        account_uuid: str,
        start: int,
        end: int,
        exclude_uuid: str | None = None,
    ) -> list[Schedule]:
        matches = [
            s for s in self._store.values()
            if s.account_uuid == account_uuid
            and s.uuid != exclude_uuid
            and s.start_time < end
            and s.end_time > start
        ]
        return [Schedule.from_snapshot(s) for s in sorted(matches, key=lambda s: s.start_time)]

    async def delete_by_uuid(self, uuid: str) -> None:
        self._store.pop(uuid, None)

    def __len__(self) -> int:
        return len(self._store)


class InMemoryScheduleTaskRepository:
    def __init__(self) -> None:
        self._store: dict[str, ScheduleTaskSnapshot] = {}

    async def save(self, task: ScheduleTask) -> None:
        self._store[task.uuid] = task.snapshot()

    async def find_by_uuid(self, uuid: str) -> ScheduleTask | None:
        snapshot = self._store.get(uuid)
        return ScheduleTask.from_snapshot(snapshot) if snapshot else None

    async def find_by_account_uuid(self, account_uuid: str) -> list[ScheduleTask]:
        return [
            ScheduleTask.from_snapshot(s)
            for s in self._store.values()
            if s.account_uuid == account_uuid
        ]

    async def find_by_source(self, module: SourceModule, entity_id: str) -> list[ScheduleTask]:
        module = SourceModule(module)
        return [
            ScheduleTask.from_snapshot(s)
            for s in self._store.values()
            if s.source_module is module and s.source_entity_id == entity_id
        ]

    async def find_due_tasks_for_execution(
        self, before_time: int, limit: int | None = None
    ) -> list[ScheduleTask]:
        due = [
            s for s in self._store.values()
            if s.status is ScheduleTaskStatus.ACTIVE
            and s.enabled
            and s.execution.next_run_at is not None
            and s.execution.next_run_at <= before_time
        ]
        due.sort(key=lambda s: (s.execution.next_run_at, s.created_at))
        if limit is not None:
            due = due[:limit]
        return [ScheduleTask.from_snapshot(s) for s in due]

    async def save_batch(self, tasks: list[ScheduleTask]) -> None:
        for task in tasks:
            await self.save(task)

    async def delete_by_uuid(self, uuid: str) -> None:
        self._store.pop(uuid, None)

    async def delete_batch(self, uuids: list[str]) -> None:
        for uuid in uuids:
            self._store.pop(uuid, None)

    def __len__(self) -> int:
        return len(self._store)


class InMemoryScheduleStatisticsRepository:
    """Statistics store with an optimistic version check on save."""

    def __init__(self) -> None:
        self._store: dict[str, ScheduleStatisticsSnapshot] = {}

    async def save(self, statistics: ScheduleStatistics) -> None:
        current = self._store.get(statistics.account_uuid)
        stored_version = current.version if current else 0
        if statistics.version != stored_version:
            logger.debug(
                "statistics.version_conflict",
                account_uuid=statistics.account_uuid,
                expected=statistics.version,
                actual=stored_version,
            )
            raise ConcurrencyError(
                f"ScheduleStatistics for {statistics.account_uuid} was modified concurrently",
                expected=statistics.version,
                actual=stored_version,
                context=ErrorContext(account_uuid=statistics.account_uuid),
            )
        statistics.mark_saved(stored_version + 1)
        self._store[statistics.account_uuid] = statistics.snapshot()

    async def find_by_account_uuid(self, account_uuid: str) -> ScheduleStatistics | None:
        snapshot = self._store.get(account_uuid)
        return ScheduleStatistics.from_snapshot(snapshot) if snapshot else None

    async def get_or_create(self, account_uuid: str) -> ScheduleStatistics:
        existing = await self.find_by_account_uuid(account_uuid)
        if existing is not None:
            return existing
        statistics = ScheduleStatistics.create(account_uuid)
        await self.save(statistics)
        return statistics

    async def save_batch(self, statistics: list[ScheduleStatistics]) -> None:
        for item in statistics:
            await self.save(item)


class InMemoryReminderTemplateRepository:
    def __init__(self) -> None:
        self._store: dict[str, ReminderTemplateSnapshot] = {}

    async def save(self, template: ReminderTemplate) -> None:
        self._store[template.uuid] = template.snapshot()

    async def find_by_uuid(self, uuid: str) -> ReminderTemplate | None:
        snapshot = self._store.get(uuid)
        return ReminderTemplate.from_snapshot(snapshot) if snapshot else None

    async def find_by_next_trigger_before(
        self, before_time: int, account_uuid: str | None = None
    ) -> list[ReminderTemplate]:
        due = [
            s for s in self._store.values()
            if s.next_trigger_at is not None
            and s.next_trigger_at <= before_time
            and (account_uuid is None or s.account_uuid == account_uuid)
        ]
        due.sort(key=lambda s: (s.next_trigger_at, s.created_at))
        return [ReminderTemplate.from_snapshot(s) for s in due]

    async def find_by_group_uuid(self, group_uuid: str) -> list[ReminderTemplate]:
        return [
            ReminderTemplate.from_snapshot(s)
            for s in self._store.values()
            if s.group_uuid == group_uuid
        ]

    async def find_by_account_uuid(self, account_uuid: str) -> list[ReminderTemplate]:
        return [
            ReminderTemplate.from_snapshot(s)
            for s in self._store.values()
            if s.account_uuid == account_uuid
        ]

    def __len__(self) -> int:
        return len(self._store)


class InMemoryReminderGroupRepository:
    def __init__(self) -> None:
        self._store: dict[str, ReminderGroupSnapshot] = {}
        self.lookups = 0

    async def save(self, group: ReminderGroup) -> None:
        self._store[group.uuid] = group.snapshot()

    async def find_by_id(self, uuid: str) -> ReminderGroup | None:
        self.lookups += 1
        snapshot = self._store.get(uuid)
        return ReminderGroup.from_snapshot(snapshot) if snapshot else None

    async def find_by_ids(self, uuids: list[str]) -> list[ReminderGroup]:
        self.lookups += 1
        return [
            ReminderGroup.from_snapshot(self._store[uuid])
            for uuid in dict.fromkeys(uuids)
            if uuid in self._store
        ]


class RecordingNotifier:
    """ReminderNotifier that remembers what it delivered."""

    def __init__(self) -> None:
        self.delivered: list[tuple[str, int]] = []

    async def notify(self, template: ReminderTemplate, trigger_time: int) -> None:
        self.delivered.append((template.uuid, trigger_time))


__all__ = [
    "InMemoryReminderGroupRepository",
    "InMemoryReminderTemplateRepository",
    "InMemoryScheduleRepository",
    "InMemoryScheduleStatisticsRepository",
    "InMemoryScheduleTaskRepository",
    "RecordingNotifier",
]
