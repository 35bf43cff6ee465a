"""Serialized read-modify-write of per-account ScheduleStatistics.

Statistics are one row per account and every trigger/execution touches
them, so concurrent writers would lose updates. Two guards apply:

1. Within an event loop, one ``asyncio.Lock`` per account serializes the
   load -> mutate -> save sequence.
2. Across processes, the repository's optimistic ``version`` check raises
   ``ConcurrencyError``; the update is reloaded and replayed up to
   ``max_attempts`` times.

Callers on the hot path use the ``record_*`` helpers, which are
best-effort: a failure is logged and never propagates into the task or
trigger write that caused it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable

from agenda.core.errors import ConcurrencyError
from agenda.core.events import EventOutbox
from agenda.core.logging import get_logger
from agenda.repositories import ScheduleStatisticsRepository
from agenda.scheduling.enums import ExecutionStatus, ScheduleTaskStatus, SourceModule
from agenda.scheduling.statistics import (
    EXECUTION_COUNTERS,
    STATUS_COUNTERS,
    ModuleStatistics,
    ScheduleStatistics,
)
from agenda.scheduling.task import ScheduleTask

logger = get_logger(__name__)

StatisticsMutation = Callable[[ScheduleStatistics], None]


class StatisticsUpdater:
    """Applies mutations to account statistics one writer at a time."""

    def __init__(
        self,
        repository: ScheduleStatisticsRepository,
        outbox: EventOutbox | None = None,
        max_attempts: int | None = None,
    ) -> None:
        if max_attempts is None:
            from agenda.core.settings import get_settings

            max_attempts = get_settings().statistics_max_attempts
        self._repository = repository
        self._outbox = outbox if outbox is not None else EventOutbox()
        self._max_attempts = max(1, max_attempts)
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def outbox(self) -> EventOutbox:
        return self._outbox

    def _lock_for(self, account_uuid: str) -> asyncio.Lock:
        lock = self._locks.get(account_uuid)
        if lock is None:
            lock = self._locks[account_uuid] = asyncio.Lock()
        return lock

    async def update(self, account_uuid: str, mutate: StatisticsMutation) -> ScheduleStatistics:
        """Load, mutate and save; replays on version conflicts.

        Raises:
            ConcurrencyError: every attempt hit a version conflict
        """
        async with self._lock_for(account_uuid):
            for attempt in range(1, self._max_attempts + 1):
                statistics = await self._repository.get_or_create(account_uuid)
                mutate(statistics)
                try:
                    await self._repository.save(statistics)
                except ConcurrencyError:
                    logger.warning(
                        "statistics.conflict_retry",
                        account_uuid=account_uuid,
                        attempt=attempt,
                        max_attempts=self._max_attempts,
                    )
                    if attempt == self._max_attempts:
                        raise
                    continue
                self._outbox.collect(statistics)
                return statistics
        raise ConcurrencyError(f"Could not update statistics for {account_uuid}")

    async def try_update(self, account_uuid: str, mutate: StatisticsMutation) -> bool:
        """Best-effort ``update``; failures are logged and reported as False."""
        try:
            await self.update(account_uuid, mutate)
        except Exception:
            logger.exception("statistics.update_failed", account_uuid=account_uuid)
            return False
        return True

    # ── Hot-path helpers (best-effort) ───────────────────────────────

    async def record_execution(
        self, account_uuid: str, module: SourceModule, status: ExecutionStatus
    ) -> bool:
        return await self.try_update(
            account_uuid, lambda stats: stats.record_execution(module, status)
        )

    async def record_task_created(self, account_uuid: str, module: SourceModule) -> bool:
        return await self.try_update(
            account_uuid, lambda stats: stats.increment_task_count(module)
        )

    async def record_tasks_created(
        self, account_uuid: str, modules: Iterable[SourceModule]
    ) -> bool:
        modules = list(modules)

        def _apply(stats: ScheduleStatistics) -> None:
            for module in modules:
                stats.increment_task_count(module)

        return await self.try_update(account_uuid, _apply)

    async def record_status_change(
        self,
        account_uuid: str,
        module: SourceModule,
        previous: ScheduleTaskStatus,
        current: ScheduleTaskStatus,
    ) -> bool:
        if previous is current:
            return True
        return await self.try_update(
            account_uuid, lambda stats: stats.record_status_change(module, previous, current)
        )

    async def record_task_deleted(
        self, account_uuid: str, module: SourceModule, previous_status: ScheduleTaskStatus
    ) -> bool:
        return await self.try_update(
            account_uuid, lambda stats: stats.decrement_task_count(module, previous_status)
        )

    # ── Repair ───────────────────────────────────────────────────────

    async def recompute(
        self, account_uuid: str, tasks: Iterable[ScheduleTask]
    ) -> ScheduleStatistics:
        """Rebuild every counter of the account from its tasks and their history."""
        per_module: dict[SourceModule, dict[str, int]] = {}
        for task in tasks:
            counters = per_module.setdefault(task.source_module, {})
            counters["total_tasks"] = counters.get("total_tasks", 0) + 1
            status_counter = STATUS_COUNTERS.get(task.status)
            if status_counter:
                counters[status_counter] = counters.get(status_counter, 0) + 1
            for record in task.history:
                counter = EXECUTION_COUNTERS.get(record.status)
                if counter is None:
                    continue
                counters["total_executions"] = counters.get("total_executions", 0) + 1
                counters[counter] = counters.get(counter, 0) + 1

        def _rebuild(stats: ScheduleStatistics) -> None:
            stats.reset_all_stats()
            for module, counters in per_module.items():
                stats.replace_module_stats(module, ModuleStatistics(**counters))

        statistics = await self.update(account_uuid, _rebuild)
        logger.info(
            "statistics.recomputed",
            account_uuid=account_uuid,
            modules=len(per_module),
            total_tasks=statistics.total_tasks,
        )
        return statistics
