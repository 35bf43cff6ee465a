"""ScheduleStatistics aggregate - per-account rollup counters.

One instance per account. Counters are kept per source module; account
totals are the sum over modules. Every decrement clamps at zero so the
counters stay non-negative whatever order updates arrive in.

The ``version`` field supports optimistic concurrency at the repository
boundary: a repository rejects a save whose version does not match the
stored one and stamps the new version on success via :meth:`mark_saved`.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict

from agenda.core.aggregate import AggregateRoot
from agenda.core.timestamps import now_ms
from agenda.scheduling.enums import ExecutionStatus, ScheduleTaskStatus, SourceModule

EXECUTION_COUNTERS = {
    ExecutionStatus.SUCCESS: "successful_executions",
    ExecutionStatus.FAILED: "failed_executions",
    ExecutionStatus.TIMEOUT: "timeout_executions",
    ExecutionStatus.SKIPPED: "skipped_executions",
}

STATUS_COUNTERS = {
    ScheduleTaskStatus.ACTIVE: "active_tasks",
    ScheduleTaskStatus.PAUSED: "paused_tasks",
    ScheduleTaskStatus.COMPLETED: "completed_tasks",
    ScheduleTaskStatus.FAILED: "failed_tasks",
}


@dataclass(frozen=True)
class ModuleStatistics:
    """Counters for one source module."""

    total_tasks: int = 0
    active_tasks: int = 0
    paused_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    timeout_executions: int = 0
    skipped_executions: int = 0

    def adjust(self, **deltas: int) -> ModuleStatistics:
        """Apply signed deltas, clamping every counter at zero."""
        changes = {name: max(0, getattr(self, name) + delta) for name, delta in deltas.items()}
        return dataclasses.replace(self, **changes)

    def __add__(self, other: ModuleStatistics) -> ModuleStatistics:
        return ModuleStatistics(**{
            f.name: getattr(self, f.name) + getattr(other, f.name)
            for f in dataclasses.fields(self)
        })


class ScheduleStatisticsSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_uuid: str
    modules: dict[SourceModule, ModuleStatistics]
    version: int = 0
    created_at: int
    last_updated_at: int


class ScheduleStatistics(AggregateRoot):
    """Rollup counters of ScheduleTasks and their executions for one account."""

    def __init__(
        self,
        *,
        account_uuid: str,
        modules: dict[SourceModule, ModuleStatistics] | None = None,
        version: int = 0,
        created_at: int | None = None,
        last_updated_at: int | None = None,
    ) -> None:
        super().__init__(account_uuid)
        now = now_ms()
        self._account_uuid = account_uuid
        self._modules: dict[SourceModule, ModuleStatistics] = {
            module: ModuleStatistics() for module in SourceModule
        }
        for module, stats in (modules or {}).items():
            self._modules[SourceModule(module)] = stats
        self._version = version
        self._created_at = created_at if created_at is not None else now
        self._last_updated_at = last_updated_at if last_updated_at is not None else now

    @classmethod
    def create(cls, account_uuid: str) -> ScheduleStatistics:
        stats = cls(account_uuid=account_uuid)
        stats._raise_event(
            "schedule_statistics.created", account_uuid, {"account_uuid": account_uuid}
        )
        return stats

    @classmethod
    def from_snapshot(cls, snapshot: ScheduleStatisticsSnapshot) -> ScheduleStatistics:
        return cls(
            account_uuid=snapshot.account_uuid,
            modules=dict(snapshot.modules),
            version=snapshot.version,
            created_at=snapshot.created_at,
            last_updated_at=snapshot.last_updated_at,
        )

    def snapshot(self) -> ScheduleStatisticsSnapshot:
        return ScheduleStatisticsSnapshot(
            account_uuid=self._account_uuid,
            modules=dict(self._modules),
            version=self._version,
            created_at=self._created_at,
            last_updated_at=self._last_updated_at,
        )

    # ===== Read access =====

    @property
    def account_uuid(self) -> str:
        return self._account_uuid

    @property
    def version(self) -> int:
        return self._version

    @property
    def created_at(self) -> int:
        return self._created_at

    @property
    def last_updated_at(self) -> int:
        return self._last_updated_at

    def get_module_stats(self, module: SourceModule) -> ModuleStatistics:
        return self._modules[SourceModule(module)]

    @property
    def totals(self) -> ModuleStatistics:
        total = ModuleStatistics()
        for stats in self._modules.values():
            total = total + stats
        return total

    @property
    def total_tasks(self) -> int:
        return self.totals.total_tasks

    @property
    def active_tasks(self) -> int:
        return self.totals.active_tasks

    @property
    def paused_tasks(self) -> int:
        return self.totals.paused_tasks

    @property
    def completed_tasks(self) -> int:
        return self.totals.completed_tasks

    @property
    def failed_tasks(self) -> int:
        return self.totals.failed_tasks

    @property
    def total_executions(self) -> int:
        return self.totals.total_executions

    @property
    def successful_executions(self) -> int:
        return self.totals.successful_executions

    @property
    def failed_executions(self) -> int:
        return self.totals.failed_executions

    @property
    def timeout_executions(self) -> int:
        return self.totals.timeout_executions

    @property
    def skipped_executions(self) -> int:
        return self.totals.skipped_executions

    @property
    def success_rate(self) -> float:
        """Successful executions as a percentage of all executions."""
        totals = self.totals
        if totals.total_executions == 0:
            return 0.0
        return totals.successful_executions / totals.total_executions * 100

    @property
    def failure_rate(self) -> float:
        totals = self.totals
        if totals.total_executions == 0:
            return 0.0
        return totals.failed_executions / totals.total_executions * 100

    # ===== Persistence support =====

    def mark_saved(self, version: int) -> None:
        """Stamp the version assigned by the repository after a successful save."""
        self._version = version

    # ===== Task counters =====

    def _apply(self, module: SourceModule, **deltas: int) -> ModuleStatistics:
        module = SourceModule(module)
        self._modules[module] = self._modules[module].adjust(**deltas)
        self._last_updated_at = now_ms()
        return self._modules[module]

    def increment_task_count(self, module: SourceModule) -> None:
        stats = self._apply(module, total_tasks=1, active_tasks=1)
        self._raise_event(
            "schedule_statistics.incremented",
            self._account_uuid,
            {
                "module": SourceModule(module).value,
                "counter": "task_count",
                "total_tasks": stats.total_tasks,
                "active_tasks": stats.active_tasks,
            },
        )

    def decrement_task_count(
        self, module: SourceModule, previous_status: ScheduleTaskStatus
    ) -> None:
        """A task left the account (deleted) while in ``previous_status``."""
        deltas = {"total_tasks": -1}
        field_name = STATUS_COUNTERS.get(ScheduleTaskStatus(previous_status))
        if field_name is not None:
            deltas[field_name] = -1
        self._apply(module, **deltas)

    def record_status_change(
        self,
        module: SourceModule,
        previous: ScheduleTaskStatus,
        current: ScheduleTaskStatus,
    ) -> None:
        """Move one task between status buckets (cancelled has no bucket)."""
        previous = ScheduleTaskStatus(previous)
        current = ScheduleTaskStatus(current)
        if previous is current:
            return
        deltas: dict[str, int] = {}
        if previous in STATUS_COUNTERS:
            deltas[STATUS_COUNTERS[previous]] = -1
        if current in STATUS_COUNTERS:
            deltas[STATUS_COUNTERS[current]] = 1
        if deltas:
            self._apply(module, **deltas)

    # ===== Execution counters =====

    def record_execution(self, module: SourceModule, status: ExecutionStatus) -> None:
        """Count one finished execution; RETRYING outcomes are not counted."""
        status = ExecutionStatus(status)
        field_name = EXECUTION_COUNTERS.get(status)
        if field_name is None:
            return
        stats = self._apply(module, total_executions=1, **{field_name: 1})
        self._raise_event(
            "schedule_statistics.incremented",
            self._account_uuid,
            {
                "module": SourceModule(module).value,
                "counter": "execution",
                "status": status.value,
                "total_executions": stats.total_executions,
                "successful_executions": stats.successful_executions,
                "failed_executions": stats.failed_executions,
            },
        )

    def reset_all_stats(self) -> None:
        self._modules = {module: ModuleStatistics() for module in SourceModule}
        self._last_updated_at = now_ms()
        self._raise_event(
            "schedule_statistics.reset", self._account_uuid, {"account_uuid": self._account_uuid}
        )

    def replace_module_stats(self, module: SourceModule, stats: ModuleStatistics) -> None:
        """Overwrite one module's counters (explicit recompute only)."""
        clamp = {f.name: 0 for f in dataclasses.fields(stats)}
        self._modules[SourceModule(module)] = stats.adjust(**clamp)
        self._last_updated_at = now_ms()
