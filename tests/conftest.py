"""
Shared pytest fixtures for agenda-core tests.

This module provides:
- Settings/event-bus cleanup for test isolation
- In-memory repositories and wired-up services
- Factories for reminder templates, groups and schedule tasks
- A fixed reference instant (``T0``) so cron-based expectations are exact

Usage:
    Fixtures are auto-discovered by pytest::

        async def test_something(scheduler_loop, template_repo, make_template):
            template = await make_template(next_trigger_at=T0)
            ...
"""

from collections.abc import Awaitable, Callable

import pytest

from agenda.core.events import set_event_bus
from agenda.core.logging import clear_context
from agenda.core.settings import AgendaSettings, reset_settings_cache
from agenda.reminder.models import ReminderGroup, ReminderTemplate, TriggerConfig
from agenda.repositories.memory import (
    InMemoryReminderGroupRepository,
    InMemoryReminderTemplateRepository,
    InMemoryScheduleRepository,
    InMemoryScheduleStatisticsRepository,
    InMemoryScheduleTaskRepository,
    RecordingNotifier,
)
from agenda.scheduling.config import ScheduleConfig
from agenda.scheduling.enums import ControlMode, ReminderStatus, SourceModule
from agenda.scheduling.retry import RetryPolicy
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
from tests._support.clock import ACCOUNT, HOUR, T0


# =============================================================================
# ISOLATION
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_globals(monkeypatch):
    """Fresh settings, no global event bus and empty log context for every test."""
    for name in ("AGENDA_OVERDUE_ACTION", "AGENDA_DEFAULT_MAX_COUNT", "AGENDA_DEFAULT_CONCURRENCY"):
        monkeypatch.delenv(name, raising=False)
    reset_settings_cache()
    set_event_bus(None)
    clear_context()
    yield
    reset_settings_cache()
    set_event_bus(None)
    clear_context()


@pytest.fixture
def settings() -> AgendaSettings:
    return AgendaSettings(
        default_max_count=100,
        default_concurrency=10,
        overdue_grace_seconds=300,
        overdue_action=None,
        tick_interval_seconds=0.05,
    )


# =============================================================================
# REPOSITORIES
# =============================================================================


@pytest.fixture
def group_repo() -> InMemoryReminderGroupRepository:
    return InMemoryReminderGroupRepository()


@pytest.fixture
def template_repo() -> InMemoryReminderTemplateRepository:
    return InMemoryReminderTemplateRepository()


@pytest.fixture
def statistics_repo() -> InMemoryScheduleStatisticsRepository:
    return InMemoryScheduleStatisticsRepository()


@pytest.fixture
def task_repo() -> InMemoryScheduleTaskRepository:
    return InMemoryScheduleTaskRepository()


@pytest.fixture
def schedule_repo() -> InMemoryScheduleRepository:
    return InMemoryScheduleRepository()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# =============================================================================
# SERVICES
# =============================================================================


@pytest.fixture
def statistics(statistics_repo) -> StatisticsUpdater:
    return StatisticsUpdater(statistics_repo, max_attempts=3)


@pytest.fixture
def resolver(group_repo) -> ReminderGroupControlResolver:
    return ReminderGroupControlResolver(group_repo)


@pytest.fixture
def group_service(group_repo) -> ReminderGroupService:
    return ReminderGroupService(group_repo)


@pytest.fixture
def executor(template_repo, resolver, statistics, notifier) -> TriggerExecutor:
    return TriggerExecutor(template_repo, resolver, statistics, notifier=notifier)


@pytest.fixture
def upcoming(resolver, template_repo) -> UpcomingReminderCalculator:
    return UpcomingReminderCalculator(resolver, template_repo)


@pytest.fixture
def scheduler_loop(template_repo, resolver, executor, statistics, settings) -> SchedulerLoop:
    return SchedulerLoop(template_repo, resolver, executor, statistics, settings=settings)


@pytest.fixture
def task_service(task_repo, statistics) -> ScheduleTaskService:
    return ScheduleTaskService(task_repo, statistics)


@pytest.fixture
def conflict_service(schedule_repo) -> ScheduleConflictService:
    return ScheduleConflictService(schedule_repo)


# =============================================================================
# FACTORIES
# =============================================================================


@pytest.fixture
def make_template(template_repo) -> Callable[..., Awaitable[ReminderTemplate]]:
    """Build and save a template due at ``next_trigger_at`` (every 5 minutes by default)."""

    async def _make(
        *,
        next_trigger_at: int | None = T0,
        group_uuid: str | None = None,
        self_enabled: bool = True,
        account_uuid: str = ACCOUNT,
        title: str = "Drink water",
        created_at: int = T0 - HOUR,
        trigger: TriggerConfig | None = None,
        importance: str = "normal",
    ) -> ReminderTemplate:
        template = ReminderTemplate(
            account_uuid=account_uuid,
            title=title,
            trigger=trigger or TriggerConfig.cron("*/5 * * * *"),
            importance=importance,
            group_uuid=group_uuid,
            self_enabled=self_enabled,
            next_trigger_at=next_trigger_at,
            created_at=created_at,
            updated_at=created_at,
        )
        await template_repo.save(template)
        return template

    return _make


@pytest.fixture
def make_group(group_repo) -> Callable[..., Awaitable[ReminderGroup]]:
    async def _make(
        *,
        control_mode: ControlMode = ControlMode.GROUP,
        status: ReminderStatus = ReminderStatus.ACTIVE,
        account_uuid: str = ACCOUNT,
    ) -> ReminderGroup:
        group = ReminderGroup(
            account_uuid=account_uuid,
            name="Health",
            control_mode=control_mode,
            status=status,
            enabled=status is ReminderStatus.ACTIVE,
        )
        await group_repo.save(group)
        return group

    return _make


@pytest.fixture
def hourly() -> ScheduleConfig:
    return ScheduleConfig(cron_expression="0 * * * *")


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_retries=3, retry_delay=1000, backoff_multiplier=2, max_retry_delay=8000)


@pytest.fixture
def make_task(hourly, fast_retry) -> Callable[..., ScheduleTask]:
    def _make(**overrides) -> ScheduleTask:
        fields = {
            "account_uuid": ACCOUNT,
            "name": "Sync goals",
            "source_module": SourceModule.GOAL,
            "source_entity_id": "goal-1",
            "schedule": hourly,
            "retry_policy": fast_retry,
            "now": T0,
        }
        fields.update(overrides)
        return ScheduleTask.create(**fields)

    return _make
