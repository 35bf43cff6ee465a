"""Tests for SchedulerLoop - due scans, chunked dispatch, overdue handling, ticks."""

import asyncio

import pytest

from agenda.core.errors import TemplateNotFoundError
from agenda.core.events.memory import InMemoryEventBus
from agenda.core.settings import AgendaSettings
from agenda.reminder.models import TemplateStats
from agenda.scheduling.enums import OverdueAction, ReminderStatus, TriggerResult
from agenda.scheduling.thread_backend import AsyncioTickBackend
from agenda.services.scheduler import OVERDUE_SKIP_REASON, SchedulerLoop
from agenda.services.trigger import TriggerExecutor
from tests._support.clock import ACCOUNT, MINUTE, T0


class TrackingNotifier:
    """Tracks how many notifications are in flight at once."""

    def __init__(self, fail_for: set[str] | None = None):
        self.in_flight = 0
        self.max_in_flight = 0
        self.order: list[str] = []
        self.fail_for = fail_for or set()

    async def notify(self, template, trigger_time):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if template.uuid in self.fail_for:
                raise TimeoutError("provider timeout")
            self.order.append(template.uuid)
        finally:
            self.in_flight -= 1


class ExplodingExecutor(TriggerExecutor):
    def __init__(self, *args, explode_for: set[str], **kwargs):
        super().__init__(*args, **kwargs)
        self.explode_for = explode_for

    async def trigger_reminder(self, template, trigger_time=None, reason=None, *, effective_status=None):
        if template.uuid in self.explode_for:
            raise RuntimeError("unexpected")
        return await super().trigger_reminder(
            template, trigger_time, reason, effective_status=effective_status
        )


@pytest.fixture
def tracker() -> TrackingNotifier:
    return TrackingNotifier()


@pytest.fixture
def tracking_loop(template_repo, resolver, statistics, settings, tracker) -> SchedulerLoop:
    executor = TriggerExecutor(template_repo, resolver, statistics, notifier=tracker)
    return SchedulerLoop(template_repo, resolver, executor, statistics, settings=settings)


# ------------------------------------------------------------------ #
# schedule()
# ------------------------------------------------------------------ #


class TestSchedule:
    @pytest.mark.asyncio
    async def test_max_count_leaves_rest_due(self, scheduler_loop, template_repo, make_template):
        """max_count=2 over 5 due templates processes 2; the other 3 stay due."""
        templates = [await make_template(next_trigger_at=T0 - i * MINUTE) for i in range(5)]

        result = await scheduler_loop.schedule(before_time=T0, max_count=2)

        assert result.total_count == 2
        assert result.success_count == 2
        # oldest due first
        assert {d.template_uuid for d in result.details} == {templates[4].uuid, templates[3].uuid}

        still_due = await template_repo.find_by_next_trigger_before(T0)
        assert {t.uuid for t in still_due} == {t.uuid for t in templates[:3]}

        second = await scheduler_loop.schedule(before_time=T0, max_count=10)
        assert second.total_count == 3
        assert await template_repo.find_by_next_trigger_before(T0) == []

    @pytest.mark.asyncio
    async def test_paused_templates_are_not_processed(
        self, scheduler_loop, template_repo, make_group, make_template
    ):
        paused_group = await make_group(status=ReminderStatus.PAUSED)
        active = await make_template()
        await make_template(self_enabled=False)
        blocked = await make_template(group_uuid=paused_group.uuid)

        result = await scheduler_loop.schedule(before_time=T0)

        assert result.total_count == 1
        assert result.details[0].template_uuid == active.uuid
        stored = await template_repo.find_by_uuid(blocked.uuid)
        assert stored.history == ()

    @pytest.mark.asyncio
    async def test_not_yet_due_is_ignored(self, scheduler_loop, make_template):
        await make_template(next_trigger_at=T0 + 1)
        result = await scheduler_loop.schedule(before_time=T0)
        assert result.total_count == 0

    @pytest.mark.asyncio
    async def test_account_filter(self, scheduler_loop, make_template):
        mine = await make_template()
        await make_template(account_uuid="acc-2")
        result = await scheduler_loop.schedule(account_uuid=ACCOUNT, before_time=T0)
        assert [d.template_uuid for d in result.details] == [mine.uuid]

    @pytest.mark.asyncio
    async def test_chunks_bound_concurrency(self, tracking_loop, tracker, make_template):
        for i in range(5):
            await make_template(next_trigger_at=T0 - i)

        result = await tracking_loop.schedule(before_time=T0, concurrency=2)

        assert result.total_count == 5
        assert tracker.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_failures_are_counted_not_raised(
        self, template_repo, resolver, statistics, settings, make_template
    ):
        good = await make_template()
        flaky = await make_template()
        exploding = await make_template()
        executor = ExplodingExecutor(
            template_repo,
            resolver,
            statistics,
            notifier=TrackingNotifier(fail_for={flaky.uuid}),
            explode_for={exploding.uuid},
        )
        loop = SchedulerLoop(template_repo, resolver, executor, statistics, settings=settings)

        result = await loop.schedule(before_time=T0)

        by_uuid = {d.template_uuid: d for d in result.details}
        assert by_uuid[good.uuid].result is TriggerResult.SUCCESS
        assert by_uuid[flaky.uuid].result is TriggerResult.FAILED
        assert by_uuid[exploding.uuid].result is TriggerResult.FAILED
        assert by_uuid[exploding.uuid].error == "unexpected"
        assert result.success_count + result.failed_count + result.skipped_count == result.total_count
        assert loop.stats.failed == 2

    @pytest.mark.asyncio
    async def test_defaults_come_from_settings(
        self, template_repo, resolver, executor, statistics, make_template
    ):
        loop = SchedulerLoop(
            template_repo, resolver, executor, statistics,
            settings=AgendaSettings(default_max_count=1),
        )
        await make_template()
        await make_template()
        result = await loop.schedule(before_time=T0)
        assert result.total_count == 1

    @pytest.mark.asyncio
    async def test_to_dict(self, scheduler_loop, make_template):
        await make_template()
        data = (await scheduler_loop.schedule(before_time=T0)).to_dict()
        assert data["total_count"] == 1
        assert data["details"][0]["result"] == "success"


# ------------------------------------------------------------------ #
# handle_overdue_reminders()
# ------------------------------------------------------------------ #


class TestOverdue:
    @pytest.fixture
    async def overdue_setup(self, make_template):
        overdue = await make_template(next_trigger_at=T0 - 10 * MINUTE)
        within_grace = await make_template(next_trigger_at=T0 - 1 * MINUTE)
        at_threshold = await make_template(next_trigger_at=T0 - 5 * MINUTE)
        return overdue, within_grace, at_threshold

    @pytest.mark.asyncio
    async def test_only_strictly_overdue_are_processed(self, scheduler_loop, overdue_setup):
        overdue, _, _ = overdue_setup
        result = await scheduler_loop.handle_overdue_reminders(None, OverdueAction.RESCHEDULE, now=T0)
        assert result.processed_count == 1
        assert result.details[0]["template_uuid"] == overdue.uuid

    @pytest.mark.asyncio
    async def test_skip(self, scheduler_loop, template_repo, statistics_repo, overdue_setup):
        overdue, _, _ = overdue_setup

        result = await scheduler_loop.handle_overdue_reminders(ACCOUNT, "skip", now=T0)

        assert result.action is OverdueAction.SKIP
        stored = await template_repo.find_by_uuid(overdue.uuid)
        (entry,) = stored.history
        assert entry.result is TriggerResult.SKIPPED
        assert entry.reason == OVERDUE_SKIP_REASON
        assert entry.triggered_at == T0 - 10 * MINUTE
        assert stored.next_trigger_at == T0 + 5 * MINUTE
        stats = await statistics_repo.find_by_account_uuid(ACCOUNT)
        assert stats.skipped_executions == 1

    @pytest.mark.asyncio
    async def test_reschedule(self, scheduler_loop, template_repo, overdue_setup):
        overdue, _, _ = overdue_setup

        await scheduler_loop.handle_overdue_reminders(ACCOUNT, OverdueAction.RESCHEDULE, now=T0)

        stored = await template_repo.find_by_uuid(overdue.uuid)
        assert stored.history == ()
        assert stored.next_trigger_at == T0 + 5 * MINUTE

    @pytest.mark.asyncio
    async def test_trigger(self, scheduler_loop, template_repo, notifier, overdue_setup):
        overdue, _, _ = overdue_setup

        result = await scheduler_loop.handle_overdue_reminders(ACCOUNT, OverdueAction.TRIGGER, now=T0)

        assert result.details[0]["result"] == "success"
        assert notifier.delivered == [(overdue.uuid, T0)]
        stored = await template_repo.find_by_uuid(overdue.uuid)
        assert stored.history[0].reason == "overdue"
        assert stored.next_trigger_at == T0 + 5 * MINUTE

    @pytest.mark.asyncio
    async def test_trigger_moves_paused_template_past_now(
        self, scheduler_loop, template_repo, statistics_repo, notifier, make_template
    ):
        paused = await make_template(next_trigger_at=T0 - 10 * MINUTE, self_enabled=False)

        for i in range(5):
            result = await scheduler_loop.handle_overdue_reminders(
                None, OverdueAction.TRIGGER, now=T0 + i * MINUTE
            )

        assert result.processed_count == 0
        assert notifier.delivered == []
        stored = await template_repo.find_by_uuid(paused.uuid)
        assert stored.history == ()
        assert stored.stats == TemplateStats()
        assert stored.next_trigger_at == T0 + 5 * MINUTE
        assert await statistics_repo.find_by_account_uuid(ACCOUNT) is None

    @pytest.mark.asyncio
    async def test_trigger_resolves_groups_once(
        self, scheduler_loop, group_repo, notifier, make_group, make_template
    ):
        paused_group = await make_group(status=ReminderStatus.PAUSED)
        active_group = await make_group()
        muted = await make_template(next_trigger_at=T0 - 10 * MINUTE, group_uuid=paused_group.uuid)
        loud = await make_template(next_trigger_at=T0 - 10 * MINUTE, group_uuid=active_group.uuid)
        group_repo.lookups = 0

        result = await scheduler_loop.handle_overdue_reminders(None, OverdueAction.TRIGGER, now=T0)

        assert group_repo.lookups == 1
        assert notifier.delivered == [(loud.uuid, T0)]
        by_uuid = {d["template_uuid"]: d for d in result.details}
        assert by_uuid[muted.uuid]["result"] == "rescheduled"
        assert by_uuid[loud.uuid]["result"] == "success"

    @pytest.mark.asyncio
    async def test_custom_grace(self, scheduler_loop, overdue_setup):
        result = await scheduler_loop.handle_overdue_reminders(
            None, OverdueAction.RESCHEDULE, now=T0, grace_ms=0
        )
        assert result.processed_count == 3

    @pytest.mark.asyncio
    async def test_unknown_action(self, scheduler_loop):
        with pytest.raises(ValueError):
            await scheduler_loop.handle_overdue_reminders(None, "explode", now=T0)


# ------------------------------------------------------------------ #
# recalculate_statistics()
# ------------------------------------------------------------------ #


class TestRecalculate:
    @pytest.mark.asyncio
    async def test_rebuilds_from_history(self, scheduler_loop, executor, template_repo, make_template):
        template = await make_template()
        await executor.trigger_reminder(template, T0)
        stored = await template_repo.find_by_uuid(template.uuid)
        drifted = stored.snapshot().model_copy(update={"stats": TemplateStats(total_triggers=42)})
        await template_repo.save(type(stored).from_snapshot(drifted))

        stats = await scheduler_loop.recalculate_statistics(template.uuid)

        assert stats.total_triggers == 1
        assert stats.successful_triggers == 1
        assert (await template_repo.find_by_uuid(template.uuid)).stats == stats

    @pytest.mark.asyncio
    async def test_missing_template(self, scheduler_loop):
        with pytest.raises(TemplateNotFoundError):
            await scheduler_loop.recalculate_statistics("nope")


# ------------------------------------------------------------------ #
# tick() / lifecycle
# ------------------------------------------------------------------ #


class TestTick:
    @pytest.mark.asyncio
    async def test_tick_schedules_and_flushes(
        self, template_repo, resolver, executor, statistics, settings, make_template
    ):
        bus = InMemoryEventBus()
        seen: list[str] = []

        async def record(event):
            seen.append(event.name)

        await bus.subscribe("reminder_template.*", record)
        loop = SchedulerLoop(template_repo, resolver, executor, statistics, settings=settings, bus=bus)
        await make_template()

        result = await loop.tick()

        assert result.total_count == 1
        assert seen == ["reminder_template.triggered"]
        assert len(loop.outbox) == 0
        assert loop.stats.tick_count == 1
        assert loop.stats.last_tick is not None

    @pytest.mark.asyncio
    async def test_tick_applies_overdue_policy(
        self, template_repo, resolver, executor, statistics, make_template
    ):
        loop = SchedulerLoop(
            template_repo, resolver, executor, statistics,
            settings=AgendaSettings(overdue_action="skip"),
        )
        template = await make_template()

        result = await loop.tick()

        # long overdue, so it is skipped rather than fired
        assert result.total_count == 0
        assert loop.stats.overdue_processed == 1
        stored = await template_repo.find_by_uuid(template.uuid)
        assert stored.history[0].reason == OVERDUE_SKIP_REASON

    @pytest.mark.asyncio
    async def test_tick_swallows_errors(self, resolver, executor, statistics, settings):
        class BrokenRepository:
            async def find_by_next_trigger_before(self, before_time, account_uuid=None):
                raise ConnectionError("db down")

        loop = SchedulerLoop(BrokenRepository(), resolver, executor, statistics, settings=settings)

        assert await loop.tick() is None
        assert loop.stats.last_error == "db down"

    @pytest.mark.asyncio
    async def test_start_and_stop_with_asyncio_backend(self, scheduler_loop):
        scheduler_loop.start(AsyncioTickBackend(), interval_seconds=0.01)
        assert scheduler_loop.is_running
        await asyncio.sleep(0.1)
        health = scheduler_loop.health()
        scheduler_loop.stop()

        assert not scheduler_loop.is_running
        assert health["running"] is True
        assert health["backend"]["backend"] == "asyncio"
        assert scheduler_loop.stats.tick_count >= 2
