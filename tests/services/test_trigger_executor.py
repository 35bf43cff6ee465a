"""Tests for TriggerExecutor - single and batch reminder triggers."""

import pytest

from agenda.reminder.models import TemplateStats
from agenda.repositories.memory import InMemoryReminderTemplateRepository
from agenda.scheduling.enums import ReminderStatus, SourceModule, TriggerResult
from agenda.services.trigger import DISABLED_REASON, TriggerExecutor, TriggerRequest
from tests._support.clock import ACCOUNT, MINUTE, T0


class FailingNotifier:
    async def notify(self, template, trigger_time):
        raise ConnectionError("push gateway unavailable")


class BrokenSaveRepository(InMemoryReminderTemplateRepository):
    def __init__(self, broken: set[str]):
        super().__init__()
        self.broken = broken

    async def save(self, template):
        if template.uuid in self.broken and template.history:
            raise RuntimeError("disk full")
        await super().save(template)


class TestTriggerReminder:
    @pytest.mark.asyncio
    async def test_success(self, executor, template_repo, statistics_repo, notifier, make_template):
        template = await make_template(next_trigger_at=T0)

        outcome = await executor.trigger_reminder(template, T0, "scheduled")

        assert outcome.result is TriggerResult.SUCCESS
        assert outcome.next_trigger_at == T0 + 5 * MINUTE
        assert notifier.delivered == [(template.uuid, T0)]

        stored = await template_repo.find_by_uuid(template.uuid)
        assert stored.next_trigger_at == T0 + 5 * MINUTE
        assert stored.stats.successful_triggers == 1
        assert stored.history[0].reason == "scheduled"

        stats = await statistics_repo.find_by_account_uuid(ACCOUNT)
        assert stats.get_module_stats(SourceModule.REMINDER).successful_executions == 1

    @pytest.mark.asyncio
    async def test_events_reach_outbox_after_save(self, executor, make_template):
        template = await make_template(next_trigger_at=T0)
        await executor.trigger_reminder(template, T0)
        names = [e.name for e in executor.outbox.peek()]
        assert "reminder_template.triggered" in names
        assert "schedule_statistics.incremented" in names

    @pytest.mark.asyncio
    async def test_self_paused_is_skipped(self, executor, template_repo, notifier, make_template):
        template = await make_template(next_trigger_at=T0, self_enabled=False)

        outcome = await executor.trigger_reminder(template, T0)

        assert outcome.result is TriggerResult.SKIPPED
        assert outcome.reason == DISABLED_REASON
        assert outcome.next_trigger_at == T0
        assert notifier.delivered == []
        stored = await template_repo.find_by_uuid(template.uuid)
        assert stored.stats.skipped_triggers == 1
        assert stored.next_trigger_at == T0

    @pytest.mark.asyncio
    async def test_disabled_skip_only_moves_skip_counter(self, executor, template_repo, make_template):
        template = await make_template(next_trigger_at=T0, self_enabled=False)

        await executor.trigger_reminder(template, T0)
        await executor.trigger_reminder(template, T0 + MINUTE)

        stored = await template_repo.find_by_uuid(template.uuid)
        assert stored.stats == TemplateStats(skipped_triggers=2)
        assert stored.recalculate_stats() == stored.stats

    @pytest.mark.asyncio
    async def test_paused_group_is_skipped(self, executor, make_group, make_template, statistics_repo):
        group = await make_group(status=ReminderStatus.PAUSED)
        template = await make_template(group_uuid=group.uuid)

        outcome = await executor.trigger_reminder(template, T0)

        assert outcome.result is TriggerResult.SKIPPED
        stats = await statistics_repo.find_by_account_uuid(ACCOUNT)
        assert stats.skipped_executions == 1

    @pytest.mark.asyncio
    async def test_effective_status_hint_skips_lookup(self, executor, group_repo, make_group, make_template):
        group = await make_group(status=ReminderStatus.PAUSED)
        template = await make_template(group_uuid=group.uuid)
        group_repo.lookups = 0

        outcome = await executor.trigger_reminder(
            template, T0, effective_status=ReminderStatus.ACTIVE
        )

        assert outcome.result is TriggerResult.SUCCESS
        assert group_repo.lookups == 0

    @pytest.mark.asyncio
    async def test_notifier_failure_is_recorded(
        self, template_repo, resolver, statistics, statistics_repo, make_template
    ):
        executor = TriggerExecutor(template_repo, resolver, statistics, notifier=FailingNotifier())
        template = await make_template(next_trigger_at=T0)

        outcome = await executor.trigger_reminder(template, T0)

        assert outcome.result is TriggerResult.FAILED
        assert "push gateway" in outcome.error
        stored = await template_repo.find_by_uuid(template.uuid)
        assert stored.next_trigger_at == T0
        assert stored.stats.failed_triggers == 1
        stats = await statistics_repo.find_by_account_uuid(ACCOUNT)
        assert stats.failed_executions == 1

    @pytest.mark.asyncio
    async def test_record_trigger_failure(self, executor, template_repo, make_template):
        template = await make_template(next_trigger_at=T0)
        outcome = await executor.record_trigger_failure(template, "manual", T0)
        assert outcome.result is TriggerResult.FAILED
        stored = await template_repo.find_by_uuid(template.uuid)
        assert stored.history[-1].error == "manual"


class TestBatch:
    @pytest.mark.asyncio
    async def test_batch_never_raises_and_conserves_counts(
        self, resolver, statistics, make_template
    ):
        repo = BrokenSaveRepository(broken=set())
        executor = TriggerExecutor(repo, resolver, statistics)
        ok = await make_template()
        paused = await make_template(self_enabled=False)
        broken = await make_template()
        repo.broken.add(broken.uuid)

        result = await executor.trigger_reminders_batch([
            TriggerRequest(ok, T0),
            TriggerRequest(paused, T0),
            TriggerRequest(broken, T0, reason="manual"),
        ])

        assert [r.result for r in result.results] == [
            TriggerResult.SUCCESS,
            TriggerResult.SKIPPED,
            TriggerResult.FAILED,
        ]
        assert result.results[2].error == "disk full"
        assert result.total_count == 3
        assert result.success_count + result.failed_count + result.skipped_count == result.total_count

    @pytest.mark.asyncio
    async def test_empty_batch(self, executor):
        result = await executor.trigger_reminders_batch([])
        assert result.total_count == 0
