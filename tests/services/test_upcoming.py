"""Tests for UpcomingReminderCalculator - look-ahead over enabled templates."""

import pytest

from agenda.core.errors import ConfigError
from agenda.reminder.models import ActiveHours, TriggerConfig
from agenda.scheduling.enums import ReminderStatus
from agenda.services import UpcomingReminderCalculator
from tests._support.clock import ACCOUNT, HOUR, T0, at


def hourly(**kwargs) -> TriggerConfig:
    return TriggerConfig.cron("0 * * * *", **kwargs)


class TestNextTriggerTime:
    @pytest.mark.asyncio
    async def test_enabled_template(self, upcoming, make_template):
        template = await make_template(trigger=hourly())
        assert await upcoming.get_next_trigger_time(template, now=T0 + 1) == at(1)

    @pytest.mark.asyncio
    async def test_occurrence_at_now_counts(self, upcoming, make_template):
        template = await make_template(trigger=hourly())
        assert await upcoming.get_next_trigger_time(template, now=at(2)) == at(2)

    @pytest.mark.asyncio
    async def test_paused_template(self, upcoming, make_template):
        template = await make_template(trigger=hourly(), self_enabled=False)
        assert await upcoming.get_next_trigger_time(template, now=T0) is None

    @pytest.mark.asyncio
    async def test_paused_group(self, upcoming, make_group, make_template):
        group = await make_group(status=ReminderStatus.PAUSED)
        template = await make_template(trigger=hourly(), group_uuid=group.uuid)
        assert await upcoming.get_next_trigger_time(template, now=T0) is None


class TestCalculateUpcoming:
    @pytest.mark.asyncio
    async def test_merges_and_orders_enabled_templates(self, upcoming, make_template):
        morning = await make_template(title="Stand-up", trigger=TriggerConfig.cron("0 9 * * *"))
        lunch = await make_template(title="Lunch", trigger=TriggerConfig.cron("0 12 * * *"))
        muted = await make_template(
            title="Muted", trigger=TriggerConfig.cron("0 10 * * *"), self_enabled=False
        )

        result = await upcoming.calculate_upcoming_reminders(
            [lunch, muted, morning], limit=10, hours_window=24, now=T0
        )

        assert [(r.template_uuid, r.trigger_time) for r in result] == [
            (morning.uuid, at(9)),
            (lunch.uuid, at(12)),
        ]
        assert result[0].to_dict()["title"] == "Stand-up"

    @pytest.mark.asyncio
    async def test_window_bounds_occurrences(self, upcoming, make_template):
        template = await make_template(trigger=hourly())

        result = await upcoming.calculate_upcoming_reminders(
            [template], limit=50, hours_window=3, now=T0
        )

        assert [r.trigger_time for r in result] == [T0, at(1), at(2), at(3)]

    @pytest.mark.asyncio
    async def test_limit(self, upcoming, make_template):
        templates = [
            await make_template(title=f"t{i}", trigger=TriggerConfig.cron(f"0 {i} * * *"))
            for i in range(1, 21)
        ]

        result = await upcoming.calculate_upcoming_reminders(templates, limit=5, now=T0)

        assert [r.trigger_time for r in result] == [at(h) for h in range(1, 6)]

    @pytest.mark.asyncio
    async def test_ties_break_on_importance(self, upcoming, make_template):
        low = await make_template(title="a", trigger=hourly(), importance="low")
        high = await make_template(title="b", trigger=hourly(), importance="high")

        result = await upcoming.calculate_upcoming_reminders([low, high], limit=2, now=T0 + 1)

        assert [r.template_uuid for r in result] == [high.uuid, low.uuid]

    @pytest.mark.asyncio
    async def test_active_hours_apply(self, upcoming, make_template):
        template = await make_template(trigger=hourly(active_hours=ActiveHours(9, 10)))

        result = await upcoming.calculate_upcoming_reminders(
            [template], limit=10, hours_window=48, now=T0
        )

        assert [r.trigger_time for r in result] == [at(9), at(10), at(33), at(34)]

    @pytest.mark.asyncio
    async def test_group_lookup_is_batched(self, upcoming, group_repo, make_group, make_template):
        group = await make_group()
        templates = [
            await make_template(trigger=hourly(), group_uuid=group.uuid) for _ in range(4)
        ]
        group_repo.lookups = 0

        await upcoming.calculate_upcoming_reminders(templates, now=T0)

        assert group_repo.lookups == 1

    @pytest.mark.asyncio
    async def test_preview_does_not_move_templates(self, upcoming, template_repo, make_template):
        template = await make_template(trigger=hourly(), next_trigger_at=T0 + HOUR)

        await upcoming.calculate_upcoming_reminders([template], now=T0)

        stored = await template_repo.find_by_uuid(template.uuid)
        assert stored.next_trigger_at == T0 + HOUR

    @pytest.mark.asyncio
    async def test_empty_inputs(self, upcoming, make_template):
        template = await make_template(trigger=hourly())
        assert await upcoming.calculate_upcoming_reminders([], now=T0) == []
        assert await upcoming.calculate_upcoming_reminders([template], limit=0, now=T0) == []


class TestForAccount:
    @pytest.mark.asyncio
    async def test_only_account_templates(self, upcoming, make_template):
        mine = await make_template(trigger=hourly())
        await make_template(trigger=hourly(), account_uuid="acc-2")

        result = await upcoming.upcoming_for_account(ACCOUNT, limit=3, now=T0 + 1)

        assert {r.template_uuid for r in result} == {mine.uuid}
        assert len(result) == 3

    @pytest.mark.asyncio
    async def test_requires_repository(self, resolver):
        calculator = UpcomingReminderCalculator(resolver)
        with pytest.raises(ConfigError):
            await calculator.upcoming_for_account(ACCOUNT)
