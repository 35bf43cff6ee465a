"""Preview of the reminders an account will receive next.

``UpcomingReminderCalculator`` expands each effectively enabled template
into its fire instants inside ``[now, now + hours_window]`` and merges
them into one time-ordered list::

    templates ──► effective statuses (one find_by_ids) ──► drop paused
              ──► template.upcoming_triggers(limit, now - 1)   active hours applied
              ──► keep instants <= window end
              ──► sort by (trigger_time, importance rank, title) ──► first `limit`

Nothing is saved; the preview never moves ``next_trigger_at``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from agenda.core.errors import ConfigError
from agenda.core.logging import get_logger
from agenda.core.timestamps import now_ms
from agenda.reminder.models import ReminderTemplate
from agenda.repositories import ReminderTemplateRepository
from agenda.scheduling.enums import ReminderStatus
from agenda.services.control import ReminderGroupControlResolver

logger = get_logger(__name__)

HOUR_MS = 3_600_000

_IMPORTANCE_RANK = {"critical": 0, "high": 1, "normal": 2, "low": 3}


@dataclass(frozen=True)
class UpcomingReminder:
    template_uuid: str
    title: str
    trigger_time: int
    importance: str
    tags: tuple[str, ...]
    group_uuid: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "template_uuid": self.template_uuid,
            "title": self.title,
            "trigger_time": self.trigger_time,
            "importance": self.importance,
            "tags": list(self.tags),
            "group_uuid": self.group_uuid,
        }


class UpcomingReminderCalculator:
    """Read-only look-ahead over reminder templates.

    Example:
        >>> calculator = UpcomingReminderCalculator(resolver, templates)
        >>> upcoming = await calculator.upcoming_for_account("acc-1", limit=5)
        >>> [u.trigger_time for u in upcoming] == sorted(u.trigger_time for u in upcoming)
        True
    """

    def __init__(
        self,
        resolver: ReminderGroupControlResolver,
        templates: ReminderTemplateRepository | None = None,
    ) -> None:
        self._resolver = resolver
        self._templates = templates

    async def get_next_trigger_time(
        self, template: ReminderTemplate, now: int | None = None
    ) -> int | None:
        """Next instant at or after ``now``; None when paused or exhausted."""
        now = now_ms() if now is None else now
        if not await self._resolver.is_effectively_enabled(template):
            return None
        return template.calculate_next_trigger(now - 1)

    async def calculate_upcoming_reminders(
        self,
        templates: list[ReminderTemplate],
        limit: int = 10,
        hours_window: int = 24,
        now: int | None = None,
    ) -> list[UpcomingReminder]:
        """Merged, time-ordered fire instants of enabled templates in the window."""
        if limit <= 0 or hours_window <= 0 or not templates:
            return []
        now = now_ms() if now is None else now
        window_end = now + hours_window * HOUR_MS

        statuses = await self._resolver.get_effective_statuses(templates)
        upcoming: list[UpcomingReminder] = []
        for template in templates:
            if statuses[template.uuid] is not ReminderStatus.ACTIVE:
                continue
            for trigger_time in template.upcoming_triggers(limit, now - 1):
                if trigger_time > window_end:
                    break
                upcoming.append(
                    UpcomingReminder(
                        template_uuid=template.uuid,
                        title=template.title,
                        trigger_time=trigger_time,
                        importance=template.importance,
                        tags=template.tags,
                        group_uuid=template.group_uuid,
                    )
                )

        upcoming.sort(
            key=lambda u: (u.trigger_time, _IMPORTANCE_RANK.get(u.importance, 2), u.title)
        )
        logger.debug(
            "upcoming.calculated",
            templates=len(templates),
            found=len(upcoming),
            limit=limit,
            hours_window=hours_window,
        )
        return upcoming[:limit]

    async def upcoming_for_account(
        self,
        account_uuid: str,
        limit: int = 10,
        hours_window: int = 24,
        now: int | None = None,
    ) -> list[UpcomingReminder]:
        if self._templates is None:
            raise ConfigError("UpcomingReminderCalculator has no template repository")
        templates = await self._templates.find_by_account_uuid(account_uuid)
        return await self.calculate_upcoming_reminders(templates, limit, hours_window, now)
