"""Repository-backed conflict detection for calendar schedules.

The Schedule aggregate only compares itself against candidates it is
handed. This service loads those candidates (same account, overlapping
window, excluding the schedule itself), keeps the conflict markers of a
schedule and of every schedule it overlaps (before and after the change)
in sync after create, reschedule, resolve and delete, and applies
resolution suggestions.
"""

from __future__ import annotations

from agenda.core.errors import ScheduleNotFoundError, ValidationError
from agenda.core.events import EventOutbox
from agenda.core.logging import get_logger
from agenda.repositories import ScheduleRepository
from agenda.scheduling.enums import ConflictSuggestionType
from agenda.scheduling.schedule import ConflictDetectionResult, Schedule

logger = get_logger(__name__)

_CANDIDATE_TITLE = "conflict check"


class ScheduleConflictService:
    def __init__(self, schedules: ScheduleRepository, outbox: EventOutbox | None = None) -> None:
        self._schedules = schedules
        self._outbox = outbox if outbox is not None else EventOutbox()

    @property
    def outbox(self) -> EventOutbox:
        return self._outbox

    async def detect_conflicts(
        self,
        account_uuid: str,
        start_time: int,
        end_time: int,
        exclude_uuid: str | None = None,
    ) -> ConflictDetectionResult:
        """Check a prospective window against the account's stored schedules."""
        subject = Schedule(
            account_uuid=account_uuid,
            title=_CANDIDATE_TITLE,
            start_time=start_time,
            end_time=end_time,
        )
        candidates = await self._schedules.find_by_time_range(
            account_uuid, start_time, end_time, exclude_uuid
        )
        return subject.detect_conflicts(candidates)

    async def _refresh_conflicts(self, schedule: Schedule) -> ConflictDetectionResult:
        candidates = await self._schedules.find_by_time_range(
            schedule.account_uuid, schedule.start_time, schedule.end_time, schedule.uuid
        )
        result = schedule.detect_conflicts(candidates)
        if result.has_conflict:
            if sorted(result.conflicting_uuids) != sorted(schedule.conflicting_schedules or []):
                schedule.mark_as_conflicting(result.conflicting_uuids)
        elif schedule.has_conflict:
            schedule.clear_conflicts()
        return result

    async def _sync_counterparts(self, schedule_uuids: set[str]) -> None:
        """Re-run detection for schedules whose overlap set may have changed."""
        for schedule_uuid in sorted(schedule_uuids):
            other = await self._schedules.find_by_uuid(schedule_uuid)
            if other is None:
                continue
            before = (other.has_conflict, sorted(other.conflicting_schedules or []))
            await self._refresh_conflicts(other)
            if (other.has_conflict, sorted(other.conflicting_schedules or [])) != before:
                await self._save(other)
                logger.debug(
                    "schedule.counterpart_updated",
                    schedule_uuid=schedule_uuid,
                    has_conflict=other.has_conflict,
                )

    async def _save(self, schedule: Schedule) -> None:
        await self._schedules.save(schedule)
        self._outbox.collect(schedule)

    async def create_schedule(
        self,
        *,
        account_uuid: str,
        title: str,
        start_time: int,
        end_time: int,
        description: str | None = None,
        priority: int | None = None,
        location: str | None = None,
        attendees: list[str] | None = None,
    ) -> tuple[Schedule, ConflictDetectionResult]:
        """Create and save a schedule, marking it if it overlaps existing ones."""
        schedule = Schedule.create(
            account_uuid=account_uuid,
            title=title,
            description=description,
            start_time=start_time,
            end_time=end_time,
            priority=priority,
            location=location,
            attendees=attendees,
        )
        result = await self._refresh_conflicts(schedule)
        await self._save(schedule)
        await self._sync_counterparts(set(result.conflicting_uuids))
        logger.info(
            "schedule.created",
            schedule_uuid=schedule.uuid,
            account_uuid=account_uuid,
            conflicts=len(result.conflicts),
        )
        return schedule, result

    async def get_schedule(self, schedule_uuid: str) -> Schedule:
        schedule = await self._schedules.find_by_uuid(schedule_uuid)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_uuid)
        return schedule

    async def reschedule(
        self, schedule_uuid: str, new_start_time: int, new_end_time: int
    ) -> tuple[Schedule, ConflictDetectionResult]:
        schedule = await self.get_schedule(schedule_uuid)
        previous = set(schedule.conflicting_schedules or [])
        schedule.reschedule(new_start_time, new_end_time)
        result = await self._refresh_conflicts(schedule)
        await self._save(schedule)
        await self._sync_counterparts(previous | set(result.conflicting_uuids))
        return schedule, result

    async def resolve_conflict(
        self,
        schedule_uuid: str,
        suggestion_type: ConflictSuggestionType | str,
    ) -> tuple[Schedule, ConflictDetectionResult]:
        """Apply the suggestion of ``suggestion_type`` computed against current data.

        Raises:
            ValidationError: no such suggestion applies (e.g. no conflict,
                or ``shorten`` when the schedule starts inside a conflict)
        """
        suggestion_type = ConflictSuggestionType(suggestion_type)
        schedule = await self.get_schedule(schedule_uuid)
        previous = set(schedule.conflicting_schedules or [])
        current = await self._refresh_conflicts(schedule)
        suggestion = current.suggestion(suggestion_type)
        if suggestion is None:
            raise ValidationError(
                f"No {suggestion_type.value} suggestion for schedule {schedule_uuid}",
                field="suggestion_type",
                value=suggestion_type.value,
            ).with_context(schedule_uuid=schedule_uuid)

        previous |= set(current.conflicting_uuids)
        schedule.apply_suggestion(suggestion)
        result = await self._refresh_conflicts(schedule)
        await self._save(schedule)
        await self._sync_counterparts(previous | set(result.conflicting_uuids))
        logger.info(
            "schedule.conflict_resolved",
            schedule_uuid=schedule_uuid,
            suggestion=suggestion_type.value,
            remaining_conflicts=len(result.conflicts),
        )
        return schedule, result

    async def delete_schedule(self, schedule_uuid: str) -> None:
        """Delete a schedule and clear it from the markers of its counterparts."""
        schedule = await self.get_schedule(schedule_uuid)
        overlapping = await self._schedules.find_by_time_range(
            schedule.account_uuid, schedule.start_time, schedule.end_time, schedule_uuid
        )
        await self._schedules.delete_by_uuid(schedule_uuid)
        await self._sync_counterparts(
            {s.uuid for s in overlapping} | set(schedule.conflicting_schedules or [])
        )
        logger.info("schedule.deleted", schedule_uuid=schedule_uuid)
