"""Schedule aggregate - user calendar event with conflict detection.

Two schedules conflict when their half-open intervals overlap::

    A.start < B.end and A.end > B.start

so back-to-back events (``A.end == B.start``) never conflict.

``detect_conflicts`` only compares against the candidates it is given;
loading the candidate set is the caller's job
(:class:`~agenda.services.conflicts.ScheduleConflictService`). Likewise
``reschedule`` re-validates the time range but does not re-run detection.

Example:
    >>> a = Schedule.create(account_uuid="acc", title="A", start_time=0, end_time=90 * 60_000)
    >>> b = Schedule.create(account_uuid="acc", title="B", start_time=60 * 60_000,
    ...                     end_time=120 * 60_000)
    >>> result = a.detect_conflicts([b])
    >>> result.has_conflict, result.conflicts[0].overlap_duration
    (True, 30)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict

from agenda.core.aggregate import AggregateRoot
from agenda.core.errors import InvalidTimeRangeError, ValidationError
from agenda.core.timestamps import minutes_between, now_ms
from agenda.scheduling.enums import ConflictSuggestionType


@dataclass(frozen=True)
class ConflictDetail:
    """Overlap between the subject schedule and one other schedule.

    ``overlap_duration`` is in rounded minutes, never below 1 for a real overlap.
    """

    schedule_uuid: str
    schedule_title: str
    overlap_start: int
    overlap_end: int
    overlap_duration: int


@dataclass(frozen=True)
class ConflictSuggestion:
    """A proposed new window for the subject schedule."""

    type: ConflictSuggestionType
    new_start_time: int
    new_end_time: int


@dataclass(frozen=True)
class ConflictDetectionResult:
    has_conflict: bool
    conflicts: tuple[ConflictDetail, ...] = ()
    suggestions: tuple[ConflictSuggestion, ...] = ()

    @property
    def conflicting_uuids(self) -> list[str]:
        return [c.schedule_uuid for c in self.conflicts]

    def suggestion(self, kind: ConflictSuggestionType) -> ConflictSuggestion | None:
        for suggestion in self.suggestions:
            if suggestion.type is kind:
                return suggestion
        return None


NO_CONFLICT = ConflictDetectionResult(has_conflict=False)


class ScheduleSnapshot(BaseModel):
    """Immutable cross-boundary view of a Schedule."""

    model_config = ConfigDict(frozen=True)

    uuid: str
    account_uuid: str
    title: str
    description: str | None = None
    start_time: int
    end_time: int
    duration: int
    has_conflict: bool = False
    conflicting_schedules: tuple[str, ...] | None = None
    priority: int | None = None
    location: str | None = None
    attendees: tuple[str, ...] | None = None
    created_at: int
    updated_at: int


class Schedule(AggregateRoot):
    """Calendar event owned by an account."""

    def __init__(
        self,
        *,
        uuid: str | None = None,
        account_uuid: str,
        title: str,
        start_time: int,
        end_time: int,
        description: str | None = None,
        has_conflict: bool = False,
        conflicting_schedules: list[str] | tuple[str, ...] | None = None,
        priority: int | None = None,
        location: str | None = None,
        attendees: list[str] | tuple[str, ...] | None = None,
        created_at: int | None = None,
        updated_at: int | None = None,
    ) -> None:
        super().__init__(uuid)
        if start_time >= end_time:
            raise InvalidTimeRangeError(start_time, end_time)
        if not title or not title.strip():
            raise ValidationError("Schedule title must not be empty", field="title")
        now = now_ms()
        self._account_uuid = account_uuid
        self._title = title
        self._description = description
        self._start_time = start_time
        self._end_time = end_time
        self._duration = minutes_between(start_time, end_time)
        self._has_conflict = has_conflict
        self._conflicting_schedules = (
            list(conflicting_schedules) if conflicting_schedules is not None else None
        )
        self._priority = priority
        self._location = location
        self._attendees = list(attendees) if attendees is not None else None
        self._created_at = created_at if created_at is not None else now
        self._updated_at = updated_at if updated_at is not None else now

    @classmethod
    def create(
        cls,
        *,
        account_uuid: str,
        title: str,
        start_time: int,
        end_time: int,
        description: str | None = None,
        priority: int | None = None,
        location: str | None = None,
        attendees: list[str] | None = None,
    ) -> Schedule:
        schedule = cls(
            account_uuid=account_uuid,
            title=title,
            description=description,
            start_time=start_time,
            end_time=end_time,
            priority=priority,
            location=location,
            attendees=attendees,
        )
        schedule._raise_event(
            "schedule.created",
            account_uuid,
            {
                "schedule_uuid": schedule.uuid,
                "title": title,
                "start_time": start_time,
                "end_time": end_time,
            },
        )
        return schedule

    @classmethod
    def from_snapshot(cls, snapshot: ScheduleSnapshot) -> Schedule:
        return cls(
            uuid=snapshot.uuid,
            account_uuid=snapshot.account_uuid,
            title=snapshot.title,
            description=snapshot.description,
            start_time=snapshot.start_time,
            end_time=snapshot.end_time,
            has_conflict=snapshot.has_conflict,
            conflicting_schedules=snapshot.conflicting_schedules,
            priority=snapshot.priority,
            location=snapshot.location,
            attendees=snapshot.attendees,
            created_at=snapshot.created_at,
            updated_at=snapshot.updated_at,
        )

    def snapshot(self) -> ScheduleSnapshot:
        return ScheduleSnapshot(
            uuid=self._uuid,
            account_uuid=self._account_uuid,
            title=self._title,
            description=self._description,
            start_time=self._start_time,
            end_time=self._end_time,
            duration=self._duration,
            has_conflict=self._has_conflict,
            conflicting_schedules=(
                tuple(self._conflicting_schedules)
                if self._conflicting_schedules is not None
                else None
            ),
            priority=self._priority,
            location=self._location,
            attendees=tuple(self._attendees) if self._attendees is not None else None,
            created_at=self._created_at,
            updated_at=self._updated_at,
        )

    # ===== Read access =====

    @property
    def account_uuid(self) -> str:
        return self._account_uuid

    @property
    def title(self) -> str:
        return self._title

    @property
    def description(self) -> str | None:
        return self._description

    @property
    def start_time(self) -> int:
        return self._start_time

    @property
    def end_time(self) -> int:
        return self._end_time

    @property
    def duration(self) -> int:
        """Length in whole minutes (rounded)."""
        return self._duration

    @property
    def has_conflict(self) -> bool:
        return self._has_conflict

    @property
    def conflicting_schedules(self) -> list[str] | None:
        return list(self._conflicting_schedules) if self._conflicting_schedules is not None else None

    @property
    def priority(self) -> int | None:
        return self._priority

    @property
    def location(self) -> str | None:
        return self._location

    @property
    def attendees(self) -> list[str] | None:
        return list(self._attendees) if self._attendees is not None else None

    @property
    def created_at(self) -> int:
        return self._created_at

    @property
    def updated_at(self) -> int:
        return self._updated_at

    # ===== Conflict detection =====

    def overlaps(self, other: Schedule) -> bool:
        return self._start_time < other.end_time and self._end_time > other.start_time

    def detect_conflicts(self, candidates: list[Schedule]) -> ConflictDetectionResult:
        """Compare against ``candidates`` and propose new windows on overlap."""
        overlapping = [
            other for other in candidates
            if other.uuid != self._uuid and self.overlaps(other)
        ]
        if not overlapping:
            return NO_CONFLICT

        conflicts = []
        for other in overlapping:
            overlap_start = max(self._start_time, other.start_time)
            overlap_end = min(self._end_time, other.end_time)
            conflicts.append(
                ConflictDetail(
                    schedule_uuid=other.uuid,
                    schedule_title=other.title,
                    overlap_start=overlap_start,
                    overlap_end=overlap_end,
                    overlap_duration=max(1, minutes_between(overlap_start, overlap_end)),
                )
            )
        return ConflictDetectionResult(
            has_conflict=True,
            conflicts=tuple(conflicts),
            suggestions=tuple(self._suggestions(overlapping)),
        )

    def _suggestions(self, overlapping: list[Schedule]) -> list[ConflictSuggestion]:
        ordered = sorted(overlapping, key=lambda s: s.start_time)
        earliest = ordered[0]
        latest_end = max(s.end_time for s in ordered)
        length = self._end_time - self._start_time

        suggestions = [
            ConflictSuggestion(
                type=ConflictSuggestionType.MOVE_EARLIER,
                new_start_time=earliest.start_time - length,
                new_end_time=earliest.start_time,
            ),
            ConflictSuggestion(
                type=ConflictSuggestionType.MOVE_LATER,
                new_start_time=latest_end,
                new_end_time=latest_end + length,
            ),
        ]
        if self._start_time < earliest.start_time:
            suggestions.append(
                ConflictSuggestion(
                    type=ConflictSuggestionType.SHORTEN,
                    new_start_time=self._start_time,
                    new_end_time=earliest.start_time,
                )
            )
        return suggestions

    # ===== Mutation =====

    def mark_as_conflicting(self, conflicting_uuids: list[str]) -> None:
        self._has_conflict = True
        self._conflicting_schedules = list(conflicting_uuids)
        self._updated_at = now_ms()
        self._raise_event(
            "schedule.conflict_detected",
            self._account_uuid,
            {"schedule_uuid": self._uuid, "conflicting_schedules": list(conflicting_uuids)},
        )

    def clear_conflicts(self) -> None:
        self._has_conflict = False
        self._conflicting_schedules = None
        self._updated_at = now_ms()

    def reschedule(self, new_start_time: int, new_end_time: int) -> None:
        if new_start_time >= new_end_time:
            raise InvalidTimeRangeError(new_start_time, new_end_time).with_context(
                schedule_uuid=self._uuid
            )
        previous: dict[str, Any] = {"start_time": self._start_time, "end_time": self._end_time}
        self._start_time = new_start_time
        self._end_time = new_end_time
        self._duration = minutes_between(new_start_time, new_end_time)
        self._updated_at = now_ms()
        self._raise_event(
            "schedule.rescheduled",
            self._account_uuid,
            {
                "schedule_uuid": self._uuid,
                "previous": previous,
                "start_time": new_start_time,
                "end_time": new_end_time,
            },
        )

    def apply_suggestion(self, suggestion: ConflictSuggestion) -> None:
        self.reschedule(suggestion.new_start_time, suggestion.new_end_time)
