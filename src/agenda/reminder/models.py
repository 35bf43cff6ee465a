"""Reminder aggregates: ReminderTemplate, ReminderGroup and their values.

A template stores only its *own* enablement (``self_enabled``). Whether it
actually fires also depends on the group it belongs to; that effective
status is derived on demand by
:class:`~agenda.services.control.ReminderGroupControlResolver` and is
never stored on the template.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict

from agenda.core.aggregate import AggregateRoot
from agenda.core.errors import ValidationError
from agenda.core.timestamps import generate_uuid, now_ms, to_datetime
from agenda.scheduling.config import ScheduleConfig
from agenda.scheduling.enums import ControlMode, ReminderStatus, TriggerResult


# =============================================================================
# VALUES
# =============================================================================


# Occurrences examined before a recurrence is treated as never landing in its hours.
MAX_GATED_OCCURRENCES = 5000


@dataclass(frozen=True)
class ActiveHours:
    """Local hour window a template may fire in, both ends inclusive.

    ``start_hour > end_hour`` wraps past midnight (22 to 6 covers the night).
    """

    start_hour: int
    end_hour: int
    timezone: str = "UTC"
    enabled: bool = True

    def __post_init__(self) -> None:
        for name in ("start_hour", "end_hour"):
            value = getattr(self, name)
            if not 0 <= value <= 23:
                raise ValidationError(
                    f"{name} must be between 0 and 23", field=name, value=value
                )
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValidationError(
                f"Unknown timezone: {self.timezone!r}", field="timezone", cause=e
            ) from e

    def contains(self, timestamp: int) -> bool:
        if not self.enabled:
            return True
        hour = to_datetime(timestamp).astimezone(ZoneInfo(self.timezone)).hour
        if self.start_hour <= self.end_hour:
            return self.start_hour <= hour <= self.end_hour
        return hour >= self.start_hour or hour <= self.end_hour


@dataclass(frozen=True)
class TriggerConfig:
    """When a template fires: a recurrence rule or a single fixed instant.

    With ``active_hours`` set, occurrences outside the window are passed
    over; they are never fired late.
    """

    recurrence: ScheduleConfig | None = None
    fixed_time: int | None = None
    active_hours: ActiveHours | None = None

    def __post_init__(self) -> None:
        if (self.recurrence is None) == (self.fixed_time is None):
            raise ValidationError(
                "TriggerConfig needs exactly one of recurrence or fixed_time",
                field="trigger",
            )

    @classmethod
    def cron(
        cls,
        expression: str,
        timezone: str = "UTC",
        active_hours: ActiveHours | None = None,
        **window,
    ) -> TriggerConfig:
        return cls(
            recurrence=ScheduleConfig(cron_expression=expression, timezone=timezone, **window),
            active_hours=active_hours,
        )

    @classmethod
    def once(cls, at: int) -> TriggerConfig:
        return cls(fixed_time=at)

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    def is_active_at(self, timestamp: int) -> bool:
        """Inside the recurrence validity window and the active hours."""
        if self.recurrence is not None and not self.recurrence.is_active_at(timestamp):
            return False
        return self.active_hours is None or self.active_hours.contains(timestamp)

    def next_after(self, after: int, trigger_count: int = 0) -> int | None:
        """First fire instant strictly after ``after``, or None when done."""
        if self.recurrence is None:
            if self.fixed_time > after and self.is_active_at(self.fixed_time):
                return self.fixed_time
            return None
        cursor = after
        for _ in range(MAX_GATED_OCCURRENCES):
            candidate = self.recurrence.calculate_next_run(cursor, trigger_count)
            if candidate is None or self.active_hours is None:
                return candidate
            if self.active_hours.contains(candidate):
                return candidate
            cursor = candidate
        return None

    def upcoming(self, count: int, after: int, trigger_count: int = 0) -> list[int]:
        """The next ``count`` fire instants after ``after``."""
        if self.recurrence is not None and self.active_hours is None:
            return self.recurrence.upcoming(count, after, trigger_count)
        runs: list[int] = []
        cursor = after
        while len(runs) < count:
            nxt = self.next_after(cursor, trigger_count + len(runs))
            if nxt is None:
                break
            runs.append(nxt)
            cursor = nxt
        return runs


@dataclass(frozen=True)
class ReminderHistory:
    """One trigger outcome of a template."""

    template_uuid: str
    triggered_at: int
    result: TriggerResult
    reason: str | None = None
    error: str | None = None
    uuid: str = field(default_factory=generate_uuid)


@dataclass(frozen=True)
class TemplateStats:
    """Trigger counters of a single template.

    ``total_triggers`` counts attempts that reached the notifier (SUCCESS or
    FAILED). Skips only move ``skipped_triggers``.
    """

    total_triggers: int = 0
    successful_triggers: int = 0
    failed_triggers: int = 0
    skipped_triggers: int = 0
    last_triggered_at: int | None = None

    def record(self, result: TriggerResult, at: int) -> TemplateStats:
        changes: dict = {}
        if result is TriggerResult.SUCCESS:
            changes["total_triggers"] = self.total_triggers + 1
            changes["successful_triggers"] = self.successful_triggers + 1
            changes["last_triggered_at"] = at
        elif result is TriggerResult.FAILED:
            changes["total_triggers"] = self.total_triggers + 1
            changes["failed_triggers"] = self.failed_triggers + 1
        else:
            changes["skipped_triggers"] = self.skipped_triggers + 1
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_history(cls, history: list[ReminderHistory] | tuple[ReminderHistory, ...]) -> TemplateStats:
        stats = cls()
        for entry in sorted(history, key=lambda h: h.triggered_at):
            stats = stats.record(entry.result, entry.triggered_at)
        return stats


# =============================================================================
# SNAPSHOTS
# =============================================================================


class ReminderTemplateSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    uuid: str
    account_uuid: str
    title: str
    description: str | None = None
    group_uuid: str | None = None
    self_enabled: bool
    trigger: TriggerConfig
    next_trigger_at: int | None = None
    stats: TemplateStats
    history: tuple[ReminderHistory, ...] = ()
    importance: str = "normal"
    tags: tuple[str, ...] = ()
    created_at: int
    updated_at: int


class ReminderGroupSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    uuid: str
    account_uuid: str
    name: str
    description: str | None = None
    control_mode: ControlMode
    status: ReminderStatus
    enabled: bool
    created_at: int
    updated_at: int
    deleted_at: int | None = None


# =============================================================================
# REMINDER TEMPLATE
# =============================================================================


class ReminderTemplate(AggregateRoot):
    """A reminder definition that fires on its trigger config."""

    def __init__(
        self,
        *,
        uuid: str | None = None,
        account_uuid: str,
        title: str,
        trigger: TriggerConfig,
        description: str | None = None,
        group_uuid: str | None = None,
        self_enabled: bool = True,
        next_trigger_at: int | None = None,
        stats: TemplateStats | None = None,
        history: list[ReminderHistory] | None = None,
        importance: str = "normal",
        tags: tuple[str, ...] = (),
        created_at: int | None = None,
        updated_at: int | None = None,
    ) -> None:
        super().__init__(uuid)
        if not title or not title.strip():
            raise ValidationError("ReminderTemplate title must not be empty", field="title")
        now = now_ms()
        self._account_uuid = account_uuid
        self._title = title
        self._description = description
        self._group_uuid = group_uuid
        self._self_enabled = self_enabled
        self._trigger = trigger
        self._next_trigger_at = next_trigger_at
        self._stats = stats or TemplateStats()
        self._history: list[ReminderHistory] = list(history or [])
        self._importance = importance
        self._tags = tuple(tags)
        self._created_at = created_at if created_at is not None else now
        self._updated_at = updated_at if updated_at is not None else now

    @classmethod
    def create(
        cls,
        *,
        account_uuid: str,
        title: str,
        trigger: TriggerConfig,
        description: str | None = None,
        group_uuid: str | None = None,
        self_enabled: bool = True,
        importance: str = "normal",
        tags: tuple[str, ...] = (),
        now: int | None = None,
    ) -> ReminderTemplate:
        now = now_ms() if now is None else now
        return cls(
            account_uuid=account_uuid,
            title=title,
            description=description,
            trigger=trigger,
            group_uuid=group_uuid,
            self_enabled=self_enabled,
            next_trigger_at=trigger.next_after(now),
            importance=importance,
            tags=tags,
            created_at=now,
            updated_at=now,
        )

    @classmethod
    def from_snapshot(cls, snapshot: ReminderTemplateSnapshot) -> ReminderTemplate:
        return cls(
            uuid=snapshot.uuid,
            account_uuid=snapshot.account_uuid,
            title=snapshot.title,
            description=snapshot.description,
            group_uuid=snapshot.group_uuid,
            self_enabled=snapshot.self_enabled,
            trigger=snapshot.trigger,
            next_trigger_at=snapshot.next_trigger_at,
            stats=snapshot.stats,
            history=list(snapshot.history),
            importance=snapshot.importance,
            tags=snapshot.tags,
            created_at=snapshot.created_at,
            updated_at=snapshot.updated_at,
        )

    def snapshot(self) -> ReminderTemplateSnapshot:
        return ReminderTemplateSnapshot(
            uuid=self._uuid,
            account_uuid=self._account_uuid,
            title=self._title,
            description=self._description,
            group_uuid=self._group_uuid,
            self_enabled=self._self_enabled,
            trigger=self._trigger,
            next_trigger_at=self._next_trigger_at,
            stats=self._stats,
            history=tuple(self._history),
            importance=self._importance,
            tags=self._tags,
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
    def group_uuid(self) -> str | None:
        return self._group_uuid

    @property
    def self_enabled(self) -> bool:
        return self._self_enabled

    @property
    def status(self) -> ReminderStatus:
        """The template's own status, ignoring any group."""
        return ReminderStatus.ACTIVE if self._self_enabled else ReminderStatus.PAUSED

    @property
    def trigger(self) -> TriggerConfig:
        return self._trigger

    @property
    def next_trigger_at(self) -> int | None:
        return self._next_trigger_at

    @property
    def stats(self) -> TemplateStats:
        return self._stats

    @property
    def history(self) -> tuple[ReminderHistory, ...]:
        return tuple(self._history)

    @property
    def importance(self) -> str:
        return self._importance

    @property
    def tags(self) -> tuple[str, ...]:
        return self._tags

    @property
    def created_at(self) -> int:
        return self._created_at

    @property
    def updated_at(self) -> int:
        return self._updated_at

    def is_due(self, now: int | None = None) -> bool:
        now = now_ms() if now is None else now
        return self._next_trigger_at is not None and self._next_trigger_at <= now

    def recent_history(self, limit: int = 10) -> list[ReminderHistory]:
        ordered = sorted(self._history, key=lambda h: h.triggered_at, reverse=True)
        return ordered[:limit]

    # ===== Own enablement =====

    def enable(self) -> None:
        self._self_enabled = True
        self._updated_at = now_ms()
        self._raise_event(
            "reminder_template.enabled", self._account_uuid, {"template_uuid": self._uuid}
        )

    def pause(self) -> None:
        self._self_enabled = False
        self._updated_at = now_ms()
        self._raise_event(
            "reminder_template.paused", self._account_uuid, {"template_uuid": self._uuid}
        )

    def toggle(self) -> None:
        if self._self_enabled:
            self.pause()
        else:
            self.enable()

    def move_to_group(self, group_uuid: str | None) -> None:
        self._group_uuid = group_uuid
        self._updated_at = now_ms()

    # ===== Triggering =====

    def calculate_next_trigger(self, after: int) -> int | None:
        return self._trigger.next_after(after, self._stats.successful_triggers)

    def upcoming_triggers(self, count: int, after: int) -> list[int]:
        return self._trigger.upcoming(count, after, self._stats.successful_triggers)

    def is_active_at_time(self, timestamp: int) -> bool:
        return self._trigger.is_active_at(timestamp)

    def advance_next_trigger(self, after: int) -> int | None:
        """Move next_trigger_at to the first occurrence after ``after``."""
        self._next_trigger_at = self.calculate_next_trigger(after)
        self._updated_at = now_ms()
        return self._next_trigger_at

    def _append(self, entry: ReminderHistory) -> ReminderHistory:
        self._history.append(entry)
        self._stats = self._stats.record(entry.result, entry.triggered_at)
        self._updated_at = now_ms()
        return entry

    def record_trigger(self, trigger_time: int, reason: str | None = None) -> ReminderHistory:
        """Append a SUCCESS entry and roll next_trigger_at past ``trigger_time``."""
        entry = self._append(
            ReminderHistory(
                template_uuid=self._uuid,
                triggered_at=trigger_time,
                result=TriggerResult.SUCCESS,
                reason=reason,
            )
        )
        self.advance_next_trigger(trigger_time)
        self._raise_event(
            "reminder_template.triggered",
            self._account_uuid,
            {
                "template_uuid": self._uuid,
                "triggered_at": trigger_time,
                "next_trigger_at": self._next_trigger_at,
            },
        )
        return entry

    def record_skip(self, trigger_time: int, reason: str) -> ReminderHistory:
        """Append a SKIPPED entry; next_trigger_at is left alone."""
        entry = self._append(
            ReminderHistory(
                template_uuid=self._uuid,
                triggered_at=trigger_time,
                result=TriggerResult.SKIPPED,
                reason=reason,
            )
        )
        self._raise_event(
            "reminder_template.skipped",
            self._account_uuid,
            {"template_uuid": self._uuid, "triggered_at": trigger_time, "reason": reason},
        )
        return entry

    def record_failure(self, trigger_time: int, error: str) -> ReminderHistory:
        """Append a FAILED entry; next_trigger_at is left alone."""
        entry = self._append(
            ReminderHistory(
                template_uuid=self._uuid,
                triggered_at=trigger_time,
                result=TriggerResult.FAILED,
                error=error,
            )
        )
        self._raise_event(
            "reminder_template.trigger_failed",
            self._account_uuid,
            {"template_uuid": self._uuid, "triggered_at": trigger_time, "error": error},
        )
        return entry

    def recalculate_stats(self) -> TemplateStats:
        """Rebuild stats from the full history."""
        self._stats = TemplateStats.from_history(self._history)
        self._updated_at = now_ms()
        return self._stats


# =============================================================================
# REMINDER GROUP
# =============================================================================


class ReminderGroup(AggregateRoot):
    """A named set of templates that may override their enablement."""

    def __init__(
        self,
        *,
        uuid: str | None = None,
        account_uuid: str,
        name: str,
        description: str | None = None,
        control_mode: ControlMode = ControlMode.INDIVIDUAL,
        status: ReminderStatus = ReminderStatus.ACTIVE,
        enabled: bool = True,
        created_at: int | None = None,
        updated_at: int | None = None,
        deleted_at: int | None = None,
    ) -> None:
        super().__init__(uuid)
        if not name or not name.strip():
            raise ValidationError("ReminderGroup name must not be empty", field="name")
        now = now_ms()
        self._account_uuid = account_uuid
        self._name = name
        self._description = description
        self._control_mode = ControlMode(control_mode)
        self._status = ReminderStatus(status)
        self._enabled = enabled
        self._created_at = created_at if created_at is not None else now
        self._updated_at = updated_at if updated_at is not None else now
        self._deleted_at = deleted_at

    @classmethod
    def create(
        cls,
        *,
        account_uuid: str,
        name: str,
        description: str | None = None,
        control_mode: ControlMode = ControlMode.INDIVIDUAL,
    ) -> ReminderGroup:
        return cls(
            account_uuid=account_uuid,
            name=name,
            description=description,
            control_mode=control_mode,
        )

    @classmethod
    def from_snapshot(cls, snapshot: ReminderGroupSnapshot) -> ReminderGroup:
        return cls(
            uuid=snapshot.uuid,
            account_uuid=snapshot.account_uuid,
            name=snapshot.name,
            description=snapshot.description,
            control_mode=snapshot.control_mode,
            status=snapshot.status,
            enabled=snapshot.enabled,
            created_at=snapshot.created_at,
            updated_at=snapshot.updated_at,
            deleted_at=snapshot.deleted_at,
        )

    def snapshot(self) -> ReminderGroupSnapshot:
        return ReminderGroupSnapshot(
            uuid=self._uuid,
            account_uuid=self._account_uuid,
            name=self._name,
            description=self._description,
            control_mode=self._control_mode,
            status=self._status,
            enabled=self._enabled,
            created_at=self._created_at,
            updated_at=self._updated_at,
            deleted_at=self._deleted_at,
        )

    @property
    def account_uuid(self) -> str:
        return self._account_uuid

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str | None:
        return self._description

    @property
    def control_mode(self) -> ControlMode:
        return self._control_mode

    @property
    def status(self) -> ReminderStatus:
        return self._status

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def deleted_at(self) -> int | None:
        return self._deleted_at

    @property
    def is_deleted(self) -> bool:
        return self._deleted_at is not None

    # ===== Control mode =====

    def _switch_control_mode(self, mode: ControlMode) -> None:
        if self._control_mode is mode:
            return
        previous = self._control_mode
        self._control_mode = mode
        self._updated_at = now_ms()
        self._raise_event(
            "reminder_group.control_mode_switched",
            self._account_uuid,
            {
                "group_uuid": self._uuid,
                "previous_mode": previous.value,
                "new_mode": mode.value,
            },
        )

    def switch_to_group_control(self) -> None:
        self._switch_control_mode(ControlMode.GROUP)

    def switch_to_individual_control(self) -> None:
        self._switch_control_mode(ControlMode.INDIVIDUAL)

    def toggle_control_mode(self) -> None:
        if self._control_mode is ControlMode.GROUP:
            self.switch_to_individual_control()
        else:
            self.switch_to_group_control()

    # ===== Status =====

    def enable(self) -> None:
        self._enabled = True
        self._status = ReminderStatus.ACTIVE
        self._updated_at = now_ms()
        self._raise_event(
            "reminder_group.enabled", self._account_uuid, {"group_uuid": self._uuid}
        )

    def pause(self) -> None:
        self._enabled = False
        self._status = ReminderStatus.PAUSED
        self._updated_at = now_ms()
        self._raise_event(
            "reminder_group.paused", self._account_uuid, {"group_uuid": self._uuid}
        )

    def toggle(self) -> None:
        if self._enabled:
            self.pause()
        else:
            self.enable()

    def soft_delete(self) -> None:
        now = now_ms()
        self._deleted_at = now
        self._status = ReminderStatus.PAUSED
        self._updated_at = now
        self._raise_event(
            "reminder_group.deleted",
            self._account_uuid,
            {"group_uuid": self._uuid, "group_name": self._name},
        )

    def restore(self) -> None:
        self._deleted_at = None
        self._status = ReminderStatus.ACTIVE if self._enabled else ReminderStatus.PAUSED
        self._updated_at = now_ms()
