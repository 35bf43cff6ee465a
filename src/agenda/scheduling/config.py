"""Recurrence descriptor - cron expression, timezone and validity window.

Manifesto:
    A recurring task must be able to answer two questions without touching
    storage: "when do I run next?" and "am I done?". ``ScheduleConfig``
    answers both from its own fields, so triggers, retries and the
    scheduler loop share one recurrence rule.

Cron evaluation uses ``croniter`` in the config's IANA timezone (via
``zoneinfo``); results are converted back to UTC epoch milliseconds.

    ┌───────────────────────────────────────────────────────────┐
    │  calculate_next_run(after, execution_count)               │
    │                                                           │
    │   max_executions reached?  ──► None                       │
    │   after < start_date?      ──► evaluate from start_date   │
    │   croniter(expr, after@tz).get_next()                     │
    │   next > end_date?         ──► None                       │
    └───────────────────────────────────────────────────────────┘

Tags:
    agenda-core, scheduling, cron, croniter, recurrence, value-object
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from agenda.core.errors import InvalidScheduleConfigError
from agenda.core.timestamps import from_datetime, now_ms, to_datetime


@dataclass(frozen=True)
class ScheduleConfig:
    """Immutable cron-like recurrence.

    Attributes:
        cron_expression: Five-field (or six-field, with seconds) cron string
        timezone: IANA timezone the expression is evaluated in
        start_date: First instant (ms) a run may happen, inclusive
        end_date: Last instant (ms) a run may happen, inclusive
        max_executions: Total number of runs allowed
        name: Optional human label
    """

    cron_expression: str
    timezone: str = "UTC"
    start_date: int | None = None
    end_date: int | None = None
    max_executions: int | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if not self.cron_expression or not croniter.is_valid(self.cron_expression):
            raise InvalidScheduleConfigError(
                f"Invalid cron expression: {self.cron_expression!r}",
                field="cron_expression",
                value=self.cron_expression,
            )
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise InvalidScheduleConfigError(
                f"Unknown timezone: {self.timezone!r}",
                field="timezone",
                value=self.timezone,
                cause=e,
            ) from e
        if (
            self.start_date is not None
            and self.end_date is not None
            and self.start_date >= self.end_date
        ):
            raise InvalidScheduleConfigError(
                "start_date must be before end_date",
                field="start_date",
                value=(self.start_date, self.end_date),
                constraint="start_date < end_date",
            )
        if self.max_executions is not None and self.max_executions <= 0:
            raise InvalidScheduleConfigError(
                "max_executions must be greater than 0",
                field="max_executions",
                value=self.max_executions,
                constraint="max_executions > 0",
            )

    # ── Factories ────────────────────────────────────────────────

    @classmethod
    def daily(cls, hour: int = 9, minute: int = 0, timezone: str = "UTC") -> ScheduleConfig:
        return cls(cron_expression=f"{minute} {hour} * * *", timezone=timezone)

    @classmethod
    def every_minutes(cls, minutes: int, timezone: str = "UTC") -> ScheduleConfig:
        return cls(cron_expression=f"*/{minutes} * * * *", timezone=timezone)

    def replace(self, **changes) -> ScheduleConfig:
        """Return a copy with ``changes`` applied (re-validated)."""
        return dataclasses.replace(self, **changes)

    # ── Evaluation ───────────────────────────────────────────────

    def calculate_next_run(
        self,
        after: int | None = None,
        execution_count: int = 0,
    ) -> int | None:
        """Next run strictly after ``after`` (default: now), or None when exhausted.

        Args:
            after: Reference instant in epoch ms
            execution_count: Runs already performed (checked against max_executions)
        """
        if self.max_executions is not None and execution_count >= self.max_executions:
            return None

        base = now_ms() if after is None else after
        if self.start_date is not None and base < self.start_date:
            # one millisecond before start so a match exactly on start counts
            base = self.start_date - 1

        tz = ZoneInfo(self.timezone)
        local = to_datetime(base).astimezone(tz)
        next_local = croniter(self.cron_expression, local).get_next(datetime)
        next_run = from_datetime(next_local)

        if self.end_date is not None and next_run > self.end_date:
            return None
        return next_run

    def upcoming(
        self, count: int, after: int | None = None, execution_count: int = 0
    ) -> list[int]:
        """The next ``count`` run instants, honoring the validity window and budget."""
        runs: list[int] = []
        cursor = after
        while len(runs) < count:
            nxt = self.calculate_next_run(cursor, execution_count=execution_count + len(runs))
            if nxt is None:
                break
            runs.append(nxt)
            cursor = nxt
        return runs

    def is_expired(self, now: int | None = None, execution_count: int = 0) -> bool:
        """True once the window has closed or the execution budget is spent."""
        if self.max_executions is not None and execution_count >= self.max_executions:
            return True
        now = now_ms() if now is None else now
        return self.end_date is not None and now > self.end_date

    def is_active_at(self, timestamp: int) -> bool:
        if self.start_date is not None and timestamp < self.start_date:
            return False
        return not (self.end_date is not None and timestamp > self.end_date)


# Name used by callers that think in terms of reminders rather than tasks.
RecurrenceDescriptor = ScheduleConfig
