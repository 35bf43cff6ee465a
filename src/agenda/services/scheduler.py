"""SchedulerLoop - scan due reminders and dispatch them in bounded chunks.

Beat-as-poller: a :class:`~agenda.scheduling.protocol.SchedulerBackend`
calls :meth:`SchedulerLoop.tick` periodically; each tick optionally deals
with overdue templates and then runs one :meth:`SchedulerLoop.schedule`
pass.

    schedule(account_uuid, before_time, max_count, concurrency)
      │
      ├─ 1. find_by_next_trigger_before(before_time)      repository order
      ├─ 2. effective statuses, one find_by_ids call       drop paused
      ├─ 3. truncate to max_count                          rest stays due
      ├─ 4. chunks of `concurrency` ─► asyncio.gather      chunk N+1 after N
      └─ 5. ScheduleRunResult (success + failed + skipped == total)

Per-item failures become FAILED outcomes; a single bad template never
aborts a pass.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from agenda.core.errors import TemplateNotFoundError
from agenda.core.events import EventBus, EventOutbox
from agenda.core.logging import LogContext, get_logger
from agenda.core.settings import AgendaSettings, get_settings
from agenda.core.timestamps import generate_uuid, now_ms, utc_now
from agenda.reminder.models import ReminderTemplate, TemplateStats
from agenda.repositories import ReminderTemplateRepository
from agenda.scheduling.enums import (
    ExecutionStatus,
    OverdueAction,
    ReminderStatus,
    SourceModule,
    TriggerResult,
)
from agenda.scheduling.protocol import SchedulerBackend
from agenda.services.control import ReminderGroupControlResolver
from agenda.services.statistics import StatisticsUpdater
from agenda.services.trigger import DISABLED_REASON, TriggerExecutor, TriggerOutcome

logger = get_logger(__name__)

OVERDUE_SKIP_REASON = "过期跳过"
OVERDUE_TRIGGER_REASON = "overdue"


@dataclass
class ScheduleRunResult:
    """Outcome of one ``schedule()`` pass over the processed subset."""

    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    total_count: int = 0
    details: list[TriggerOutcome] = field(default_factory=list)
    duration_ms: int = 0

    def add(self, outcome: TriggerOutcome) -> None:
        self.details.append(outcome)
        self.total_count += 1
        if outcome.result is TriggerResult.SUCCESS:
            self.success_count += 1
        elif outcome.result is TriggerResult.FAILED:
            self.failed_count += 1
        else:
            self.skipped_count += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "total_count": self.total_count,
            "duration_ms": self.duration_ms,
            "details": [d.to_dict() for d in self.details],
        }


@dataclass
class OverdueResult:
    action: OverdueAction
    processed_count: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return sum(1 for d in self.details if d.get("error"))


@dataclass
class SchedulerStats:
    tick_count: int = 0
    triggered: int = 0
    failed: int = 0
    skipped: int = 0
    overdue_processed: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "triggered": self.triggered,
            "failed": self.failed,
            "skipped": self.skipped,
            "overdue_processed": self.overdue_processed,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


class SchedulerLoop:
    """Scans due reminder templates and fires them.

    Example:
        >>> loop = SchedulerLoop(templates, resolver, executor, statistics)
        >>> result = await loop.schedule(max_count=50, concurrency=5)
        >>> result.total_count == result.success_count + result.failed_count + result.skipped_count
        True
    """

    def __init__(
        self,
        templates: ReminderTemplateRepository,
        resolver: ReminderGroupControlResolver,
        executor: TriggerExecutor,
        statistics: StatisticsUpdater,
        settings: AgendaSettings | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._templates = templates
        self._resolver = resolver
        self._executor = executor
        self._statistics = statistics
        self._settings = settings or get_settings()
        self._bus = bus
        self._stats = SchedulerStats()
        self._backend: SchedulerBackend | None = None

    @property
    def outbox(self) -> EventOutbox:
        return self._executor.outbox

    @property
    def stats(self) -> SchedulerStats:
        return self._stats

    # ── Scan & dispatch ──────────────────────────────────────────────

    async def schedule(
        self,
        account_uuid: str | None = None,
        before_time: int | None = None,
        max_count: int | None = None,
        concurrency: int | None = None,
    ) -> ScheduleRunResult:
        """Trigger up to ``max_count`` effectively enabled, due templates.

        Every log line of the pass carries ``pass_id`` and ``before_time``.
        """
        before_time = now_ms() if before_time is None else before_time
        max_count = self._settings.default_max_count if max_count is None else max_count
        concurrency = self._settings.default_concurrency if concurrency is None else concurrency
        async with LogContext(pass_id=generate_uuid(), before_time=before_time):
            return await self._run_pass(account_uuid, before_time, max_count, max(1, concurrency))

    async def _run_pass(
        self,
        account_uuid: str | None,
        before_time: int,
        max_count: int,
        concurrency: int,
    ) -> ScheduleRunResult:
        started = time.monotonic()
        due = await self._templates.find_by_next_trigger_before(before_time, account_uuid)
        statuses = await self._resolver.get_effective_statuses(due)
        enabled = [t for t in due if statuses[t.uuid] is ReminderStatus.ACTIVE]
        selected = enabled[:max(0, max_count)]

        logger.info(
            "scheduler.scan",
            account_uuid=account_uuid,
            due=len(due),
            enabled=len(enabled),
            selected=len(selected),
        )

        result = ScheduleRunResult()
        for index in range(0, len(selected), concurrency):
            chunk = selected[index:index + concurrency]
            outcomes = await asyncio.gather(
                *(self._trigger_one(t, before_time, statuses[t.uuid]) for t in chunk)
            )
            for outcome in outcomes:
                result.add(outcome)
            logger.debug(
                "scheduler.chunk_completed",
                chunk=index // concurrency + 1,
                size=len(chunk),
            )

        result.duration_ms = int((time.monotonic() - started) * 1000)
        self._stats.triggered += result.success_count
        self._stats.failed += result.failed_count
        self._stats.skipped += result.skipped_count
        logger.info(
            "scheduler.completed",
            total=result.total_count,
            success=result.success_count,
            failed=result.failed_count,
            skipped=result.skipped_count,
            duration_ms=result.duration_ms,
        )
        return result

    async def _trigger_one(
        self,
        template: ReminderTemplate,
        trigger_time: int,
        effective_status: ReminderStatus,
    ) -> TriggerOutcome:
        try:
            return await self._executor.trigger_reminder(
                template, trigger_time, effective_status=effective_status
            )
        except Exception as e:
            logger.exception("scheduler.trigger_failed", template_uuid=template.uuid)
            return TriggerOutcome(
                template_uuid=template.uuid,
                result=TriggerResult.FAILED,
                trigger_time=trigger_time,
                next_trigger_at=template.next_trigger_at,
                error=str(e),
            )

    # ── Overdue handling ─────────────────────────────────────────────

    async def handle_overdue_reminders(
        self,
        account_uuid: str | None,
        action: OverdueAction | str,
        now: int | None = None,
        grace_ms: int | None = None,
    ) -> OverdueResult:
        """Apply ``action`` to templates due more than ``grace_ms`` ago."""
        action = OverdueAction(action)
        now = now_ms() if now is None else now
        grace_ms = self._settings.overdue_grace_ms if grace_ms is None else grace_ms
        threshold = now - grace_ms

        overdue = await self._templates.find_by_next_trigger_before(threshold - 1, account_uuid)
        statuses: dict[str, ReminderStatus] = {}
        if action is OverdueAction.TRIGGER:
            statuses = await self._resolver.get_effective_statuses(overdue)
        result = OverdueResult(action=action)
        for template in overdue:
            missed_at = template.next_trigger_at
            detail: dict[str, Any] = {"template_uuid": template.uuid, "missed_at": missed_at}
            try:
                if action is OverdueAction.TRIGGER:
                    status = statuses[template.uuid]
                    if status is ReminderStatus.ACTIVE:
                        outcome = await self._executor.trigger_reminder(
                            template, now, OVERDUE_TRIGGER_REASON, effective_status=status
                        )
                        detail["result"] = outcome.result.value
                        if outcome.error:
                            detail["error"] = outcome.error
                    else:
                        # paused: move past now, no history entry
                        template.advance_next_trigger(now)
                        await self._save(template)
                        detail["result"] = "rescheduled"
                        detail["reason"] = DISABLED_REASON
                elif action is OverdueAction.SKIP:
                    template.record_skip(missed_at, OVERDUE_SKIP_REASON)
                    template.advance_next_trigger(now)
                    await self._save(template)
                    await self._statistics.record_execution(
                        template.account_uuid, SourceModule.REMINDER, ExecutionStatus.SKIPPED
                    )
                    detail["result"] = TriggerResult.SKIPPED.value
                else:
                    template.advance_next_trigger(now)
                    await self._save(template)
                    detail["result"] = "rescheduled"
                detail["next_trigger_at"] = template.next_trigger_at
            except Exception as e:
                logger.exception(
                    "scheduler.overdue_failed", template_uuid=template.uuid, action=action.value
                )
                detail["error"] = str(e)
            else:
                if "error" not in detail:
                    result.processed_count += 1
            result.details.append(detail)

        self._stats.overdue_processed += result.processed_count
        logger.info(
            "scheduler.overdue_handled",
            account_uuid=account_uuid,
            action=action.value,
            overdue=len(overdue),
            processed=result.processed_count,
        )
        return result

    async def _save(self, template: ReminderTemplate) -> None:
        await self._templates.save(template)
        self.outbox.collect(template)

    # ── Repair ───────────────────────────────────────────────────────

    async def recalculate_statistics(self, template_uuid: str) -> TemplateStats:
        """Rebuild a template's trigger stats from its persisted history."""
        template = await self._templates.find_by_uuid(template_uuid)
        if template is None:
            raise TemplateNotFoundError(template_uuid)
        stats = template.recalculate_stats()
        await self._save(template)
        logger.info(
            "scheduler.stats_recalculated",
            template_uuid=template_uuid,
            total_triggers=stats.total_triggers,
        )
        return stats

    # ── Tick & lifecycle ─────────────────────────────────────────────

    async def tick(self) -> ScheduleRunResult | None:
        """One beat: overdue policy (if configured), a scan, then event delivery."""
        self._stats.tick_count += 1
        self._stats.last_tick = utc_now()
        try:
            if self._settings.overdue_action is not None:
                await self.handle_overdue_reminders(None, self._settings.overdue_action)
            result = await self.schedule()
            if self._bus is not None:
                await self.outbox.flush(self._bus)
            return result
        except Exception as e:
            self._stats.last_error = str(e)
            logger.exception("scheduler.tick_failed")
            return None

    def start(self, backend: SchedulerBackend | None = None, interval_seconds: float | None = None) -> None:
        if self._backend is not None:
            logger.warning("scheduler.already_running")
            return
        if backend is None:
            from agenda.scheduling.thread_backend import ThreadTickBackend

            backend = ThreadTickBackend()
        interval = (
            self._settings.tick_interval_seconds if interval_seconds is None else interval_seconds
        )
        logger.info("scheduler.starting", backend=backend.name, interval_seconds=interval)
        backend.start(self.tick, interval)
        self._backend = backend

    def stop(self) -> None:
        if self._backend is None:
            return
        self._backend.stop()
        self._backend = None
        logger.info("scheduler.stopped")

    @property
    def is_running(self) -> bool:
        return self._backend is not None

    def health(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "backend": self._backend.health() if self._backend is not None else None,
            "stats": self._stats.to_dict(),
        }
