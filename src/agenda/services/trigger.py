"""Trigger a single reminder template and record the outcome.

Flow for one trigger::

    effective status ──► PAUSED ──► SKIPPED history ("disabled"), skip counter
          │
          ▼ ACTIVE
    notifier.notify() ──► raises ──► record_trigger_failure()
          │
          ▼
    SUCCESS history, next_trigger_at recomputed, save, success counter

History and next-trigger changes are persisted first; account statistics
follow as a best-effort write. Retrying failed triggers is not done here.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from agenda.core.events import EventOutbox
from agenda.core.logging import get_logger
from agenda.core.timestamps import now_ms
from agenda.reminder.models import ReminderTemplate
from agenda.repositories import ReminderNotifier, ReminderTemplateRepository
from agenda.scheduling.enums import ReminderStatus, SourceModule, TriggerResult
from agenda.services.control import ReminderGroupControlResolver
from agenda.services.statistics import StatisticsUpdater

logger = get_logger(__name__)

DISABLED_REASON = "disabled"


@dataclass(frozen=True)
class TriggerRequest:
    """One item of a batch trigger."""

    template: ReminderTemplate
    trigger_time: int | None = None
    reason: str | None = None


@dataclass(frozen=True)
class TriggerOutcome:
    template_uuid: str
    result: TriggerResult
    trigger_time: int
    next_trigger_at: int | None = None
    reason: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "template_uuid": self.template_uuid,
            "result": self.result.value,
            "trigger_time": self.trigger_time,
            "next_trigger_at": self.next_trigger_at,
            "reason": self.reason,
            "error": self.error,
        }


@dataclass
class BatchTriggerResult:
    """Per-item outcomes of ``trigger_reminders_batch``."""

    results: list[TriggerOutcome] = field(default_factory=list)

    def _count(self, result: TriggerResult) -> int:
        return sum(1 for r in self.results if r.result is result)

    @property
    def success_count(self) -> int:
        return self._count(TriggerResult.SUCCESS)

    @property
    def failed_count(self) -> int:
        return self._count(TriggerResult.FAILED)

    @property
    def skipped_count(self) -> int:
        return self._count(TriggerResult.SKIPPED)

    @property
    def total_count(self) -> int:
        return len(self.results)


class TriggerExecutor:
    """Fires reminder templates and keeps their history and statistics."""

    def __init__(
        self,
        templates: ReminderTemplateRepository,
        resolver: ReminderGroupControlResolver,
        statistics: StatisticsUpdater,
        notifier: ReminderNotifier | None = None,
        outbox: EventOutbox | None = None,
    ) -> None:
        self._templates = templates
        self._resolver = resolver
        self._statistics = statistics
        self._notifier = notifier
        self._outbox = outbox if outbox is not None else statistics.outbox

    @property
    def outbox(self) -> EventOutbox:
        return self._outbox

    async def trigger_reminder(
        self,
        template: ReminderTemplate,
        trigger_time: int | None = None,
        reason: str | None = None,
        *,
        effective_status: ReminderStatus | None = None,
    ) -> TriggerOutcome:
        """Fire ``template`` at ``trigger_time`` (default: now).

        ``effective_status`` may be passed when the caller already resolved
        it in bulk; otherwise the template's group is loaded.
        """
        trigger_time = now_ms() if trigger_time is None else trigger_time
        if effective_status is None:
            effective_status = await self._resolver.get_effective_status(template)
        if effective_status is not ReminderStatus.ACTIVE:
            return await self.record_skip(template, trigger_time, DISABLED_REASON)

        if self._notifier is not None:
            try:
                await self._notifier.notify(template, trigger_time)
            except Exception as e:
                logger.warning(
                    "trigger.notify_failed",
                    template_uuid=template.uuid,
                    error=str(e),
                )
                return await self.record_trigger_failure(template, str(e), trigger_time)

        template.record_trigger(trigger_time, reason)
        await self._templates.save(template)
        self._outbox.collect(template)
        await self._statistics.record_execution(
            template.account_uuid, SourceModule.REMINDER, TriggerResult.SUCCESS.as_execution_status()
        )
        logger.info(
            "trigger.success",
            template_uuid=template.uuid,
            trigger_time=trigger_time,
            next_trigger_at=template.next_trigger_at,
        )
        return TriggerOutcome(
            template_uuid=template.uuid,
            result=TriggerResult.SUCCESS,
            trigger_time=trigger_time,
            next_trigger_at=template.next_trigger_at,
            reason=reason,
        )

    async def record_skip(
        self, template: ReminderTemplate, trigger_time: int, reason: str
    ) -> TriggerOutcome:
        """Record a SKIPPED outcome; next_trigger_at is not advanced."""
        template.record_skip(trigger_time, reason)
        await self._templates.save(template)
        self._outbox.collect(template)
        await self._statistics.record_execution(
            template.account_uuid, SourceModule.REMINDER, TriggerResult.SKIPPED.as_execution_status()
        )
        logger.debug("trigger.skipped", template_uuid=template.uuid, reason=reason)
        return TriggerOutcome(
            template_uuid=template.uuid,
            result=TriggerResult.SKIPPED,
            trigger_time=trigger_time,
            next_trigger_at=template.next_trigger_at,
            reason=reason,
        )

    async def record_trigger_failure(
        self,
        template: ReminderTemplate,
        error: str,
        trigger_time: int | None = None,
    ) -> TriggerOutcome:
        """Record a FAILED outcome; no retry is attempted."""
        trigger_time = now_ms() if trigger_time is None else trigger_time
        template.record_failure(trigger_time, error)
        await self._templates.save(template)
        self._outbox.collect(template)
        await self._statistics.record_execution(
            template.account_uuid, SourceModule.REMINDER, TriggerResult.FAILED.as_execution_status()
        )
        logger.warning("trigger.failed", template_uuid=template.uuid, error=error)
        return TriggerOutcome(
            template_uuid=template.uuid,
            result=TriggerResult.FAILED,
            trigger_time=trigger_time,
            next_trigger_at=template.next_trigger_at,
            error=error,
        )

    async def trigger_reminders_batch(self, requests: list[TriggerRequest]) -> BatchTriggerResult:
        """Trigger each request in order; never raises."""
        batch = BatchTriggerResult()
        for request in requests:
            trigger_time = now_ms() if request.trigger_time is None else request.trigger_time
            try:
                outcome = await self.trigger_reminder(
                    request.template, trigger_time, request.reason
                )
            except Exception as e:
                logger.exception(
                    "trigger.batch_item_failed", template_uuid=request.template.uuid
                )
                outcome = TriggerOutcome(
                    template_uuid=request.template.uuid,
                    result=TriggerResult.FAILED,
                    trigger_time=trigger_time,
                    next_trigger_at=request.template.next_trigger_at,
                    reason=request.reason,
                    error=str(e),
                )
            batch.results.append(outcome)
        logger.info(
            "trigger.batch_completed",
            total=batch.total_count,
            success=batch.success_count,
            failed=batch.failed_count,
            skipped=batch.skipped_count,
        )
        return batch
