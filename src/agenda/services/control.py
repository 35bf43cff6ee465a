"""Effective enablement of reminder templates under group control.

A template's own status says whether *it* wants to fire. A group in
``GROUP`` control mode can veto that::

    no group / group missing / group deleted  ->  template.status
    group.control_mode == INDIVIDUAL          ->  template.status
    group.control_mode == GROUP               ->  ACTIVE iff group ACTIVE and template ACTIVE

``resolve`` is the pure rule. The async helpers load groups through the
repository; the batch variants issue a single ``find_by_ids`` call for all
distinct groups referenced.

``ReminderGroupService`` applies group lifecycle operations and raises
:class:`~agenda.core.errors.GroupNotFoundError` for missing or deleted groups.
"""

from __future__ import annotations

from collections.abc import Callable

from agenda.core.errors import GroupNotFoundError
from agenda.core.events import EventOutbox
from agenda.core.logging import get_logger
from agenda.reminder.models import ReminderGroup, ReminderTemplate
from agenda.repositories import ReminderGroupRepository
from agenda.scheduling.enums import ControlMode, ReminderStatus

logger = get_logger(__name__)


class ReminderGroupControlResolver:
    """Derives a template's effective status from its group."""

    def __init__(self, group_repository: ReminderGroupRepository) -> None:
        self._groups = group_repository

    @staticmethod
    def resolve(
        template: ReminderTemplate, group: ReminderGroup | None
    ) -> ReminderStatus:
        if template.group_uuid is None or group is None or group.is_deleted:
            return template.status
        if group.control_mode is ControlMode.INDIVIDUAL:
            return template.status
        if group.status is ReminderStatus.ACTIVE and template.status is ReminderStatus.ACTIVE:
            return ReminderStatus.ACTIVE
        return ReminderStatus.PAUSED

    async def get_effective_status(self, template: ReminderTemplate) -> ReminderStatus:
        group = None
        if template.group_uuid is not None:
            group = await self._groups.find_by_id(template.group_uuid)
        return self.resolve(template, group)

    async def is_effectively_enabled(self, template: ReminderTemplate) -> bool:
        return await self.get_effective_status(template) is ReminderStatus.ACTIVE

    async def _load_groups(self, templates: list[ReminderTemplate]) -> dict[str, ReminderGroup]:
        group_ids = list(dict.fromkeys(t.group_uuid for t in templates if t.group_uuid))
        if not group_ids:
            return {}
        groups = await self._groups.find_by_ids(group_ids)
        return {group.uuid: group for group in groups}

    async def get_effective_statuses(
        self, templates: list[ReminderTemplate]
    ) -> dict[str, ReminderStatus]:
        """Effective status per template uuid."""
        groups = await self._load_groups(templates)
        return {
            template.uuid: self.resolve(
                template, groups.get(template.group_uuid) if template.group_uuid else None
            )
            for template in templates
        }

    async def filter_effectively_enabled(
        self, templates: list[ReminderTemplate]
    ) -> list[ReminderTemplate]:
        """Keep effectively enabled templates, preserving input order."""
        statuses = await self.get_effective_statuses(templates)
        enabled = [t for t in templates if statuses[t.uuid] is ReminderStatus.ACTIVE]
        if len(enabled) != len(templates):
            logger.debug(
                "control.filtered",
                total=len(templates),
                enabled=len(enabled),
            )
        return enabled


class ReminderGroupService:
    """Group lifecycle: control-mode switches, enable/pause and soft delete.

    Soft-deleted groups are invisible here; ``restore_group`` is the only
    operation that accepts one.
    """

    def __init__(
        self,
        group_repository: ReminderGroupRepository,
        outbox: EventOutbox | None = None,
    ) -> None:
        self._groups = group_repository
        self._outbox = outbox if outbox is not None else EventOutbox()

    @property
    def outbox(self) -> EventOutbox:
        return self._outbox

    async def _load(self, group_uuid: str) -> ReminderGroup:
        group = await self._groups.find_by_id(group_uuid)
        if group is None:
            raise GroupNotFoundError(group_uuid)
        return group

    async def get_group(self, group_uuid: str) -> ReminderGroup:
        group = await self._load(group_uuid)
        if group.is_deleted:
            raise GroupNotFoundError(group_uuid, f"ReminderGroup was deleted: {group_uuid}")
        return group

    async def _apply(
        self, group: ReminderGroup, apply: Callable[[ReminderGroup], None]
    ) -> ReminderGroup:
        apply(group)
        await self._groups.save(group)
        self._outbox.collect(group)
        logger.info(
            "group.updated",
            group_uuid=group.uuid,
            control_mode=group.control_mode.value,
            status=group.status.value,
            deleted=group.is_deleted,
        )
        return group

    async def switch_control_mode(self, group_uuid: str, mode: ControlMode) -> ReminderGroup:
        group = await self.get_group(group_uuid)
        if mode is ControlMode.GROUP:
            return await self._apply(group, lambda g: g.switch_to_group_control())
        return await self._apply(group, lambda g: g.switch_to_individual_control())

    async def toggle_group(self, group_uuid: str) -> ReminderGroup:
        return await self._apply(await self.get_group(group_uuid), lambda g: g.toggle())

    async def delete_group(self, group_uuid: str) -> ReminderGroup:
        return await self._apply(await self.get_group(group_uuid), lambda g: g.soft_delete())

    async def restore_group(self, group_uuid: str) -> ReminderGroup:
        group = await self._load(group_uuid)
        if not group.is_deleted:
            return group
        return await self._apply(group, lambda g: g.restore())
