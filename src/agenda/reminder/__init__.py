"""Reminder domain: templates, groups and trigger history."""

from agenda.reminder.models import (
    ActiveHours,
    ReminderGroup,
    ReminderGroupSnapshot,
    ReminderHistory,
    ReminderTemplate,
    ReminderTemplateSnapshot,
    TemplateStats,
    TriggerConfig,
)

__all__ = [
    "ActiveHours",
    "ReminderGroup",
    "ReminderGroupSnapshot",
    "ReminderHistory",
    "ReminderTemplate",
    "ReminderTemplateSnapshot",
    "TemplateStats",
    "TriggerConfig",
]
