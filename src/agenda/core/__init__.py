"""Shared primitives for agenda-core: errors, logging, settings, events.

Modules
-------
errors       Typed error hierarchy and HTTP status mapping
logging      structlog configuration and ``get_logger``
settings     ``AgendaSettings`` (pydantic-settings, ``AGENDA_`` prefix)
timestamps   Epoch-millisecond helpers
aggregate    ``AggregateRoot`` with queued domain events
events       ``DomainEvent``, ``EventBus`` protocol, ``EventOutbox``
"""

from agenda.core.aggregate import AggregateRoot
from agenda.core.errors import (
    AgendaError,
    ConcurrencyError,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    ExecutionError,
    GroupNotFoundError,
    InvalidRetryPolicyError,
    InvalidScheduleConfigError,
    InvalidTimeRangeError,
    NotFoundError,
    ScheduleNotFoundError,
    StateConflictError,
    TaskNotFoundError,
    TemplateNotFoundError,
    ValidationError,
    http_status_for,
    is_retryable,
)
from agenda.core.events import DomainEvent, EventBus, EventOutbox
from agenda.core.logging import configure_logging, get_logger
from agenda.core.settings import AgendaSettings, get_settings

__all__ = [
    "AggregateRoot",
    "AgendaError",
    "AgendaSettings",
    "ConcurrencyError",
    "ConfigError",
    "DomainEvent",
    "ErrorCategory",
    "ErrorContext",
    "EventBus",
    "EventOutbox",
    "ExecutionError",
    "GroupNotFoundError",
    "InvalidRetryPolicyError",
    "InvalidScheduleConfigError",
    "InvalidTimeRangeError",
    "NotFoundError",
    "ScheduleNotFoundError",
    "StateConflictError",
    "TaskNotFoundError",
    "TemplateNotFoundError",
    "ValidationError",
    "configure_logging",
    "get_logger",
    "get_settings",
    "http_status_for",
    "is_retryable",
]
