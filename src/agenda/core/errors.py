"""
Structured error types for the agenda scheduling core.

Provides a small hierarchy of typed errors with metadata for retry
decisions, error categorization and mapping to the outer (HTTP) layer.

Instead of generic exceptions that lose context, AgendaError and its
subclasses carry:
- **Category:** What kind of error (validation, state, not-found, ...)
- **Retryable:** Whether the operation can be retried automatically
- **Context:** Metadata such as account, task, template or schedule uuid
- **Cause:** Chained underlying exception for root cause analysis

Manifesto:
    - **Fail fast on construction:** Validation errors surface immediately
      and are never persisted
    - **State errors leave state alone:** A refused transition never
      half-applies
    - **Batch errors are data:** Per-item failures inside a batch are
      converted into structured results, not raised
    - **Error chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                        AgendaError                               │
        │            (category, retryable, context, cause)                 │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ValidationError        StateConflictError     NotFoundError     │
        │  (VALIDATION, 400)      (STATE, 409)           (NOT_FOUND, 404)  │
        │       │                                             │            │
        │  InvalidTimeRangeError                     TaskNotFoundError     │
        │  InvalidRetryPolicyError                   TemplateNotFoundError │
        │  InvalidScheduleConfigError                GroupNotFoundError    │
        │                                            ScheduleNotFoundError │
        │                                                                  │
        │  ExecutionError         ConcurrencyError       ConfigError       │
        │  (EXECUTION)            (CONCURRENCY, retry)   (CONFIG)          │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = StateConflictError("Cannot pause a completed task",
    ...                            current_state="completed", action="pause")
    >>> error.category
    <ErrorCategory.STATE: 'STATE'>
    >>> http_status_for(error)
    409

    >>> raise TaskNotFoundError("task-1")
    Traceback (most recent call last):
    ...
    TaskNotFoundError: ScheduleTask not found: task-1

Guardrails:
    ❌ DON'T: Raise plain ValueError for domain rule violations
    ✅ DO: Raise the matching AgendaError subclass

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    agenda-core, scheduling
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    VALIDATION = "VALIDATION"     # Invariant or parameter violations
    STATE = "STATE"               # Invalid lifecycle transition
    NOT_FOUND = "NOT_FOUND"       # Missing aggregate by id
    EXECUTION = "EXECUTION"       # Trigger / task execution failure
    CONCURRENCY = "CONCURRENCY"   # Optimistic version conflict
    CONFIG = "CONFIG"             # Missing or invalid settings
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Typed fields for the identifiers that show up in every scheduling log
    line; anything else goes in ``metadata``.

    Attributes:
        account_uuid: Owning account
        task_uuid: ScheduleTask identifier
        template_uuid: ReminderTemplate identifier
        group_uuid: ReminderGroup identifier
        schedule_uuid: Schedule (calendar event) identifier
        metadata: Additional key-value pairs
    """

    account_uuid: str | None = None
    task_uuid: str | None = None
    template_uuid: str | None = None
    group_uuid: str | None = None
    schedule_uuid: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["account_uuid", "task_uuid", "template_uuid",
                    "group_uuid", "schedule_uuid"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class AgendaError(Exception):
    """
    Base exception for all agenda-core errors.

    Every AgendaError carries a category, a retryable flag, an
    :class:`ErrorContext` and an optional chained cause. Subclasses set
    ``default_category`` and ``default_retryable``.

    Examples:
        >>> error = AgendaError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(task_uuid="t-1").context.task_uuid
        't-1'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> AgendaError:
        """
        Add context to this error (fluent API).

        Usage:
            raise TaskNotFoundError(uuid).with_context(account_uuid=account)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(AgendaError):
    """
    Construction-time validation error.

    Never retryable - the input must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.constraint = constraint

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        if self.constraint:
            result["constraint"] = self.constraint
        return result


class InvalidTimeRangeError(ValidationError):
    """Start time is not strictly before end time."""

    def __init__(self, start: int, end: int, message: str | None = None):
        super().__init__(
            message or f"Invalid time range: start ({start}) must be before end ({end})",
            field="start_time",
            value=(start, end),
            constraint="start < end",
        )
        self.start = start
        self.end = end


class InvalidRetryPolicyError(ValidationError):
    """RetryPolicy parameter out of range."""


class InvalidScheduleConfigError(ValidationError):
    """ScheduleConfig parameter invalid (cron, timezone, window, limit)."""


# =============================================================================
# STATE ERRORS
# =============================================================================


class StateConflictError(AgendaError):
    """Lifecycle transition not allowed from the current state."""

    default_category = ErrorCategory.STATE
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        current_state: str | None = None,
        action: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.current_state = current_state
        self.action = action


# =============================================================================
# NOT-FOUND ERRORS
# =============================================================================


class NotFoundError(AgendaError):
    """Aggregate not found by id."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False
    entity: str = "Entity"

    def __init__(self, uuid: str, message: str | None = None, **kwargs: Any):
        self.uuid = uuid
        super().__init__(message or f"{self.entity} not found: {uuid}", **kwargs)


class TaskNotFoundError(NotFoundError):
    entity = "ScheduleTask"

    def __init__(self, uuid: str, message: str | None = None):
        super().__init__(uuid, message, context=ErrorContext(task_uuid=uuid))


class TemplateNotFoundError(NotFoundError):
    entity = "ReminderTemplate"

    def __init__(self, uuid: str, message: str | None = None):
        super().__init__(uuid, message, context=ErrorContext(template_uuid=uuid))


class GroupNotFoundError(NotFoundError):
    entity = "ReminderGroup"

    def __init__(self, uuid: str, message: str | None = None):
        super().__init__(uuid, message, context=ErrorContext(group_uuid=uuid))


class ScheduleNotFoundError(NotFoundError):
    entity = "Schedule"

    def __init__(self, uuid: str, message: str | None = None):
        super().__init__(uuid, message, context=ErrorContext(schedule_uuid=uuid))


# =============================================================================
# EXECUTION / CONCURRENCY / CONFIG
# =============================================================================


class ExecutionError(AgendaError):
    """A trigger or task execution failed."""

    default_category = ErrorCategory.EXECUTION
    default_retryable = False


class ConcurrencyError(AgendaError):
    """Optimistic version check failed; reload and retry."""

    default_category = ErrorCategory.CONCURRENCY
    default_retryable = True

    def __init__(self, message: str, *, expected: int | None = None,
                 actual: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual


class ConfigError(AgendaError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


_HTTP_STATUS = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.STATE: 409,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.CONCURRENCY: 409,
}


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, AgendaError):
        return error.retryable
    return False


def http_status_for(error: Exception) -> int:
    """Map an error to the status code the outer HTTP layer should use."""
    if isinstance(error, AgendaError):
        return _HTTP_STATUS.get(error.category, 500)
    return 500


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "AgendaError",
    "ValidationError",
    "InvalidTimeRangeError",
    "InvalidRetryPolicyError",
    "InvalidScheduleConfigError",
    "StateConflictError",
    "NotFoundError",
    "TaskNotFoundError",
    "TemplateNotFoundError",
    "GroupNotFoundError",
    "ScheduleNotFoundError",
    "ExecutionError",
    "ConcurrencyError",
    "ConfigError",
    "is_retryable",
    "http_status_for",
]
