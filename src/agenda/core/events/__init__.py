"""Domain events and the event bus contract.

Why This Package Exists
-----------------------
Aggregates (ScheduleTask, ReminderGroup, ScheduleStatistics, ...) record
what happened to them as :class:`DomainEvent` values. Consumers such as
notification delivery, audit logging or dashboards live outside the core,
so events travel through an ``EventBus`` instead of direct calls.

Delivery is decoupled from persistence by an outbox: an aggregate queues
events, a service hands the aggregate to :class:`EventOutbox` *after* the
repository write succeeded, and whoever owns the outbox flushes it to a
bus when convenient.

Usage::

    from agenda.core.events import EventOutbox
    from agenda.core.events.memory import InMemoryEventBus

    bus = InMemoryEventBus()
    outbox = EventOutbox()

    await repo.save(task)
    outbox.collect(task)        # drains task's pending events
    await outbox.flush(bus)     # publish, then forget

Modules
-------
memory      InMemoryEventBus -- asyncio, single-process
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from agenda.core.logging import get_logger

__all__ = [
    "DomainEvent",
    "EventBus",
    "EventHandler",
    "EventSource",
    "EventOutbox",
    "get_event_bus",
    "set_event_bus",
]

logger = get_logger(__name__)


# ── Event Model ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DomainEvent:
    """Immutable record of something that happened to an aggregate.

    Attributes:
        name: Dot-separated type (e.g. ``schedule_task.paused``)
        aggregate_id: Identifier of the aggregate that emitted the event
        account_uuid: Owning account
        payload: Event-specific data
        occurred_on: When the event occurred (UTC)
        event_id: Unique event identifier
    """

    name: str
    aggregate_id: str
    account_uuid: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_on: datetime = field(default_factory=lambda: datetime.now(UTC))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, pattern: str) -> bool:
        """Check if the event name matches a pattern (supports wildcards).

        Examples:
            - ``schedule_task.*`` matches ``schedule_task.paused``
            - ``*`` matches everything
        """
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            prefix = pattern[:-2]
            return self.name.startswith(prefix + ".")
        return self.name == pattern


# ── Type Aliases ─────────────────────────────────────────────────────────

EventHandler = Callable[[DomainEvent], Awaitable[None]]


# ── Protocols ────────────────────────────────────────────────────────────


@runtime_checkable
class EventBus(Protocol):
    """Protocol for event bus implementations."""

    async def publish(self, event: DomainEvent) -> None:
        """Publish an event to all matching subscribers."""
        ...

    async def subscribe(self, event_type: str, handler: EventHandler) -> str:
        """Subscribe to events matching a pattern; returns a subscription ID."""
        ...

    async def unsubscribe(self, subscription_id: str) -> None:
        """Remove a subscription."""
        ...

    async def close(self) -> None:
        """Clean up resources."""
        ...


@runtime_checkable
class EventSource(Protocol):
    """Anything that queues domain events (every aggregate root)."""

    def pull_domain_events(self) -> list[DomainEvent]:
        ...


# ── Outbox ───────────────────────────────────────────────────────────────


class EventOutbox:
    """Holds events of saved aggregates until they are delivered.

    ``collect`` is called after a successful repository write, so events
    of a write that failed are never delivered.
    """

    def __init__(self) -> None:
        self._pending: list[DomainEvent] = []

    def collect(self, *sources: EventSource) -> int:
        """Drain pending events from aggregates into the outbox."""
        count = 0
        for source in sources:
            events = source.pull_domain_events()
            self._pending.extend(events)
            count += len(events)
        return count

    def add(self, event: DomainEvent) -> None:
        self._pending.append(event)

    def peek(self) -> list[DomainEvent]:
        """Pending events, oldest first (copy)."""
        return list(self._pending)

    def drain(self) -> list[DomainEvent]:
        """Remove and return all pending events."""
        events, self._pending = self._pending, []
        return events

    async def flush(self, bus: EventBus) -> int:
        """Publish every pending event to ``bus``.

        Events that fail to publish are put back at the front of the
        outbox, in order, and the error propagates.
        """
        events = self.drain()
        for index, event in enumerate(events):
            try:
                await bus.publish(event)
            except Exception:
                self._pending[:0] = events[index:]
                logger.warning(
                    "outbox.flush_failed",
                    event_name=event.name,
                    remaining=len(events) - index,
                )
                raise
        return len(events)

    def __len__(self) -> int:
        return len(self._pending)


# ── Default Event Bus Singleton ──────────────────────────────────────────

_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the global event bus, creating an in-memory one if none is set."""
    global _event_bus
    if _event_bus is None:
        from agenda.core.events.memory import InMemoryEventBus
        _event_bus = InMemoryEventBus()
    return _event_bus


def set_event_bus(bus: EventBus | None) -> None:
    """Set (or clear) the global event bus instance."""
    global _event_bus
    _event_bus = bus
