"""
In-memory event bus implementation.

Single-process deployments and test suites need an event bus that
delivers immediately without external infrastructure. Events are not
persisted.

Tags:
    agenda-core, events, in-memory, asyncio, testing
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass

from agenda.core.events import DomainEvent, EventHandler
from agenda.core.logging import get_logger

__all__ = ["InMemoryEventBus"]

logger = get_logger(__name__)


@dataclass
class Subscription:
    """Internal subscription record."""

    id: str
    pattern: str
    handler: EventHandler


class InMemoryEventBus:
    """In-process event bus.

    Example::

        bus = InMemoryEventBus()

        async def audit(event: DomainEvent):
            print(event.name)

        await bus.subscribe("schedule_task.*", audit)
        await bus.publish(DomainEvent(name="schedule_task.paused", aggregate_id="t-1"))
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._closed = False
        self._published = 0

    async def publish(self, event: DomainEvent) -> None:
        """Publish an event to all matching subscribers.

        Handlers run concurrently. A failing handler is logged and does
        not stop delivery to the others.
        """
        if self._closed:
            return

        self._published += 1
        handlers = [
            (sub.id, sub.handler)
            for sub in list(self._subscriptions.values())
            if event.matches(sub.pattern)
        ]
        if not handlers:
            return

        async def safe_call(sub_id: str, handler: EventHandler) -> None:
            try:
                await handler(event)
            except Exception as e:
                logger.warning(
                    "event_handler_error",
                    subscription_id=sub_id,
                    event_name=event.name,
                    error=str(e),
                )

        await asyncio.gather(*[safe_call(sub_id, handler) for sub_id, handler in handlers])

    async def subscribe(self, event_type: str, handler: EventHandler) -> str:
        """Subscribe to events matching a pattern (``*`` and ``type.*`` supported)."""
        sub_id = f"sub_{uuid.uuid4().hex[:12]}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            pattern=event_type,
            handler=handler,
        )
        return sub_id

    async def unsubscribe(self, subscription_id: str) -> None:
        """Remove a subscription."""
        self._subscriptions.pop(subscription_id, None)

    async def close(self) -> None:
        """Mark bus as closed and clear subscriptions."""
        self._closed = True
        self._subscriptions.clear()

    @property
    def subscription_count(self) -> int:
        """Number of active subscriptions."""
        return len(self._subscriptions)

    @property
    def published_count(self) -> int:
        return self._published
