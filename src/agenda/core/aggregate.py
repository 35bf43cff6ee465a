"""Aggregate root base class.

An aggregate owns its identifier and a queue of domain events it has
raised but that nobody has collected yet. Services pass the aggregate to
:class:`~agenda.core.events.EventOutbox` after a successful save, which
drains the queue via :meth:`AggregateRoot.pull_domain_events`.
"""

from __future__ import annotations

from typing import Any

from agenda.core.events import DomainEvent
from agenda.core.timestamps import generate_uuid


class AggregateRoot:
    """Base class for every aggregate in the scheduling core."""

    def __init__(self, uuid: str | None = None) -> None:
        self._uuid = uuid or generate_uuid()
        self._pending_events: list[DomainEvent] = []

    @property
    def uuid(self) -> str:
        return self._uuid

    def _raise_event(
        self,
        name: str,
        account_uuid: str | None,
        payload: dict[str, Any] | None = None,
    ) -> DomainEvent:
        event = DomainEvent(
            name=name,
            aggregate_id=self._uuid,
            account_uuid=account_uuid,
            payload=payload or {},
        )
        self._pending_events.append(event)
        return event

    @property
    def pending_events(self) -> tuple[DomainEvent, ...]:
        """Events raised since the last pull (read-only view)."""
        return tuple(self._pending_events)

    def pull_domain_events(self) -> list[DomainEvent]:
        """Return and clear queued events."""
        events, self._pending_events = self._pending_events, []
        return events

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self._uuid == other._uuid  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._uuid))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(uuid={self._uuid!r})"
