"""Tick backend protocol.

A backend decides WHEN a tick happens; :class:`~agenda.services.scheduler.SchedulerLoop`
decides WHAT a tick does (overdue handling, then a due-reminder scan).

    ┌──────────────────────┐   tick()   ┌──────────────────────┐
    │ ThreadTickBackend    │ ─────────► │                      │
    │ (daemon thread)      │            │   SchedulerLoop      │
    └──────────────────────┘            │                      │
    ┌──────────────────────┐   tick()   │   handle_overdue     │
    │ AsyncioTickBackend   │ ─────────► │   schedule()         │
    │ (running loop)       │            └──────────────────────┘
    └──────────────────────┘
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[Any]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Pluggable timing backend driving an async tick callback."""

    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float = 10.0) -> None:
        """Begin calling ``tick_callback`` every ``interval_seconds``."""
        ...

    def stop(self) -> None:
        """Stop ticking; waits for an in-flight tick where possible."""
        ...

    def health(self) -> dict[str, Any]:
        """Return at least ``healthy``, ``backend``, ``tick_count`` and ``last_tick``."""
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    failed_ticks: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "failed_ticks": self.failed_ticks,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }
