"""Tick backends: a daemon thread with its own event loop, and an asyncio task.

``ThreadTickBackend`` owns one event loop for the lifetime of its thread
and runs every tick on it with ``run_until_complete``. Keeping a single
loop matters because services hold ``asyncio.Lock`` objects (per-account
statistics locks) that must not hop between loops.

``AsyncioTickBackend`` is for embedders that already run an event loop:
it schedules the tick loop as a task on the running loop.
"""

from __future__ import annotations

import asyncio
import threading
from datetime import UTC, datetime
from typing import Any

from agenda.core.logging import get_logger
from agenda.scheduling.protocol import BackendHealth, TickCallback

logger = get_logger(__name__)


class ThreadTickBackend:
    """Ticks from a daemon thread.

    Example:
        >>> backend = ThreadTickBackend()
        >>> backend.start(loop.tick, interval_seconds=5.0)
        >>> # ... later ...
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self, join_timeout: float = 5.0) -> None:
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._failed_ticks = 0
        self._last_tick: datetime | None = None
        self._interval = 10.0
        self._join_timeout = join_timeout
        self._started = False
        self._lock = threading.Lock()

    def start(self, tick_callback: TickCallback, interval_seconds: float = 10.0) -> None:
        if self._started:
            logger.warning("backend.already_started", backend=self.name)
            return

        self._interval = interval_seconds
        self._stop_event.clear()

        def _run() -> None:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            logger.info("backend.started", backend=self.name, interval_seconds=interval_seconds)
            try:
                while not self._stop_event.wait(interval_seconds):
                    with self._lock:
                        self._tick_count += 1
                        self._last_tick = datetime.now(UTC)
                    try:
                        loop.run_until_complete(tick_callback())
                    except Exception:
                        with self._lock:
                            self._failed_ticks += 1
                        logger.exception("backend.tick_failed", backend=self.name)
            finally:
                loop.run_until_complete(loop.shutdown_asyncgens())
                loop.close()
                logger.info("backend.stopped", backend=self.name)

        self._thread = threading.Thread(target=_run, daemon=True, name="agenda-scheduler")
        self._thread.start()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self._join_timeout)
            if self._thread.is_alive():
                logger.warning("backend.stop_timeout", backend=self.name)
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick

    def get_health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            failed_ticks=self._failed_ticks,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval},
        )

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()


class AsyncioTickBackend:
    """Ticks from a task on the currently running event loop."""

    name = "asyncio"

    def __init__(self) -> None:
        self._task: asyncio.Task | None = None
        self._tick_count = 0
        self._failed_ticks = 0
        self._last_tick: datetime | None = None
        self._interval = 10.0

    def start(self, tick_callback: TickCallback, interval_seconds: float = 10.0) -> None:
        """Must be called from inside a running event loop."""
        if self._task is not None and not self._task.done():
            logger.warning("backend.already_started", backend=self.name)
            return
        self._interval = interval_seconds
        self._task = asyncio.get_running_loop().create_task(
            self._run(tick_callback, interval_seconds), name="agenda-scheduler"
        )
        logger.info("backend.started", backend=self.name, interval_seconds=interval_seconds)

    async def _run(self, tick_callback: TickCallback, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self._tick_count += 1
            self._last_tick = datetime.now(UTC)
            try:
                await tick_callback()
            except Exception:
                self._failed_ticks += 1
                logger.exception("backend.tick_failed", backend=self.name)

    def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.info("backend.stopped", backend=self.name)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def health(self) -> dict[str, Any]:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            failed_ticks=self._failed_ticks,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval},
        ).to_dict()
