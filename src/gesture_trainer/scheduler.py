"""Cancellable timers and the debounced catalog writer."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Optional, Protocol

if TYPE_CHECKING:
    from gesture_trainer.catalog import GestureCatalog
    from gesture_trainer.metrics import MetricsCollector
    from gesture_trainer.protocol import SyncProtocol

logger = logging.getLogger("gesture_trainer.scheduler")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Schedules callbacks on an asyncio event loop via ``call_later``."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def schedule(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class PersistenceScheduler:
    """Dirty flag plus trailing-edge debounce of catalog writes.

    Every ``mark_dirty`` cancels the pending timer and arms a new one, so
    a burst of edits produces one write ``delay`` seconds after the last
    edit. The flush writes whatever the catalog holds when the timer
    fires.
    """

    WRITE_ACTION = "extwritecode"

    def __init__(
        self,
        catalog: GestureCatalog,
        protocol: SyncProtocol,
        scheduler: Scheduler,
        delay: float = 2.0,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.catalog = catalog
        self.protocol = protocol
        self.scheduler = scheduler
        self.delay = delay
        self.metrics = metrics
        self._dirty = False
        self._handle: Optional[TimerHandle] = None

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def mark_dirty(self):
        if not self._dirty:
            logger.debug("Catalog marked dirty")
        self._dirty = True
        self.cancel()
        self._handle = self.scheduler.schedule(self.delay, self._on_timer)

    def mark_unsaved(self):
        """Set the dirty flag without arming a timer.

        The next ``mark_dirty`` or ``flush_now`` writes the catalog.
        """
        self._dirty = True

    def cancel(self):
        """Drop the pending flush timer, leaving the dirty flag alone."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush_now(self) -> bool:
        self.cancel()
        return self.flush()

    def flush(self) -> bool:
        """Write catalog and generated code to the host. Returns True if sent."""
        if not self._dirty:
            return False

        code = self.catalog.matchers.generate_code()
        serialized = self.catalog.to_json()
        # an older write still awaiting its response must not be retried over this one
        self.protocol.cancel_action(self.WRITE_ACTION)
        self.protocol.send_request(self.WRITE_ACTION, {"code": code, "json": serialized})
        self._dirty = False

        if self.metrics:
            self.metrics.record_flush()
        logger.info("Flushed %d gestures to host", len(self.catalog))
        return True

    def _on_timer(self):
        self._handle = None
        self.flush()
