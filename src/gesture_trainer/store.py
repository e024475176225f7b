"""Gesture store: ties the live stream, the catalog and the host together.

Two event sources drive the store, both handled synchronously:

- host messages (``receive_message``), which carry console sensor data,
  visibility events and responses to earlier requests;
- sensor frames (``ingest`` / ``ingest_text``), one tick each.

Per frame the reading is conditioned, appended to the display window and,
if the current gesture's matcher is running, fed to it. Edits go through
the catalog, which retrains the affected matcher and marks the store
dirty; the persistence scheduler writes the catalog back to the host once
edits settle.

Observers subscribe to ``StoreEvent``s instead of polling:

    store = GestureStore(send=transport.send)
    unsubscribe = store.subscribe(lambda event: print(event.type))
    store.start()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from pydantic import ValidationError

from gesture_trainer.catalog import CatalogState, GestureCatalog, GestureRef
from gesture_trainer.config import TrainerConfig
from gesture_trainer.filters import SignalConditioner
from gesture_trainer.history import HistoryBuffer, MatchTracker
from gesture_trainer.matcher import DTWMatcher
from gesture_trainer.metrics import MetricsCollector
from gesture_trainer.motion import CatalogFormatError, Gesture, Match, MotionReading, Sample
from gesture_trainer.protocol import (
    CONSOLE, DATA_STREAM, HIDDEN, INIT, READ_CODE, SHOWN, WRITE_CODE,
    CodeResponse, ConsoleBody, HostMessage, SyncProtocol, parse_frame,
)
from gesture_trainer.registry import MatcherFactory
from gesture_trainer.scheduler import LoopScheduler, PersistenceScheduler, Scheduler

logger = logging.getLogger("gesture_trainer.store")


@dataclass
class StoreEvent:
    """Notification passed to subscribers."""
    type: str  # "catalog", "reading", "match", "connection", "write_failed", "write_ok"
    data: dict = field(default_factory=dict)


Listener = Callable[[StoreEvent], None]


class GestureStore:
    def __init__(
        self,
        send: Callable[[dict], None],
        config: Optional[TrainerConfig] = None,
        scheduler: Optional[Scheduler] = None,
        matcher_factory: MatcherFactory = DTWMatcher,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or TrainerConfig()
        self.scheduler = scheduler or LoopScheduler()
        self.metrics = metrics or MetricsCollector()

        self.history = HistoryBuffer(self.config.history_limit)
        self.matches = MatchTracker()
        self.conditioner = SignalConditioner(self.config.filter_alpha)
        self.connected = False
        self.write_failed = False

        self._listeners: list[Listener] = []
        self._closed = False

        self.protocol = SyncProtocol(
            send,
            ext_id=self.config.ext_id,
            channel=self.config.channel,
            scheduler=self.scheduler,
            request_timeout=self.config.request_timeout,
            max_retries=self.config.max_retries,
            metrics=self.metrics,
        )
        self.catalog = GestureCatalog(
            matcher_factory=matcher_factory,
            tick_source=lambda: self.history.tick,
            on_dirty=self._on_dirty,
            on_publish=self._on_publish,
        )
        self.persistence = PersistenceScheduler(
            self.catalog,
            self.protocol,
            self.scheduler,
            delay=self.config.flush_delay,
            metrics=self.metrics,
        )

        self.protocol.on_event(CONSOLE, self._on_console)
        self.protocol.on_event(SHOWN, self._on_shown)
        self.protocol.on_event(HIDDEN, self._on_hidden)
        self.protocol.on_response(INIT, self._on_init)
        self.protocol.on_response(READ_CODE, self._on_read_code)
        self.protocol.on_response(WRITE_CODE, self._on_write_confirmed)
        self.protocol.on_failure = self._on_request_failed

    # --- Lifecycle ---

    def start(self) -> str:
        """Announce the extension to the host."""
        return self.protocol.send_request(INIT)

    def disconnect(self):
        """Transport went away: forget outstanding requests."""
        self.protocol.cancel_all()
        self._set_connected(False)

    def close(self):
        """Tear down. A flush that has not fired yet is cancelled."""
        if self._closed:
            return
        self._closed = True
        self.persistence.cancel()
        self.protocol.cancel_all()
        self._listeners.clear()
        logger.info("Gesture store closed")

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Observation ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event_type: str, **data: Any):
        event = StoreEvent(type=event_type, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("Listener error on %s: %s", event_type, e)

    # --- Host channel ---

    def receive_message(self, data: dict) -> bool:
        if self._closed:
            return False
        return self.protocol.receive(data)

    def _on_console(self, message: HostMessage):
        try:
            body = ConsoleBody.model_validate(message.body or {})
        except ValidationError as e:
            logger.warning("Dropping malformed console body: %s", e)
            self.metrics.record_dropped_frame()
            return
        if body.sim:
            return
        self.ingest_text(body.data)

    def _on_shown(self, message: HostMessage):
        logger.info("Extension shown")
        self.reset_stream()
        self._set_connected(True)
        self._request_stream()

    def _on_hidden(self, message: HostMessage):
        logger.info("Extension hidden")
        self._set_connected(False)

    def _on_init(self, message: HostMessage):
        self._request_stream()

    def _request_stream(self):
        self.protocol.send_request(DATA_STREAM)
        self.protocol.send_request(READ_CODE)

    def _on_read_code(self, message: HostMessage):
        try:
            resp = CodeResponse.model_validate(message.resp or {})
        except ValidationError as e:
            logger.warning("Dropping malformed read-code response: %s", e)
            return
        try:
            hydrated = self.catalog.hydrate(resp.serialized)
        except CatalogFormatError as e:
            logger.error("Ignoring stored gestures: %s", e)
            return
        if hydrated:
            self.matches.clear()

    def _on_write_confirmed(self, message: HostMessage):
        if self.write_failed:
            self.write_failed = False
            self._notify("write_ok")

    def _on_request_failed(self, action: str, body: Any):
        if action != WRITE_CODE:
            return
        self.write_failed = True
        self.metrics.record_write_failure()
        self.persistence.mark_unsaved()
        self._notify("write_failed")

    def _set_connected(self, connected: bool):
        if self.connected != connected:
            self.connected = connected
            self._notify("connection", connected=connected)

    # --- Sensor stream ---

    def reset_stream(self):
        """Start a new connection session with fresh filter state."""
        self.conditioner = SignalConditioner(self.config.filter_alpha)

    def ingest_text(self, text: str) -> Optional[Match]:
        """Parse one console line and ingest its acceleration vector."""
        frame = parse_frame(text)
        if frame.acceleration is None:
            if frame.invalid:
                self.metrics.record_dropped_frame()
            return None
        self._set_connected(True)
        return self.ingest(frame.acceleration)

    def ingest(self, raw: MotionReading) -> Optional[Match]:
        """Condition, buffer and match one sensor frame."""
        t0 = time.perf_counter()
        reading = self.conditioner.condition(raw)
        tick = self.history.append(reading)

        match = None
        gesture = self.catalog.current
        matcher = self.catalog.current_matcher
        if matcher is not None and matcher.is_running():
            match = matcher.feed(reading)
            if match is not None:
                self.matches.record(match)
                self.metrics.record_match(gesture.id)
                logger.debug("Gesture %d matched ticks %d-%d", gesture.id, match.start_time, match.end_time)

        self.matches.prune(self.history.oldest_tick)
        self.metrics.record_frame(time.perf_counter() - t0)

        self._notify("reading", reading=reading, tick=tick)
        if match is not None:
            self._notify("match", match=match, gesture_id=gesture.id)
        return match

    def is_match(self, offset: int) -> bool:
        """True if the buffered reading at ``offset`` lies inside a match."""
        return self.matches.contains(self.history.tick_at(offset))

    def readings(self) -> list[tuple[MotionReading, bool]]:
        """Display window, oldest first, with match highlighting."""
        return [(r, self.is_match(i)) for i, r in enumerate(self.history.contents())]

    @property
    def current_orientation(self) -> Optional[MotionReading]:
        return self.history.latest

    # --- Edits ---

    @property
    def gestures(self) -> tuple[Gesture, ...]:
        return self.catalog.gestures

    @property
    def current_gesture(self) -> Optional[Gesture]:
        return self.catalog.current

    def add_gesture(self, name: Optional[str] = None) -> Gesture:
        return self.catalog.add_gesture(name)

    def add_sample(self, gesture: GestureRef, sample: Sample) -> Gesture:
        return self.catalog.add_sample(gesture, sample)

    def delete_sample(self, gesture: GestureRef, sample: Sample) -> Gesture:
        return self.catalog.delete_sample(gesture, sample)

    def delete_gesture(self, gesture: GestureRef) -> bool:
        return self.catalog.delete_gesture(gesture)

    def delete_if_empty(self) -> bool:
        return self.catalog.delete_if_empty()

    def set_current_gesture(self, gesture_id: int) -> Gesture:
        return self.catalog.set_current(gesture_id)

    def rename_gesture(self, gesture: GestureRef, name: str) -> Gesture:
        return self.catalog.rename_gesture(gesture, name)

    def _on_dirty(self):
        if not self._closed:
            self.persistence.mark_dirty()

    def _on_publish(self, state: CatalogState):
        self._notify("catalog", gestures=state.gestures)
