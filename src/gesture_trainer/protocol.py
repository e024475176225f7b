"""Request/response channel to the hosting editor, and the sensor frame parser.

Outbound requests carry a fresh correlation id and are remembered until
the host answers. Inbound messages are either events (dispatched by event
name) or responses (dispatched by the action of the request they answer).
A response id is consumed once; stale or repeated ids are ignored.

Usage:
    protocol = SyncProtocol(send=transport.send, ext_id="abc")
    protocol.on_event("extshown", handle_shown)
    protocol.on_response("extreadcode", handle_code)
    protocol.send_request("extinit")
    # For every message from the host:
    protocol.receive(message)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gesture_trainer.motion import MotionReading

if TYPE_CHECKING:
    from gesture_trainer.metrics import MetricsCollector
    from gesture_trainer.scheduler import Scheduler, TimerHandle

logger = logging.getLogger("gesture_trainer.protocol")

CHANNEL = "pxtpkgext"
SENSOR_MARKER = "A"

# Outbound actions
INIT = "extinit"
DATA_STREAM = "extdatastream"
READ_CODE = "extreadcode"
WRITE_CODE = "extwritecode"

# Inbound events
CONSOLE = "extconsole"
SHOWN = "extshown"
HIDDEN = "exthidden"


class HostMessage(BaseModel):
    """Envelope exchanged with the host, in either direction."""
    model_config = ConfigDict(extra="allow")

    type: str
    id: Optional[str] = None
    action: Optional[str] = None
    event: Optional[str] = None
    extId: Optional[str] = None
    response: Optional[bool] = None
    body: Optional[Any] = None
    resp: Optional[Any] = None


class ConsoleBody(BaseModel):
    """Body of a console data event."""
    sim: bool = False
    data: str = ""


class CodeResponse(BaseModel):
    """``resp`` of a read-code response."""
    model_config = ConfigDict(populate_by_name=True)

    code: str = ""
    serialized: Optional[str] = Field(default=None, alias="json")


@dataclass
class PendingRequest:
    action: str
    body: Any = None
    attempt: int = 0
    timer: Optional[TimerHandle] = None


@dataclass
class SensorFrame:
    """Result of parsing one console line."""
    acceleration: Optional[MotionReading] = None
    invalid: int = 0  # marker vectors dropped for missing or non-integer fields


Handler = Callable[[HostMessage], None]


class SyncProtocol:
    """Correlated request/response channel over an injected transport.

    Args:
        send: Delivers one envelope dict to the host.
        ext_id: Extension id stamped on every request.
        channel: Envelope ``type``; messages of other types are ignored.
        scheduler: When given, every request arms a timeout.
        request_timeout: Seconds to wait for a response.
        max_retries: Re-sends after a timeout before giving up.
    """

    def __init__(
        self,
        send: Callable[[dict], None],
        ext_id: str = "",
        channel: str = CHANNEL,
        scheduler: Optional[Scheduler] = None,
        request_timeout: float = 10.0,
        max_retries: int = 2,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._send = send
        self.ext_id = ext_id
        self.channel = channel
        self.scheduler = scheduler
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.metrics = metrics

        self._pending: dict[str, PendingRequest] = {}
        self._event_handlers: dict[str, Handler] = {}
        self._response_handlers: dict[str, Handler] = {}
        self.on_failure: Optional[Callable[[str, Any], None]] = None

    def on_event(self, event: str, handler: Handler):
        self._event_handlers[event] = handler

    def on_response(self, action: str, handler: Handler):
        self._response_handlers[action] = handler

    @property
    def pending(self) -> dict[str, str]:
        """Outstanding request ids mapped to their action."""
        return {rid: p.action for rid, p in self._pending.items()}

    def cancel_action(self, action: str) -> int:
        """Forget outstanding requests for ``action``. Returns how many were dropped.

        Late responses to a dropped request are ignored as stale, and its
        timeout no longer re-sends it.
        """
        dropped = [rid for rid, p in self._pending.items() if p.action == action]
        for rid in dropped:
            request = self._pending.pop(rid)
            if request.timer is not None:
                request.timer.cancel()
        if dropped:
            logger.debug("Superseded %d pending %s request(s)", len(dropped), action)
        return len(dropped)

    def send_request(self, action: str, body: Any = None) -> str:
        return self._send_pending(PendingRequest(action=action, body=body))

    def _send_pending(self, request: PendingRequest) -> str:
        request_id = uuid.uuid4().hex
        self._pending[request_id] = request

        if self.scheduler is not None:
            request.timer = self.scheduler.schedule(
                self.request_timeout, lambda: self._expire(request_id)
            )

        message = {
            "type": self.channel,
            "action": request.action,
            "extId": self.ext_id,
            "response": True,
            "id": request_id,
            "body": request.body,
        }
        if self.metrics:
            self.metrics.record_request(request.action)
        logger.debug("-> %s (%s)", request.action, request_id)
        self._send(message)
        return request_id

    def receive(self, data: dict) -> bool:
        """Dispatch one inbound message. Returns True if a handler ran."""
        try:
            message = HostMessage.model_validate(data)
        except ValidationError as e:
            logger.warning("Dropping malformed host message: %s", e)
            return False

        if message.type != self.channel:
            return False

        if message.event:
            handler = self._event_handlers.get(message.event)
            if handler is None:
                logger.debug("No handler for event %s", message.event)
                return False
            handler(message)
            return True

        request = self._pending.pop(message.id, None) if message.id else None
        if request is None:
            logger.debug("Ignoring response for unknown id %s", message.id)
            return False

        if request.timer is not None:
            request.timer.cancel()

        logger.debug("<- %s (%s)", request.action, message.id)
        handler = self._response_handlers.get(request.action)
        if handler is None:
            return False
        handler(message)
        return True

    def _expire(self, request_id: str):
        request = self._pending.pop(request_id, None)
        if request is None:
            return

        if request.attempt < self.max_retries:
            logger.warning(
                "No response to %s after %.1fs, retrying (%d/%d)",
                request.action, self.request_timeout, request.attempt + 1, self.max_retries,
            )
            self._send_pending(PendingRequest(
                action=request.action, body=request.body, attempt=request.attempt + 1,
            ))
            return

        logger.error("Giving up on %s after %d attempts", request.action, request.attempt + 1)
        if self.on_failure:
            self.on_failure(request.action, request.body)

    def cancel_all(self):
        """Forget every outstanding request and its timeout."""
        for request in self._pending.values():
            if request.timer is not None:
                request.timer.cancel()
        self._pending.clear()


def parse_frame(text: str) -> SensorFrame:
    """Parse a console line like ``"A 12 -980 40"``.

    A marker token opens a vector read from the next three tokens; any
    other token is skipped. Vectors with missing or non-integer fields are
    dropped and counted in ``invalid``. The last valid vector wins.
    """
    tokens = text.split()
    frame = SensorFrame()

    i = 0
    while i < len(tokens):
        if tokens[i] != SENSOR_MARKER:
            i += 1
            continue

        fields = tokens[i + 1:i + 4]
        try:
            if len(fields) < 3:
                raise ValueError(f"truncated vector {fields}")
            x, y, z = (int(f) for f in fields)
        except ValueError as e:
            logger.debug("Dropping sensor vector: %s", e)
            frame.invalid += 1
        else:
            frame.acceleration = MotionReading(x, y, z)
        i += 4

    return frame
