"""Shared fixtures: a manual clock scheduler and a recording transport."""

import numpy as np
import pytest

from gesture_trainer.config import TrainerConfig
from gesture_trainer.motion import MotionReading, Sample
from gesture_trainer.store import GestureStore


class FakeHandle:
    def __init__(self, due: float, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Timers that only fire when the test advances the clock."""

    def __init__(self):
        self.now = 0.0
        self._handles: list[FakeHandle] = []

    def schedule(self, delay, callback):
        handle = FakeHandle(self.now + delay, callback)
        self._handles.append(handle)
        return handle

    def advance(self, seconds: float):
        target = self.now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.due)
            self._handles.remove(handle)
            self.now = handle.due
            handle.callback()
        self.now = target

    @property
    def active(self) -> int:
        return sum(1 for h in self._handles if not h.cancelled)


class Outbox:
    """Transport stand-in that records every envelope sent."""

    def __init__(self):
        self.messages: list[dict] = []

    def __call__(self, message: dict):
        self.messages.append(message)

    def actions(self) -> list[str]:
        return [m["action"] for m in self.messages]

    def last(self, action: str) -> dict:
        return [m for m in self.messages if m["action"] == action][-1]


def make_sample(n: int = 12, offset: float = 0.0, seed: int = 0) -> Sample:
    """A smooth 3-axis wiggle, like a short shake."""
    rng = np.random.default_rng(seed)
    t = np.linspace(0, 2 * np.pi, n)
    data = np.column_stack([
        400 * np.sin(t) + offset,
        300 * np.cos(t) + offset,
        -1000 + 50 * np.sin(2 * t),
    ]) + rng.normal(0, 5, (n, 3))
    return Sample(readings=[MotionReading(*row) for row in data.tolist()])


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def store(outbox, scheduler):
    s = GestureStore(send=outbox, config=TrainerConfig(ext_id="ext-1"), scheduler=scheduler)
    yield s
    s.close()
