"""Per-gesture matchers: the recognizer capability and a streaming DTW default.

A matcher is bound to one gesture. It is trained with the gesture's
cropped samples, then fed one reading per tick and reports a Match when
the tail of the stream looks like the gesture's prototype.

The default ``DTWMatcher`` picks the medoid sample as prototype and runs
subsequence DTW (SPRING) over the live stream, so a match is reported
once the best warping path has ended and cannot be improved by later
readings.

Usage:
    matcher = DTWMatcher(gesture_id=1, name="Shake")
    matcher.update(gesture.cropped_data(), tick=history.tick)
    # In the feed loop:
    match = matcher.feed(reading)
"""

from __future__ import annotations

import math
import re
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from gesture_trainer.motion import Match, MotionReading


class Matcher(ABC):
    """Recognizer bound to one gesture."""

    def __init__(self, gesture_id: int, name: str):
        self.gesture_id = gesture_id
        self.name = name

    @abstractmethod
    def update(self, training_data: list[np.ndarray], tick: int):
        """Retrain from cropped samples and align the internal clock to ``tick``."""

    @abstractmethod
    def feed(self, reading: MotionReading) -> Optional[Match]:
        """Consume the reading for the next tick."""

    @abstractmethod
    def is_running(self) -> bool:
        """True once the matcher has training data to match against."""

    @abstractmethod
    def generate_block(self) -> str:
        """Source block that registers this gesture on the device."""

    @property
    @abstractmethod
    def prototype(self) -> Optional[np.ndarray]:
        """Representative sample, shape (N, 3), used for display."""


def _dtw_cost(s: np.ndarray, t: np.ndarray) -> float:
    """Total cost of the best DTW warping path between (N, D) and (M, D)."""
    n, m = len(s), len(t)
    if n == 0 or m == 0:
        return float("inf")

    cost = np.full((n + 1, m + 1), float("inf"), dtype=np.float64)
    cost[0, 0] = 0.0

    for i in range(1, n + 1):
        for j in range(1, m + 1):
            d = float(np.linalg.norm(s[i - 1] - t[j - 1]))
            cost[i, j] = d + min(cost[i - 1, j], cost[i, j - 1], cost[i - 1, j - 1])

    return float(cost[n, m])


def _dtw_distance(s: np.ndarray, t: np.ndarray) -> float:
    """DTW cost averaged per step (lower = better match)."""
    return _dtw_cost(s, t) / (len(s) + len(t)) if len(s) and len(t) else float("inf")


def _medoid(samples: list[np.ndarray]) -> tuple[int, list[float]]:
    """Index of the sample with the least total DTW distance to the others.

    Returns (index, cost from each sample to the medoid).
    """
    n = len(samples)
    dist = np.zeros((n, n), dtype=np.float64)
    for i in range(n):
        for j in range(i + 1, n):
            dist[i, j] = dist[j, i] = _dtw_distance(samples[i], samples[j])

    best = int(np.argmin(dist.sum(axis=1)))
    costs = [_dtw_cost(samples[i], samples[best]) for i in range(n) if i != best]
    return best, costs


class DTWMatcher(Matcher):
    """Streaming subsequence DTW against a single prototype.

    The match threshold is the worst training-sample cost to the prototype,
    scaled by ``threshold_factor``, and never lower than
    ``min_step_cost`` per prototype step.
    """

    def __init__(
        self,
        gesture_id: int,
        name: str,
        threshold_factor: float = 1.2,
        min_step_cost: float = 50.0,
    ):
        super().__init__(gesture_id, name)
        self.threshold_factor = threshold_factor
        self.min_step_cost = min_step_cost

        self._prototype: Optional[np.ndarray] = None
        self._threshold = float("inf")
        self._tick = 0
        self._reset_stream()

    def update(self, training_data: list[np.ndarray], tick: int):
        self._tick = tick
        samples = [np.asarray(d, dtype=np.float64).reshape(-1, 3) for d in training_data]
        samples = [s for s in samples if len(s)]

        if not samples:
            self._prototype = None
            self._threshold = float("inf")
            self._reset_stream()
            return

        best, costs = _medoid(samples)
        self._prototype = samples[best]
        floor = self.min_step_cost * len(self._prototype)
        worst = max(costs) if costs else 0.0
        self._threshold = max(floor, worst * self.threshold_factor)
        self._reset_stream()

    def _reset_stream(self):
        m = 0 if self._prototype is None else len(self._prototype)
        self._dist = np.full(m + 1, float("inf"), dtype=np.float64)
        self._start = np.zeros(m + 1, dtype=np.int64)
        self._best = float("inf")
        self._best_start = 0
        self._best_end = 0

    def feed(self, reading: MotionReading) -> Optional[Match]:
        self._tick += 1
        if self._prototype is None:
            return None

        t = self._tick
        proto = self._prototype
        m = len(proto)
        step = np.linalg.norm(proto - reading.as_array(), axis=1)

        prev_d, prev_s = self._dist, self._start
        d = np.empty(m + 1, dtype=np.float64)
        s = np.empty(m + 1, dtype=np.int64)
        # Row 0 lets a new subsequence start at every tick
        d[0], s[0] = 0.0, t
        prev_d[0], prev_s[0] = 0.0, t - 1

        for i in range(1, m + 1):
            # Ties prefer the later start
            best_d, best_s = d[i - 1], s[i - 1]
            if prev_d[i - 1] < best_d:
                best_d, best_s = prev_d[i - 1], prev_s[i - 1]
            if prev_d[i] < best_d:
                best_d, best_s = prev_d[i], prev_s[i]
            d[i] = step[i - 1] + best_d
            s[i] = best_s

        match = None
        if self._best <= self._threshold:
            settled = all(
                d[i] >= self._best or s[i] > self._best_end for i in range(1, m + 1)
            )
            if settled:
                match = Match(start_time=self._best_start, end_time=self._best_end)
                self._best = float("inf")
                for i in range(1, m + 1):
                    if s[i] <= match.end_time:
                        d[i] = float("inf")

        if d[m] <= self._threshold and d[m] < self._best:
            self._best = float(d[m])
            self._best_start = int(s[m])
            self._best_end = t

        self._dist, self._start = d, s
        return match

    def is_running(self) -> bool:
        return self._prototype is not None

    @property
    def prototype(self) -> Optional[np.ndarray]:
        return None if self._prototype is None else self._prototype.copy()

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def tick(self) -> int:
        return self._tick

    def generate_block(self) -> str:
        if self._prototype is None:
            return ""
        ident = _block_identifier(self.name, self.gesture_id)
        points = ", ".join(str(int(round(v))) for v in self._prototype.ravel())
        threshold = int(math.ceil(self._threshold))
        return "\n".join([
            f'    //% block="on gesture {self.name}"',
            f"    export function {ident}(handler: () => void) {{",
            f"        gestures.register({self.gesture_id}, [{points}], {threshold}, handler);",
            "    }",
        ])


def _block_identifier(name: str, gesture_id: int) -> str:
    words = re.findall(r"[A-Za-z0-9]+", name)
    suffix = "".join(w[:1].upper() + w[1:] for w in words)
    return f"on{suffix}{gesture_id}" if suffix else f"onGesture{gesture_id}"


def generate_namespace(blocks: list[str]) -> str:
    """Wrap per-gesture blocks into one source unit for the host."""
    body = "\n\n".join(b for b in blocks if b)
    lines = [
        "// Auto-generated by the gesture trainer. Edits will be overwritten.",
        "namespace custom {",
    ]
    if body:
        lines.append(body)
    lines.append("}")
    return "\n".join(lines) + "\n"
