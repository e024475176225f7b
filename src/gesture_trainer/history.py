"""Display window of recent readings and the matches recognized in it."""

from __future__ import annotations

from collections import deque
from typing import Optional

from gesture_trainer.motion import Match, MotionReading


class HistoryBuffer:
    """Bounded window of the most recent conditioned readings.

    Paired with a global tick counter: one tick per ingested frame. The
    counter never resets or decreases, so ticks stay comparable across
    catalog edits and matcher re-syncs.
    """

    def __init__(self, limit: int = 30):
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        self.limit = limit
        self._readings: deque[MotionReading] = deque()
        self._tick = 0

    def append(self, reading: MotionReading) -> int:
        """Store a reading, evict the oldest past the limit. Returns the new tick."""
        self._readings.append(reading)
        self._tick += 1
        while len(self._readings) > self.limit:
            self._readings.popleft()
        return self._tick

    def contents(self) -> list[MotionReading]:
        """Readings oldest-first."""
        return list(self._readings)

    def tick_at(self, offset: int) -> int:
        """Absolute tick of the reading at a buffer position."""
        return self._tick - (len(self._readings) - 1 - offset)

    @property
    def tick(self) -> int:
        return self._tick

    @property
    def oldest_tick(self) -> int:
        """Tick of the oldest reading still shown."""
        return self.tick_at(0)

    @property
    def latest(self) -> Optional[MotionReading]:
        return self._readings[-1] if self._readings else None

    def clear(self):
        """Drop the readings. The tick counter keeps running."""
        self._readings.clear()

    def __len__(self) -> int:
        return len(self._readings)


class MatchTracker:
    """Matches reported by the active matcher.

    Only matches that overlap the display window are ever queried, so
    ``prune`` drops anything that ended before the oldest visible tick.
    """

    def __init__(self):
        self._matches: list[Match] = []

    def record(self, match: Match):
        self._matches.append(match)

    def contains(self, tick: int) -> bool:
        """True if any match covers the tick, bounds inclusive."""
        return any(m.contains(tick) for m in self._matches)

    def prune(self, oldest_tick: int) -> int:
        """Drop matches that ended before ``oldest_tick``. Returns count dropped."""
        before = len(self._matches)
        self._matches = [m for m in self._matches if m.end_time >= oldest_tick]
        return before - len(self._matches)

    def clear(self):
        self._matches = []

    @property
    def matches(self) -> list[Match]:
        return list(self._matches)

    def __len__(self) -> int:
        return len(self._matches)
