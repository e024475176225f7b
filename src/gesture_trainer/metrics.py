"""Prometheus-compatible metrics for the gesture trainer.

Generates the text exposition format directly.

Tracked metrics:
- gesture_trainer_frames_total (counter)
- gesture_trainer_frames_dropped_total (counter)
- gesture_trainer_matches_total (counter, by gesture id)
- gesture_trainer_requests_total (counter, by action)
- gesture_trainer_flushes_total (counter)
- gesture_trainer_write_failures_total (counter)
- gesture_trainer_feed_latency_seconds (histogram)
- gesture_trainer_active_connections (gauge)
"""

from __future__ import annotations

import bisect
import threading
import time
from collections import Counter


class _Histogram:
    """Latency histogram over fixed upper bounds.

    Each observation lands in exactly one slot: the first bound it does
    not exceed, or the overflow slot past the last bound. Cumulative
    ``le`` counts are summed when rendering.
    """

    def __init__(self, bounds: list[float]):
        self.bounds = sorted(bounds)
        self._slots = [0] * (len(self.bounds) + 1)
        self._total = 0.0
        self._lock = threading.Lock()

    def observe(self, seconds: float):
        slot = bisect.bisect_left(self.bounds, seconds)
        with self._lock:
            self._slots[slot] += 1
            self._total += seconds

    def render(self, name: str, help_text: str) -> str:
        with self._lock:
            slots = list(self._slots)
            total = self._total

        lines = [f"# HELP {name} {help_text}", f"# TYPE {name} histogram"]
        running = 0
        for bound, n in zip(self.bounds, slots):
            running += n
            lines.append(f'{name}_bucket{{le="{bound}"}} {running}')
        observed = sum(slots)
        lines.append(f'{name}_bucket{{le="+Inf"}} {observed}')
        lines.append(f"{name}_sum {total:.6f}")
        lines.append(f"{name}_count {observed}")
        return "\n".join(lines)


class MetricsCollector:
    """Collects and exposes Prometheus metrics for the trainer."""

    PREFIX = "gesture_trainer"

    def __init__(self):
        self._match_counts: Counter = Counter()
        self._request_counts: Counter = Counter()
        self._frames_total = 0
        self._frames_dropped = 0
        self._flushes_total = 0
        self._write_failures = 0
        self._active_connections = 0
        self._lock = threading.Lock()

        # Feed latency: 10us to 10ms
        self._latency = _Histogram(
            [0.00001, 0.0001, 0.0005, 0.001, 0.002, 0.005, 0.010]
        )

        self._start_time = time.time()

    def record_frame(self, latency_seconds: float):
        with self._lock:
            self._frames_total += 1
        self._latency.observe(latency_seconds)

    def record_dropped_frame(self):
        with self._lock:
            self._frames_dropped += 1

    def record_match(self, gesture_id: int):
        with self._lock:
            self._match_counts[str(gesture_id)] += 1

    def record_request(self, action: str):
        with self._lock:
            self._request_counts[action] += 1

    def record_flush(self):
        with self._lock:
            self._flushes_total += 1

    def record_write_failure(self):
        with self._lock:
            self._write_failures += 1

    def set_connections(self, count: int):
        self._active_connections = count

    def _counter(self, lines: list[str], name: str, help_text: str, value):
        full = f"{self.PREFIX}_{name}"
        lines.append(f"# HELP {full} {help_text}")
        lines.append(f"# TYPE {full} counter")
        lines.append(f"{full} {value}")
        lines.append("")

    def _labelled(self, lines: list[str], name: str, help_text: str, label: str, counts: Counter):
        full = f"{self.PREFIX}_{name}"
        lines.append(f"# HELP {full} {help_text}")
        lines.append(f"# TYPE {full} counter")
        with self._lock:
            for key, count in sorted(counts.items()):
                lines.append(f'{full}{{{label}="{key}"}} {count}')
        lines.append("")

    def render(self) -> str:
        """Render all metrics in Prometheus text exposition format."""
        lines: list[str] = []

        uptime = time.time() - self._start_time
        lines.append(f"# HELP {self.PREFIX}_uptime_seconds Time since start")
        lines.append(f"# TYPE {self.PREFIX}_uptime_seconds gauge")
        lines.append(f"{self.PREFIX}_uptime_seconds {uptime:.1f}")
        lines.append("")

        self._counter(lines, "frames_total", "Sensor frames ingested", self._frames_total)
        self._counter(lines, "frames_dropped_total", "Sensor frames without a valid vector", self._frames_dropped)
        self._labelled(lines, "matches_total", "Recognized gesture occurrences", "gesture", self._match_counts)
        self._labelled(lines, "requests_total", "Requests sent to the host", "action", self._request_counts)
        self._counter(lines, "flushes_total", "Catalog writes sent to the host", self._flushes_total)
        self._counter(lines, "write_failures_total", "Catalog writes abandoned after retries", self._write_failures)

        lines.append(self._latency.render(
            f"{self.PREFIX}_feed_latency_seconds",
            "Time to condition, buffer and match one frame",
        ))
        lines.append("")

        lines.append(f"# HELP {self.PREFIX}_active_connections Current host connections")
        lines.append(f"# TYPE {self.PREFIX}_active_connections gauge")
        lines.append(f"{self.PREFIX}_active_connections {self._active_connections}")
        lines.append("")

        return "\n".join(lines) + "\n"

    @property
    def match_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._match_counts)

    @property
    def request_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._request_counts)

    @property
    def frames_total(self) -> int:
        return self._frames_total

    @property
    def frames_dropped(self) -> int:
        return self._frames_dropped

    @property
    def flushes_total(self) -> int:
        return self._flushes_total
