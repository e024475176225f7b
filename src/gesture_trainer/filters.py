"""Per-axis low-pass conditioning of raw accelerometer samples."""

from __future__ import annotations

from gesture_trainer.motion import MotionReading


class LowPassFilter:
    """Exponential smoothing: y[t] = alpha * x[t] + (1 - alpha) * y[t-1].

    The previous output starts at 0, so the first few samples ramp up
    from zero.
    """

    def __init__(self, alpha: float = 0.5):
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha
        self._previous = 0.0

    def filter(self, value: float) -> float:
        smoothed = self.alpha * value + (1.0 - self.alpha) * self._previous
        self._previous = smoothed
        return smoothed

    @property
    def previous(self) -> float:
        return self._previous


class SignalConditioner:
    """One independent filter per axis.

    Create a new conditioner for each connection session so a stale
    filter state does not bleed into the next stream.
    """

    def __init__(self, alpha: float = 0.5):
        self._x = LowPassFilter(alpha)
        self._y = LowPassFilter(alpha)
        self._z = LowPassFilter(alpha)

    def condition(self, reading: MotionReading) -> MotionReading:
        return MotionReading(
            self._x.filter(reading.x),
            self._y.filter(reading.y),
            self._z.filter(reading.z),
        )
