"""Motion data model: readings, recorded samples, gestures and matches."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

import numpy as np


class CatalogFormatError(ValueError):
    """Raised when a serialized gesture record cannot be parsed."""


@dataclass(frozen=True)
class MotionReading:
    """One 3-axis accelerometer sample, raw or conditioned."""
    x: float
    y: float
    z: float

    def to_list(self) -> list[float]:
        return [self.x, self.y, self.z]

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)

    @classmethod
    def from_list(cls, values) -> MotionReading:
        if not isinstance(values, (list, tuple)) or len(values) != 3:
            raise CatalogFormatError(f"Reading needs 3 values, got {values!r}")
        try:
            x, y, z = (float(v) for v in values)
        except (TypeError, ValueError) as e:
            raise CatalogFormatError(f"Invalid reading {values!r}") from e
        return cls(x, y, z)


@dataclass(eq=False)
class Sample:
    """One recorded training example.

    Samples compare by identity so a specific recording can be removed
    from a gesture even when another sample holds equal values.

    The crop window (start..end, both inclusive) marks the part of the
    recording that is used as training data.
    """
    readings: list[MotionReading]
    start: int = 0
    end: Optional[int] = None  # None = through the last reading

    def __len__(self) -> int:
        return len(self.readings)

    @property
    def crop_end(self) -> int:
        return len(self.readings) - 1 if self.end is None else self.end

    def cropped(self) -> np.ndarray:
        """Readings inside the crop window, shape (N, 3)."""
        data = np.array([r.to_list() for r in self.readings], dtype=np.float64).reshape(-1, 3)
        return data[self.start:self.crop_end + 1]

    def to_dict(self) -> dict:
        return {
            "readings": [r.to_list() for r in self.readings],
            "start": self.start,
            "end": self.crop_end,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Sample:
        if not isinstance(data, dict) or "readings" not in data:
            raise CatalogFormatError("Sample record must have 'readings'")
        if not isinstance(data["readings"], list):
            raise CatalogFormatError(f"Sample readings must be a list, got {type(data['readings']).__name__}")
        readings = [MotionReading.from_list(r) for r in data["readings"]]
        try:
            start = int(data.get("start", 0))
            end = data.get("end")
            end = len(readings) - 1 if end is None else int(end)
        except (TypeError, ValueError) as e:
            raise CatalogFormatError(f"Invalid crop window: {e}") from e
        if readings and not (0 <= start <= end < len(readings)):
            raise CatalogFormatError(
                f"Crop window {start}..{end} outside {len(readings)} readings"
            )
        return cls(readings=readings, start=start, end=end)


@dataclass
class Gesture:
    """A named, user-trained motion pattern.

    Gesture values are treated as immutable by the catalog: edits build a
    new Gesture with ``with_samples`` and swap it in.
    """
    id: int
    name: str
    samples: tuple[Sample, ...] = ()
    description: str = ""
    # derived from the matcher prototype, never persisted
    display: Optional[np.ndarray] = field(default=None, compare=False, repr=False)

    def with_samples(self, samples: Iterable[Sample]) -> Gesture:
        return replace(self, samples=tuple(samples))

    def cropped_data(self) -> list[np.ndarray]:
        """Cropped readings of every non-empty sample, newest first."""
        data = [s.cropped() for s in self.samples]
        return [d for d in data if len(d)]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "samples": [s.to_dict() for s in self.samples],
        }

    @classmethod
    def from_dict(cls, data: dict) -> Gesture:
        if not isinstance(data, dict):
            raise CatalogFormatError(f"Gesture record must be an object, got {type(data).__name__}")
        try:
            gesture_id = int(data["id"])
            name = str(data["name"])
        except (KeyError, TypeError, ValueError) as e:
            raise CatalogFormatError(f"Gesture record missing id/name: {data!r}") from e
        if gesture_id < 1:
            raise CatalogFormatError(f"Gesture id must be positive, got {gesture_id}")
        raw_samples = data.get("samples", [])
        if not isinstance(raw_samples, list):
            raise CatalogFormatError(f"Gesture {gesture_id} samples must be a list")
        samples = tuple(Sample.from_dict(s) for s in raw_samples)
        return cls(
            id=gesture_id,
            name=name,
            samples=samples,
            description=str(data.get("description", "")),
        )


@dataclass(frozen=True)
class Match:
    """A recognized occurrence: inclusive tick interval."""
    start_time: int
    end_time: int

    def contains(self, tick: int) -> bool:
        return self.start_time <= tick <= self.end_time
