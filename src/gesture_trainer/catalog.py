"""Gesture catalog with copy-on-write publication.

The catalog owns the ordered gestures and the index-aligned matchers.
Both live in one ``CatalogState`` value; every mutation builds a new state
and publishes it with a single attribute assignment, so any reader sees
either the complete old state or the complete new one. Handlers run to
completion on one thread, which is what makes this enough without locks.

The current gesture is tracked by id and resolved to an index on every
access. Indices shift whenever a gesture is deleted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional, Union

from gesture_trainer.matcher import DTWMatcher, Matcher
from gesture_trainer.motion import CatalogFormatError, Gesture, Sample
from gesture_trainer.registry import MatcherFactory, MatcherRegistry

logger = logging.getLogger("gesture_trainer.catalog")

GestureRef = Union[Gesture, int]


class GestureNotFoundError(KeyError):
    """No gesture with the requested id."""


@dataclass(frozen=True)
class CatalogState:
    gestures: tuple[Gesture, ...]
    matchers: MatcherRegistry

    def index_of(self, gesture_id: int) -> int:
        for i, g in enumerate(self.gestures):
            if g.id == gesture_id:
                return i
        return -1


class GestureCatalog:
    """Ordered gestures and their matchers.

    Args:
        matcher_factory: Builds a matcher for (gesture id, name).
        tick_source: Returns the current global tick, used to align
            retrained matchers with the live stream.
        on_dirty: Called after an edit that must be persisted.
        on_publish: Called after every new state is published.
    """

    def __init__(
        self,
        matcher_factory: MatcherFactory = DTWMatcher,
        tick_source: Optional[Callable[[], int]] = None,
        on_dirty: Optional[Callable[[], None]] = None,
        on_publish: Optional[Callable[[CatalogState], None]] = None,
    ):
        self._state = CatalogState(gestures=(), matchers=MatcherRegistry(factory=matcher_factory))
        self._tick_source = tick_source or (lambda: 0)
        self._on_dirty = on_dirty
        self._on_publish = on_publish
        self._current_id: Optional[int] = None
        self._last_id = 0

    # --- Reading ---

    @property
    def state(self) -> CatalogState:
        return self._state

    @property
    def gestures(self) -> tuple[Gesture, ...]:
        return self._state.gestures

    @property
    def matchers(self) -> MatcherRegistry:
        return self._state.matchers

    @property
    def current_id(self) -> Optional[int]:
        return self._current_id

    @property
    def current_index(self) -> Optional[int]:
        if self._current_id is None:
            return None
        index = self._state.index_of(self._current_id)
        return index if index >= 0 else None

    @property
    def current(self) -> Optional[Gesture]:
        index = self.current_index
        return None if index is None else self._state.gestures[index]

    @property
    def current_matcher(self) -> Optional[Matcher]:
        index = self.current_index
        return None if index is None else self._state.matchers[index]

    def get(self, gesture_id: int) -> Gesture:
        return self._state.gestures[self._resolve(gesture_id)]

    def matcher_for(self, gesture_id: int) -> Matcher:
        return self._state.matchers[self._resolve(gesture_id)]

    def __len__(self) -> int:
        return len(self._state.gestures)

    def __iter__(self):
        return iter(self._state.gestures)

    # --- Mutations ---

    def add_gesture(self, name: Optional[str] = None, description: str = "") -> Gesture:
        """Append a new gesture and its matcher, and make it current."""
        state = self._state
        gesture_id = max([self._last_id] + [g.id for g in state.gestures]) + 1
        gesture = Gesture(
            id=gesture_id,
            name=name or f"Gesture {gesture_id}",
            description=description,
        )
        matcher = state.matchers.create(gesture.id, gesture.name)

        self._last_id = gesture_id
        self._publish(CatalogState(
            gestures=state.gestures + (gesture,),
            matchers=state.matchers.appended(matcher),
        ))
        self._current_id = gesture_id
        logger.info("Added gesture %d (%s)", gesture_id, gesture.name)
        return gesture

    def add_sample(self, gesture: GestureRef, sample: Sample) -> Gesture:
        """Insert a sample at the front of the gesture's sample list.

        The matcher aligned with the edited gesture is retrained, whether
        or not that gesture is the current one.
        """
        state = self._state
        index = self._resolve(gesture)
        edited = state.gestures[index].with_samples((sample,) + state.gestures[index].samples)
        self._retrain(state, index, edited)
        logger.debug("Gesture %d now has %d samples", edited.id, len(edited.samples))
        self._mark_dirty()
        return edited

    def delete_sample(self, gesture: GestureRef, sample: Sample) -> Gesture:
        state = self._state
        index = self._resolve(gesture)
        original = state.gestures[index]
        remaining = [s for s in original.samples if s is not sample]
        if len(remaining) == len(original.samples):
            raise ValueError(f"Sample not found in gesture {original.id}")

        edited = original.with_samples(remaining)
        self._retrain(state, index, edited)
        self._mark_dirty()
        return edited

    def delete_gesture(self, gesture: GestureRef) -> bool:
        """Remove a gesture and its matcher. Unknown gestures are ignored."""
        gesture_id = gesture.id if isinstance(gesture, Gesture) else gesture
        state = self._state
        index = state.index_of(gesture_id)
        if index < 0:
            logger.debug("delete_gesture: no gesture %s", gesture_id)
            return False

        self._remove_at(state, index)
        logger.info("Deleted gesture %d", gesture_id)
        self._mark_dirty()
        return True

    def delete_if_empty(self) -> bool:
        """Discard the current gesture if it never received a sample."""
        index = self.current_index
        if index is None:
            return False
        state = self._state
        if state.gestures[index].samples:
            return False

        logger.debug("Discarding empty draft gesture %d", state.gestures[index].id)
        self._remove_at(state, index)
        return True

    def set_current(self, gesture_id: int) -> Gesture:
        """Select a gesture and re-sync its matcher with the live tick."""
        index = self._resolve(gesture_id)
        gesture = self._state.gestures[index]
        self._current_id = gesture_id
        self._state.matchers[index].update(gesture.cropped_data(), self._tick_source())
        return gesture

    def rename_gesture(self, gesture: GestureRef, name: str) -> Gesture:
        if not name.strip():
            raise ValueError("Gesture name must not be empty")

        state = self._state
        index = self._resolve(gesture)
        renamed = replace(state.gestures[index], name=name)
        matcher = state.matchers.create(renamed.id, renamed.name)
        matcher.update(renamed.cropped_data(), self._tick_source())
        renamed.display = matcher.prototype

        gestures = list(state.gestures)
        gestures[index] = renamed
        self._publish(CatalogState(
            gestures=tuple(gestures),
            matchers=state.matchers.replaced(index, matcher),
        ))
        self._mark_dirty()
        return renamed

    def hydrate(self, records) -> bool:
        """Replace the whole catalog with serialized gesture records.

        Accepts a JSON string or a list of dicts. Empty input keeps the
        current state. Invalid records raise CatalogFormatError before
        anything is replaced.
        """
        if not records:
            return False

        if isinstance(records, (str, bytes)):
            try:
                records = json.loads(records)
            except json.JSONDecodeError as e:
                raise CatalogFormatError(f"Invalid catalog JSON: {e}") from e
            if not records:
                return False

        if not isinstance(records, list):
            raise CatalogFormatError(f"Catalog must be a list, got {type(records).__name__}")

        gestures = [Gesture.from_dict(r) for r in records]
        ids = [g.id for g in gestures]
        if len(set(ids)) != len(ids):
            raise CatalogFormatError(f"Duplicate gesture ids in catalog: {ids}")

        matchers = self._state.matchers.rebuilt(gestures, self._tick_source())
        for gesture, matcher in zip(gestures, matchers):
            gesture.display = matcher.prototype

        self._last_id = max([self._last_id] + ids)
        self._publish(CatalogState(gestures=tuple(gestures), matchers=matchers))
        if self._current_id is not None and self.current_index is None:
            self._current_id = None
        logger.info("Hydrated catalog with %d gestures", len(gestures))
        return True

    def serialize(self) -> list[dict]:
        return [g.to_dict() for g in self._state.gestures]

    def to_json(self) -> str:
        return json.dumps(self.serialize(), indent=2)

    # --- Internals ---

    def _resolve(self, gesture: GestureRef) -> int:
        gesture_id = gesture.id if isinstance(gesture, Gesture) else gesture
        index = self._state.index_of(gesture_id)
        if index < 0:
            raise GestureNotFoundError(gesture_id)
        return index

    def _retrain(self, state: CatalogState, index: int, edited: Gesture):
        matcher = state.matchers[index]
        matcher.update(edited.cropped_data(), self._tick_source())
        edited.display = matcher.prototype

        gestures = list(state.gestures)
        gestures[index] = edited
        self._publish(CatalogState(gestures=tuple(gestures), matchers=state.matchers))

    def _remove_at(self, state: CatalogState, index: int):
        removed_id = state.gestures[index].id
        self._publish(CatalogState(
            gestures=state.gestures[:index] + state.gestures[index + 1:],
            matchers=state.matchers.without(index),
        ))
        if self._current_id == removed_id:
            self._current_id = None

    def _publish(self, state: CatalogState):
        self._state = state
        if self._on_publish:
            self._on_publish(state)

    def _mark_dirty(self):
        if self._on_dirty:
            self._on_dirty()
