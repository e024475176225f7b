"""Index-aligned matcher array.

A ``MatcherRegistry`` is an immutable sequence of matchers; structural
edits return a new registry so the catalog can publish gestures and
matchers together with one reference swap. The matchers themselves are
stateful and are retrained in place.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator

from gesture_trainer.matcher import DTWMatcher, Matcher, generate_namespace
from gesture_trainer.motion import Gesture

logger = logging.getLogger("gesture_trainer.registry")

MatcherFactory = Callable[[int, str], Matcher]


class MatcherRegistry:
    def __init__(self, matchers: Iterable[Matcher] = (), factory: MatcherFactory = DTWMatcher):
        self._matchers: tuple[Matcher, ...] = tuple(matchers)
        self.factory = factory

    def create(self, gesture_id: int, name: str) -> Matcher:
        return self.factory(gesture_id, name)

    def appended(self, matcher: Matcher) -> MatcherRegistry:
        return MatcherRegistry(self._matchers + (matcher,), self.factory)

    def without(self, index: int) -> MatcherRegistry:
        if not 0 <= index < len(self._matchers):
            raise IndexError(f"matcher index {index} out of range")
        return MatcherRegistry(
            self._matchers[:index] + self._matchers[index + 1:], self.factory
        )

    def replaced(self, index: int, matcher: Matcher) -> MatcherRegistry:
        items = list(self._matchers)
        items[index] = matcher
        return MatcherRegistry(items, self.factory)

    def rebuilt(self, gestures: Iterable[Gesture], tick: int) -> MatcherRegistry:
        """Fresh matchers for every gesture, primed with its training data."""
        matchers = []
        for gesture in gestures:
            matcher = self.create(gesture.id, gesture.name)
            matcher.update(gesture.cropped_data(), tick)
            matchers.append(matcher)
        return MatcherRegistry(matchers, self.factory)

    def running(self) -> list[Matcher]:
        return [m for m in self._matchers if m.is_running()]

    def generate_code(self) -> str:
        """One code unit holding the block of every running matcher."""
        blocks = [m.generate_block() for m in self.running()]
        logger.debug("Generating code for %d running matchers", len(blocks))
        return generate_namespace(blocks)

    def __getitem__(self, index: int) -> Matcher:
        return self._matchers[index]

    def __len__(self) -> int:
        return len(self._matchers)

    def __iter__(self) -> Iterator[Matcher]:
        return iter(self._matchers)
