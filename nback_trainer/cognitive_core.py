from __future__ import annotations

import random
from collections.abc import Iterable, Sequence
from typing import TypeVar

T = TypeVar("T")

_LCG_MULTIPLIER = 1664525
_LCG_INCREMENT = 1013904223
_LCG_MODULUS = 2**32


class LcgRng:
    """Linear-congruential generator used for stimulus content.

    Kept separate from ``random.Random`` so a seed reproduces the same symbol
    stream everywhere the level files are used.
    """

    def __init__(self, seed: int) -> None:
        self._state = int(seed) % _LCG_MODULUS

    def next_float(self) -> float:
        """Advance the state and return a value in [0.0, 1.0)."""

        self._state = (self._state * _LCG_MULTIPLIER + _LCG_INCREMENT) % _LCG_MODULUS
        return self._state / _LCG_MODULUS

    def choice(self, seq: Sequence[T]) -> T:
        if not seq:
            raise ValueError("cannot choose from an empty sequence")
        return seq[int(self.next_float() * len(seq))]


class SeededRng:
    """RNG wrapper for session-level decisions (ordering, easier picks).

    ``seed=None`` gives non-reproducible ordering; sequence content never
    comes from here.
    """

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(None if seed is None else int(seed))

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)

    def random(self) -> float:
        return self._rng.random()

    def shuffled(self, items: Iterable[T]) -> list[T]:
        out = list(items)
        self._rng.shuffle(out)
        return out


def ratio(numerator: float, denominator: float) -> float:
    """Division that yields 0.0 on an empty denominator."""

    return 0.0 if denominator <= 0 else float(numerator) / float(denominator)


def mean_or_none(values: Iterable[float]) -> float | None:
    vals = list(values)
    return None if not vals else sum(vals) / len(vals)
