from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from .cognitive_core import LcgRng

logger = logging.getLogger(__name__)

# Consonants only, so no stimulus reads as a word or a digit.
STIMULUS_SET: tuple[str, ...] = (
    "B", "C", "D", "F", "G", "H", "J", "K", "L", "M", "N", "P", "R", "S", "T",
)

MAX_NON_MATCH_DRAWS = 20

MatchPattern = tuple[bool, ...]


def parse_match_pattern(flags: str | Iterable[object]) -> MatchPattern:
    """Normalize ``"00101"``, ``[0, 0, 1]`` or booleans into a MatchPattern."""

    out: list[bool] = []
    for i, flag in enumerate(flags):
        if isinstance(flag, bool):
            out.append(flag)
        elif flag in (0, 1, "0", "1"):
            out.append(int(flag) == 1)
        else:
            raise ValueError(f"match pattern flag at {i} must be 0/1 or bool, got {flag!r}")
    return tuple(out)


def validate_match_pattern(pattern: Sequence[bool], lag: int) -> None:
    if lag < 1:
        raise ValueError("lag must be >= 1")
    for i, flag in enumerate(pattern[:lag]):
        if flag:
            raise ValueError(f"match pattern marks position {i} as a match but lag {lag} has no target there")


def match_pattern_from_sequence(sequence: Sequence[str], lag: int) -> MatchPattern:
    """Derive the match pattern a predefined sequence realises at ``lag``."""

    if lag < 1:
        raise ValueError("lag must be >= 1")
    return tuple(i >= lag and sequence[i] == sequence[i - lag] for i in range(len(sequence)))


def synthesize(
    match_pattern: Sequence[bool] | str,
    lag: int,
    seed: int,
    *,
    alphabet: Sequence[str] = STIMULUS_SET,
) -> tuple[str, ...]:
    """Build a symbol sequence that follows ``match_pattern`` at ``lag``.

    Positions below ``lag`` are free draws. A set flag copies the symbol
    ``lag`` positions back; a clear flag redraws until the symbol differs,
    giving up after ``MAX_NON_MATCH_DRAWS`` and keeping the last draw. With
    small alphabets such a collision is possible, so callers that need strict
    fidelity should check with ``match_pattern_from_sequence``.
    """

    pattern = parse_match_pattern(match_pattern)
    validate_match_pattern(pattern, lag)
    symbols = tuple(alphabet)
    if len(set(symbols)) < 2:
        raise ValueError("alphabet must contain at least 2 distinct symbols")
    if not pattern:
        return ()

    rng = LcgRng(seed)
    sequence: list[str] = []
    for i, flag in enumerate(pattern):
        if i < lag:
            sequence.append(rng.choice(symbols))
            continue
        target = sequence[i - lag]
        if flag:
            sequence.append(target)
            continue
        draws = 0
        while True:
            symbol = rng.choice(symbols)
            draws += 1
            if symbol != target or draws >= MAX_NON_MATCH_DRAWS:
                break
        if symbol == target:
            logger.debug("position %d collides with its lag target after %d draws", i, draws)
        sequence.append(symbol)

    logger.debug("synthesized lag=%d seed=%d sequence=%s", lag, seed, "".join(sequence))
    return tuple(sequence)
