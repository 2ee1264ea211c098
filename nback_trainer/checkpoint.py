from __future__ import annotations

from collections.abc import Iterable, Sequence

from .scoring import ResponseRecord

MISS = "miss"
FALSE_ALARM = "falseAlarm"
ERROR_TYPES = (MISS, FALSE_ALARM)


def compute_checkpoint(
    responses: Iterable[ResponseRecord],
    error_index: int,
    error_type: str,
    lag: int,
    gap: int,
    *,
    enabled: bool = True,
) -> int:
    """Return the position a restarted attempt resumes from.

    A false alarm resumes right after the last correct position before it. A
    miss means the lag window was lost, so the scan starts ``lag`` positions
    back. Positions without a record precede the attempt's start and were
    validated by an earlier attempt, so they count as correct.

    The result never exceeds ``error_index``.
    """

    if error_type not in ERROR_TYPES:
        raise ValueError(f"error_type must be one of {ERROR_TYPES}, got {error_type!r}")
    if error_index < 0:
        raise ValueError("error_index must be >= 0")
    if lag < 1:
        raise ValueError("lag must be >= 1")
    if gap < 1:
        raise ValueError("gap must be >= 1")
    if not enabled:
        return 0

    by_position = {r.position: r for r in responses}
    scan_from = error_index - 1 if error_type == FALSE_ALARM else error_index - lag
    fallback = 0 if error_type == FALSE_ALARM else max(0, error_index - lag)

    for position in range(scan_from, -1, -1):
        record = by_position.get(position)
        if record is None or record.is_correct:
            return position + 1
    return fallback


def gap_checkpoint(position: int, gap: int) -> int:
    """Gap-aligned checkpoint at or before ``position``."""

    if gap < 1:
        raise ValueError("gap must be >= 1")
    if position < gap:
        return 0
    return (position // gap) * gap


def ghost_context(sequence: Sequence[str], checkpoint: int, lag: int) -> tuple[str, ...]:
    """Symbols replayed before resuming at ``checkpoint``: the lag window behind it."""

    if checkpoint <= 0:
        return ()
    return tuple(sequence[max(0, checkpoint - lag):checkpoint])
