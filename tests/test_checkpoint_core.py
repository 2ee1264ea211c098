from __future__ import annotations

import pytest

from nback_trainer.checkpoint import FALSE_ALARM, MISS, compute_checkpoint, gap_checkpoint, ghost_context
from nback_trainer.cognitive_core import SeededRng
from nback_trainer.scoring import ResponseRecord


def _records(rows: list[tuple[bool, bool]], start: int = 0) -> list[ResponseRecord]:
    """Build records from (is_match_expected, user_responded) pairs."""

    out = []
    for offset, (expected, responded) in enumerate(rows):
        r = ResponseRecord(position=start + offset, symbol="X", is_match_expected=expected)
        if responded:
            r.mark_response(0.3)
        out.append(r)
    return out


CORRECT = (False, False)
HIT = (True, True)
FA = (False, True)
MISSED = (True, False)


def test_miss_scans_back_past_the_lag_window() -> None:
    # Last correct response before 7 - 3 = 4 is position 4 itself.
    responses = _records([CORRECT, HIT, CORRECT, CORRECT, HIT, FA, MISSED, MISSED])

    assert compute_checkpoint(responses, 7, MISS, 3, 3) == 5


def test_false_alarm_resumes_right_after_last_correct_response() -> None:
    responses = _records([CORRECT, CORRECT, HIT, CORRECT, CORRECT, CORRECT, FA])

    assert compute_checkpoint(responses, 6, FALSE_ALARM, 2, 3) == 6


def test_false_alarm_with_no_correct_response_restarts_at_zero() -> None:
    responses = _records([FA, MISSED, FA])

    assert compute_checkpoint(responses, 2, FALSE_ALARM, 1, 3) == 0


def test_miss_with_no_correct_response_falls_back_to_lag_window() -> None:
    responses = _records([FA, MISSED, FA, MISSED, FA, FA, MISSED])

    assert compute_checkpoint(responses, 6, MISS, 2, 3) == 4
    assert compute_checkpoint(responses[:2], 1, MISS, 2, 3) == 0


def test_positions_before_attempt_start_count_as_validated() -> None:
    responses = _records([FA], start=5)

    assert compute_checkpoint(responses, 5, FALSE_ALARM, 2, 5) == 5


def test_disabled_checkpoints_always_restart_from_zero() -> None:
    responses = _records([CORRECT, CORRECT, CORRECT, FA])

    assert compute_checkpoint(responses, 3, FALSE_ALARM, 1, 3, enabled=False) == 0


def test_checkpoint_never_exceeds_error_index() -> None:
    rng = SeededRng(3)
    kinds = [CORRECT, HIT, FA, MISSED]
    for _ in range(50):
        responses = _records([rng.choice(kinds) for _ in range(10)])
        for error_index in range(10):
            for lag in (1, 2, 3):
                for error_type in (MISS, FALSE_ALARM):
                    c = compute_checkpoint(responses[: error_index + 1], error_index, error_type, lag, 3)
                    assert 0 <= c <= error_index


def test_rejects_invalid_arguments() -> None:
    responses = _records([CORRECT, FA])
    with pytest.raises(ValueError):
        compute_checkpoint(responses, 1, "late", 1, 3)
    with pytest.raises(ValueError):
        compute_checkpoint(responses, 1, MISS, 1, 0)
    with pytest.raises(ValueError):
        compute_checkpoint(responses, -1, MISS, 1, 3)


def test_gap_checkpoint_and_ghost_context() -> None:
    assert gap_checkpoint(4, 5) == 0
    assert gap_checkpoint(5, 5) == 5
    assert gap_checkpoint(12, 5) == 10

    seq = tuple("ABCDEFG")
    assert ghost_context(seq, 4, 2) == ("C", "D")
    assert ghost_context(seq, 1, 3) == ("A",)
    assert ghost_context(seq, 0, 2) == ()
