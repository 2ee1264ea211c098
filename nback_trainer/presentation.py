from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from .checkpoint import FALSE_ALARM, MISS, compute_checkpoint
from .clock import Clock
from .levels import LevelDescriptor
from .results import Attempt, ErrorReport, seal_attempt
from .scoring import ResponseRecord
from .sequence import match_pattern_from_sequence, parse_match_pattern, validate_match_pattern
from .timers import TimerHandle, TimerQueue

logger = logging.getLogger(__name__)

NEUTRAL_MARKER = "+"


class Stage(str, Enum):
    PREPARING = "preparing"
    GHOST = "ghost"
    SHOWING = "showing"
    INTERVAL = "interval"
    COMPLETED = "completed"
    HALTED = "halted"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class PresentationTimings:
    preparing_s: float = 1.5
    ghost_gap_s: float = 0.3
    completed_s: float = 1.0

    def __post_init__(self) -> None:
        if self.preparing_s < 0.0:
            raise ValueError("preparing_s must be >= 0")
        if self.ghost_gap_s < 0.0:
            raise ValueError("ghost_gap_s must be >= 0")
        if self.completed_s < 0.0:
            raise ValueError("completed_s must be >= 0")


@dataclass(frozen=True, slots=True)
class PresentationSnapshot:
    """View model for the host (pure data)."""

    stage: Stage
    position: int | None
    display: str
    accepting_input: bool
    shown: int
    total: int
    validated_checkpoints: tuple[int, ...]


class NbackPresentation:
    """Timed playthrough of one sequence: a single Attempt.

    preparing -> (ghost -> interval)* -> showing -> interval -> ... -> completed

    Exactly one phase timer is pending at a time. With ``halt_on_error`` the
    first miss or false alarm stops the attempt and reports a checkpoint;
    otherwise errors are only scored.
    """

    def __init__(
        self,
        *,
        level: LevelDescriptor,
        sequence: Sequence[str],
        clock: Clock,
        timers: TimerQueue,
        match_pattern: Sequence[bool] | None = None,
        attempt_index: int = 1,
        start_index: int = 0,
        ghost_symbols: Sequence[str] = (),
        halt_on_error: bool = False,
        checkpoint_enabled: bool = True,
        checkpoint_gap: int = 5,
        timings: PresentationTimings = PresentationTimings(),
        is_easier: bool = False,
        on_attempt_end: Callable[[Attempt], None] | None = None,
        on_error: Callable[[ErrorReport], None] | None = None,
    ) -> None:
        seq = tuple(str(s) for s in sequence)
        if not seq:
            raise ValueError("sequence must not be empty")
        if match_pattern is None:
            pattern = match_pattern_from_sequence(seq, level.lag)
        else:
            pattern = parse_match_pattern(match_pattern)
            validate_match_pattern(pattern, level.lag)
        if len(pattern) != len(seq):
            raise ValueError("match pattern and sequence must have the same length")
        if not (0 <= start_index < len(seq)):
            raise ValueError("start_index must be within the sequence")
        if checkpoint_gap < 1:
            raise ValueError("checkpoint_gap must be >= 1")

        self._level = level
        self._sequence = seq
        self._pattern = pattern
        self._clock = clock
        self._timers = timers
        self._attempt_index = int(attempt_index)
        self._start_index = int(start_index)
        self._ghosts = tuple(str(s) for s in ghost_symbols) if start_index > 0 else ()
        self._halt_on_error = bool(halt_on_error)
        self._checkpoint_enabled = bool(checkpoint_enabled)
        self._gap = int(checkpoint_gap)
        self._timings = timings
        self._is_easier = bool(is_easier)
        self._on_attempt_end = on_attempt_end
        self._on_error = on_error

        self._records = [
            ResponseRecord(position=i, symbol=seq[i], is_match_expected=pattern[i])
            for i in range(self._start_index, len(seq))
        ]

        self._stage = Stage.PREPARING
        self._started = False
        self._closed = False
        self._timer: TimerHandle | None = None
        self._generation = 0

        self._position: int | None = None
        self._ghost_index: int | None = None
        self._revealed_at_s: float | None = None
        self._evaluated = 0
        self._started_at_s: float | None = None
        self._attempt: Attempt | None = None
        self._validated = {
            c for c in range(self._gap, self._start_index + 1, self._gap)
        }

    @property
    def stage(self) -> Stage:
        return self._stage

    @property
    def level(self) -> LevelDescriptor:
        return self._level

    @property
    def sequence(self) -> tuple[str, ...]:
        return self._sequence

    @property
    def start_index(self) -> int:
        return self._start_index

    @property
    def current_position(self) -> int | None:
        return self._position

    @property
    def revealed_at_s(self) -> float | None:
        return self._revealed_at_s

    @property
    def attempt(self) -> Attempt | None:
        """The sealed attempt, once the presentation has ended."""
        return self._attempt

    def is_active(self) -> bool:
        return self._started and not self._closed

    def start(self) -> bool:
        if self._started or self._closed:
            return False
        self._started = True
        self._started_at_s = self._clock.now()
        logger.debug(
            "attempt %d: preparing lag=%d start=%d ghosts=%d",
            self._attempt_index,
            self._level.lag,
            self._start_index,
            len(self._ghosts),
        )
        self._schedule(self._timings.preparing_s, self._after_preparing)
        return True

    def respond(self, at_s: float | None = None) -> bool:
        """Register a participant action. Returns True if it was recorded."""

        if self._closed or self._stage is not Stage.SHOWING:
            return False
        assert self._position is not None
        assert self._revealed_at_s is not None

        t = self._clock.now() if at_s is None else float(at_s)
        rt = t - self._revealed_at_s
        if rt < 0.0 or rt >= self._level.stimulus_s:
            return False
        return self._record(self._position).mark_response(rt)

    def cancel(self) -> bool:
        """Abandon the attempt without sealing it."""

        if self._closed:
            return False
        self._close()
        self._stage = Stage.CANCELLED
        self._position = None
        logger.debug("attempt %d: cancelled", self._attempt_index)
        return True

    def responses(self) -> tuple[ResponseRecord, ...]:
        """Records of the positions evaluated so far."""
        return tuple(self._records[: self._evaluated])

    def snapshot(self) -> PresentationSnapshot:
        display = ""
        if self._stage is Stage.SHOWING and self._position is not None:
            display = self._sequence[self._position]
        elif self._stage is Stage.GHOST and self._ghost_index is not None:
            display = self._ghosts[self._ghost_index]
        elif self._stage is Stage.INTERVAL:
            display = NEUTRAL_MARKER
        shown = self._start_index + self._evaluated
        if self._stage is Stage.SHOWING:
            shown += 1
        return PresentationSnapshot(
            stage=self._stage,
            position=self._position,
            display=display,
            accepting_input=self._stage is Stage.SHOWING and not self._closed,
            shown=shown,
            total=len(self._sequence),
            validated_checkpoints=tuple(sorted(self._validated)),
        )

    # -- phase transitions ------------------------------------------------

    def _after_preparing(self) -> None:
        if self._ghosts:
            self._show_ghost(0)
        else:
            self._show_stimulus(self._start_index)

    def _show_ghost(self, k: int) -> None:
        self._stage = Stage.GHOST
        self._ghost_index = k
        self._schedule(self._level.stimulus_s, lambda: self._hide_ghost(k))

    def _hide_ghost(self, k: int) -> None:
        # Gaps between replayed symbols stay in GHOST with a blank display.
        self._ghost_index = None
        if k + 1 < len(self._ghosts):
            self._schedule(self._timings.ghost_gap_s, lambda: self._show_ghost(k + 1))
        else:
            self._schedule(self._timings.ghost_gap_s, lambda: self._show_stimulus(self._start_index))

    def _show_stimulus(self, position: int) -> None:
        if position >= len(self._sequence):
            self._complete()
            return
        if position > 0 and position % self._gap == 0:
            self._validated.add(position)
        self._stage = Stage.SHOWING
        self._position = position
        self._revealed_at_s = self._clock.now()
        self._schedule(self._level.stimulus_s, lambda: self._hide_stimulus(position))

    def _hide_stimulus(self, position: int) -> None:
        self._stage = Stage.INTERVAL
        self._position = None
        self._revealed_at_s = None
        self._evaluated = position - self._start_index + 1

        record = self._record(position)
        error_type: str | None = None
        if record.is_match_expected and not record.user_responded:
            error_type = MISS
        elif not record.is_match_expected and record.user_responded:
            error_type = FALSE_ALARM

        if error_type is not None and self._halt_on_error:
            self._halt(position, error_type)
            return
        self._schedule(self._level.interval_s, lambda: self._show_stimulus(position + 1))

    def _complete(self) -> None:
        self._stage = Stage.COMPLETED
        logger.debug("attempt %d: completed", self._attempt_index)
        self._schedule(self._timings.completed_s, lambda: self._seal(None))

    def _halt(self, position: int, error_type: str) -> None:
        responses = self.responses()
        checkpoint = compute_checkpoint(
            responses,
            position,
            error_type,
            self._level.lag,
            self._gap,
            enabled=self._checkpoint_enabled,
        )
        report = ErrorReport(
            position=position,
            error_type=error_type,
            responses_so_far=responses,
            checkpoint=checkpoint,
        )
        self._stage = Stage.HALTED
        logger.debug(
            "attempt %d: %s at %d, checkpoint %d", self._attempt_index, error_type, position, checkpoint
        )
        if self._on_error is not None:
            self._on_error(report)
        self._seal(report)

    def _seal(self, error: ErrorReport | None) -> None:
        self._close()
        assert self._started_at_s is not None
        self._attempt = seal_attempt(
            attempt_index=self._attempt_index,
            start_index=self._start_index,
            level=self._level,
            sequence=self._sequence,
            match_pattern=self._pattern,
            responses=self._records[: self._evaluated],
            started_at_s=self._started_at_s,
            ended_at_s=self._clock.now(),
            error=error,
            is_easier=self._is_easier,
        )
        if self._on_attempt_end is not None:
            self._on_attempt_end(self._attempt)

    # -- timer plumbing ---------------------------------------------------

    def _schedule(self, delay_s: float, fn: Callable[[], None]) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._generation += 1
        generation = self._generation
        self._timer = self._timers.call_later(delay_s, lambda: self._fire(generation, fn))

    def _fire(self, generation: int, fn: Callable[[], None]) -> None:
        if self._closed or generation != self._generation:
            logger.debug("attempt %d: stale phase callback ignored", self._attempt_index)
            return
        self._timer = None
        fn()

    def _close(self) -> None:
        self._closed = True
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _record(self, position: int) -> ResponseRecord:
        return self._records[position - self._start_index]
