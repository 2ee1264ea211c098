from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from .clock import Clock, RealClock
from .cognitive_core import ratio
from .levels import LevelDescriptor, PlannedSequence
from .presentation import NbackPresentation, PresentationSnapshot, PresentationTimings
from .results import Attempt, ErrorReport
from .scoring import EMPTY_SUMMARY, Summary
from .sequence import synthesize
from .session import GameMode
from .timers import TimerHandle, TimerQueue

logger = logging.getLogger(__name__)


class TrainingPhase(str, Enum):
    NOT_STARTED = "not_started"
    PRACTICE = "practice"
    ERROR_CHOICE = "error_choice"
    FEEDBACK = "feedback"
    PRACTICE_DONE = "practice_done"
    ABORTED = "aborted"


class TrainingChoice(str, Enum):
    # Play the same sequence again from the first position.
    RESTART = "restart"
    # Replay it one lag lower; at lag 1 this fails the trial.
    EASIER = "easier"
    # Give up on the sequence; the trial counts as failed.
    SKIP = "skip"


@dataclass(frozen=True, slots=True)
class TrainingConfig:
    mode: GameMode = GameMode.RESTART
    pass_accuracy: float = 0.7
    feedback_s: float = 2.0
    easier_min_stimulus_s: float = 1.5
    easier_min_interval_s: float = 1.5
    timings: PresentationTimings = field(default_factory=PresentationTimings)

    def __post_init__(self) -> None:
        if not (0.0 <= self.pass_accuracy <= 1.0):
            raise ValueError("pass_accuracy must be in [0.0, 1.0]")
        if self.feedback_s < 0.0:
            raise ValueError("feedback_s must be >= 0")
        if self.easier_min_stimulus_s <= 0.0 or self.easier_min_interval_s <= 0.0:
            raise ValueError("easier timing floors must be > 0")


@dataclass(frozen=True, slots=True)
class TrainingTrialResult:
    sequence_index: int
    uid: str
    attempts: tuple[Attempt, ...]
    completed: bool
    was_easier: bool

    @property
    def total_attempts(self) -> int:
        return len(self.attempts)

    @property
    def summary(self) -> Summary:
        return self.attempts[-1].summary if self.attempts else EMPTY_SUMMARY

    def to_record(self) -> dict[str, object]:
        return {
            "sequenceIndex": self.sequence_index,
            "trialUniqueId": self.uid,
            "attempts": self.total_attempts,
            "completed": self.completed,
            "wasEasierSequence": self.was_easier,
            "summary": self.summary.to_record(),
        }


@dataclass(frozen=True, slots=True)
class TrainingSummary:
    trials: int
    completed: int
    total_attempts: int
    success_rate: float


@dataclass(frozen=True, slots=True)
class TrainingSnapshot:
    phase: TrainingPhase
    trial_number: int
    total_trials: int
    attempt_number: int
    lag: int | None
    is_easier: bool
    last_passed: bool | None
    presentation: PresentationSnapshot | None


class TrainingSession:
    """Practice series played before the scored session.

    Every sequence is played from the start; there are no checkpoints. In
    restart mode the first error stops the attempt and the host answers with
    ``choose_after_error``. In percent mode an attempt passes when its accuracy
    reaches ``pass_accuracy`` and a feedback pause follows each trial.
    """

    def __init__(
        self,
        *,
        sequence: Sequence[PlannedSequence],
        clock: Clock | None = None,
        timers: TimerQueue | None = None,
        config: TrainingConfig | None = None,
        seed: int = 0,
        on_trial_end: Callable[[TrainingTrialResult], None] | None = None,
    ) -> None:
        if not sequence:
            raise ValueError("training sequence must not be empty")
        self._plan = tuple(sequence)
        self._clock = clock if clock is not None else RealClock()
        self._timers = timers if timers is not None else TimerQueue(self._clock)
        self._config = config or TrainingConfig()
        self._seed = int(seed)
        self._on_trial_end = on_trial_end

        self._phase = TrainingPhase.NOT_STARTED
        self._index = 0
        self._level: LevelDescriptor | None = None
        self._symbols: tuple[str, ...] = ()
        self._is_easier = False
        self._attempts: list[Attempt] = []
        self._attempt_number = 0
        self._last_error: ErrorReport | None = None
        self._last_passed: bool | None = None
        self._presentation: NbackPresentation | None = None
        self._pending: TimerHandle | None = None
        self._sequences_dealt = 0
        self._results: list[TrainingTrialResult] = []

    @property
    def phase(self) -> TrainingPhase:
        return self._phase

    @property
    def timers(self) -> TimerQueue:
        return self._timers

    @property
    def trial_number(self) -> int:
        return self._index + 1

    @property
    def attempt_number(self) -> int:
        return self._attempt_number

    @property
    def level(self) -> LevelDescriptor | None:
        return self._level

    @property
    def last_error(self) -> ErrorReport | None:
        return self._last_error

    @property
    def presentation(self) -> NbackPresentation | None:
        return self._presentation

    @property
    def results(self) -> tuple[TrainingTrialResult, ...]:
        return tuple(self._results)

    def start(self) -> bool:
        if self._phase is not TrainingPhase.NOT_STARTED:
            return False
        logger.info("training start: %d sequences mode=%s", len(self._plan), self._config.mode.value)
        self._begin_trial()
        return True

    def choose_after_error(self, choice: TrainingChoice) -> bool:
        """Answer the restart-mode choice after an error."""

        if self._phase is not TrainingPhase.ERROR_CHOICE:
            return False
        choice = TrainingChoice(choice)
        assert self._level is not None
        if choice is TrainingChoice.SKIP:
            self._finish_trial(completed=False)
            return True
        if choice is TrainingChoice.EASIER:
            if self._level.lag <= 1:
                logger.info("training %d: no easier lag below 1, trial failed", self.trial_number)
                self._finish_trial(completed=False)
                return True
            self._switch_to_easier()
        self._attempt_number += 1
        self._phase = TrainingPhase.PRACTICE
        self._launch_attempt()
        return True

    def abort(self) -> bool:
        if self._phase in (TrainingPhase.PRACTICE_DONE, TrainingPhase.ABORTED):
            return False
        if self._presentation is not None:
            self._presentation.cancel()
            self._presentation = None
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self._phase = TrainingPhase.ABORTED
        return True

    def summary(self) -> TrainingSummary:
        completed = sum(1 for r in self._results if r.completed)
        return TrainingSummary(
            trials=len(self._results),
            completed=completed,
            total_attempts=sum(r.total_attempts for r in self._results),
            success_rate=ratio(completed, len(self._results)),
        )

    def snapshot(self) -> TrainingSnapshot:
        return TrainingSnapshot(
            phase=self._phase,
            trial_number=min(self._index + 1, len(self._plan)),
            total_trials=len(self._plan),
            attempt_number=self._attempt_number,
            lag=None if self._level is None else self._level.lag,
            is_easier=self._is_easier,
            last_passed=self._last_passed,
            presentation=None if self._presentation is None else self._presentation.snapshot(),
        )

    # -- trial flow -------------------------------------------------------

    def _begin_trial(self) -> None:
        planned = self._plan[self._index]
        self._level = planned.level
        self._is_easier = False
        self._symbols = planned.symbols or self._deal(planned, planned.level.lag)
        self._attempts = []
        self._attempt_number = 1
        self._last_error = None
        self._phase = TrainingPhase.PRACTICE
        self._launch_attempt()

    def _deal(self, planned: PlannedSequence, lag: int) -> tuple[str, ...]:
        seed = self._seed + self._sequences_dealt
        self._sequences_dealt += 1
        return synthesize(planned.match_pattern, lag, seed)

    def _switch_to_easier(self) -> None:
        assert self._level is not None
        planned = self._plan[self._index]
        cfg = self._config
        lag = self._level.lag - 1
        self._level = LevelDescriptor(
            lag=lag,
            stimulus_s=max(self._level.stimulus_s, cfg.easier_min_stimulus_s),
            interval_s=max(self._level.interval_s, cfg.easier_min_interval_s),
            sequence_length=self._level.sequence_length,
            label=f"{lag}-back (easier)",
        )
        self._symbols = self._deal(planned, lag)
        self._is_easier = True
        logger.info("training %d: switching to lag %d", self.trial_number, lag)

    def _launch_attempt(self) -> None:
        assert self._level is not None
        cfg = self._config
        self._presentation = NbackPresentation(
            level=self._level,
            sequence=self._symbols,
            clock=self._clock,
            timers=self._timers,
            match_pattern=self._plan[self._index].match_pattern,
            attempt_index=self._attempt_number,
            halt_on_error=cfg.mode is GameMode.RESTART,
            checkpoint_enabled=False,
            timings=cfg.timings,
            is_easier=self._is_easier,
            on_attempt_end=self._handle_attempt_end,
        )
        self._presentation.start()

    def _handle_attempt_end(self, attempt: Attempt) -> None:
        self._attempts.append(attempt)
        self._presentation = None

        if self._config.mode is GameMode.RESTART:
            if attempt.error is not None:
                self._last_error = attempt.error
                self._phase = TrainingPhase.ERROR_CHOICE
                return
            self._finish_trial(completed=True)
            return

        passed = attempt.summary.accuracy >= self._config.pass_accuracy
        self._last_passed = passed
        self._phase = TrainingPhase.FEEDBACK
        self._pending = self._timers.call_later(self._config.feedback_s, lambda: self._after_feedback(passed))

    def _after_feedback(self, passed: bool) -> None:
        self._pending = None
        if self._phase is TrainingPhase.FEEDBACK:
            self._finish_trial(completed=passed)

    def _finish_trial(self, *, completed: bool) -> None:
        planned = self._plan[self._index]
        result = TrainingTrialResult(
            sequence_index=self._index,
            uid=planned.uid,
            attempts=tuple(self._attempts),
            completed=completed,
            was_easier=self._is_easier,
        )
        self._results.append(result)
        self._last_passed = completed
        logger.info("training %d: %s after %d attempt(s)",
                    self.trial_number, "completed" if completed else "failed", result.total_attempts)
        if self._on_trial_end is not None:
            try:
                self._on_trial_end(result)
            except Exception:
                logger.exception("training trial callback failed for sequence %d", self._index)

        self._index += 1
        if self._index >= len(self._plan):
            self._phase = TrainingPhase.PRACTICE_DONE
            logger.info("training done: %d/%d completed", self.summary().completed, len(self._plan))
            return
        self._begin_trial()
