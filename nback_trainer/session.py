from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .checkpoint import ghost_context
from .clock import Clock, RealClock
from .cognitive_core import SeededRng, mean_or_none
from .levels import BlockPlan, LevelCatalog, LevelDescriptor, PlannedSequence, plan_blocks
from .presentation import NbackPresentation, PresentationSnapshot, PresentationTimings
from .results import AccuracyPolicy, Attempt, ErrorReport, TrialResult
from .scoring import combine_summaries
from .sequence import MatchPattern, synthesize
from .timers import TimerHandle, TimerQueue

logger = logging.getLogger(__name__)

TrialSink = Callable[[dict[str, object]], None]


class GameMode(str, Enum):
    # Any miss or false alarm halts the attempt; the trial resumes from a checkpoint.
    RESTART = "restart"
    # Attempts always run to the end and are scored statistically.
    PERCENT = "percent"


class SessionPhase(str, Enum):
    NOT_STARTED = "not_started"
    TRIAL = "trial"
    DIFFICULTY_CHOICE = "difficulty_choice"
    DIFFICULTY_RESTART = "difficulty_restart"
    AUTO_RESTART = "auto_restart"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class SessionConfig:
    mode: GameMode = GameMode.RESTART
    checkpoint_enabled: bool = True
    checkpoint_gap: int = 5
    block_lags: tuple[int, ...] = (2, 3)
    trials_per_block: int = 4
    total_trials: int | None = None
    shuffle_blocks: bool = True
    shuffle_levels: bool = False
    auto_restart_delay_s: float = 1.0
    easier_lag: int | None = None  # None: easiest lag in the catalog
    accuracy_policy: AccuracyPolicy = AccuracyPolicy.SUMMED
    timings: PresentationTimings = field(default_factory=PresentationTimings)

    def __post_init__(self) -> None:
        if self.checkpoint_gap < 1:
            raise ValueError("checkpoint_gap must be >= 1")
        if not self.block_lags:
            raise ValueError("block_lags must not be empty")
        if any(lag < 1 for lag in self.block_lags):
            raise ValueError("block_lags must all be >= 1")
        if self.trials_per_block < 1:
            raise ValueError("trials_per_block must be >= 1")
        capacity = len(self.block_lags) * self.trials_per_block
        if self.total_trials is not None and not (1 <= self.total_trials <= capacity):
            raise ValueError(f"total_trials must be in [1, {capacity}]")
        if self.auto_restart_delay_s < 0.0:
            raise ValueError("auto_restart_delay_s must be >= 0")
        if self.easier_lag is not None:
            if self.easier_lag < 1:
                raise ValueError("easier_lag must be >= 1")
            if self.easier_lag > min(self.block_lags):
                raise ValueError("easier_lag must not exceed the smallest block lag")

    @property
    def planned_trials(self) -> int:
        if self.total_trials is not None:
            return self.total_trials
        return len(self.block_lags) * self.trials_per_block


@dataclass(frozen=True, slots=True)
class SessionSummary:
    trials_completed: int
    total_attempts: int
    average_accuracy: float
    total_correct_hits: int
    total_false_alarms: int
    mean_reaction_time_s: float | None
    full_level_completions: int


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """View model for the host (pure data)."""

    phase: SessionPhase
    trial_number: int
    total_trials: int
    block_number: int | None
    trial_in_block: int
    attempt_number: int
    lag: int | None
    level_label: str
    is_easier: bool
    checkpoint: int
    presentation: PresentationSnapshot | None


class NbackSession:
    """Sequences attempts into trials and trials into blocks.

    The session owns every counter and only changes them between attempts.
    Block and easier-level picks come from ``rng`` (unseeded by default);
    symbol sequences come from ``seed`` and are reproducible.
    """

    def __init__(
        self,
        *,
        catalog: LevelCatalog,
        clock: Clock | None = None,
        timers: TimerQueue | None = None,
        config: SessionConfig | None = None,
        seed: int = 0,
        rng: SeededRng | None = None,
        trial_sink: TrialSink | None = None,
        on_error: Callable[[ErrorReport], None] | None = None,
    ) -> None:
        self._catalog = catalog
        self._clock = clock if clock is not None else RealClock()
        self._timers = timers if timers is not None else TimerQueue(self._clock)
        self._config = config or SessionConfig()
        self._seed = int(seed)
        self._rng = rng or SeededRng()
        self._trial_sink = trial_sink
        self._on_error = on_error

        self._easier_lag = self._config.easier_lag or catalog.easiest_lag
        if not catalog.for_lag(self._easier_lag):
            raise ValueError(f"no levels with easier lag {self._easier_lag} in catalog")

        self._phase = SessionPhase.NOT_STARTED
        self._blocks: tuple[BlockPlan, ...] = ()
        self._trial_number = 0
        self._block_index = 0
        self._trial_in_block = 0

        self._planned: PlannedSequence | None = None
        self._level: LevelDescriptor | None = None
        self._sequence: tuple[str, ...] = ()
        self._is_easier = False
        self._trial: TrialResult | None = None
        self._attempt_number = 0
        self._checkpoint = 0
        self._presentation: NbackPresentation | None = None
        self._pending: TimerHandle | None = None
        self._sequences_dealt = 0

        self._results: list[TrialResult] = []
        self._accuracy_sum = 0.0
        self._hits = 0
        self._false_alarms = 0
        self._full_level_completions = 0

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def timers(self) -> TimerQueue:
        """Queue the host polls with ``run_due()``."""
        return self._timers

    @property
    def blocks(self) -> tuple[BlockPlan, ...]:
        return self._blocks

    @property
    def trial_number(self) -> int:
        return self._trial_number

    @property
    def attempt_number(self) -> int:
        return self._attempt_number

    @property
    def checkpoint(self) -> int:
        return self._checkpoint

    @property
    def level(self) -> LevelDescriptor | None:
        return self._level

    @property
    def is_easier(self) -> bool:
        return self._is_easier

    @property
    def presentation(self) -> NbackPresentation | None:
        return self._presentation

    @property
    def current_trial(self) -> TrialResult | None:
        return self._trial

    @property
    def results(self) -> tuple[TrialResult, ...]:
        return tuple(self._results)

    def start(self) -> bool:
        if self._phase is not SessionPhase.NOT_STARTED:
            return False
        cfg = self._config
        self._blocks = plan_blocks(
            self._catalog,
            block_lags=cfg.block_lags,
            trials_per_block=cfg.trials_per_block,
            rng=self._rng,
            shuffle_blocks=cfg.shuffle_blocks,
            shuffle_levels=cfg.shuffle_levels,
        )
        logger.info("session start: blocks=%s trials=%d mode=%s",
                    [b.lag for b in self._blocks], cfg.planned_trials, cfg.mode.value)
        self._trial_number = 1
        self._block_index = 0
        self._trial_in_block = 1
        self._begin_trial(self._scheduled_plan())
        return True

    def choose_restart(self, *, easier: bool) -> bool:
        """Answer the restart-mode choice after a halting error."""

        if self._phase is not SessionPhase.DIFFICULTY_RESTART:
            return False
        self._attempt_number += 1
        if easier:
            self._switch_to_easier()
        self._phase = SessionPhase.TRIAL
        self._launch_attempt()
        return True

    def choose_difficulty(self, *, easier: bool) -> bool:
        """Answer the percent-mode choice between trials."""

        if self._phase is not SessionPhase.DIFFICULTY_CHOICE:
            return False
        if easier:
            planned = self._catalog.random_for_lag(self._easier_lag, self._rng)
            logger.info("trial %d: switching to easier level %s", self._trial_number, planned.uid)
            self._begin_trial(planned, is_easier=True)
        else:
            self._begin_trial(self._scheduled_plan())
        return True

    def abort(self) -> bool:
        if self._phase in (SessionPhase.COMPLETED, SessionPhase.ABORTED):
            return False
        if self._presentation is not None:
            self._presentation.cancel()
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self._phase = SessionPhase.ABORTED
        logger.info("session aborted at trial %d", self._trial_number)
        return True

    def summary(self) -> SessionSummary:
        accuracies = [t.summary.accuracy for t in self._results]
        combined = combine_summaries(t.summary for t in self._results)
        return SessionSummary(
            trials_completed=len(self._results),
            total_attempts=sum(t.total_attempts for t in self._results),
            average_accuracy=mean_or_none(accuracies) or 0.0,
            total_correct_hits=self._hits,
            total_false_alarms=self._false_alarms,
            mean_reaction_time_s=combined.mean_reaction_time_s,
            full_level_completions=self._full_level_completions,
        )

    def snapshot(self) -> SessionSnapshot:
        block = self._blocks[self._block_index] if self._blocks else None
        return SessionSnapshot(
            phase=self._phase,
            trial_number=self._trial_number,
            total_trials=self._config.planned_trials,
            block_number=None if block is None else block.block_number,
            trial_in_block=self._trial_in_block,
            attempt_number=self._attempt_number,
            lag=None if self._level is None else self._level.lag,
            level_label="" if self._level is None else self._level.label,
            is_easier=self._is_easier,
            checkpoint=self._checkpoint,
            presentation=None if self._presentation is None else self._presentation.snapshot(),
        )

    # -- trial flow -------------------------------------------------------

    def _scheduled_plan(self) -> PlannedSequence:
        block = self._blocks[self._block_index]
        return block.sequences[self._trial_in_block - 1]

    def _begin_trial(self, planned: PlannedSequence, *, is_easier: bool = False) -> None:
        self._planned = planned
        self._level = planned.level
        self._is_easier = is_easier
        self._sequence = self._deal_sequence(planned.match_pattern, planned.level.lag, planned.symbols)
        self._trial = TrialResult(
            trial_number=self._trial_number,
            uid=planned.uid,
            match_pattern=planned.match_pattern,
            accuracy_policy=self._config.accuracy_policy,
        )
        self._attempt_number = 1
        self._checkpoint = 0
        self._phase = SessionPhase.TRIAL
        logger.debug("trial %d: %s (%s) sequence=%s", self._trial_number, planned.uid,
                     planned.level.label, "".join(self._sequence))
        self._launch_attempt()

    def _deal_sequence(
        self, pattern: MatchPattern, lag: int, symbols: tuple[str, ...] | None
    ) -> tuple[str, ...]:
        if symbols is not None:
            return symbols
        seed = self._seed + self._sequences_dealt
        self._sequences_dealt += 1
        return synthesize(pattern, lag, seed)

    def _switch_to_easier(self) -> None:
        assert self._trial is not None
        donor = self._catalog.random_for_lag(self._easier_lag, self._rng)
        pattern = self._trial.match_pattern
        self._level = LevelDescriptor(
            lag=self._easier_lag,
            stimulus_s=donor.level.stimulus_s,
            interval_s=donor.level.interval_s,
            sequence_length=len(pattern),
            label=donor.level.label,
        )
        self._sequence = self._deal_sequence(pattern, self._easier_lag, None)
        self._is_easier = True
        logger.info("trial %d: dropping to lag %d from checkpoint %d",
                    self._trial_number, self._easier_lag, self._checkpoint)

    def _launch_attempt(self) -> None:
        assert self._level is not None
        assert self._trial is not None
        cfg = self._config
        self._presentation = NbackPresentation(
            level=self._level,
            sequence=self._sequence,
            clock=self._clock,
            timers=self._timers,
            match_pattern=self._trial.match_pattern,
            attempt_index=self._attempt_number,
            start_index=self._checkpoint,
            ghost_symbols=ghost_context(self._sequence, self._checkpoint, self._level.lag),
            halt_on_error=cfg.mode is GameMode.RESTART,
            checkpoint_enabled=cfg.checkpoint_enabled,
            checkpoint_gap=cfg.checkpoint_gap,
            timings=cfg.timings,
            is_easier=self._is_easier,
            on_attempt_end=self._handle_attempt_end,
            on_error=self._handle_error_event,
        )
        self._presentation.start()

    def _handle_error_event(self, report: ErrorReport) -> None:
        if self._on_error is not None:
            self._on_error(report)

    def _handle_attempt_end(self, attempt: Attempt) -> None:
        assert self._trial is not None
        assert self._level is not None
        self._trial.add_attempt(attempt)
        self._presentation = None

        if attempt.error is None:
            self._finish_trial()
            return

        self._checkpoint = attempt.error.checkpoint
        if self._level.lag <= self._easier_lag:
            self._phase = SessionPhase.AUTO_RESTART
            self._pending = self._timers.call_later(self._config.auto_restart_delay_s, self._auto_restart)
        else:
            self._phase = SessionPhase.DIFFICULTY_RESTART

    def _auto_restart(self) -> None:
        self._pending = None
        if self._phase is not SessionPhase.AUTO_RESTART:
            return
        self._attempt_number += 1
        self._phase = SessionPhase.TRIAL
        self._launch_attempt()

    def _finish_trial(self) -> None:
        trial = self._trial
        assert trial is not None
        trial.seal()
        self._results.append(trial)

        s = trial.summary
        self._accuracy_sum += s.accuracy
        self._hits += s.correct_hits
        self._false_alarms += s.false_alarms
        if not trial.is_easier:
            self._full_level_completions += 1
        logger.info("trial %d sealed: attempts=%d accuracy=%.3f",
                    trial.trial_number, trial.total_attempts, s.accuracy)
        self._emit(trial)

        if self._trial_number >= self._config.planned_trials:
            self._phase = SessionPhase.COMPLETED
            logger.info("session completed: %d trials, mean accuracy %.3f",
                        len(self._results), self._accuracy_sum / len(self._results))
            return

        self._trial_number += 1
        self._trial_in_block += 1
        if self._trial_in_block > self._config.trials_per_block and self._block_index < len(self._blocks) - 1:
            self._block_index += 1
            self._trial_in_block = 1

        if self._config.mode is GameMode.PERCENT:
            self._phase = SessionPhase.DIFFICULTY_CHOICE
        else:
            self._begin_trial(self._scheduled_plan())

    def _emit(self, trial: TrialResult) -> None:
        if self._trial_sink is None:
            return
        try:
            self._trial_sink(trial.to_record())
        except Exception:
            logger.exception("trial sink failed for trial %d", trial.trial_number)
