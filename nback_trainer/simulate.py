from __future__ import annotations

import logging
from dataclasses import dataclass

from .cognitive_core import SeededRng
from .presentation import NbackPresentation, Stage
from .session import NbackSession, SessionPhase, SessionSummary
from .timers import TimerQueue
from .training import TrainingChoice, TrainingPhase, TrainingSession, TrainingSummary

logger = logging.getLogger(__name__)


@dataclass
class SimulatedClock:
    """Virtual clock for headless runs."""

    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


class SimulatedParticipant:
    """Plays the task from what it is shown, with a fixed error rate.

    It remembers the symbols it saw (ghost replays included), answers after
    ``reaction_s`` and flips its decision with probability ``error_rate``.
    """

    def __init__(
        self,
        *,
        seed: int = 0,
        error_rate: float = 0.0,
        reaction_s: float = 0.35,
        choose_easier: bool = False,
        easier_below_accuracy: float = 0.7,
        training_retries: int = 3,
    ) -> None:
        if not (0.0 <= error_rate <= 1.0):
            raise ValueError("error_rate must be in [0.0, 1.0]")
        if reaction_s < 0.0:
            raise ValueError("reaction_s must be >= 0")
        self._rng = SeededRng(seed)
        self._error_rate = float(error_rate)
        self._reaction_s = float(reaction_s)
        self.choose_easier = bool(choose_easier)
        self._easier_below = float(easier_below_accuracy)
        self._training_retries = int(training_retries)

        self._watching: NbackPresentation | None = None
        self._seen: dict[int, str] = {}
        self._ghosts: list[str] = []
        self._in_ghost = False
        self._decided: set[int] = set()

    def observe(self, presentation: NbackPresentation, now_s: float) -> None:
        if presentation is not self._watching:
            self._watching = presentation
            self._seen = {}
            self._ghosts = []
            self._in_ghost = False
            self._decided = set()

        snap = presentation.snapshot()
        ghost_shown = snap.stage is Stage.GHOST and snap.display != ""
        if ghost_shown and not self._in_ghost:
            self._ghosts.append(snap.display)
        self._in_ghost = ghost_shown

        pos = snap.position
        if snap.stage is not Stage.SHOWING or pos is None:
            return
        if pos == presentation.start_index and self._ghosts:
            first = presentation.start_index - len(self._ghosts)
            for k, symbol in enumerate(self._ghosts):
                self._seen[first + k] = symbol
            self._ghosts = []
        self._seen[pos] = snap.display

        revealed = presentation.revealed_at_s
        if pos in self._decided or revealed is None or now_s - revealed < self._reaction_s:
            return
        self._decided.add(pos)

        target = self._seen.get(pos - presentation.level.lag)
        is_match = target is not None and target == snap.display
        if self._rng.random() < self._error_rate:
            is_match = not is_match
        if is_match:
            presentation.respond(now_s)

    def wants_easier(self, last_accuracy: float | None) -> bool:
        if not self.choose_easier:
            return False
        return last_accuracy is None or last_accuracy < self._easier_below

    def training_choice(self, attempts_so_far: int, lag: int) -> TrainingChoice:
        if attempts_so_far > self._training_retries:
            return TrainingChoice.SKIP
        if self.choose_easier and lag > 1:
            return TrainingChoice.EASIER
        return TrainingChoice.RESTART


def run_session(
    session: NbackSession,
    clock: SimulatedClock,
    timers: TimerQueue,
    participant: SimulatedParticipant,
    *,
    tick_s: float = 0.05,
    max_duration_s: float = 4 * 3600.0,
) -> SessionSummary:
    """Drive ``session`` on virtual time until it completes."""

    if tick_s <= 0.0:
        raise ValueError("tick_s must be > 0")
    session.start()
    deadline = clock.now() + max_duration_s
    while session.phase not in (SessionPhase.COMPLETED, SessionPhase.ABORTED):
        if clock.now() >= deadline:
            logger.warning("simulation hit %.0fs limit; aborting", max_duration_s)
            session.abort()
            break
        clock.advance(tick_s)
        timers.run_due()

        phase = session.phase
        if phase is SessionPhase.TRIAL and session.presentation is not None:
            participant.observe(session.presentation, clock.now())
        elif phase is SessionPhase.DIFFICULTY_RESTART:
            session.choose_restart(easier=participant.choose_easier)
        elif phase is SessionPhase.DIFFICULTY_CHOICE:
            last = session.results[-1].summary.accuracy if session.results else None
            session.choose_difficulty(easier=participant.wants_easier(last))
    return session.summary()


def run_training(
    training: TrainingSession,
    clock: SimulatedClock,
    timers: TimerQueue,
    participant: SimulatedParticipant,
    *,
    tick_s: float = 0.05,
    max_duration_s: float = 3600.0,
) -> TrainingSummary:
    """Drive the practice series on virtual time until it is done."""

    if tick_s <= 0.0:
        raise ValueError("tick_s must be > 0")
    training.start()
    deadline = clock.now() + max_duration_s
    while training.phase not in (TrainingPhase.PRACTICE_DONE, TrainingPhase.ABORTED):
        if clock.now() >= deadline:
            logger.warning("training hit %.0fs limit; aborting", max_duration_s)
            training.abort()
            break
        clock.advance(tick_s)
        timers.run_due()

        phase = training.phase
        if phase is TrainingPhase.PRACTICE and training.presentation is not None:
            participant.observe(training.presentation, clock.now())
        elif phase is TrainingPhase.ERROR_CHOICE:
            assert training.level is not None
            training.choose_after_error(participant.training_choice(training.attempt_number, training.level.lag))
    return training.summary()
