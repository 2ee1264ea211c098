from __future__ import annotations

import logging
from dataclasses import dataclass

import pytest

from nback_trainer.cognitive_core import SeededRng
from nback_trainer.levels import LevelCatalog, LevelDescriptor, PlannedSequence
from nback_trainer.presentation import PresentationTimings, Stage
from nback_trainer.sequence import parse_match_pattern
from nback_trainer.session import GameMode, NbackSession, SessionConfig, SessionPhase
from nback_trainer.timers import TimerQueue


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _entry(uid: str, lag: int, pattern: str) -> PlannedSequence:
    flags = parse_match_pattern(pattern)
    level = LevelDescriptor(lag=lag, stimulus_s=0.5, interval_s=0.5, sequence_length=len(flags), label=f"{lag}-back")
    return PlannedSequence(uid=uid, level=level, match_pattern=flags)


CATALOG = LevelCatalog(
    [
        _entry("easy-1", 1, "010010"),
        _entry("easy-2", 1, "001001"),
        _entry("medium-1", 2, "001001"),
        _entry("medium-2", 2, "000101"),
    ]
)


def _config(**overrides) -> SessionConfig:
    base = dict(
        block_lags=(2,),
        trials_per_block=2,
        shuffle_blocks=False,
        auto_restart_delay_s=0.5,
        timings=PresentationTimings(preparing_s=0.5, ghost_gap_s=0.1, completed_s=0.2),
    )
    base.update(overrides)
    return SessionConfig(**base)


class _Oracle:
    """Answers from the match pattern; scripted keys force mistakes.

    Keys are (trial_number, attempt_number, position).
    """

    def __init__(self, session: NbackSession, *, skip=(), false_alarms=(), delay_s: float = 0.1) -> None:
        self._session = session
        self._skip = set(skip)
        self._fa = set(false_alarms)
        self._delay = delay_s
        self._done: set[tuple[int, int, int]] = set()

    def tick(self, now: float) -> None:
        pres = self._session.presentation
        if pres is None or pres.current_position is None or pres.revealed_at_s is None:
            return
        pos = pres.current_position
        key = (self._session.trial_number, self._session.attempt_number, pos)
        if key in self._done or now - pres.revealed_at_s < self._delay:
            return
        self._done.add(key)
        if key in self._skip:
            return
        trial = self._session.current_trial
        assert trial is not None
        if trial.match_pattern[pos] or key in self._fa:
            assert pres.respond(now) is True


def _drive(clock: FakeClock, timers: TimerQueue, oracle: _Oracle, cond, *, step: float = 0.01, limit_s: float = 120.0) -> None:
    for _ in range(int(limit_s / step)):
        if cond():
            return
        clock.advance(step)
        timers.run_due()
        oracle.tick(clock.now())
    raise AssertionError("condition not reached")


def _session(clock: FakeClock, timers: TimerQueue, config: SessionConfig, **kwargs) -> NbackSession:
    return NbackSession(catalog=CATALOG, clock=clock, timers=timers, config=config, rng=SeededRng(1), **kwargs)


def test_restart_mode_runs_all_trials_without_errors() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    records: list[dict] = []
    session = _session(clock, timers, _config(), trial_sink=records.append)
    oracle = _Oracle(session)

    assert session.phase is SessionPhase.NOT_STARTED
    assert session.start() is True
    assert session.start() is False
    _drive(clock, timers, oracle, lambda: session.phase is SessionPhase.COMPLETED)

    assert [t.uid for t in session.results] == ["medium-1", "medium-2"]
    assert all(t.total_attempts == 1 and t.sealed for t in session.results)
    assert len(records) == 2
    assert records[0]["matchesSequence"] == [0, 0, 1, 0, 0, 1]
    assert records[0]["totalAttempts"] == 1

    s = session.summary()
    assert s.trials_completed == 2
    assert s.average_accuracy == 1.0
    assert s.total_correct_hits == 4
    assert s.total_false_alarms == 0
    assert s.full_level_completions == 2
    assert s.mean_reaction_time_s == pytest.approx(0.1, abs=0.02)


def test_miss_offers_restart_from_checkpoint_with_ghost_context() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    errors: list = []
    session = _session(clock, timers, _config(total_trials=1), on_error=errors.append)
    oracle = _Oracle(session, skip={(1, 1, 2)})
    session.start()

    _drive(clock, timers, oracle, lambda: session.phase is SessionPhase.DIFFICULTY_RESTART)
    assert len(errors) == 1
    assert errors[0].error_type == "miss"
    assert errors[0].position == 2
    assert session.checkpoint == 1
    assert session.choose_difficulty(easier=False) is False

    assert session.choose_restart(easier=False) is True
    assert session.attempt_number == 2
    pres = session.presentation
    assert pres is not None
    assert pres.start_index == 1

    _drive(clock, timers, oracle, lambda: pres.stage is Stage.GHOST)
    assert pres.snapshot().display == pres.sequence[0]

    _drive(clock, timers, oracle, lambda: session.phase is SessionPhase.COMPLETED)
    trial = session.results[0]
    assert trial.total_attempts == 2
    assert trial.attempts[0].halted
    assert trial.attempts[1].start_index == 1
    assert trial.summary.correct_hits == 2
    assert trial.summary.misses == 1
    assert trial.summary.correct_rejections == 5
    assert trial.summary.accuracy == pytest.approx(7 / 8)


def test_false_alarm_restart_replays_lag_window_before_resuming() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    errors: list = []
    session = _session(clock, timers, _config(total_trials=1), on_error=errors.append)
    oracle = _Oracle(session, false_alarms={(1, 1, 3)})
    session.start()

    _drive(clock, timers, oracle, lambda: session.phase is SessionPhase.DIFFICULTY_RESTART)
    assert [(e.error_type, e.position, e.checkpoint) for e in errors] == [("falseAlarm", 3, 3)]
    assert session.checkpoint == 3

    assert session.choose_restart(easier=False) is True
    pres = session.presentation
    assert pres is not None
    assert pres.start_index == 3

    ghost_frames: list[str] = []

    def watch() -> bool:
        snap = pres.snapshot()
        if snap.stage is Stage.GHOST:
            assert snap.accepting_input is False
            if not ghost_frames or ghost_frames[-1] != snap.display:
                ghost_frames.append(snap.display)
        return snap.stage is Stage.SHOWING

    _drive(clock, timers, oracle, watch)
    assert ghost_frames == [pres.sequence[1], "", pres.sequence[2], ""]
    assert pres.current_position == 3

    _drive(clock, timers, oracle, lambda: session.phase is SessionPhase.COMPLETED)
    trial = session.results[0]
    assert trial.total_attempts == 2
    assert [r.position for r in trial.attempts[1].responses] == [3, 4, 5]
    assert trial.summary.false_alarms == 1
    assert trial.summary.correct_hits == 2
    assert trial.summary.correct_rejections == 4
    assert trial.summary.accuracy == pytest.approx(6 / 7)


def test_easier_switch_then_auto_restart_at_easiest_lag() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    session = _session(clock, timers, _config(total_trials=1))
    oracle = _Oracle(session, skip={(1, 1, 2), (1, 2, 2)})
    session.start()

    _drive(clock, timers, oracle, lambda: session.phase is SessionPhase.DIFFICULTY_RESTART)
    assert session.choose_restart(easier=True) is True
    assert session.is_easier
    assert session.level is not None and session.level.lag == 1
    assert session.presentation.start_index == 1

    _drive(clock, timers, oracle, lambda: session.phase is SessionPhase.AUTO_RESTART)
    assert session.checkpoint == 2
    assert session.choose_restart(easier=False) is False

    _drive(clock, timers, oracle, lambda: session.phase is SessionPhase.TRIAL)
    assert session.attempt_number == 3
    _drive(clock, timers, oracle, lambda: session.phase is SessionPhase.COMPLETED)

    trial = session.results[0]
    assert trial.total_attempts == 3
    assert [a.level.lag for a in trial.attempts] == [2, 1, 1]
    assert trial.is_easier
    assert session.summary().full_level_completions == 0


def test_percent_mode_asks_for_difficulty_between_trials() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    records: list[dict] = []
    session = _session(clock, timers, _config(mode=GameMode.PERCENT), trial_sink=records.append)
    oracle = _Oracle(session, false_alarms={(1, 1, 0)})
    session.start()

    _drive(clock, timers, oracle, lambda: session.phase is SessionPhase.DIFFICULTY_CHOICE)
    first = session.results[0]
    assert first.total_attempts == 1
    assert first.summary.false_alarms == 1
    assert session.choose_restart(easier=True) is False

    assert session.choose_difficulty(easier=True) is True
    assert session.trial_number == 2
    assert session.is_easier
    assert session.level.lag == 1

    _drive(clock, timers, oracle, lambda: session.phase is SessionPhase.COMPLETED)
    assert session.results[1].is_easier
    assert records[1]["isEasierSequence"] is True
    assert session.summary().full_level_completions == 1


def test_sequences_are_reproducible_from_seed() -> None:
    def run(seed: int) -> list[list[str]]:
        clock = FakeClock()
        timers = TimerQueue(clock)
        records: list[dict] = []
        session = _session(clock, timers, _config(), seed=seed, trial_sink=records.append)
        session.start()
        _drive(clock, timers, _Oracle(session), lambda: session.phase is SessionPhase.COMPLETED)
        return [r["stimuliSequence"] for r in records]

    assert run(7) == run(7)


def test_failing_sink_is_logged_and_session_continues(caplog: pytest.LogCaptureFixture) -> None:
    def sink(record: dict) -> None:
        raise RuntimeError("storage offline")

    clock = FakeClock()
    timers = TimerQueue(clock)
    session = _session(clock, timers, _config(), trial_sink=sink)
    session.start()
    with caplog.at_level(logging.ERROR, logger="nback_trainer.session"):
        _drive(clock, timers, _Oracle(session), lambda: session.phase is SessionPhase.COMPLETED)

    assert len(session.results) == 2
    assert "trial sink failed" in caplog.text


def test_abort_cancels_running_attempt() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    session = _session(clock, timers, _config())
    session.start()
    _drive(clock, timers, _Oracle(session), lambda: session.presentation.current_position == 1)
    pres = session.presentation

    assert session.abort() is True
    assert session.abort() is False
    assert session.phase is SessionPhase.ABORTED
    assert pres.stage is Stage.CANCELLED
    assert timers.pending_count() == 0


def test_snapshot_reports_trial_position() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    session = _session(clock, timers, _config())
    session.start()

    snap = session.snapshot()
    assert snap.phase is SessionPhase.TRIAL
    assert snap.trial_number == 1
    assert snap.total_trials == 2
    assert snap.block_number == 1
    assert snap.lag == 2
    assert snap.presentation is not None
    assert snap.presentation.stage is Stage.PREPARING


def test_config_rejects_invalid_values() -> None:
    with pytest.raises(ValueError):
        SessionConfig(block_lags=(2,), trials_per_block=1, easier_lag=3)
    assert SessionConfig(block_lags=(2, 3), easier_lag=2).easier_lag == 2
    with pytest.raises(ValueError):
        SessionConfig(checkpoint_gap=0)
    with pytest.raises(ValueError):
        SessionConfig(block_lags=())
    with pytest.raises(ValueError):
        SessionConfig(block_lags=(2,), trials_per_block=2, total_trials=3)


def test_session_defaults_to_real_clock_and_own_timer_queue() -> None:
    session = NbackSession(catalog=CATALOG, config=_config(), rng=SeededRng(1))

    assert session.start() is True
    assert session.presentation is not None
    assert session.timers.pending_count() == 1
    assert session.abort() is True
    assert session.timers.pending_count() == 0
