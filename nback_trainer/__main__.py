from __future__ import annotations

import argparse
import json
import logging
import sys

from .levels import (
    default_level_catalog,
    default_training_sequence,
    load_level_catalog,
    load_training_sequence,
)
from .session import GameMode, NbackSession, SessionConfig
from .simulate import SimulatedClock, SimulatedParticipant, run_session, run_training
from .timers import TimerQueue
from .training import TrainingConfig, TrainingSession


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="nback_trainer",
        description="Run a headless N-back session with a simulated participant.",
    )
    p.add_argument("--levels", help="levels JSON file (default: built-in catalog)")
    p.add_argument("--mode", choices=[m.value for m in GameMode], default=GameMode.RESTART.value)
    p.add_argument("--blocks", default="2,3", help="comma-separated lag per block")
    p.add_argument("--trials-per-block", type=int, default=2)
    p.add_argument("--trials", type=int, default=None, help="total trials (default: all planned)")
    p.add_argument("--gap", type=int, default=5, help="checkpoint gap")
    p.add_argument("--no-checkpoints", action="store_true", help="restart attempts from the beginning")
    p.add_argument("--training", action="store_true", help="run the practice series instead of a session")
    p.add_argument("--training-trials", type=int, default=None, help="practice sequences (built-in catalog only)")
    p.add_argument("--error-rate", type=float, default=0.05)
    p.add_argument("--easier", action="store_true", help="participant accepts easier levels")
    p.add_argument("--seed", type=int, default=0)
    p.add_argument("--json", action="store_true", help="print trial records as JSON")
    p.add_argument("-v", "--verbose", action="count", default=0)
    return p


def _run_training(args: argparse.Namespace) -> int:
    records: list[dict[str, object]] = []
    clock = SimulatedClock()
    timers = TimerQueue(clock)
    try:
        if args.levels is not None:
            plan = load_training_sequence(args.levels)
        elif args.training_trials is not None:
            plan = default_training_sequence(args.training_trials)
        else:
            plan = default_training_sequence()
        training = TrainingSession(
            sequence=plan,
            clock=clock,
            timers=timers,
            config=TrainingConfig(mode=GameMode(args.mode)),
            seed=args.seed,
            on_trial_end=lambda result: records.append(result.to_record()),
        )
        participant = SimulatedParticipant(seed=args.seed, error_rate=args.error_rate, choose_easier=args.easier)
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    s = run_training(training, clock, timers, participant)

    if args.json:
        print(json.dumps(records, indent=2))
        return 0

    lines = ["Training results"]
    for r in training.results:
        status = "Completed" if r.completed else "Failed"
        easier = " (easier)" if r.was_easier else ""
        plural = "s" if r.total_attempts > 1 else ""
        lines.append(f"Sequence {r.sequence_index + 1}: {r.total_attempts} attempt{plural} - {status}{easier}")
    lines.append(f"Completed: {s.completed}/{s.trials} ({s.success_rate * 100.0:.1f}%)")
    print("\n".join(lines))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for running a simulated session from the command line."""

    args = _build_parser().parse_args(argv)
    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.training:
        return _run_training(args)

    records: list[dict[str, object]] = []
    clock = SimulatedClock()
    timers = TimerQueue(clock)
    try:
        catalog = default_level_catalog() if args.levels is None else load_level_catalog(args.levels)
        config = SessionConfig(
            mode=GameMode(args.mode),
            checkpoint_enabled=not args.no_checkpoints,
            checkpoint_gap=args.gap,
            block_lags=tuple(int(x) for x in args.blocks.split(",") if x.strip()),
            trials_per_block=args.trials_per_block,
            total_trials=args.trials,
        )
        session = NbackSession(
            catalog=catalog,
            clock=clock,
            timers=timers,
            config=config,
            seed=args.seed,
            trial_sink=records.append,
        )
        participant = SimulatedParticipant(seed=args.seed, error_rate=args.error_rate, choose_easier=args.easier)
        session.start()
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    s = run_session(session, clock, timers, participant)

    if args.json:
        print(json.dumps(records, indent=2))
        return 0

    rt = "n/a" if s.mean_reaction_time_s is None else f"{s.mean_reaction_time_s * 1000.0:.0f} ms"
    print(
        "\n".join(
            [
                "Results",
                f"Trials:    {s.trials_completed}",
                f"Attempts:  {s.total_attempts}",
                f"Accuracy:  {s.average_accuracy * 100.0:.1f}%",
                f"Hits:      {s.total_correct_hits}",
                f"False al.: {s.total_false_alarms}",
                f"Mean RT:   {rt}",
                f"Virtual time: {clock.now():.1f}s",
            ]
        )
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
