"""Smoke tests for the command-line entry point.

These run a short simulated session end to end on virtual time and check
that the output is produced without errors.
"""

from __future__ import annotations

import json


def test_cli_runs_simulated_session(capsys) -> None:
    from nback_trainer.__main__ import main

    exit_code = main(["--trials-per-block", "1", "--error-rate", "0"])
    assert exit_code == 0
    assert "Trials:    2" in capsys.readouterr().out


def test_cli_prints_trial_records_as_json(capsys) -> None:
    from nback_trainer.__main__ import main

    exit_code = main(["--blocks", "2", "--trials-per-block", "2", "--mode", "percent", "--json"])
    assert exit_code == 0
    records = json.loads(capsys.readouterr().out)
    assert len(records) == 2
    assert {"matchesSequence", "totalAttempts", "attempts", "summary"} <= set(records[0])


def test_cli_reports_bad_configuration(capsys) -> None:
    from nback_trainer.__main__ import main

    assert main(["--blocks", "2", "--trials-per-block", "9"]) == 2
    assert "error:" in capsys.readouterr().err


def test_cli_reports_malformed_levels_file(tmp_path, capsys) -> None:
    from nback_trainer.__main__ import main

    path = tmp_path / "levels.json"
    path.write_text(json.dumps({"nbackLevels": [{"N": 2, "matches": [0, 0, 1]}]}), encoding="utf-8")

    assert main(["--levels", str(path)]) == 2
    assert "missing 'stimulusTime'" in capsys.readouterr().err


def test_cli_runs_training_series(capsys) -> None:
    from nback_trainer.__main__ import main

    exit_code = main(["--training", "--training-trials", "3", "--error-rate", "0"])
    assert exit_code == 0
    out = capsys.readouterr().out
    assert "Sequence 3: 1 attempt - Completed" in out
    assert "Completed: 3/3" in out


def test_cli_prints_training_records_as_json(capsys) -> None:
    from nback_trainer.__main__ import main

    exit_code = main(["--training", "--training-trials", "2", "--mode", "percent", "--json"])
    assert exit_code == 0
    records = json.loads(capsys.readouterr().out)
    assert [r["sequenceIndex"] for r in records] == [0, 1]
    assert {"attempts", "completed", "wasEasierSequence", "summary"} <= set(records[0])
