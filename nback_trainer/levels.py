from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from .cognitive_core import SeededRng
from .sequence import MatchPattern, match_pattern_from_sequence, parse_match_pattern, validate_match_pattern


@dataclass(frozen=True, slots=True)
class LevelDescriptor:
    lag: int
    stimulus_s: float
    interval_s: float
    sequence_length: int
    label: str = ""

    def __post_init__(self) -> None:
        if self.lag < 1:
            raise ValueError("lag must be >= 1")
        if self.sequence_length < 1:
            raise ValueError("sequence_length must be >= 1")
        if self.stimulus_s <= 0.0:
            raise ValueError("stimulus_s must be > 0")
        if self.interval_s <= 0.0:
            raise ValueError("interval_s must be > 0")

    def to_record(self) -> dict[str, object]:
        return {
            "N": self.lag,
            "stimulusTime": int(round(self.stimulus_s * 1000.0)),
            "intertrialInterval": int(round(self.interval_s * 1000.0)),
            "sequenceLength": self.sequence_length,
            "description": self.label,
        }


@dataclass(frozen=True, slots=True)
class PlannedSequence:
    """A level paired with the match pattern it is played with.

    ``symbols`` carries a predefined sequence when the level file ships one;
    otherwise the sequence is synthesized from the pattern.
    """

    uid: str
    level: LevelDescriptor
    match_pattern: MatchPattern
    symbols: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if len(self.match_pattern) != self.level.sequence_length:
            raise ValueError(
                f"{self.uid}: match pattern length {len(self.match_pattern)} "
                f"!= sequence_length {self.level.sequence_length}"
            )
        validate_match_pattern(self.match_pattern, self.level.lag)
        if self.symbols is not None and len(self.symbols) != self.level.sequence_length:
            raise ValueError(f"{self.uid}: predefined sequence length does not match sequence_length")

    @classmethod
    def from_symbols(cls, uid: str, level: LevelDescriptor, symbols: tuple[str, ...]) -> PlannedSequence:
        return cls(
            uid=uid,
            level=level,
            match_pattern=match_pattern_from_sequence(symbols, level.lag),
            symbols=tuple(symbols),
        )


@dataclass(frozen=True, slots=True)
class BlockPlan:
    block_number: int
    lag: int
    sequences: tuple[PlannedSequence, ...]


class LevelCatalog:
    """Read-only collection of planned sequences, indexed by lag."""

    def __init__(self, entries: list[PlannedSequence] | tuple[PlannedSequence, ...]) -> None:
        if not entries:
            raise ValueError("level catalog must not be empty")
        self._entries = tuple(entries)
        self._by_lag: dict[int, list[PlannedSequence]] = {}
        for entry in self._entries:
            self._by_lag.setdefault(entry.level.lag, []).append(entry)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> tuple[PlannedSequence, ...]:
        return self._entries

    def lags(self) -> tuple[int, ...]:
        return tuple(sorted(self._by_lag))

    @property
    def easiest_lag(self) -> int:
        return min(self._by_lag)

    def for_lag(self, lag: int) -> tuple[PlannedSequence, ...]:
        return tuple(self._by_lag.get(lag, ()))

    def random_for_lag(self, lag: int, rng: SeededRng) -> PlannedSequence:
        options = self.for_lag(lag)
        if not options:
            raise ValueError(f"no levels with lag {lag} in catalog")
        return rng.choice(options)


_REQUIRED_KEYS = ("N", "stimulusTime", "intertrialInterval")


def _parse_level_entry(raw: object, index: int) -> PlannedSequence:
    if not isinstance(raw, dict):
        raise ValueError(f"level entry {index} must be an object, got {type(raw).__name__}")
    uid = str(raw.get("uniqueId") or f"level-{raw.get('level', index)}")
    for key in _REQUIRED_KEYS:
        if key not in raw:
            raise ValueError(f"{uid}: missing {key!r}")
    symbols = raw.get("sequence")
    matches = raw.get("matches")
    if symbols is None and matches is None:
        raise ValueError(f"{uid}: level needs either 'matches' or 'sequence'")
    try:
        length = len(symbols) if symbols is not None else len(matches)
        level = LevelDescriptor(
            lag=int(raw["N"]),
            stimulus_s=float(raw["stimulusTime"]) / 1000.0,
            interval_s=float(raw["intertrialInterval"]) / 1000.0,
            sequence_length=int(raw.get("sequenceLength", length)),
            label=str(raw.get("description", "")),
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{uid}: {exc}") from exc
    if symbols is not None:
        return PlannedSequence.from_symbols(uid, level, tuple(str(s) for s in symbols))
    return PlannedSequence(uid=uid, level=level, match_pattern=parse_match_pattern(matches))


def _parse_level_list(data: object, key: str) -> list[PlannedSequence]:
    if not isinstance(data, dict):
        raise ValueError("level file must contain a JSON object")
    raw_levels = data.get(key)
    if not isinstance(raw_levels, list):
        raise ValueError(f"level file must contain an {key!r} list")
    return [_parse_level_entry(raw, i) for i, raw in enumerate(raw_levels)]


def level_catalog_from_dict(data: dict[str, object]) -> LevelCatalog:
    """Build a catalog from the ``levels.json`` layout (times in ms)."""

    return LevelCatalog(_parse_level_list(data, "nbackLevels"))


def training_sequence_from_dict(data: dict[str, object]) -> tuple[PlannedSequence, ...]:
    """Read the ordered ``trainingSequence`` list of a level file."""

    entries = _parse_level_list(data, "trainingSequence")
    if not entries:
        raise ValueError("training sequence must not be empty")
    return tuple(entries)


def _read_json(path: Path | str) -> object:
    with Path(path).open("r", encoding="utf-8") as fh:
        try:
            return json.load(fh)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{path}: invalid JSON ({exc})") from exc


def load_level_catalog(path: Path | str) -> LevelCatalog:
    return level_catalog_from_dict(_read_json(path))


def load_training_sequence(path: Path | str) -> tuple[PlannedSequence, ...]:
    return training_sequence_from_dict(_read_json(path))


_DEFAULT_TIMINGS: dict[int, tuple[float, float, str]] = {
    1: (1.5, 1.5, "1-back (Easy)"),
    2: (1.0, 1.5, "2-back (Medium)"),
    3: (1.0, 1.5, "3-back (Hard)"),
}

_DEFAULT_PATTERNS: dict[int, tuple[str, ...]] = {
    1: ("010010100100010", "001001000101010", "000110001000110", "010001001010001"),
    2: ("001010001000110", "000100101001010", "001100010010001", "000010100110001"),
    3: ("000100110001001", "000011000101010", "000101001000110", "000010010011001"),
}


def default_level_catalog() -> LevelCatalog:
    """Small built-in catalog: four 15-position patterns per lag 1-3."""

    entries: list[PlannedSequence] = []
    for lag, patterns in _DEFAULT_PATTERNS.items():
        stimulus_s, interval_s, label = _DEFAULT_TIMINGS[lag]
        for k, text in enumerate(patterns):
            pattern = parse_match_pattern(text)
            level = LevelDescriptor(
                lag=lag,
                stimulus_s=stimulus_s,
                interval_s=interval_s,
                sequence_length=len(pattern),
                label=label,
            )
            entries.append(PlannedSequence(uid=f"builtin-{lag}back-{k + 1}", level=level, match_pattern=pattern))
    return LevelCatalog(entries)


DEFAULT_TRAINING_TRIALS = 10


def default_training_sequence(num_trials: int = DEFAULT_TRAINING_TRIALS) -> tuple[PlannedSequence, ...]:
    """Practice series over the built-in catalog, easiest lags first."""

    if num_trials < 1:
        raise ValueError("num_trials must be >= 1")
    entries = sorted(default_level_catalog().entries, key=lambda e: e.level.lag)
    return tuple(entries[i % len(entries)] for i in range(num_trials))


def plan_blocks(
    catalog: LevelCatalog,
    *,
    block_lags: tuple[int, ...],
    trials_per_block: int,
    rng: SeededRng,
    shuffle_blocks: bool = True,
    shuffle_levels: bool = False,
) -> tuple[BlockPlan, ...]:
    """Order blocks and pick each block's sequences.

    Ordering is a session-level decision and comes from ``rng``, which need
    not be seeded.
    """

    if trials_per_block < 1:
        raise ValueError("trials_per_block must be >= 1")
    order = rng.shuffled(block_lags) if shuffle_blocks else list(block_lags)

    blocks: list[BlockPlan] = []
    for number, lag in enumerate(order, start=1):
        available = catalog.for_lag(lag)
        if len(available) < trials_per_block:
            raise ValueError(
                f"cannot plan {trials_per_block} trials at lag {lag}: "
                f"only {len(available)} available in catalog"
            )
        picked = rng.shuffled(available) if shuffle_levels else list(available)
        blocks.append(BlockPlan(block_number=number, lag=lag, sequences=tuple(picked[:trials_per_block])))
    return tuple(blocks)
