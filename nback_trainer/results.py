from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .levels import LevelDescriptor
from .scoring import EMPTY_SUMMARY, ResponseRecord, Summary, combine_summaries, summarize
from .sequence import MatchPattern


class AccuracyPolicy(str, Enum):
    # Counts summed over every attempt, rates recomputed.
    SUMMED = "summed"
    # Only the final attempt's summary.
    LAST_ATTEMPT = "last_attempt"


@dataclass(frozen=True, slots=True)
class ErrorReport:
    position: int
    error_type: str
    responses_so_far: tuple[ResponseRecord, ...]
    checkpoint: int

    def to_record(self) -> dict[str, object]:
        return {
            "stimulusIndex": self.position,
            "errorType": self.error_type,
            "checkpoint": self.checkpoint,
        }


@dataclass(frozen=True, slots=True)
class Attempt:
    """Sealed playthrough of a sequence, from ``start_index`` to where it stopped."""

    attempt_index: int
    start_index: int
    level: LevelDescriptor
    sequence: tuple[str, ...]
    match_pattern: MatchPattern
    responses: tuple[ResponseRecord, ...]
    started_at_s: float
    ended_at_s: float
    summary: Summary
    error: ErrorReport | None = None
    is_easier: bool = False

    @property
    def halted(self) -> bool:
        return self.error is not None

    def to_record(self) -> dict[str, object]:
        return {
            "attemptIndex": self.attempt_index,
            "startIndex": self.start_index,
            "N": self.level.lag,
            "startTime": round(self.started_at_s * 1000.0, 3),
            "endTime": round(self.ended_at_s * 1000.0, 3),
            "isEasierSequence": self.is_easier,
            "stimuliSequence": list(self.sequence),
            "responses": [r.to_record() for r in self.responses],
            "error": None if self.error is None else self.error.to_record(),
            "summary": self.summary.to_record(),
        }


def seal_attempt(
    *,
    attempt_index: int,
    start_index: int,
    level: LevelDescriptor,
    sequence: tuple[str, ...],
    match_pattern: MatchPattern,
    responses: list[ResponseRecord],
    started_at_s: float,
    ended_at_s: float,
    error: ErrorReport | None = None,
    is_easier: bool = False,
) -> Attempt:
    frozen = tuple(responses)
    return Attempt(
        attempt_index=int(attempt_index),
        start_index=int(start_index),
        level=level,
        sequence=tuple(sequence),
        match_pattern=tuple(match_pattern),
        responses=frozen,
        started_at_s=float(started_at_s),
        ended_at_s=float(ended_at_s),
        summary=summarize(frozen),
        error=error,
        is_easier=bool(is_easier),
    )


@dataclass(slots=True)
class TrialResult:
    """All attempts at one match pattern, restarts included.

    The trial stays open while attempts are added and is sealed once an
    attempt completes the sequence without a halting error.
    """

    trial_number: int
    uid: str
    match_pattern: MatchPattern
    accuracy_policy: AccuracyPolicy = AccuracyPolicy.SUMMED
    attempts: list[Attempt] = field(default_factory=list)
    sealed: bool = False

    def add_attempt(self, attempt: Attempt) -> None:
        if self.sealed:
            raise ValueError(f"trial {self.trial_number} is sealed")
        self.attempts.append(attempt)

    def seal(self) -> None:
        if not self.attempts:
            raise ValueError("cannot seal a trial without attempts")
        self.sealed = True

    @property
    def total_attempts(self) -> int:
        return len(self.attempts)

    @property
    def is_easier(self) -> bool:
        return any(a.is_easier for a in self.attempts)

    @property
    def summary(self) -> Summary:
        if not self.attempts:
            return EMPTY_SUMMARY
        if self.accuracy_policy is AccuracyPolicy.LAST_ATTEMPT:
            return self.attempts[-1].summary
        return combine_summaries(a.summary for a in self.attempts)

    def to_record(self) -> dict[str, object]:
        last = self.attempts[-1] if self.attempts else None
        return {
            "trialNumber": self.trial_number,
            "trialUniqueId": self.uid,
            "level": None if last is None else last.level.to_record(),
            "matchesSequence": [1 if flag else 0 for flag in self.match_pattern],
            "stimuliSequence": [] if last is None else list(last.sequence),
            "totalAttempts": self.total_attempts,
            "isEasierSequence": self.is_easier,
            "accuracyPolicy": self.accuracy_policy.value,
            "attempts": [a.to_record() for a in self.attempts],
            "summary": self.summary.to_record(),
        }
