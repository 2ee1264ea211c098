from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from .cognitive_core import mean_or_none, ratio


class Outcome(str, Enum):
    HIT = "hit"
    MISS = "miss"
    FALSE_ALARM = "false_alarm"
    CORRECT_REJECTION = "correct_rejection"


@dataclass(slots=True)
class ResponseRecord:
    """Response slot for one sequence position.

    Created before the position is shown; ``mark_response`` fills it at most
    once.
    """

    position: int
    symbol: str
    is_match_expected: bool
    user_responded: bool = False
    reaction_time_s: float | None = None

    def mark_response(self, reaction_time_s: float) -> bool:
        if self.user_responded:
            return False
        self.user_responded = True
        self.reaction_time_s = max(0.0, float(reaction_time_s))
        return True

    @property
    def is_correct(self) -> bool:
        return self.is_match_expected == self.user_responded

    def to_record(self) -> dict[str, object]:
        rt_ms = None if self.reaction_time_s is None else round(self.reaction_time_s * 1000.0, 3)
        return {
            "stimulusIndex": self.position,
            "stimulusValue": self.symbol,
            "isMatchExpected": self.is_match_expected,
            "userResponded": self.user_responded,
            "reactionTime": rt_ms,
        }


def classify(record: ResponseRecord) -> Outcome:
    if record.is_match_expected:
        return Outcome.HIT if record.user_responded else Outcome.MISS
    return Outcome.FALSE_ALARM if record.user_responded else Outcome.CORRECT_REJECTION


@dataclass(frozen=True, slots=True)
class Summary:
    total_stimuli: int
    total_matches: int
    correct_hits: int
    false_alarms: int
    misses: int
    correct_rejections: int
    accuracy: float
    mean_reaction_time_s: float | None
    hit_rate: float
    false_alarm_rate: float

    @classmethod
    def from_counts(
        cls,
        *,
        correct_hits: int,
        false_alarms: int,
        misses: int,
        correct_rejections: int,
        mean_reaction_time_s: float | None,
    ) -> Summary:
        total_matches = correct_hits + misses
        total_stimuli = total_matches + false_alarms + correct_rejections
        return cls(
            total_stimuli=total_stimuli,
            total_matches=total_matches,
            correct_hits=correct_hits,
            false_alarms=false_alarms,
            misses=misses,
            correct_rejections=correct_rejections,
            accuracy=ratio(correct_hits + correct_rejections, total_stimuli),
            mean_reaction_time_s=mean_reaction_time_s,
            hit_rate=ratio(correct_hits, total_matches),
            false_alarm_rate=ratio(false_alarms, total_stimuli - total_matches),
        )

    @property
    def responded(self) -> int:
        return self.correct_hits + self.false_alarms

    def to_record(self) -> dict[str, object]:
        mean_ms = None if self.mean_reaction_time_s is None else round(self.mean_reaction_time_s * 1000.0, 3)
        return {
            "totalStimuli": self.total_stimuli,
            "totalMatches": self.total_matches,
            "correctHits": self.correct_hits,
            "falseAlarms": self.false_alarms,
            "misses": self.misses,
            "correctRejections": self.correct_rejections,
            "accuracy": self.accuracy,
            "meanReactionTime": mean_ms,
            "hitRate": self.hit_rate,
            "falseAlarmRate": self.false_alarm_rate,
        }


EMPTY_SUMMARY = Summary.from_counts(
    correct_hits=0, false_alarms=0, misses=0, correct_rejections=0, mean_reaction_time_s=None
)


def summarize(responses: Iterable[ResponseRecord]) -> Summary:
    counts = {outcome: 0 for outcome in Outcome}
    rts: list[float] = []
    for record in responses:
        counts[classify(record)] += 1
        if record.user_responded and record.reaction_time_s is not None:
            rts.append(record.reaction_time_s)
    return Summary.from_counts(
        correct_hits=counts[Outcome.HIT],
        false_alarms=counts[Outcome.FALSE_ALARM],
        misses=counts[Outcome.MISS],
        correct_rejections=counts[Outcome.CORRECT_REJECTION],
        mean_reaction_time_s=mean_or_none(rts),
    )


def combine_summaries(summaries: Iterable[Summary]) -> Summary:
    """Sum classification counts across attempts and recompute the rates.

    The combined mean reaction time weights each attempt by its number of
    responses, which equals the mean over all responded records.
    """

    hits = false_alarms = misses = rejections = 0
    rt_total = 0.0
    rt_count = 0
    for s in summaries:
        hits += s.correct_hits
        false_alarms += s.false_alarms
        misses += s.misses
        rejections += s.correct_rejections
        if s.mean_reaction_time_s is not None:
            rt_total += s.mean_reaction_time_s * s.responded
            rt_count += s.responded
    return Summary.from_counts(
        correct_hits=hits,
        false_alarms=false_alarms,
        misses=misses,
        correct_rejections=rejections,
        mean_reaction_time_s=None if rt_count == 0 else rt_total / rt_count,
    )
