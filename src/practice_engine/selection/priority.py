"""Priority scoring for indexed candidates (smart selection tier).

重みは複数の呼び出し箇所で順位を一致させるための契約値。変更する場合は
テストの期待値も合わせて更新すること。
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..models.content import PriorityCandidate


NEEDS_REVIEW_WEIGHT = 100
NEVER_SHOWN_WEIGHT = 80
LOW_ACCURACY_WEIGHT = 60
MEDIUM_ACCURACY_WEIGHT = 30
STALE_WEEK_WEIGHT = 40
STALE_FEW_DAYS_WEIGHT = 20
STALE_DAY_WEIGHT = 10
NO_STREAK_WEIGHT = 20
RECENT_SUBMISSION_WEIGHT = 15

MASTERY_STREAK = 3
MASTERY_MIN_COMPLETIONS = 5
MASTERY_MIN_ACCURACY = 90

_DAY = timedelta(days=1)


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: PriorityCandidate
    score: int


def score(candidate: PriorityCandidate, now: datetime) -> int:
    """Additive urgency score; higher means show sooner."""

    total = 0
    if candidate.needs_review:
        total += NEEDS_REVIEW_WEIGHT
    if candidate.times_shown == 0:
        total += NEVER_SHOWN_WEIGHT

    if candidate.average_accuracy < 70:
        total += LOW_ACCURACY_WEIGHT
    elif candidate.average_accuracy < 85:
        total += MEDIUM_ACCURACY_WEIGHT

    # 一度も出題されていない候補は「7日超」と同じ扱い
    if candidate.last_shown_at is None:
        days_since_shown = float("inf")
    else:
        days_since_shown = (now - candidate.last_shown_at) / _DAY
    if days_since_shown > 7:
        total += STALE_WEEK_WEIGHT
    elif days_since_shown > 3:
        total += STALE_FEW_DAYS_WEIGHT
    elif days_since_shown > 1:
        total += STALE_DAY_WEIGHT

    if candidate.consecutive_correct == 0:
        total += NO_STREAK_WEIGHT

    if candidate.submitted_at is not None and (now - candidate.submitted_at) / _DAY < 7:
        total += RECENT_SUBMISSION_WEIGHT
    return total


def rank(candidates: Iterable[PriorityCandidate], now: datetime) -> list[ScoredCandidate]:
    """Score and sort candidates, highest first; ties keep insertion order."""

    scored = [ScoredCandidate(candidate, score(candidate, now)) for candidate in candidates]
    scored.sort(key=lambda entry: entry.score, reverse=True)
    return scored


def mark_shown(candidate: PriorityCandidate, now: datetime) -> PriorityCandidate:
    return candidate.model_copy(
        update={"times_shown": candidate.times_shown + 1, "last_shown_at": now}
    )


def apply_attempt(
    candidate: PriorityCandidate,
    correct_answers: int,
    total_blanks: int,
) -> PriorityCandidate:
    """Fold one fill-in-the-blank attempt into the candidate's statistics.

    正答率は累積の正答数/空欄数から算出する。満点で連続正解を加算し、
    それ以外はリセット。連続3回満点、または5回以上かつ正答率90%以上で
    習得済みとみなし needs_review を外す。
    """

    if total_blanks <= 0:
        raise ValueError("total_blanks must be positive")
    if not 0 <= correct_answers <= total_blanks:
        raise ValueError("correct_answers must be within [0, total_blanks]")

    times_completed = candidate.times_completed + 1
    total_correct = candidate.total_correct_answers + correct_answers
    total = candidate.total_blanks + total_blanks
    average_accuracy = round(total_correct / total * 100)
    streak = candidate.consecutive_correct + 1 if correct_answers == total_blanks else 0
    mastered = streak >= MASTERY_STREAK or (
        times_completed >= MASTERY_MIN_COMPLETIONS and average_accuracy >= MASTERY_MIN_ACCURACY
    )
    return candidate.model_copy(
        update={
            "times_completed": times_completed,
            "total_correct_answers": total_correct,
            "total_blanks": total,
            "average_accuracy": float(average_accuracy),
            "consecutive_correct": streak,
            "needs_review": not mastered,
        }
    )
