from datetime import UTC, datetime, timedelta

import pytest

from practice_engine.models.content import CandidateItem, ItemType, PriorityCandidate
from practice_engine.selection.priority import apply_attempt, mark_shown, rank, score


NOW = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)


def _candidate(item_id: str = "s1", **stats) -> PriorityCandidate:
    return PriorityCandidate(
        item=CandidateItem(item_id=item_id, item_type=ItemType.grammar, level="B1"),
        **stats,
    )


def test_fresh_candidate_scores_every_urgency_signal() -> None:
    # 要復習100 + 未出題80 + 低正答率60 + 7日超40 + 連続正解なし20 + 最近追加15
    fresh = _candidate(submitted_at=NOW - timedelta(days=1))

    assert score(fresh, NOW) == 315


def test_mastered_recent_candidate_scores_zero() -> None:
    mastered = _candidate(
        needs_review=False,
        times_shown=4,
        last_shown_at=NOW - timedelta(hours=2),
        average_accuracy=95.0,
        consecutive_correct=3,
        submitted_at=NOW - timedelta(days=30),
    )

    assert score(mastered, NOW) == 0


@pytest.mark.parametrize(
    ("accuracy", "expected"),
    [(69.9, 60), (70.0, 30), (84.9, 30), (85.0, 0)],
)
def test_accuracy_bands(accuracy: float, expected: int) -> None:
    candidate = _candidate(
        needs_review=False,
        times_shown=1,
        last_shown_at=NOW,
        average_accuracy=accuracy,
        consecutive_correct=1,
    )

    assert score(candidate, NOW) == expected


@pytest.mark.parametrize(
    ("days", "expected"),
    [(0.5, 0), (1.5, 10), (3.5, 20), (7.5, 40)],
)
def test_staleness_bands(days: float, expected: int) -> None:
    candidate = _candidate(
        needs_review=False,
        times_shown=1,
        last_shown_at=NOW - timedelta(days=days),
        average_accuracy=100.0,
        consecutive_correct=1,
    )

    assert score(candidate, NOW) == expected


def test_rank_orders_by_score_and_keeps_ties_stable() -> None:
    low = _candidate(
        "low",
        needs_review=False,
        times_shown=2,
        last_shown_at=NOW,
        average_accuracy=100.0,
        consecutive_correct=2,
    )
    tie_a = _candidate("tie-a")
    tie_b = _candidate("tie-b")

    ranked = rank([low, tie_a, tie_b], NOW)

    assert [entry.candidate.item_id for entry in ranked] == ["tie-a", "tie-b", "low"]
    assert ranked[0].score == ranked[1].score


def test_mark_shown_updates_counters_without_mutating_input() -> None:
    candidate = _candidate()

    shown = mark_shown(candidate, NOW)

    assert shown.times_shown == 1
    assert shown.last_shown_at == NOW
    assert candidate.times_shown == 0


def test_three_perfect_attempts_master_the_candidate() -> None:
    candidate = _candidate()
    for _ in range(3):
        candidate = apply_attempt(candidate, 4, 4)

    assert candidate.consecutive_correct == 3
    assert candidate.average_accuracy == 100.0
    assert candidate.needs_review is False


def test_imperfect_attempt_resets_streak_and_uses_cumulative_accuracy() -> None:
    candidate = apply_attempt(_candidate(), 4, 4)
    candidate = apply_attempt(candidate, 2, 4)

    assert candidate.consecutive_correct == 0
    assert candidate.times_completed == 2
    # 累積 6/8 = 75%
    assert candidate.average_accuracy == 75.0
    assert candidate.needs_review is True


def test_many_accurate_attempts_master_without_streak() -> None:
    candidate = _candidate()
    for correct in (10, 10, 9, 10, 10):
        candidate = apply_attempt(candidate, correct, 10)

    assert candidate.consecutive_correct == 2
    assert candidate.average_accuracy == 98.0
    assert candidate.needs_review is False


@pytest.mark.parametrize(("correct", "total"), [(1, 0), (-1, 3), (4, 3)])
def test_invalid_attempt_counts_are_rejected(correct: int, total: int) -> None:
    with pytest.raises(ValueError):
        apply_attempt(_candidate(), correct, total)
