"""Spaced-repetition state transitions.

採点1回分の状態遷移を計算する純粋関数群。I/O は一切行わず、
呼び出し側が渡した `now` だけを時刻の基準にする。

- again: 状態遷移表 `_AGAIN_TRANSITIONS` に従い、連続失敗が閾値に達したら lapsed
- hard/good/easy/expert: 評価が高いほど間隔の伸びが大きい（厳密に単調）
- 習熟度は延滞日数で減衰させたうえで、評価ごとの目標値への指数移動平均で更新
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from .errors import InvalidGrade
from .models.review import (
    DEFAULT_EASE_FACTOR,
    MAX_EASE_FACTOR,
    MIN_EASE_FACTOR,
    CardState,
    Grade,
    ReviewRecord,
)


LAPSE_THRESHOLD = 3
LEARNING_GRADUATION_REPETITIONS = 3
RELEARNING_GRADUATION_REPETITIONS = 2
RELEARN_INTERVAL_DAYS = 1
LAPSED_RETRY_DELAY = timedelta(hours=4)
MAX_INTERVAL_DAYS = 36500

MASTERY_DECAY_PER_DAY = 2.0
MASTERY_EMA_ALPHA = 0.35

_DAY = timedelta(days=1)

# again の遷移表。learning/relearning は連続失敗が LAPSE_THRESHOLD に達すると lapsed へ。
_AGAIN_TRANSITIONS: dict[CardState, CardState] = {
    CardState.new: CardState.learning,
    CardState.learning: CardState.relearning,
    CardState.review: CardState.relearning,
    CardState.relearning: CardState.relearning,
    CardState.lapsed: CardState.lapsed,
}
_LAPSE_ESCALATION_STATES = frozenset({CardState.learning, CardState.relearning})

# 正答時の基本遷移。卒業条件（反復回数）は _success_state で判定する。
_SUCCESS_TRANSITIONS: dict[CardState, CardState] = {
    CardState.new: CardState.learning,
    CardState.learning: CardState.learning,
    CardState.review: CardState.review,
    CardState.relearning: CardState.relearning,
    CardState.lapsed: CardState.relearning,
}

_FIRST_STEP_DAYS: dict[Grade, int] = {
    Grade.hard: 1,
    Grade.good: 2,
    Grade.easy: 4,
    Grade.expert: 365,
}
_INTERVAL_BUMP: dict[Grade, int] = {
    Grade.hard: 0,
    Grade.good: 1,
    Grade.easy: 2,
    Grade.expert: 3,
}
_EASE_DELTA: dict[Grade, float] = {
    Grade.again: -0.20,
    Grade.hard: -0.15,
    Grade.good: 0.0,
    Grade.easy: 0.15,
    Grade.expert: 0.30,
}
_MASTERY_TARGET: dict[Grade, float] = {
    Grade.again: 0.0,
    Grade.hard: 60.0,
    Grade.good: 85.0,
    Grade.easy: 100.0,
    Grade.expert: 100.0,
}


def parse_grade(outcome: object) -> Grade:
    """Validate a raw outcome against the five-point scale.

    文字列か Grade 以外、または5段階外の値は InvalidGrade とする。
    """

    if isinstance(outcome, Grade):
        return outcome
    if not isinstance(outcome, str):
        raise InvalidGrade(outcome)
    try:
        return Grade(outcome)
    except ValueError:
        raise InvalidGrade(outcome) from None


def _interval_multiplier(grade: Grade, ease: float) -> float:
    if grade is Grade.hard:
        return 1.2
    if grade is Grade.good:
        return ease
    if grade is Grade.easy:
        return ease * 1.3
    return ease * 3.0


def _next_interval(previous: int, ease: float, grade: Grade, repetitions: int) -> int:
    """Interval in days after a successful review.

    `repetitions` is the post-grade count. The first repetition uses a fixed step;
    later ones grow by ceil(previous * multiplier) + bump.
    """

    if repetitions <= 1:
        days = _FIRST_STEP_DAYS[grade]
    else:
        grown = math.ceil(previous * _interval_multiplier(grade, ease)) + _INTERVAL_BUMP[grade]
        days = max(previous + 1, grown)
    return min(MAX_INTERVAL_DAYS, days)


def _adjust_ease(ease: float, delta: float) -> float:
    if delta < 0:
        return min(ease, round(max(MIN_EASE_FACTOR, ease + delta), 2))
    if delta > 0:
        return max(ease, round(min(MAX_EASE_FACTOR, ease + delta), 2))
    return ease


def _again_state(prior: CardState, consecutive_incorrect: int) -> CardState:
    if prior in _LAPSE_ESCALATION_STATES and consecutive_incorrect >= LAPSE_THRESHOLD:
        return CardState.lapsed
    return _AGAIN_TRANSITIONS[prior]


def _success_state(prior: CardState, grade: Grade, repetitions: int) -> CardState:
    state = _SUCCESS_TRANSITIONS[prior]
    if state is CardState.learning and (
        grade is Grade.expert or repetitions >= LEARNING_GRADUATION_REPETITIONS
    ):
        return CardState.review
    if (
        prior is CardState.relearning
        and repetitions >= RELEARNING_GRADUATION_REPETITIONS
    ):
        return CardState.review
    return state


def decayed_mastery(mastery: float, next_review_date: datetime, now: datetime) -> float:
    """Reduce mastery by MASTERY_DECAY_PER_DAY for each day an item is overdue."""

    if next_review_date >= now:
        return mastery
    days_overdue = (now - next_review_date) / _DAY
    return max(0.0, mastery - days_overdue * MASTERY_DECAY_PER_DAY)


def _updated_mastery(current: float, grade: Grade) -> float:
    if grade is Grade.expert:
        return 100.0
    target = _MASTERY_TARGET[grade]
    value = current + MASTERY_EMA_ALPHA * (target - current)
    return round(min(100.0, max(0.0, value)), 2)


def grade(
    record: ReviewRecord | None,
    outcome: Grade | str,
    *,
    now: datetime,
    user_id: str | None = None,
    item_id: str | None = None,
) -> ReviewRecord:
    """Apply one grading event and return the resulting record.

    record が None の場合は初回採点として扱い、user_id/item_id から新規レコードを作る。
    入力レコードは変更しない。
    """

    grade_value = parse_grade(outcome)
    if record is None:
        if not user_id or not item_id:
            raise ValueError("user_id and item_id are required for a first grade")
        prior = CardState.new
        repetitions = 0
        ease = DEFAULT_EASE_FACTOR
        interval = 0
        consecutive_correct = consecutive_incorrect = 0
        correct_count = incorrect_count = 0
        lapse_count = 0
        last_lapse_date: datetime | None = None
        mastery = 0.0
    else:
        prior = record.state
        repetitions = record.repetitions
        ease = record.ease_factor
        interval = record.interval
        consecutive_correct = record.consecutive_correct
        consecutive_incorrect = record.consecutive_incorrect
        correct_count = record.correct_count
        incorrect_count = record.incorrect_count
        lapse_count = record.lapse_count
        last_lapse_date = record.last_lapse_date
        mastery = decayed_mastery(record.mastery_level, record.next_review_date, now)
        user_id = record.user_id
        item_id = record.item_id

    if grade_value is Grade.again:
        consecutive_correct = 0
        consecutive_incorrect += 1
        incorrect_count += 1
        repetitions = 0
        state = _again_state(prior, consecutive_incorrect)
        if prior is CardState.review:
            lapse_count += 1
            last_lapse_date = now
        if state is CardState.lapsed:
            next_interval = 0
            next_review_date = now + LAPSED_RETRY_DELAY
        else:
            next_interval = RELEARN_INTERVAL_DAYS
            next_review_date = now + next_interval * _DAY
    else:
        consecutive_incorrect = 0
        consecutive_correct += 1
        correct_count += 1
        repetitions += 1
        state = _success_state(prior, grade_value, repetitions)
        next_interval = _next_interval(interval, ease, grade_value, repetitions)
        next_review_date = now + next_interval * _DAY

    return ReviewRecord(
        user_id=user_id,
        item_id=item_id,
        state=state,
        repetitions=repetitions,
        ease_factor=_adjust_ease(ease, _EASE_DELTA[grade_value]),
        interval=next_interval,
        next_review_date=next_review_date,
        correct_count=correct_count,
        incorrect_count=incorrect_count,
        consecutive_correct=consecutive_correct,
        consecutive_incorrect=consecutive_incorrect,
        mastery_level=_updated_mastery(mastery, grade_value),
        lapse_count=lapse_count,
        last_review_date=now,
        last_lapse_date=last_lapse_date,
    )


def is_struggling(record: ReviewRecord) -> bool:
    """Return True when an item needs extra attention."""

    return (
        record.mastery_level < 40
        or record.consecutive_incorrect >= 2
        or record.lapse_count >= 3
        or record.state in (CardState.lapsed, CardState.relearning)
    )
