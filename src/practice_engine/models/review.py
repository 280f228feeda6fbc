from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


MIN_EASE_FACTOR = 1.3
MAX_EASE_FACTOR = 3.0
DEFAULT_EASE_FACTOR = 2.5


class CardState(str, Enum):
    """Lifecycle state of a reviewable item."""

    new = "new"
    learning = "learning"
    review = "review"
    relearning = "relearning"
    lapsed = "lapsed"


class Grade(str, Enum):
    """Five-point grading scale submitted after each review."""

    again = "again"
    hard = "hard"
    good = "good"
    easy = "easy"
    expert = "expert"


class ReviewRecord(BaseModel):
    """Per-user scheduling state for one item.

    1ユーザ×1アイテムにつき1件。初回採点時に作成され、以後の採点で更新される。
    未採点のアイテムはレコード自体が存在しない（ゼロ埋めレコードは作らない）。
    """

    model_config = ConfigDict(extra="ignore")

    user_id: str
    item_id: str
    state: CardState = CardState.new
    repetitions: int = Field(default=0, ge=0)
    ease_factor: float = Field(
        default=DEFAULT_EASE_FACTOR, ge=MIN_EASE_FACTOR, le=MAX_EASE_FACTOR
    )
    interval: int = Field(default=0, ge=0, description="Current interval in days / 現在の復習間隔（日）")
    next_review_date: datetime
    correct_count: int = Field(default=0, ge=0)
    incorrect_count: int = Field(default=0, ge=0)
    consecutive_correct: int = Field(default=0, ge=0)
    consecutive_incorrect: int = Field(default=0, ge=0)
    mastery_level: float = Field(default=0.0, ge=0.0, le=100.0)
    lapse_count: int = Field(default=0, ge=0)
    last_review_date: datetime | None = None
    last_lapse_date: datetime | None = None

    def is_due(self, now: datetime) -> bool:
        return self.next_review_date <= now
