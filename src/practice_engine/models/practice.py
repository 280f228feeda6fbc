from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .content import CandidateItem


class SessionSettings(BaseModel):
    """Per-user session preferences.

    items_per_session が 0 以下なら種別ごとの既定値を使う。
    """

    model_config = ConfigDict(extra="ignore")

    randomize_order: bool = False
    items_per_session: int = 0


class SessionStatus(str, Enum):
    ready = "ready"
    all_caught_up = "all_caught_up"
    empty_pool = "empty_pool"


class PracticeSession(BaseModel):
    """Composed practice session.

    - status=all_caught_up: 候補はあるが今出題すべきものがない（正常）
    - status=empty_pool: 候補自体が存在しない（正常）
    """

    items: list[CandidateItem]
    status: SessionStatus
    due_count: int = 0
    new_count: int = 0
    review_count: int = 0


class SourceTier(str, Enum):
    """Which fallback tier produced a next-item result."""

    srs_due = "srs_due"
    smart = "smart"
    random = "random"
    exhausted = "exhausted"


SelectionReason = Literal[
    "most_overdue",
    "highest_priority",
    "random_unindexed",
    "exclusion_relaxed",
    "no_content",
]


class NextItemResult(BaseModel):
    """The chosen next item together with why it was chosen.

    出題理由をログではなく戻り値として返し、テスト可能にする。
    """

    item: CandidateItem | None = None
    source_tier: SourceTier
    reason: SelectionReason
    score: int | None = None
    overdue_seconds: float | None = None

    @property
    def is_exhausted(self) -> bool:
        return self.source_tier is SourceTier.exhausted


class Forecast(BaseModel):
    due_count: int
    next_due_at: datetime | None = None
    upcoming: list[CandidateItem] = Field(default_factory=list)


class GradeRequest(BaseModel):
    """Request model for submitting a grade.

    outcome は文字列のまま受け取り、5段階外の値はエンジン側で InvalidGrade とする。
    """

    item_id: str = Field(min_length=1)
    outcome: str = Field(min_length=1, max_length=16)


class AttemptRequest(BaseModel):
    """Request model for recording a fill-in-the-blank attempt."""

    item_id: str = Field(min_length=1)
    correct_answers: int = Field(ge=0)
    total_blanks: int = Field(gt=0)
