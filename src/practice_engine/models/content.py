from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ItemType(str, Enum):
    flashcard = "flashcard"
    grammar = "grammar"


class CandidateItem(BaseModel):
    """A practice item owned by the external content catalog.

    カタログ側が所有する読み取り専用の出題候補。`content` には表示用の
    ペイロード（単語・例文・訳など）をそのまま保持する。
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    item_id: str = Field(min_length=1)
    item_type: ItemType
    level: str = ""
    category: str | None = None
    content: dict[str, Any] = Field(default_factory=dict)


class PriorityCandidate(BaseModel):
    """An indexed candidate with practice statistics for smart selection.

    スマート選択（第2段）で使う索引済み候補。出題回数・正答率などの統計を持つ。
    永続化はストア側の責務で、スケジューラ内では一時的な値として扱う。
    """

    model_config = ConfigDict(extra="ignore")

    item: CandidateItem
    times_shown: int = Field(default=0, ge=0)
    last_shown_at: datetime | None = None
    average_accuracy: float = Field(default=0.0, ge=0.0, le=100.0)
    needs_review: bool = True
    consecutive_correct: int = Field(default=0, ge=0)
    submitted_at: datetime | None = None
    times_completed: int = Field(default=0, ge=0)
    total_correct_answers: int = Field(default=0, ge=0)
    total_blanks: int = Field(default=0, ge=0)

    @property
    def item_id(self) -> str:
        return self.item.item_id
