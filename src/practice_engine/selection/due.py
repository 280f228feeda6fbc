"""Due/not-due partitioning of a candidate pool.

出題対象（due）は「未採点」または「next_review_date <= now」のアイテム。
境界は包含（ちょうど now のものは due）。
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

from ..models.content import CandidateItem
from ..models.review import ReviewRecord


@dataclass(frozen=True)
class ScheduledItem:
    """A candidate paired with its review record."""

    item: CandidateItem
    record: ReviewRecord

    @property
    def next_review_date(self) -> datetime:
        return self.record.next_review_date


@dataclass(frozen=True)
class DueSet:
    """Result of `select_due`.

    - new_items: 未採点（カタログ順）
    - review_items: 期限到来済み、期限の古い順
    - not_due: 期限未到来、期限の近い順
    """

    new_items: list[CandidateItem] = field(default_factory=list)
    review_items: list[ScheduledItem] = field(default_factory=list)
    not_due: list[ScheduledItem] = field(default_factory=list)

    @property
    def due(self) -> list[CandidateItem]:
        return self.new_items + [entry.item for entry in self.review_items]

    @property
    def due_count(self) -> int:
        return len(self.new_items) + len(self.review_items)

    @property
    def is_caught_up(self) -> bool:
        """No due items although the pool is not empty."""
        return self.due_count == 0 and bool(self.not_due)

    @property
    def next_due_at(self) -> datetime | None:
        return self.not_due[0].next_review_date if self.not_due else None

    def upcoming(self, limit: int) -> list[CandidateItem]:
        return [entry.item for entry in self.not_due[: max(0, limit)]]


def select_due(
    candidates: Iterable[CandidateItem],
    records: Mapping[str, ReviewRecord | None],
    now: datetime,
) -> DueSet:
    """Partition candidates into new, due-review and not-due groups."""

    new_items: list[CandidateItem] = []
    review_items: list[ScheduledItem] = []
    not_due: list[ScheduledItem] = []
    for item in candidates:
        record = records.get(item.item_id)
        if record is None:
            new_items.append(item)
        elif record.next_review_date <= now:
            review_items.append(ScheduledItem(item, record))
        else:
            not_due.append(ScheduledItem(item, record))
    # sort は安定なので、同一期限のものは入力順を保つ
    review_items.sort(key=lambda entry: entry.next_review_date)
    not_due.sort(key=lambda entry: entry.next_review_date)
    return DueSet(new_items=new_items, review_items=review_items, not_due=not_due)
