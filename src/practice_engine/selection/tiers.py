"""Multi-tier "what's next" selection.

段階的フォールバックで次の1問を決める。
1. SRS 期限到来（採点履歴のある索引済み候補のうち最も延滞しているもの）
2. スマート選択（索引済み候補を優先度スコア順に）
3. ランダム（未索引のカタログ候補から一様に）
4. 出題なし（例外ではなく型付きの結果）

I/O エラーは次段へフォールスルーさせずにそのまま伝播する。
段の切り替えは「空であることが確定した」場合のみ。
"""

from __future__ import annotations

import random
from collections import deque
from collections.abc import Awaitable, Callable, Collection, Iterator, Mapping, Sequence
from datetime import datetime

from ..models.content import CandidateItem, PriorityCandidate
from ..models.practice import NextItemResult, SourceTier
from ..models.review import ReviewRecord
from .due import select_due
from .priority import rank


DEFAULT_EXCLUSION_SIZE = 10


class ExclusionRing:
    """Bounded ring of recently shown item ids.

    セッション単位の一時的な除外リスト。最も古い ID から押し出される。
    """

    def __init__(self, size: int = DEFAULT_EXCLUSION_SIZE) -> None:
        if size <= 0:
            raise ValueError("size must be positive")
        self._ids: deque[str] = deque(maxlen=size)

    def add(self, item_id: str) -> None:
        if item_id in self._ids:
            self._ids.remove(item_id)
        self._ids.append(item_id)

    def ids(self) -> frozenset[str]:
        return frozenset(self._ids)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)


def pick_srs_due(
    indexed: Sequence[PriorityCandidate],
    records: Mapping[str, ReviewRecord | None],
    exclude: Collection[str],
    now: datetime,
) -> NextItemResult | None:
    pool = [
        candidate.item
        for candidate in indexed
        if records.get(candidate.item_id) is not None and candidate.item_id not in exclude
    ]
    due_set = select_due(pool, records, now)
    if not due_set.review_items:
        return None
    top = due_set.review_items[0]
    return NextItemResult(
        item=top.item,
        source_tier=SourceTier.srs_due,
        reason="most_overdue",
        overdue_seconds=(now - top.next_review_date).total_seconds(),
    )


def pick_smart(
    indexed: Sequence[PriorityCandidate],
    exclude: Collection[str],
    now: datetime,
) -> NextItemResult | None:
    for entry in rank(indexed, now):
        if entry.candidate.item_id in exclude:
            continue
        return NextItemResult(
            item=entry.candidate.item,
            source_tier=SourceTier.smart,
            reason="highest_priority",
            score=entry.score,
        )
    return None


def pick_random(
    pool: Sequence[CandidateItem],
    exclude: Collection[str],
    rng: random.Random,
) -> NextItemResult | None:
    if not pool:
        return None
    eligible = [item for item in pool if item.item_id not in exclude]
    reason = "random_unindexed"
    if not eligible:
        # 除外リストがプール全体を覆う場合は「出題なし」にせず除外を緩める
        eligible = list(pool)
        reason = "exclusion_relaxed"
    return NextItemResult(
        item=rng.choice(eligible),
        source_tier=SourceTier.random,
        reason=reason,
    )


def exhausted() -> NextItemResult:
    return NextItemResult(source_tier=SourceTier.exhausted, reason="no_content")


IndexedLoader = Callable[[str], Awaitable[Sequence[PriorityCandidate]]]
RecordLoader = Callable[[str, Sequence[str]], Awaitable[Mapping[str, ReviewRecord | None]]]
UnindexedLoader = Callable[[str, frozenset[str]], Awaitable[Sequence[CandidateItem]]]


class MultiTierSelector:
    """Runs the fallback tiers against injected async loaders."""

    def __init__(
        self,
        *,
        load_indexed: IndexedLoader,
        load_records: RecordLoader,
        load_unindexed: UnindexedLoader,
        rng: random.Random | None = None,
    ) -> None:
        self._load_indexed = load_indexed
        self._load_records = load_records
        self._load_unindexed = load_unindexed
        self._rng = rng if rng is not None else random.Random()

    async def select(
        self,
        user_id: str,
        exclude: Collection[str],
        now: datetime,
    ) -> NextItemResult:
        indexed = list(await self._load_indexed(user_id))
        if indexed:
            records = await self._load_records(user_id, [c.item_id for c in indexed])
            result = pick_srs_due(indexed, records, exclude, now)
            if result is not None:
                return result
            result = pick_smart(indexed, exclude, now)
            if result is not None:
                return result
        indexed_ids = frozenset(candidate.item_id for candidate in indexed)
        pool = await self._load_unindexed(user_id, indexed_ids)
        result = pick_random(pool, exclude, self._rng)
        if result is not None:
            return result
        if indexed and exclude:
            # 除外リストが索引済み候補を覆い、未索引候補もない場合は除外を緩める
            relaxed = pick_smart(indexed, (), now)
            if relaxed is not None:
                return relaxed.model_copy(update={"reason": "exclusion_relaxed"})
        return exhausted()


class PracticeCursor:
    """Caller-held "what's next" state for one practice session.

    初回取得では除外リストを使わない。`refresh()` で現在の出題を除外リストへ
    追加し、第1段から選び直す。
    """

    def __init__(
        self,
        select: Callable[[frozenset[str]], Awaitable[NextItemResult]],
        *,
        exclusion_size: int = DEFAULT_EXCLUSION_SIZE,
    ) -> None:
        self._select = select
        self._ring = ExclusionRing(exclusion_size)
        self._current: NextItemResult | None = None

    @property
    def excluded(self) -> frozenset[str]:
        return self._ring.ids()

    async def current(self) -> NextItemResult:
        if self._current is None:
            self._current = await self._select(frozenset())
        return self._current

    async def refresh(self) -> NextItemResult:
        if self._current is not None and self._current.item is not None:
            self._ring.add(self._current.item.item_id)
        self._current = await self._select(self._ring.ids())
        return self._current
