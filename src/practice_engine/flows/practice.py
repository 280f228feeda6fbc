"""Practice flow: sessions, next-item selection and grading.

ストア I/O（同期 API）を anyio でスレッドへ逃がし、純粋関数の選択ロジックへ
スナップショットを渡す。ReviewRecord の点取得は BatchOptimizer で、
カタログ/設定の取得は RequestCoalescer でまとめる。
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator, Callable, Collection, Hashable, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from functools import partial

import anyio

from .. import srs
from ..batching import DEFAULT_MAX_BATCH_SIZE, DEFAULT_WINDOW_MS, BatchOptimizer, RequestCoalescer
from ..errors import NotFound
from ..logging import logger
from ..models.content import CandidateItem, ItemType, PriorityCandidate
from ..models.practice import (
    Forecast,
    NextItemResult,
    PracticeSession,
    SessionSettings,
    SessionStatus,
    SourceTier,
)
from ..models.review import ReviewRecord
from ..selection.due import select_due
from ..selection.priority import apply_attempt, mark_shown
from ..selection.session import DEFAULT_ITEMS_PER_SESSION, compose
from ..selection.tiers import DEFAULT_EXCLUSION_SIZE, MultiTierSelector, PracticeCursor
from ..store.base import CandidateCatalog, IndexedCandidateStore, ReviewRecordStore, SettingsStore


DEFAULT_UPCOMING_LIMIT = 15


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PracticeService:
    """Entry point for the practice engine.

    キャッシュ/バッチャはここで明示的に生成して保持する（モジュール単位の共有なし）。
    同一 (user_id, item_id) への採点はプロセス内でロックにより直列化する。
    """

    def __init__(
        self,
        *,
        records: ReviewRecordStore,
        catalog: CandidateCatalog,
        settings_store: SettingsStore,
        indexed: IndexedCandidateStore,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utcnow,
        items_per_session: Mapping[ItemType, int] = DEFAULT_ITEMS_PER_SESSION,
        upcoming_limit: int = DEFAULT_UPCOMING_LIMIT,
        exclusion_size: int = DEFAULT_EXCLUSION_SIZE,
        batch_window_ms: float = DEFAULT_WINDOW_MS,
        batch_max_size: int = DEFAULT_MAX_BATCH_SIZE,
        coalescer: RequestCoalescer | None = None,
    ) -> None:
        self._records = records
        self._catalog = catalog
        self._settings_store = settings_store
        self._indexed = indexed
        self._rng = rng if rng is not None else random.Random()
        self._clock = clock
        self._items_per_session = dict(items_per_session)
        self._upcoming_limit = upcoming_limit
        self._exclusion_size = exclusion_size
        self._coalescer = coalescer if coalescer is not None else RequestCoalescer()
        self._batcher: BatchOptimizer[ReviewRecord] = BatchOptimizer(
            self._fetch_records,
            window_ms=batch_window_ms,
            max_batch_size=batch_max_size,
        )
        self._grade_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._grade_lock_users: dict[tuple[str, str], int] = {}

    # --- loaders ---------------------------------------------------------

    async def _fetch_records(
        self, user_id: Hashable, item_ids: list[str]
    ) -> Mapping[str, ReviewRecord]:
        return await anyio.to_thread.run_sync(self._records.get_many, str(user_id), item_ids)

    async def _load_records(
        self, user_id: str, item_ids: Sequence[str]
    ) -> dict[str, ReviewRecord | None]:
        unique_ids = list(dict.fromkeys(item_ids))
        found = await asyncio.gather(
            *(self._batcher.batch_find_by_id(user_id, item_id) for item_id in unique_ids)
        )
        return dict(zip(unique_ids, found))

    async def _load_levels(self) -> list[str]:
        return await self._coalescer.coalesce(
            ("catalog_levels",),
            partial(anyio.to_thread.run_sync, self._catalog.list_levels),
        )

    async def _load_candidates(self, item_type: ItemType, level: str | None) -> list[CandidateItem]:
        """Catalog items of one type, for one level or for every level when level is None."""

        levels = [level] if level is not None else await self._load_levels()
        per_level = await asyncio.gather(
            *(
                self._coalescer.coalesce(
                    ("catalog", name),
                    partial(anyio.to_thread.run_sync, self._catalog.list_by_level, name),
                )
                for name in levels
            )
        )
        seen: set[str] = set()
        candidates: list[CandidateItem] = []
        for items in per_level:
            for item in items:
                if item.item_type is item_type and item.item_id not in seen:
                    seen.add(item.item_id)
                    candidates.append(item)
        return candidates

    async def _load_settings(self, user_id: str) -> SessionSettings:
        stored = await self._coalescer.coalesce(
            ("settings", user_id),
            partial(anyio.to_thread.run_sync, self._settings_store.get, user_id),
        )
        return stored if stored is not None else SessionSettings()

    async def _load_indexed(
        self, user_id: str, item_type: ItemType, level: str | None
    ) -> list[PriorityCandidate]:
        indexed = await anyio.to_thread.run_sync(self._indexed.list_for_user, user_id)
        return [
            candidate
            for candidate in indexed
            if candidate.item.item_type is item_type
            and (level is None or candidate.item.level == level)
        ]

    # --- sessions --------------------------------------------------------

    async def get_session(
        self,
        user_id: str,
        item_type: ItemType,
        settings: SessionSettings | None = None,
        level: str | None = None,
    ) -> PracticeSession:
        """Compose the next practice session for a user.

        設定未指定時は SettingsStore の値（無ければ既定値）を使う。
        候補がなければ empty_pool、候補はあるが出題対象がなければ all_caught_up。
        """

        now = self._clock()
        candidates = await self._load_candidates(item_type, level)
        if not candidates:
            logger.info(
                "practice_session_composed",
                user_id=user_id,
                item_type=item_type.value,
                status=SessionStatus.empty_pool.value,
                size=0,
            )
            return PracticeSession(items=[], status=SessionStatus.empty_pool)

        if settings is None:
            settings = await self._load_settings(user_id)
        records = await self._load_records(user_id, [item.item_id for item in candidates])
        due_set = select_due(candidates, records, now)
        items = compose(
            due_set, settings, item_type, rng=self._rng, defaults=self._items_per_session
        )
        new_ids = {item.item_id for item in due_set.new_items}
        new_count = sum(1 for item in items if item.item_id in new_ids)
        status = SessionStatus.ready if items else SessionStatus.all_caught_up
        logger.info(
            "practice_session_composed",
            user_id=user_id,
            item_type=item_type.value,
            status=status.value,
            size=len(items),
            due_count=due_set.due_count,
        )
        return PracticeSession(
            items=items,
            status=status,
            due_count=due_set.due_count,
            new_count=new_count,
            review_count=len(items) - new_count,
        )

    async def forecast(
        self, user_id: str, item_type: ItemType, level: str | None = None
    ) -> Forecast:
        now = self._clock()
        candidates = await self._load_candidates(item_type, level)
        if not candidates:
            return Forecast(due_count=0)
        records = await self._load_records(user_id, [item.item_id for item in candidates])
        due_set = select_due(candidates, records, now)
        return Forecast(
            due_count=due_set.due_count,
            next_due_at=due_set.next_due_at,
            upcoming=due_set.upcoming(self._upcoming_limit),
        )

    # --- next item -------------------------------------------------------

    async def get_next_item(
        self,
        user_id: str,
        exclude: Collection[str] = (),
        *,
        item_type: ItemType = ItemType.grammar,
        level: str | None = None,
    ) -> NextItemResult:
        """Pick one item through the fallback tiers.

        索引済み候補から選ばれた場合は出題回数と最終出題時刻を更新する。
        """

        now = self._clock()

        async def load_indexed(uid: str) -> list[PriorityCandidate]:
            return await self._load_indexed(uid, item_type, level)

        async def load_unindexed(uid: str, indexed_ids: frozenset[str]) -> list[CandidateItem]:
            pool = await self._load_candidates(item_type, level)
            return [item for item in pool if item.item_id not in indexed_ids]

        selector = MultiTierSelector(
            load_indexed=load_indexed,
            load_records=self._load_records,
            load_unindexed=load_unindexed,
            rng=self._rng,
        )
        result = await selector.select(user_id, frozenset(exclude), now)
        if result.source_tier in (SourceTier.srs_due, SourceTier.smart) and result.item is not None:
            await self._mark_indexed_shown(user_id, result.item.item_id, now)
        logger.info(
            "next_item_selected",
            user_id=user_id,
            item_id=result.item.item_id if result.item is not None else None,
            source_tier=result.source_tier.value,
            reason=result.reason,
            excluded=len(exclude),
        )
        return result

    async def _mark_indexed_shown(self, user_id: str, item_id: str, now: datetime) -> None:
        indexed = await anyio.to_thread.run_sync(self._indexed.list_for_user, user_id)
        for candidate in indexed:
            if candidate.item_id == item_id:
                await anyio.to_thread.run_sync(
                    self._indexed.put, user_id, mark_shown(candidate, now)
                )
                return

    def open_cursor(
        self,
        user_id: str,
        *,
        item_type: ItemType = ItemType.grammar,
        level: str | None = None,
    ) -> PracticeCursor:
        """Return a cursor holding this session's exclusion ring."""

        async def select(exclude: frozenset[str]) -> NextItemResult:
            return await self.get_next_item(user_id, exclude, item_type=item_type, level=level)

        return PracticeCursor(select, exclusion_size=self._exclusion_size)

    # --- grading ---------------------------------------------------------

    @asynccontextmanager
    async def _grade_lock(self, key: tuple[str, str]) -> AsyncIterator[None]:
        lock = self._grade_locks.get(key)
        if lock is None:
            lock = self._grade_locks[key] = asyncio.Lock()
        self._grade_lock_users[key] = self._grade_lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._grade_lock_users[key] -= 1
            if self._grade_lock_users[key] == 0:
                # 使われなくなったロックは破棄する（イベントループをまたいで残さない）
                del self._grade_lock_users[key]
                del self._grade_locks[key]

    async def grade(self, user_id: str, item_id: str, outcome: str) -> ReviewRecord:
        """Apply one grading event and persist the updated record.

        不正な採点値は何も書き込まずに InvalidGrade を送出する。
        カタログに無い item_id は NotFound。
        """

        grade_value = srs.parse_grade(outcome)
        item = await anyio.to_thread.run_sync(self._catalog.by_id, item_id)
        if item is None:
            raise NotFound("item", item_id)

        async with self._grade_lock((user_id, item_id)):
            now = self._clock()
            current = await self._batcher.batch_find_by_id(user_id, item_id)
            updated = srs.grade(current, grade_value, now=now, user_id=user_id, item_id=item_id)
            await anyio.to_thread.run_sync(self._records.put_many, [updated])

        logger.info(
            "review_graded",
            user_id=user_id,
            item_id=item_id,
            grade=grade_value.value,
            prior_state=current.state.value if current is not None else None,
            state=updated.state.value,
            interval=updated.interval,
        )
        return updated

    # --- attempts --------------------------------------------------------

    async def record_attempt(
        self,
        user_id: str,
        item_id: str,
        correct_answers: int,
        total_blanks: int,
    ) -> PriorityCandidate:
        """Fold a fill-in-the-blank attempt into an indexed candidate's statistics."""

        indexed = await anyio.to_thread.run_sync(self._indexed.list_for_user, user_id)
        candidate = next((c for c in indexed if c.item_id == item_id), None)
        if candidate is None:
            raise NotFound("indexed_candidate", item_id)
        updated = apply_attempt(candidate, correct_answers, total_blanks)
        await anyio.to_thread.run_sync(self._indexed.put, user_id, updated)
        logger.info(
            "attempt_recorded",
            user_id=user_id,
            item_id=item_id,
            accuracy=updated.average_accuracy,
            needs_review=updated.needs_review,
        )
        return updated

    async def index_items(self, user_id: str, item_ids: Iterable[str]) -> list[PriorityCandidate]:
        """Add catalog items to a user's indexed pool; already indexed ids are kept as-is."""

        existing = {
            c.item_id for c in await anyio.to_thread.run_sync(self._indexed.list_for_user, user_id)
        }
        # 未知の ID が1件でもあれば何も書き込まない
        resolved = []
        for item_id in dict.fromkeys(item_ids):
            if item_id in existing:
                continue
            item = await anyio.to_thread.run_sync(self._catalog.by_id, item_id)
            if item is None:
                raise NotFound("item", item_id)
            resolved.append(item)
        added: list[PriorityCandidate] = []
        for item in resolved:
            candidate = PriorityCandidate(item=item, submitted_at=self._clock())
            await anyio.to_thread.run_sync(self._indexed.put, user_id, candidate)
            added.append(candidate)
        return added

    async def aclose(self) -> None:
        await self._batcher.aclose()
