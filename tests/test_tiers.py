import asyncio
import random
from datetime import UTC, datetime, timedelta

import pytest

from practice_engine.models.content import CandidateItem, ItemType, PriorityCandidate
from practice_engine.models.practice import SourceTier
from practice_engine.models.review import CardState, ReviewRecord
from practice_engine.selection.tiers import ExclusionRing, MultiTierSelector, PracticeCursor


NOW = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)


def _item(item_id: str) -> CandidateItem:
    return CandidateItem(item_id=item_id, item_type=ItemType.grammar, level="B1")


def _indexed(item_id: str, **stats) -> PriorityCandidate:
    return PriorityCandidate(item=_item(item_id), **stats)


def _record(item_id: str, next_review: datetime) -> ReviewRecord:
    return ReviewRecord(
        user_id="u1",
        item_id=item_id,
        state=CardState.review,
        repetitions=2,
        interval=3,
        next_review_date=next_review,
    )


def _selector(indexed, records, unindexed, *, seed: int = 0) -> MultiTierSelector:
    async def load_indexed(user_id):
        return list(indexed)

    async def load_records(user_id, item_ids):
        return {item_id: records.get(item_id) for item_id in item_ids}

    async def load_unindexed(user_id, indexed_ids):
        return [item for item in unindexed if item.item_id not in indexed_ids]

    return MultiTierSelector(
        load_indexed=load_indexed,
        load_records=load_records,
        load_unindexed=load_unindexed,
        rng=random.Random(seed),
    )


def test_most_overdue_indexed_review_wins_first() -> None:
    indexed = [_indexed("a"), _indexed("b"), _indexed("c")]
    records = {
        "a": _record("a", NOW - timedelta(hours=1)),
        "b": _record("b", NOW - timedelta(days=2)),
    }
    selector = _selector(indexed, records, [_item("z")])

    result = asyncio.run(selector.select("u1", frozenset(), NOW))

    assert result.source_tier is SourceTier.srs_due
    assert result.reason == "most_overdue"
    assert result.item.item_id == "b"
    assert result.overdue_seconds == pytest.approx(2 * 86400)


def test_falls_back_to_smart_when_nothing_is_due() -> None:
    indexed = [
        _indexed("calm", needs_review=False, times_shown=3, last_shown_at=NOW, average_accuracy=100.0, consecutive_correct=3),
        _indexed("urgent"),
    ]
    records = {"calm": _record("calm", NOW + timedelta(days=3))}
    selector = _selector(indexed, records, [_item("z")])

    result = asyncio.run(selector.select("u1", frozenset(), NOW))

    assert result.source_tier is SourceTier.smart
    assert result.reason == "highest_priority"
    assert result.item.item_id == "urgent"
    assert result.score == 300


def test_random_tier_when_no_indexed_candidates() -> None:
    pool = [_item("r1"), _item("r2"), _item("r3")]
    selector = _selector([], {}, pool)

    result = asyncio.run(selector.select("u1", frozenset({"r1", "r2"}), NOW))

    assert result.source_tier is SourceTier.random
    assert result.reason == "random_unindexed"
    assert result.item.item_id == "r3"


def test_random_tier_relaxes_exclusion_covering_the_whole_pool() -> None:
    pool = [_item("r1"), _item("r2")]
    selector = _selector([], {}, pool)

    result = asyncio.run(selector.select("u1", frozenset({"r1", "r2"}), NOW))

    assert result.source_tier is SourceTier.random
    assert result.reason == "exclusion_relaxed"
    assert result.item.item_id in {"r1", "r2"}


def test_smart_tier_relaxes_exclusion_covering_every_indexed_item() -> None:
    selector = _selector([_indexed("s0"), _indexed("s1")], {}, [])

    result = asyncio.run(selector.select("u1", frozenset({"s0", "s1"}), NOW))

    assert result.source_tier is SourceTier.smart
    assert result.reason == "exclusion_relaxed"
    assert result.item.item_id in {"s0", "s1"}


def test_cursor_over_a_small_indexed_pool_is_never_exhausted() -> None:
    selector = _selector([_indexed("s0"), _indexed("s1"), _indexed("s2")], {}, [])

    async def run() -> list:
        cursor = PracticeCursor(
            lambda exclude: selector.select("u1", exclude, NOW), exclusion_size=10
        )
        results = [await cursor.current()]
        for _ in range(5):
            results.append(await cursor.refresh())
        return results

    results = asyncio.run(run())

    assert [r.item.item_id for r in results[:3]] == ["s0", "s1", "s2"]
    assert all(not r.is_exhausted for r in results)
    assert results[3].source_tier is SourceTier.smart
    assert results[3].reason == "exclusion_relaxed"


def test_exhausted_is_a_typed_result() -> None:
    selector = _selector([], {}, [])

    result = asyncio.run(selector.select("u1", frozenset(), NOW))

    assert result.is_exhausted
    assert result.item is None
    assert result.reason == "no_content"


def test_loader_errors_are_not_swallowed() -> None:
    async def broken(user_id):
        raise ConnectionError("store down")

    async def unused(*args):  # pragma: no cover - must not be reached
        raise AssertionError("later tiers must not run")

    selector = MultiTierSelector(load_indexed=broken, load_records=unused, load_unindexed=unused)

    with pytest.raises(ConnectionError):
        asyncio.run(selector.select("u1", frozenset(), NOW))


def test_exclusion_ring_evicts_oldest_and_refreshes_duplicates() -> None:
    ring = ExclusionRing(size=3)
    for item_id in ("a", "b", "c"):
        ring.add(item_id)
    ring.add("a")
    ring.add("d")

    assert list(ring) == ["c", "a", "d"]
    assert "b" not in ring
    assert len(ring) == 3


def test_cursor_refresh_never_repeats_recent_items() -> None:
    indexed = [_indexed(f"s{i}") for i in range(12)]
    selector = _selector(indexed, {}, [])

    async def run() -> list[str]:
        cursor = PracticeCursor(
            lambda exclude: selector.select("u1", exclude, NOW), exclusion_size=10
        )
        shown = [(await cursor.current()).item.item_id]
        for _ in range(30):
            result = await cursor.refresh()
            assert result.item.item_id not in cursor.excluded
            shown.append(result.item.item_id)
        return shown

    shown = asyncio.run(run())

    # 直近10件の窓の中で重複しない
    for start in range(len(shown) - 10):
        window = shown[start : start + 11]
        assert len(set(window)) == 11


def test_cursor_initial_load_uses_no_exclusion() -> None:
    seen: list[frozenset[str]] = []

    async def select(exclude):
        seen.append(exclude)
        return await _selector([_indexed("only")], {}, []).select("u1", exclude, NOW)

    async def run() -> None:
        cursor = PracticeCursor(select)
        first = await cursor.current()
        again = await cursor.current()
        assert first is again

    asyncio.run(run())

    assert seen == [frozenset()]
