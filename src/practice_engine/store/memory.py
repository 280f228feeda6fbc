"""In-process store implementations.

ローカル開発とテスト用。スレッドからの同時呼び出しに備えて簡易ロックで
辞書操作を保護する（to_thread でオフロードされるため）。
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from threading import Lock

from ..models.content import CandidateItem, PriorityCandidate
from ..models.practice import SessionSettings
from ..models.review import ReviewRecord


class InMemoryReviewRecordStore:
    def __init__(self, records: Iterable[ReviewRecord] = ()) -> None:
        self._lock = Lock()
        self._records: dict[tuple[str, str], ReviewRecord] = {}
        self.bulk_reads = 0
        self.put_many(records)

    def get(self, user_id: str, item_id: str) -> ReviewRecord | None:
        with self._lock:
            return self._records.get((user_id, item_id))

    def get_many(self, user_id: str, item_ids: Sequence[str]) -> Mapping[str, ReviewRecord]:
        with self._lock:
            self.bulk_reads += 1
            return {
                item_id: self._records[(user_id, item_id)]
                for item_id in item_ids
                if (user_id, item_id) in self._records
            }

    def put_many(self, records: Iterable[ReviewRecord]) -> None:
        with self._lock:
            for record in records:
                self._records[(record.user_id, record.item_id)] = record


class InMemoryCatalog:
    """Catalog backed by an already-normalized list of items."""

    def __init__(self, items: Iterable[CandidateItem]) -> None:
        self._items: dict[str, CandidateItem] = {}
        self._by_level: dict[str, list[CandidateItem]] = {}
        for item in items:
            if item.item_id in self._items:
                continue
            self._items[item.item_id] = item
            self._by_level.setdefault(item.level, []).append(item)

    def list_levels(self) -> list[str]:
        return list(self._by_level)

    def list_by_level(self, level: str) -> list[CandidateItem]:
        return list(self._by_level.get(level, []))

    def by_id(self, item_id: str) -> CandidateItem | None:
        return self._items.get(item_id)


class InMemorySettingsStore:
    def __init__(self, settings: Mapping[str, SessionSettings] | None = None) -> None:
        self._settings = dict(settings or {})

    def get(self, user_id: str) -> SessionSettings | None:
        return self._settings.get(user_id)

    def set(self, user_id: str, settings: SessionSettings) -> None:
        self._settings[user_id] = settings


class InMemoryIndexedCandidateStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._candidates: dict[str, dict[str, PriorityCandidate]] = {}

    def list_for_user(self, user_id: str) -> list[PriorityCandidate]:
        with self._lock:
            return list(self._candidates.get(user_id, {}).values())

    def put(self, user_id: str, candidate: PriorityCandidate) -> None:
        with self._lock:
            self._candidates.setdefault(user_id, {})[candidate.item_id] = candidate
