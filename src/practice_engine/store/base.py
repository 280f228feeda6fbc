"""Interfaces of the external collaborators the engine consumes.

永続化エンジン自体は対象外。ここでは点取得中心の単純なストアとして
必要最小限の操作だけを定義する。実装は同期 API とし、非同期側からは
スレッドへオフロードして呼び出す。
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol

from ..models.content import CandidateItem, PriorityCandidate
from ..models.practice import SessionSettings
from ..models.review import ReviewRecord


class ReviewRecordStore(Protocol):
    def get(self, user_id: str, item_id: str) -> ReviewRecord | None: ...

    def get_many(
        self, user_id: str, item_ids: Sequence[str]
    ) -> Mapping[str, ReviewRecord]: ...

    def put_many(self, records: Iterable[ReviewRecord]) -> None: ...


class CandidateCatalog(Protocol):
    def list_levels(self) -> list[str]: ...

    def list_by_level(self, level: str) -> list[CandidateItem]: ...

    def by_id(self, item_id: str) -> CandidateItem | None: ...


class SettingsStore(Protocol):
    def get(self, user_id: str) -> SessionSettings | None: ...


class IndexedCandidateStore(Protocol):
    def list_for_user(self, user_id: str) -> list[PriorityCandidate]: ...

    def put(self, user_id: str, candidate: PriorityCandidate) -> None: ...
