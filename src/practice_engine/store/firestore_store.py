from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, TypeVar

from google.api_core import exceptions as gexc
from google.cloud import firestore

from ..errors import StoreUnavailable
from ..logging import logger
from ..models.content import PriorityCandidate
from ..models.practice import SessionSettings
from ..models.review import ReviewRecord


R = TypeVar("R")

# Firestore の WriteBatch は1コミット500書き込みまで
_WRITE_BATCH_LIMIT = 500
_GET_ALL_CHUNK = 100


def _doc_id(user_id: str, item_id: str) -> str:
    return f"{user_id}__{item_id}"


class _RetryingStore:
    """Shared retry loop for Firestore adapters.

    GoogleAPIError は max_retries 回まで指数バックオフで再試行し、
    尽きたら StoreUnavailable に変換して呼び出し側へ伝える。
    それ以外の例外（検証エラー等）は再試行せずそのまま送出する。
    """

    def __init__(
        self,
        client: firestore.Client,
        *,
        max_retries: int = 2,
        backoff_ms: int = 100,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._max_retries = max(0, max_retries)
        self._backoff_seconds = max(0, backoff_ms) / 1000.0
        self._sleep = sleep

    def _call(self, operation: str, fn: Callable[[], R], **fields: Any) -> R:
        attempt = 0
        while True:
            try:
                return fn()
            except gexc.GoogleAPIError as exc:
                if attempt >= self._max_retries:
                    logger.error(
                        f"firestore_{operation}_give_up",
                        attempts=attempt + 1,
                        error=str(exc),
                        error_class=exc.__class__.__name__,
                        **fields,
                    )
                    raise StoreUnavailable(f"firestore {operation} failed: {exc}") from exc
                logger.warning(
                    f"firestore_{operation}_retry",
                    attempt=attempt + 1,
                    error=str(exc),
                    error_class=exc.__class__.__name__,
                    **fields,
                )
                self._sleep(self._backoff_seconds * (2**attempt))
                attempt += 1


class FirestoreReviewRecordStore(_RetryingStore):
    """ReviewRecord persistence on the `review_records` collection.

    ドキュメントIDは `{user_id}__{item_id}`。一括取得は get_all、
    一括保存は WriteBatch を使う。
    """

    def __init__(self, client: firestore.Client, **kwargs: Any) -> None:
        super().__init__(client, **kwargs)
        self._records = client.collection("review_records")

    def get(self, user_id: str, item_id: str) -> ReviewRecord | None:
        def _get() -> ReviewRecord | None:
            snapshot = self._records.document(_doc_id(user_id, item_id)).get()
            if not snapshot.exists:
                return None
            return ReviewRecord.model_validate(snapshot.to_dict() or {})

        return self._call("review_record_get", _get, user_id=user_id, item_id=item_id)

    def get_many(self, user_id: str, item_ids: Sequence[str]) -> Mapping[str, ReviewRecord]:
        unique_ids = list(dict.fromkeys(item_ids))

        def _get_many() -> dict[str, ReviewRecord]:
            found: dict[str, ReviewRecord] = {}
            for start in range(0, len(unique_ids), _GET_ALL_CHUNK):
                refs = [
                    self._records.document(_doc_id(user_id, item_id))
                    for item_id in unique_ids[start : start + _GET_ALL_CHUNK]
                ]
                for snapshot in self._client.get_all(refs):
                    if not snapshot.exists:
                        continue
                    record = ReviewRecord.model_validate(snapshot.to_dict() or {})
                    found[record.item_id] = record
            return found

        return self._call(
            "review_record_get_many", _get_many, user_id=user_id, size=len(unique_ids)
        )

    def put_many(self, records: Iterable[ReviewRecord]) -> None:
        pending = list(records)
        if not pending:
            return

        def _put_many() -> None:
            for start in range(0, len(pending), _WRITE_BATCH_LIMIT):
                batch = self._client.batch()
                for record in pending[start : start + _WRITE_BATCH_LIMIT]:
                    ref = self._records.document(_doc_id(record.user_id, record.item_id))
                    batch.set(ref, record.model_dump(mode="json"))
                batch.commit()

        self._call("review_record_put_many", _put_many, size=len(pending))


class FirestoreSettingsStore(_RetryingStore):
    """Per-user session settings on the `practice_settings` collection."""

    def __init__(self, client: firestore.Client, **kwargs: Any) -> None:
        super().__init__(client, **kwargs)
        self._settings = client.collection("practice_settings")

    def get(self, user_id: str) -> SessionSettings | None:
        def _get() -> SessionSettings | None:
            snapshot = self._settings.document(user_id).get()
            if not snapshot.exists:
                return None
            return SessionSettings.model_validate(snapshot.to_dict() or {})

        return self._call("settings_get", _get, user_id=user_id)

    def set(self, user_id: str, settings: SessionSettings) -> None:
        self._call(
            "settings_set",
            lambda: self._settings.document(user_id).set(settings.model_dump(mode="json")),
            user_id=user_id,
        )


class FirestoreIndexedCandidateStore(_RetryingStore):
    """Indexed practice candidates on the `indexed_candidates` collection.

    各ドキュメントは user_id フィールドを持ち、ユーザ単位の等価フィルタで列挙する。
    """

    def __init__(self, client: firestore.Client, **kwargs: Any) -> None:
        super().__init__(client, **kwargs)
        self._candidates = client.collection("indexed_candidates")

    def list_for_user(self, user_id: str) -> list[PriorityCandidate]:
        def _list() -> list[PriorityCandidate]:
            query = self._candidates.where("user_id", "==", user_id)
            return [
                PriorityCandidate.model_validate(snapshot.to_dict() or {})
                for snapshot in query.stream()
            ]

        return self._call("indexed_candidate_list", _list, user_id=user_id)

    def put(self, user_id: str, candidate: PriorityCandidate) -> None:
        payload = candidate.model_dump(mode="json")
        payload["user_id"] = user_id
        self._call(
            "indexed_candidate_put",
            lambda: self._candidates.document(_doc_id(user_id, candidate.item_id)).set(payload),
            user_id=user_id,
            item_id=candidate.item_id,
        )
