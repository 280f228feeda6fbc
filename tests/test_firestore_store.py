from datetime import UTC, datetime, timedelta

import pytest
from google.api_core import exceptions as gexc

from firestore_fakes import FakeFirestoreClient
from practice_engine.config import Settings
from practice_engine.errors import StoreUnavailable
from practice_engine.models.content import CandidateItem, ItemType, PriorityCandidate
from practice_engine.models.practice import SessionSettings
from practice_engine.models.review import CardState, ReviewRecord
from practice_engine.store import _normalize_emulator_host, create_firestore_stores
from practice_engine.store.firestore_store import (
    FirestoreIndexedCandidateStore,
    FirestoreReviewRecordStore,
    FirestoreSettingsStore,
)


NOW = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)


def _record(item_id: str, user_id: str = "u1") -> ReviewRecord:
    return ReviewRecord(
        user_id=user_id,
        item_id=item_id,
        state=CardState.review,
        repetitions=2,
        interval=6,
        next_review_date=NOW + timedelta(days=6),
        last_review_date=NOW,
    )


def _records_store(client: FakeFirestoreClient, **kwargs) -> FirestoreReviewRecordStore:
    kwargs.setdefault("sleep", lambda _seconds: None)
    return FirestoreReviewRecordStore(client, **kwargs)


def test_review_records_round_trip_through_batch_writes() -> None:
    client = FakeFirestoreClient()
    store = _records_store(client)
    records = [_record("c1"), _record("c2")]

    store.put_many(records)

    assert client.batch_commits == 1
    assert set(client._data["review_records"]) == {"u1__c1", "u1__c2"}
    assert store.get("u1", "c1") == records[0]
    assert store.get("u1", "missing") is None


def test_get_many_uses_one_bulk_read_and_skips_missing_ids() -> None:
    client = FakeFirestoreClient()
    store = _records_store(client)
    store.put_many([_record("c1"), _record("c3"), _record("c1", user_id="u2")])
    client.calls.clear()

    found = store.get_many("u1", ["c1", "c2", "c3", "c1"])

    assert set(found) == {"c1", "c3"}
    assert found["c1"].user_id == "u1"
    assert client.calls == ["get_all"]


def test_put_many_with_no_records_does_nothing() -> None:
    client = FakeFirestoreClient()

    _records_store(client).put_many([])

    assert client.batch_commits == 0


def test_transient_errors_are_retried() -> None:
    client = FakeFirestoreClient()
    store = _records_store(client, max_retries=2)
    store.put_many([_record("c1")])
    client.fail_next(2)

    assert store.get("u1", "c1") is not None


def test_exhausted_retries_raise_store_unavailable() -> None:
    client = FakeFirestoreClient()
    delays: list[float] = []
    store = FirestoreReviewRecordStore(client, max_retries=2, backoff_ms=100, sleep=delays.append)
    client.fail_next(3, gexc.DeadlineExceeded("timeout"))

    with pytest.raises(StoreUnavailable) as excinfo:
        store.get_many("u1", ["c1"])

    assert excinfo.value.retryable is True
    assert isinstance(excinfo.value.__cause__, gexc.DeadlineExceeded)
    assert delays == [0.1, 0.2]


def test_zero_retries_gives_up_on_the_first_failure() -> None:
    client = FakeFirestoreClient()
    delays: list[float] = []
    store = FirestoreReviewRecordStore(client, max_retries=0, backoff_ms=100, sleep=delays.append)
    client.fail_next(1, gexc.ServiceUnavailable("down"))

    with pytest.raises(StoreUnavailable) as excinfo:
        store.get_many("u1", ["c1"])

    assert isinstance(excinfo.value.__cause__, gexc.ServiceUnavailable)
    assert delays == []
    # 失敗は1回分だけ消費され、次の呼び出しは成功する
    assert store.get_many("u1", ["c1"]) == {}


def test_non_transient_errors_are_not_retried() -> None:
    client = FakeFirestoreClient()
    store = _records_store(client)
    client.fail_next(1, RuntimeError("bug"))

    with pytest.raises(RuntimeError):
        store.get("u1", "c1")
    assert client.calls == ["get"]


def test_settings_store_returns_none_when_unset() -> None:
    client = FakeFirestoreClient()
    store = FirestoreSettingsStore(client, sleep=lambda _s: None)

    assert store.get("u1") is None
    store.set("u1", SessionSettings(randomize_order=True, items_per_session=5))
    assert store.get("u1") == SessionSettings(randomize_order=True, items_per_session=5)


def test_indexed_candidates_are_listed_per_user() -> None:
    client = FakeFirestoreClient()
    store = FirestoreIndexedCandidateStore(client, sleep=lambda _s: None)
    sentence = CandidateItem(item_id="s1", item_type=ItemType.grammar, level="B1")
    store.put("u1", PriorityCandidate(item=sentence, times_shown=2, last_shown_at=NOW))
    store.put("u2", PriorityCandidate(item=sentence))

    [candidate] = store.list_for_user("u1")

    assert candidate.item == sentence
    assert candidate.times_shown == 2
    assert candidate.last_shown_at == NOW


def test_create_firestore_stores_uses_the_given_client_and_retry_policy() -> None:
    client = FakeFirestoreClient()
    settings = Settings(store_max_retries=0)

    stores = create_firestore_stores(settings, client=client)
    client.fail_next(1)

    with pytest.raises(StoreUnavailable):
        stores.settings.get("u1")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, None),
        ("  ", None),
        ("localhost:8080", "http://localhost:8080"),
        ("https://emulator:8443", "https://emulator:8443"),
    ],
)
def test_emulator_host_normalization(raw, expected) -> None:
    assert _normalize_emulator_host(raw) == expected
