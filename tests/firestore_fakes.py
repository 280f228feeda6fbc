"""Firestore をテストで再現するための簡易フェイク実装。

ストアアダプタが使う操作（document get/set、where('==') の列挙、
get_all による一括取得、WriteBatch）だけを再現する。`fail_next()` で
次の N 回の呼び出しに例外を注入でき、リトライ挙動を検証できる。
"""

from __future__ import annotations

from typing import Any

from google.api_core import exceptions as gexc


class FakeDocumentSnapshot:
    def __init__(self, collection: str, doc_id: str, data: dict[str, Any] | None) -> None:
        self._collection = collection
        self.id = doc_id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> dict[str, Any] | None:
        return None if self._data is None else dict(self._data)


class FakeDocumentReference:
    def __init__(self, client: "FakeFirestoreClient", collection: str, doc_id: str) -> None:
        self._client = client
        self._collection = collection
        self.id = doc_id

    def set(self, data: dict[str, Any], merge: bool = False) -> None:
        self._client._maybe_fail("set")
        self._write(data, merge=merge)

    def _write(self, data: dict[str, Any], merge: bool = False) -> None:
        bucket = self._client._data.setdefault(self._collection, {})
        if merge and self.id in bucket:
            bucket[self.id].update(data)
        else:
            bucket[self.id] = dict(data)

    def get(self) -> FakeDocumentSnapshot:
        self._client._maybe_fail("get")
        return self._snapshot()

    def _snapshot(self) -> FakeDocumentSnapshot:
        bucket = self._client._data.setdefault(self._collection, {})
        payload = dict(bucket[self.id]) if self.id in bucket else None
        return FakeDocumentSnapshot(self._collection, self.id, payload)


class FakeCollectionReference:
    def __init__(self, client: "FakeFirestoreClient", name: str) -> None:
        self._client = client
        self._name = name

    def document(self, doc_id: str) -> FakeDocumentReference:
        return FakeDocumentReference(self._client, self._name, doc_id)

    def _all_snapshots(self) -> list[FakeDocumentSnapshot]:
        bucket = self._client._data.setdefault(self._name, {})
        return [
            FakeDocumentSnapshot(self._name, doc_id, dict(data))
            for doc_id, data in bucket.items()
        ]

    def where(self, field_path: str, op_string: str, value: Any) -> "FakeQuery":
        return FakeQuery(self).where(field_path, op_string, value)

    def stream(self):  # pragma: no cover - simple iterator
        self._client._maybe_fail("stream")
        yield from self._all_snapshots()


class FakeQuery:
    def __init__(
        self,
        collection: FakeCollectionReference,
        filters: list[tuple[str, Any]] | None = None,
    ) -> None:
        self._collection = collection
        self._filters = list(filters or [])

    def where(self, field_path: str, op_string: str, value: Any) -> "FakeQuery":
        if op_string != "==":
            raise NotImplementedError(f"unsupported operator: {op_string}")
        return FakeQuery(self._collection, [*self._filters, (field_path, value)])

    def stream(self):
        self._collection._client._maybe_fail("stream")
        for snapshot in self._collection._all_snapshots():
            data = snapshot.to_dict() or {}
            if all(data.get(field) == expected for field, expected in self._filters):
                yield snapshot


class FakeWriteBatch:
    """Firestore の WriteBatch API を模した簡易フェイク。"""

    def __init__(self, client: "FakeFirestoreClient") -> None:
        self._client = client
        self._operations: list[tuple[FakeDocumentReference, dict[str, Any]]] = []

    def set(self, doc_ref: FakeDocumentReference, data: dict[str, Any]) -> None:
        self._operations.append((doc_ref, data))

    def commit(self) -> None:
        self._client._maybe_fail("commit")
        self._client.batch_commits += 1
        for ref, data in self._operations:
            ref._write(data)


class FakeFirestoreClient:
    """google.cloud.firestore.Client 互換の最小フェイク。

    - _data は collection ごとに {doc_id: payload} を保持し、テスト毎に新規インスタンスで分離する。
    - calls に操作名を記録する（get_all の回数検証などに使う）。
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._failures: list[Exception] = []
        self.calls: list[str] = []
        self.batch_commits = 0

    def fail_next(self, count: int, exc: Exception | None = None) -> None:
        error = exc if exc is not None else gexc.ServiceUnavailable("firestore unavailable")
        self._failures.extend([error] * count)

    def _maybe_fail(self, operation: str) -> None:
        self.calls.append(operation)
        if self._failures:
            raise self._failures.pop(0)

    def collection(self, name: str) -> FakeCollectionReference:
        return FakeCollectionReference(self, name)

    def batch(self) -> FakeWriteBatch:
        return FakeWriteBatch(self)

    def get_all(self, references: list[FakeDocumentReference]):
        self._maybe_fail("get_all")
        for ref in references:
            yield ref._snapshot()
