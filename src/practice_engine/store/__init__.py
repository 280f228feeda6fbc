from __future__ import annotations

import os
from dataclasses import dataclass

from google.cloud import firestore

from ..config import Settings
from .base import CandidateCatalog, IndexedCandidateStore, ReviewRecordStore, SettingsStore
from .catalog import build_catalog, load_catalog_file, normalize_entries
from .firestore_store import (
    FirestoreIndexedCandidateStore,
    FirestoreReviewRecordStore,
    FirestoreSettingsStore,
)
from .memory import (
    InMemoryCatalog,
    InMemoryIndexedCandidateStore,
    InMemoryReviewRecordStore,
    InMemorySettingsStore,
)

_DEFAULT_EMULATOR_HOST = "127.0.0.1:8080"


def _normalize_emulator_host(raw_host: str | None) -> str | None:
    """FIRESTORE_EMULATOR_HOST で受け取ったホスト文字列を正規化する。

    スキームなしの `localhost:8080` にも http:// を付与し、空文字や None は未設定とみなす。
    """

    host = (raw_host or "").strip()
    if not host:
        return None
    if host.startswith(("http://", "https://")):
        return host
    return f"http://{host}"


def build_firestore_client(settings: Settings) -> firestore.Client:
    """Build a Firestore client, preferring the emulator outside production.

    本番以外ではホスト未指定でも 127.0.0.1:8080 のエミュレータへ接続する。
    """

    environment_name = (settings.environment or "").strip().lower()
    emulator_host = _normalize_emulator_host(
        settings.firestore_emulator_host
        or os.environ.get("FIRESTORE_EMULATOR_HOST")
        or (_DEFAULT_EMULATOR_HOST if environment_name != "production" else None)
    )
    if emulator_host:
        # クライアントは FIRESTORE_EMULATOR_HOST を見て匿名認証へ切り替える
        os.environ.setdefault(
            "FIRESTORE_EMULATOR_HOST",
            emulator_host.replace("http://", "").replace("https://", ""),
        )
        return firestore.Client(
            project=settings.firestore_project_id,
            client_options={"api_endpoint": emulator_host},
        )
    return firestore.Client(project=settings.firestore_project_id)


@dataclass(frozen=True)
class FirestoreStores:
    records: FirestoreReviewRecordStore
    settings: FirestoreSettingsStore
    indexed: FirestoreIndexedCandidateStore


def create_firestore_stores(
    settings: Settings, client: firestore.Client | None = None
) -> FirestoreStores:
    """Create the Firestore-backed stores sharing one client and one retry policy."""

    client = client or build_firestore_client(settings)
    retry = {
        "max_retries": settings.store_max_retries,
        "backoff_ms": settings.store_retry_backoff_ms,
    }
    return FirestoreStores(
        records=FirestoreReviewRecordStore(client, **retry),
        settings=FirestoreSettingsStore(client, **retry),
        indexed=FirestoreIndexedCandidateStore(client, **retry),
    )


__all__ = [
    "CandidateCatalog",
    "FirestoreIndexedCandidateStore",
    "FirestoreReviewRecordStore",
    "FirestoreSettingsStore",
    "FirestoreStores",
    "InMemoryCatalog",
    "InMemoryIndexedCandidateStore",
    "InMemoryReviewRecordStore",
    "InMemorySettingsStore",
    "IndexedCandidateStore",
    "ReviewRecordStore",
    "SettingsStore",
    "build_catalog",
    "build_firestore_client",
    "create_firestore_stores",
    "load_catalog_file",
    "normalize_entries",
]
