"""Catalog file loading and shape normalization.

コンテンツファイルは「配列そのもの」と「配列を包むオブジェクト」の両方が
存在するため、読み込み境界で CandidateItem の配列へ正規化する。
スケジューラ側はコンテナの形で分岐しない。
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from ..logging import logger
from ..models.content import CandidateItem, ItemType
from .memory import InMemoryCatalog


_WRAPPER_KEYS = ("items", "flashcards", "sentences", "cards")
_ID_KEYS = ("item_id", "itemId", "id", "flashcardId", "sentenceId", "wordId")
_TYPE_HINTS: Mapping[str, ItemType] = {
    "flashcards": ItemType.flashcard,
    "cards": ItemType.flashcard,
    "sentences": ItemType.grammar,
}


def _unwrap(payload: Any) -> tuple[list[Any], ItemType | None, dict[str, Any]]:
    """Return (entries, item type hint, wrapper-level defaults)."""

    if isinstance(payload, list):
        return payload, None, {}
    if isinstance(payload, Mapping):
        for key in _WRAPPER_KEYS:
            entries = payload.get(key)
            if isinstance(entries, list):
                defaults = {
                    k: v for k, v in payload.items() if k in ("level", "category", "type")
                }
                return entries, _TYPE_HINTS.get(key), defaults
    raise ValueError("catalog payload must be a list or an object wrapping a list")


def _coerce_item_type(raw: Any, hint: ItemType | None, entry: Mapping[str, Any]) -> ItemType:
    if raw:
        return ItemType(str(raw))
    if hint is not None:
        return hint
    # 例文キーを持つものは文法、それ以外は単語カード
    return ItemType.grammar if "sentenceId" in entry else ItemType.flashcard


def normalize_entries(
    payload: Any,
    *,
    level: str | None = None,
    item_type: ItemType | None = None,
) -> list[CandidateItem]:
    """Normalize raw catalog JSON into CandidateItems.

    ID を持たない要素や辞書でない要素は読み飛ばしてログに残す。
    """

    entries, hint, defaults = _unwrap(payload)
    items: list[CandidateItem] = []
    skipped = 0
    for entry in entries:
        if not isinstance(entry, Mapping):
            skipped += 1
            continue
        item_id = next((str(entry[k]) for k in _ID_KEYS if entry.get(k) not in (None, "")), None)
        if item_id is None:
            skipped += 1
            continue
        content = {k: v for k, v in entry.items() if k not in _ID_KEYS}
        raw_type = content.pop("item_type", None) or content.pop("type", None) or defaults.get("type")
        items.append(
            CandidateItem(
                item_id=item_id,
                item_type=item_type or _coerce_item_type(raw_type, hint, entry),
                level=str(content.pop("level", None) or level or defaults.get("level") or ""),
                category=content.pop("category", None) or defaults.get("category"),
                content=content,
            )
        )
    if skipped:
        logger.warning("catalog_entries_skipped", skipped=skipped, loaded=len(items))
    return items


def load_catalog_file(
    path: str | Path,
    *,
    level: str | None = None,
    item_type: ItemType | None = None,
) -> list[CandidateItem]:
    with Path(path).open(encoding="utf-8") as fh:
        payload = json.load(fh)
    return normalize_entries(payload, level=level, item_type=item_type)


def build_catalog(paths: Iterable[str | Path]) -> InMemoryCatalog:
    """Load several content files into one catalog; later duplicates are ignored."""

    items: list[CandidateItem] = []
    for path in paths:
        loaded = load_catalog_file(path)
        logger.info("catalog_file_loaded", path=str(path), items=len(loaded))
        items.extend(loaded)
    return InMemoryCatalog(items)
