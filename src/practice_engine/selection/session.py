"""Session composition from a due set."""

from __future__ import annotations

import random
from collections.abc import Mapping

from ..models.content import CandidateItem, ItemType
from ..models.practice import SessionSettings
from .due import DueSet


DEFAULT_ITEMS_PER_SESSION: Mapping[ItemType, int] = {
    ItemType.flashcard: 20,
    ItemType.grammar: 10,
}


def resolve_session_cap(
    settings: SessionSettings,
    item_type: ItemType,
    defaults: Mapping[ItemType, int] = DEFAULT_ITEMS_PER_SESSION,
) -> int:
    """Return the effective session size; values <= 0 fall back to the type default."""

    if settings.items_per_session > 0:
        return settings.items_per_session
    return defaults[item_type]


def compose(
    due_set: DueSet,
    settings: SessionSettings,
    item_type: ItemType,
    *,
    rng: random.Random | None = None,
    defaults: Mapping[ItemType, int] = DEFAULT_ITEMS_PER_SESSION,
) -> list[CandidateItem]:
    """Turn a due set into an ordered, bounded session.

    randomize_order のときは新規群と復習群をそれぞれ独立にシャッフルし、
    新規を先に連結する。新規/復習の境界をまたいだ並べ替えはしない。
    """

    new_items = list(due_set.new_items)
    review_items = [entry.item for entry in due_set.review_items]
    if settings.randomize_order:
        source = rng if rng is not None else random.Random()
        source.shuffle(new_items)
        source.shuffle(review_items)
    cap = resolve_session_cap(settings, item_type, defaults)
    return (new_items + review_items)[:cap]
