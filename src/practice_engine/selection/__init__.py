"""Pure selection logic: due filtering, composition, ranking and tiers."""

from .due import DueSet, ScheduledItem, select_due
from .priority import ScoredCandidate, apply_attempt, mark_shown, rank, score
from .session import DEFAULT_ITEMS_PER_SESSION, compose, resolve_session_cap
from .tiers import ExclusionRing, MultiTierSelector, PracticeCursor

__all__ = [
    "DEFAULT_ITEMS_PER_SESSION",
    "DueSet",
    "ExclusionRing",
    "MultiTierSelector",
    "PracticeCursor",
    "ScheduledItem",
    "ScoredCandidate",
    "apply_attempt",
    "compose",
    "mark_shown",
    "rank",
    "resolve_session_cap",
    "score",
    "select_due",
]
