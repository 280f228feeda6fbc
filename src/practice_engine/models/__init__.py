from .content import CandidateItem, ItemType, PriorityCandidate
from .practice import (
    AttemptRequest,
    Forecast,
    GradeRequest,
    NextItemResult,
    PracticeSession,
    SessionSettings,
    SessionStatus,
    SourceTier,
)
from .review import CardState, Grade, ReviewRecord

__all__ = [
    "AttemptRequest",
    "CandidateItem",
    "CardState",
    "Forecast",
    "Grade",
    "GradeRequest",
    "ItemType",
    "NextItemResult",
    "PracticeSession",
    "PriorityCandidate",
    "ReviewRecord",
    "SessionSettings",
    "SessionStatus",
    "SourceTier",
]
