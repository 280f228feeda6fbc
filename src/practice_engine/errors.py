"""Typed errors raised by the practice engine.

「出題対象なし」は例外ではなく型付きの結果で返す。ここに並ぶのは
呼び出し側が区別して扱うべき失敗のみ。
"""

from __future__ import annotations


class PracticeEngineError(Exception):
    """Base class for all engine errors."""


class NotFound(PracticeEngineError):
    """An unknown item or user id was requested. Not retried."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class InvalidGrade(PracticeEngineError, ValueError):
    """The grading outcome is outside the five-point scale."""

    def __init__(self, outcome: object) -> None:
        super().__init__(f"invalid grade: {outcome!r}")
        self.outcome = outcome


class StoreUnavailable(PracticeEngineError):
    """A backing store failed after the adapter exhausted its retries."""

    retryable = True


class BatchAbandonedError(StoreUnavailable):
    """A pending batch was dropped before its bulk fetch ran."""
