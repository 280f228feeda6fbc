"""Spaced-repetition scheduling and content selection for practice sessions."""

__version__ = "0.1.0"
