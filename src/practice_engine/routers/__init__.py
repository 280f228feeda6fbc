"""Router package exports."""

from . import health, practice

__all__ = [
    "health",
    "practice",
]
