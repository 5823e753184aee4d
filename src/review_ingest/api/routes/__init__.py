"""API route handlers."""

from . import health, queue

__all__ = [
    "health",
    "queue",
]
