"""API route modules."""

from . import documents, health, query, sync

__all__ = ["documents", "health", "query", "sync"]
