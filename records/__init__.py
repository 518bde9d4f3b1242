"""Server-side persistence of trial results."""

from records.store import InMemoryTrialStore, SqliteTrialStore, TrialStore

__all__ = ["InMemoryTrialStore", "SqliteTrialStore", "TrialStore"]
