"""System-of-record adapters."""

from digest_engine.adapters.store.sqlite_store import SQLiteStore

__all__ = ["SQLiteStore"]
