"""ideaflow storage layer."""

from ideaflow.storage.base import StorageBackend, StorageError
from ideaflow.storage.sqlite_store import SQLiteStore

__all__ = ["SQLiteStore", "StorageBackend", "StorageError"]
