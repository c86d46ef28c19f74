"""
Record Store Module

Document store abstraction using the Strategy Pattern.
The active backend is determined by configuration (RECORD_STORE_BACKEND).

Backends:
---------
- "firestore": Google Cloud Firestore through the Firebase Admin SDK
- "memory": process-local store for development and tests

Services receive the store through get_record_store(); tests install a
MemoryRecordStore with set_record_store() or by overriding the FastAPI
dependency.
"""

from classpulse.store.base import (
    RecordStore,
    RecordQuery,
    FieldFilter,
    OrderBy,
    Write,
    SnapshotListener,
    StoreWatch,
    StoreError,
    RecordNotFoundError,
    TransientStoreError,
    TransactionAbortedError,
    InvalidQueryError,
)
from classpulse.store.memory import MemoryRecordStore
from classpulse.core.config import settings

# Module-level store instance (singleton)
_store_instance: RecordStore | None = None


def get_record_store() -> RecordStore:
    """
    Factory function that returns the configured record store.

    Uses singleton pattern - creates instance once, reuses it.

    Raises:
        ValueError: If RECORD_STORE_BACKEND is not a valid option
    """
    global _store_instance

    if _store_instance is None:
        _store_instance = _create_record_store()

    return _store_instance


def _create_record_store() -> RecordStore:
    backend = settings.RECORD_STORE_BACKEND.lower()

    if backend == "firestore":
        # Firebase SDK is only loaded for this backend
        from classpulse.store.firestore import FirestoreRecordStore
        return FirestoreRecordStore()

    elif backend == "memory":
        return MemoryRecordStore()

    else:
        raise ValueError(
            f"Unknown record store backend: {backend}. "
            f"Valid options: firestore, memory"
        )


def set_record_store(store: RecordStore | None) -> None:
    """Install a specific store instance (None resets the singleton)."""
    global _store_instance
    _store_instance = store


def reset_record_store() -> None:
    """
    Reset the store singleton.

    After calling this, the next get_record_store() call
    will create a new instance with current config.
    """
    set_record_store(None)


__all__ = [
    "get_record_store",
    "set_record_store",
    "reset_record_store",
    "RecordStore",
    "RecordQuery",
    "FieldFilter",
    "OrderBy",
    "Write",
    "SnapshotListener",
    "StoreWatch",
    "StoreError",
    "RecordNotFoundError",
    "TransientStoreError",
    "TransactionAbortedError",
    "InvalidQueryError",
    "MemoryRecordStore",
]
