"""Store clients package."""

from roomio.clients.document_store import (
    SERVER_TIMESTAMP,
    Document,
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreError,
    PermissionDeniedError,
    Subscription,
)
from roomio.clients.local_state import LocalStateStore
from roomio.clients.memory_store import MemoryDocumentStore

__all__ = [
    "SERVER_TIMESTAMP",
    "Document",
    "DocumentNotFoundError",
    "DocumentStore",
    "DocumentStoreError",
    "PermissionDeniedError",
    "Subscription",
    "LocalStateStore",
    "MemoryDocumentStore",
    "create_document_store",
]


def create_document_store() -> DocumentStore:
    """Build the document store selected by ``STORE_BACKEND``."""
    from roomio.config import settings

    if settings.store.backend == "memory":
        return MemoryDocumentStore()

    from roomio.clients.firestore_store import FirestoreDocumentStore

    return FirestoreDocumentStore()
