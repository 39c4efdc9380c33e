"""Document store interface shared by the Firestore and in-memory backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional


class DocumentStoreError(Exception):
    """Base exception for document store errors (transient read/write failures)."""

    pass


class PermissionDeniedError(DocumentStoreError):
    """Raised when the store refuses access to a document or collection."""

    pass


class DocumentNotFoundError(DocumentStoreError):
    """Raised when a document to update does not exist."""

    pass


class _ServerTimestamp:
    """Sentinel replaced by the backend's commit time on write."""

    _instance: Optional["_ServerTimestamp"] = None

    def __new__(cls) -> "_ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Document:
    """A document snapshot: id plus field data."""

    id: str
    data: dict[str, Any] = field(default_factory=dict)


DocumentCallback = Callable[[Optional[Document]], None]
QueryCallback = Callable[[list[Document]], None]
ErrorCallback = Callable[[DocumentStoreError], None]


class Subscription:
    """Handle for a live listener. Unsubscribing twice is a no-op."""

    def __init__(self, unsubscribe: Callable[[], None]):
        self._unsubscribe = unsubscribe
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._unsubscribe()


class DocumentStore(ABC):
    """Async access to the hosted document database.

    Collection paths are slash-separated (``users/{adminId}/foodOrders``).
    Queries are equality filters only. Listener callbacks run on the
    event loop; a document listener receives None when the document does
    not exist.
    """

    @abstractmethod
    async def get(self, path: str, doc_id: str) -> Optional[Document]:
        """Read one document; None when missing."""

    @abstractmethod
    async def query(self, path: str, where: dict[str, Any]) -> list[Document]:
        """Read all documents matching every equality filter."""

    @abstractmethod
    async def add(self, path: str, data: dict[str, Any]) -> str:
        """Create a document with a generated id and return the id."""

    @abstractmethod
    async def update(self, path: str, doc_id: str, data: dict[str, Any]) -> None:
        """Merge fields into an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """

    @abstractmethod
    def watch_document(
        self,
        path: str,
        doc_id: str,
        on_snapshot: DocumentCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        """Listen to one document."""

    @abstractmethod
    def watch_query(
        self,
        path: str,
        where: dict[str, Any],
        on_snapshot: QueryCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        """Listen to an equality query."""

    async def close(self) -> None:
        """Release backend resources."""
        return None
