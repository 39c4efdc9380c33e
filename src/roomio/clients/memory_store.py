"""In-process document store backend.

Used for local development (``STORE_BACKEND=memory``) and by the test
suite. Listeners are notified synchronously on every write, initial
snapshot included, which keeps state transitions deterministic.
"""

import copy
import itertools
import uuid
from typing import Any, Optional

from structlog import get_logger

from roomio.clients.document_store import (
    SERVER_TIMESTAMP,
    Document,
    DocumentCallback,
    DocumentNotFoundError,
    DocumentStore,
    ErrorCallback,
    PermissionDeniedError,
    QueryCallback,
    Subscription,
)
from roomio.utils.time_utils import Clock, utc_now

logger = get_logger(__name__)


class MemoryDocumentStore(DocumentStore):
    """Dictionary-backed document store with live listeners."""

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._doc_watchers: dict[int, tuple[str, str, DocumentCallback]] = {}
        self._query_watchers: dict[int, tuple[str, dict[str, Any], QueryCallback]] = {}
        self._denied: set[tuple[str, Optional[str]]] = set()
        self._tokens = itertools.count(1)

    # -- access control -------------------------------------------------

    def deny(self, path: str, doc_id: Optional[str] = None) -> None:
        """Refuse access to a whole collection or a single document."""
        self._denied.add((path, doc_id))

    def _check_access(self, path: str, doc_id: Optional[str] = None) -> None:
        if (path, None) in self._denied or (doc_id and (path, doc_id) in self._denied):
            raise PermissionDeniedError(
                f"Missing or insufficient permissions for {path}/{doc_id or ''}"
            )

    # -- reads ----------------------------------------------------------

    async def get(self, path: str, doc_id: str) -> Optional[Document]:
        self._check_access(path, doc_id)
        data = self._collections.get(path, {}).get(doc_id)
        return Document(doc_id, copy.deepcopy(data)) if data is not None else None

    async def query(self, path: str, where: dict[str, Any]) -> list[Document]:
        self._check_access(path)
        return self._matching(path, where)

    def _matching(self, path: str, where: dict[str, Any]) -> list[Document]:
        return [
            Document(doc_id, copy.deepcopy(data))
            for doc_id, data in self._collections.get(path, {}).items()
            if all(data.get(key) == value for key, value in where.items())
        ]

    # -- writes ---------------------------------------------------------

    def _resolve(self, data: dict[str, Any]) -> dict[str, Any]:
        now = self.clock()
        return {
            key: (now if value is SERVER_TIMESTAMP else copy.deepcopy(value))
            for key, value in data.items()
        }

    async def add(self, path: str, data: dict[str, Any]) -> str:
        self._check_access(path)
        doc_id = uuid.uuid4().hex[:20]
        self._collections.setdefault(path, {})[doc_id] = self._resolve(data)
        self._notify(path, doc_id)
        return doc_id

    async def update(self, path: str, doc_id: str, data: dict[str, Any]) -> None:
        self._check_access(path, doc_id)
        documents = self._collections.get(path, {})
        if doc_id not in documents:
            raise DocumentNotFoundError(f"No document to update: {path}/{doc_id}")
        documents[doc_id].update(self._resolve(data))
        self._notify(path, doc_id)

    def set_document(self, path: str, doc_id: str, data: dict[str, Any]) -> None:
        """Create or replace a document, as an admin-side writer would."""
        self._collections.setdefault(path, {})[doc_id] = self._resolve(data)
        self._notify(path, doc_id)

    def patch_document(self, path: str, doc_id: str, data: dict[str, Any]) -> None:
        """Merge fields into a document, as an admin-side writer would."""
        self._collections.setdefault(path, {}).setdefault(doc_id, {}).update(
            self._resolve(data)
        )
        self._notify(path, doc_id)

    def delete_document(self, path: str, doc_id: str) -> None:
        """Delete a document, as an admin-side writer would."""
        self._collections.get(path, {}).pop(doc_id, None)
        self._notify(path, doc_id)

    def documents(self, path: str) -> dict[str, dict[str, Any]]:
        """Copy of every document in a collection, keyed by id."""
        return copy.deepcopy(self._collections.get(path, {}))

    # -- listeners ------------------------------------------------------

    @property
    def active_listener_count(self) -> int:
        return len(self._doc_watchers) + len(self._query_watchers)

    def watch_document(
        self,
        path: str,
        doc_id: str,
        on_snapshot: DocumentCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        try:
            self._check_access(path, doc_id)
        except PermissionDeniedError as e:
            on_error(e)
            return Subscription(lambda: None)

        token = next(self._tokens)
        self._doc_watchers[token] = (path, doc_id, on_snapshot)
        subscription = Subscription(lambda: self._doc_watchers.pop(token, None))
        on_snapshot(self._snapshot(path, doc_id))
        return subscription

    def watch_query(
        self,
        path: str,
        where: dict[str, Any],
        on_snapshot: QueryCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        try:
            self._check_access(path)
        except PermissionDeniedError as e:
            on_error(e)
            return Subscription(lambda: None)

        token = next(self._tokens)
        self._query_watchers[token] = (path, dict(where), on_snapshot)
        subscription = Subscription(lambda: self._query_watchers.pop(token, None))
        on_snapshot(self._matching(path, where))
        return subscription

    def _snapshot(self, path: str, doc_id: str) -> Optional[Document]:
        data = self._collections.get(path, {}).get(doc_id)
        return Document(doc_id, copy.deepcopy(data)) if data is not None else None

    def _notify(self, path: str, doc_id: str) -> None:
        for token, (watch_path, watch_id, callback) in list(self._doc_watchers.items()):
            if watch_path == path and watch_id == doc_id and token in self._doc_watchers:
                callback(self._snapshot(path, doc_id))

        for token, (watch_path, where, callback) in list(self._query_watchers.items()):
            if watch_path == path and token in self._query_watchers:
                callback(self._matching(path, where))
