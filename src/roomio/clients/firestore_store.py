"""Google Cloud Firestore document store backend."""

import asyncio
from typing import Any, Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from structlog import get_logger

from roomio.clients.document_store import (
    SERVER_TIMESTAMP,
    Document,
    DocumentCallback,
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreError,
    ErrorCallback,
    PermissionDeniedError,
    QueryCallback,
    Subscription,
)
from roomio.config import settings

logger = get_logger(__name__)


def translate_error(error: Exception) -> DocumentStoreError:
    """Map Google API errors onto the document store error family.

    Args:
        error: Exception raised by the Firestore SDK

    Returns:
        Matching DocumentStoreError subclass instance
    """
    if isinstance(error, DocumentStoreError):
        return error
    if isinstance(error, google_exceptions.PermissionDenied):
        return PermissionDeniedError(str(error))
    if isinstance(error, google_exceptions.NotFound):
        return DocumentNotFoundError(str(error))
    return DocumentStoreError(str(error))


class FirestoreDocumentStore(DocumentStore):
    """Firestore-backed store.

    Reads and writes go through the async client. Live listeners use the
    sync client's ``on_snapshot`` watch, whose callbacks fire on a
    background thread and are handed to the event loop with
    ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        project_id: Optional[str] = None,
        database: Optional[str] = None,
    ):
        """Initialize Firestore clients from settings.

        Credentials come from the default Google credential chain
        (GOOGLE_APPLICATION_CREDENTIALS, workload identity, etc.).
        """
        project_id = project_id or settings.store.project_id
        database = database or settings.store.database
        client_kwargs: dict[str, Any] = {}
        if project_id:
            client_kwargs["project"] = project_id
        if database:
            client_kwargs["database"] = database

        self.async_client = firestore.AsyncClient(**client_kwargs)
        self.watch_client = firestore.Client(**client_kwargs)
        self._probe_tasks: set[asyncio.Task] = set()

    @staticmethod
    def _prepare(data: dict[str, Any]) -> dict[str, Any]:
        return {
            key: (firestore.SERVER_TIMESTAMP if value is SERVER_TIMESTAMP else value)
            for key, value in data.items()
        }

    @staticmethod
    def _to_document(snapshot: Any) -> Optional[Document]:
        if snapshot is None or not snapshot.exists:
            return None
        return Document(snapshot.id, snapshot.to_dict() or {})

    def _async_collection(self, path: str):
        return self.async_client.collection(*path.split("/"))

    def _watch_collection(self, path: str):
        return self.watch_client.collection(*path.split("/"))

    @staticmethod
    def _apply_filters(query: Any, where: dict[str, Any]) -> Any:
        for key, value in where.items():
            query = query.where(filter=FieldFilter(key, "==", value))
        return query

    async def get(self, path: str, doc_id: str) -> Optional[Document]:
        try:
            snapshot = await self._async_collection(path).document(doc_id).get()
        except google_exceptions.GoogleAPICallError as e:
            raise translate_error(e) from e
        return self._to_document(snapshot)

    async def query(self, path: str, where: dict[str, Any]) -> list[Document]:
        query = self._apply_filters(self._async_collection(path), where)
        try:
            return [
                Document(snapshot.id, snapshot.to_dict() or {})
                async for snapshot in query.stream()
            ]
        except google_exceptions.GoogleAPICallError as e:
            raise translate_error(e) from e

    async def add(self, path: str, data: dict[str, Any]) -> str:
        try:
            _, reference = await self._async_collection(path).add(self._prepare(data))
        except google_exceptions.GoogleAPICallError as e:
            raise translate_error(e) from e
        return reference.id

    async def update(self, path: str, doc_id: str, data: dict[str, Any]) -> None:
        try:
            await self._async_collection(path).document(doc_id).update(self._prepare(data))
        except google_exceptions.GoogleAPICallError as e:
            raise translate_error(e) from e

    def watch_document(
        self,
        path: str,
        doc_id: str,
        on_snapshot: DocumentCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        loop = asyncio.get_running_loop()

        def _callback(snapshots, changes, read_time):
            snapshot = snapshots[0] if snapshots else None
            loop.call_soon_threadsafe(on_snapshot, self._to_document(snapshot))

        reference = self._watch_collection(path).document(doc_id)
        return self._start_watch(
            reference, _callback, on_error, probe=self._async_collection(path).document(doc_id).get()
        )

    def watch_query(
        self,
        path: str,
        where: dict[str, Any],
        on_snapshot: QueryCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        loop = asyncio.get_running_loop()

        def _callback(snapshots, changes, read_time):
            documents = [
                Document(snapshot.id, snapshot.to_dict() or {})
                for snapshot in snapshots
                if snapshot.exists
            ]
            loop.call_soon_threadsafe(on_snapshot, documents)

        query = self._apply_filters(self._watch_collection(path), where)
        probe_query = self._apply_filters(self._async_collection(path), where).limit(1)
        return self._start_watch(query, _callback, on_error, probe=probe_query.get())

    def _start_watch(self, target: Any, callback: Any, on_error: ErrorCallback, probe: Any) -> Subscription:
        """Start a watch and probe it for access errors.

        The SDK's watch thread logs and stops on errors without reporting
        them, so a one-shot read of the same target surfaces permission
        problems to ``on_error``.
        """
        try:
            watch = target.on_snapshot(callback)
        except google_exceptions.GoogleAPICallError as e:
            probe.close()
            on_error(translate_error(e))
            return Subscription(lambda: None)

        subscription = Subscription(watch.unsubscribe)

        async def _probe() -> None:
            try:
                await probe
            except google_exceptions.GoogleAPICallError as e:
                logger.warning("Firestore listener refused", error=str(e))
                subscription.unsubscribe()
                on_error(translate_error(e))

        task = asyncio.get_running_loop().create_task(_probe())
        self._probe_tasks.add(task)
        task.add_done_callback(self._probe_tasks.discard)
        return subscription

    async def close(self) -> None:
        self.watch_client.close()
