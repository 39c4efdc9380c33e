"""Tracking of the requests a guest has made from this portal."""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import ValidationError
from structlog import get_logger

from roomio.clients.document_store import (
    Document,
    DocumentStore,
    DocumentStoreError,
    PermissionDeniedError,
    Subscription,
)
from roomio.clients.local_state import LocalStateStore
from roomio.config import settings
from roomio.models.requests import RequestKind, TrackedRequest, parse_tracked
from roomio.models.status import RequestStatus, RequestStatusMapper
from roomio.services.progress import ProgressEstimator
from roomio.services.registry import SubscriptionRegistry, TaskRegistry

logger = get_logger(__name__)


@dataclass
class TrackedEntry:
    """Local view of one tracked id."""

    request_id: str
    kind: RequestKind
    status: RequestStatus = RequestStatus.LOADING
    request: Optional[TrackedRequest] = None
    error: Optional[str] = None


EntryCallback = Callable[[TrackedEntry, Optional[RequestStatus]], None]


class RequestTracker:
    """Persisted, capped, most-recent-first list of request ids with live status.

    The id list lives in local state because the store has no query for
    "requests made from this portal". Every listed id holds exactly one
    live document subscription, reconciled on each list change.

    Snapshot outcomes:
    - document present: parsed into the tagged request model
    - document missing: status "deleted" (the id stays listed)
    - listener refused or failed: status "restricted", no retry
    """

    def __init__(
        self,
        store: DocumentStore,
        local_state: LocalStateStore,
        storage_key: str,
        collection_path: str,
        kind: RequestKind,
        estimator: Optional[ProgressEstimator] = None,
        on_change: Optional[EntryCallback] = None,
        max_entries: Optional[int] = None,
        log_context: Optional[dict] = None,
    ):
        self.store = store
        self.local_state = local_state
        self.storage_key = storage_key
        self.collection_path = collection_path
        self.kind = kind
        self.estimator = estimator
        self.on_change = on_change
        self.max_entries = max_entries or settings.portal.history_limit
        self.logger = logger.bind(kind=kind, **(log_context or {}))

        self.ids: list[str] = []
        self.entries: dict[str, TrackedEntry] = {}
        self.subscriptions = SubscriptionRegistry(self._subscribe)
        self._seen: set[str] = set()
        self._discovery: Optional[Subscription] = None
        self._discovered = TaskRegistry(f"discovery-{kind}")

    # -- list operations ------------------------------------------------

    async def load(self) -> list[str]:
        """Load the persisted id list and subscribe to every id."""
        stored = await self.local_state.load_ids(self.storage_key)
        self.ids = list(dict.fromkeys(stored))[: self.max_entries]
        self._seen.update(self.ids)
        self._reconcile()
        self.logger.info("Loaded tracked requests", count=len(self.ids))
        return list(self.ids)

    async def add_id(self, request_id: str) -> list[str]:
        """Put an id at the front of the list, dropping the oldest past the cap."""
        self._discovered.cancel(request_id)
        return await self._push(request_id)

    async def _push(self, request_id: str) -> list[str]:
        current = await self.local_state.load_ids(self.storage_key)
        if not current and self.ids:
            # Storage unreadable: keep the in-memory list rather than drop it
            current = list(self.ids)
        self._seen.add(request_id)
        self.ids = [request_id, *[x for x in current if x != request_id]][: self.max_entries]
        await self.local_state.save_ids(self.storage_key, self.ids)
        self._reconcile()
        return list(self.ids)

    async def remove_id(self, request_id: str) -> list[str]:
        """Stop tracking a single id."""
        self.ids = [x for x in self.ids if x != request_id]
        await self.local_state.save_ids(self.storage_key, self.ids)
        self._reconcile()
        return list(self.ids)

    async def clear(self) -> None:
        """Forget every tracked id, its subscription and its timers."""
        cleared = list(self.ids)
        self._discovered.cancel_all()
        await self.local_state.delete(self.storage_key)
        self.ids = []
        self._reconcile()
        self.logger.info("Cleared tracked requests", count=len(cleared))

    def close(self) -> None:
        """Tear down subscriptions and timers without touching local state."""
        if self._discovery is not None:
            self._discovery.unsubscribe()
            self._discovery = None
        self._discovered.cancel_all()
        for request_id in self.subscriptions.active_keys:
            self._forget(request_id)
        self.subscriptions.cancel_all()

    # -- discovery ------------------------------------------------------

    def discover(self, where: dict[str, Any]) -> None:
        """Track open requests for this guest that were created elsewhere.

        Listens to an equality query over the collection and adds every
        matching id this tracker has never seen, unless the request is
        already finished. Ids that were tracked once and then cleared or
        acknowledged are not added back.
        """
        if self._discovery is not None:
            return
        self._discovery = self.store.watch_query(
            self.collection_path,
            where,
            on_snapshot=self._on_discovered,
            on_error=self._on_discovery_error,
        )

    def _on_discovered(self, documents: list[Document]) -> None:
        for document in documents:
            if document.id in self._seen:
                continue
            status = RequestStatusMapper.parse(document.data.get("status"))
            if status.is_terminal:
                continue
            self._seen.add(document.id)
            self.logger.info("Discovered request", request_id=document.id)
            self._discovered.spawn(document.id, lambda doc_id=document.id: self._adopt(doc_id))

    async def _adopt(self, request_id: str) -> None:
        await self._push(request_id)

    def _on_discovery_error(self, error: DocumentStoreError) -> None:
        self.logger.warning("Request discovery failed", error=str(error))

    # -- views ----------------------------------------------------------

    def status_of(self, request_id: str) -> Optional[RequestStatus]:
        entry = self.entries.get(request_id)
        return entry.status if entry else None

    def ordered_entries(self) -> list[TrackedEntry]:
        """Entries in list order (most recent first)."""
        return [self.entries[x] for x in self.ids if x in self.entries]

    # -- reconciliation -------------------------------------------------

    def _reconcile(self) -> None:
        for request_id in [x for x in self.entries if x not in self.ids]:
            self._forget(request_id)
        self.subscriptions.reconcile(self.ids)

    def _forget(self, request_id: str) -> None:
        self.entries.pop(request_id, None)
        if self.estimator is not None:
            self.estimator.untrack(request_id)

    def _subscribe(self, request_id: str) -> Subscription:
        self.entries[request_id] = TrackedEntry(request_id=request_id, kind=self.kind)
        return self.store.watch_document(
            self.collection_path,
            request_id,
            on_snapshot=lambda document: self._on_snapshot(request_id, document),
            on_error=lambda error: self._on_error(request_id, error),
        )

    def _on_snapshot(self, request_id: str, document: Optional[Document]) -> None:
        entry = self.entries.get(request_id)
        if entry is None or request_id not in self.ids:
            return  # Late delivery for an id no longer tracked

        previous = entry.status
        if document is None:
            entry.status = RequestStatus.DELETED
            entry.request = None
            self.logger.info("Tracked request no longer exists", request_id=request_id)
        else:
            try:
                entry.request = parse_tracked(self.kind, request_id, document.data)
            except ValidationError as e:
                self.logger.warning(
                    "Unreadable tracked request",
                    request_id=request_id,
                    error=str(e),
                )
                return
            entry.status = entry.request.status
            entry.error = None

        if self.estimator is not None:
            if entry.request is not None:
                self.estimator.track(entry.request)
            else:
                self.estimator.untrack(request_id)

        if self.on_change is not None:
            self.on_change(entry, previous)

    def _on_error(self, request_id: str, error: DocumentStoreError) -> None:
        entry = self.entries.get(request_id)
        if entry is None or request_id not in self.ids:
            return

        previous = entry.status
        entry.status = RequestStatus.RESTRICTED
        entry.error = str(error)
        if isinstance(error, PermissionDeniedError):
            self.logger.warning("Tracked request not accessible", request_id=request_id)
        else:
            self.logger.error(
                "Tracked request listener failed",
                request_id=request_id,
                error=str(error),
            )
        if self.estimator is not None:
            self.estimator.untrack(request_id)
        if self.on_change is not None:
            self.on_change(entry, previous)
