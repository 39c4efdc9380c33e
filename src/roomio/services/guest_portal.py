"""Per-guest portal orchestrator."""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field
from structlog import get_logger

from roomio.clients.document_store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    DocumentStoreError,
)
from roomio.clients.local_state import LocalStateStore
from roomio.config import settings
from roomio.models.guest import GuestContext
from roomio.models.requests import SERVICE_CATALOG, RequestKind, TrackedRequest
from roomio.models.status import RequestStatus, RequestStatusMapper
from roomio.services.gates import RequestGate, build_gate
from roomio.services.menu_service import Cart, MenuService, OrderError, place_order
from roomio.services.progress import Progress, ProgressEstimator
from roomio.services.registry import TaskRegistry
from roomio.services.request_tracker import RequestTracker, TrackedEntry
from roomio.services.session_guard import (
    TERMINATION_MESSAGES,
    SessionGuard,
    TerminationReason,
)
from roomio.utils.time_utils import Clock, utc_now

logger = get_logger(__name__)

SEND_FAILED_MESSAGE = "Failed to send request. Check internet / permissions."
SESSION_INVALID_MESSAGE = "Booking not active. Please verify again."
BOOKING_GONE_MESSAGE = "Your booking is no longer active."
ORDER_PLACED_MESSAGE = "✅ Order placed successfully!"


class PortalError(Exception):
    """Base exception for guest portal errors."""

    pass


class UnknownServiceError(PortalError):
    """Raised when a service key is not in the catalog."""

    pass


class SessionInvalidError(PortalError):
    """Raised when an operation needs an active session and there is none."""

    pass


class PortalEventType(str, Enum):
    TOAST = "toast"
    STATUS = "status"
    ARRIVAL = "arrival"
    COMPLETION = "completion"
    TERMINATED = "terminated"


class PortalEvent(BaseModel):
    """Something the guest's screen should react to."""

    type: PortalEventType
    message: Optional[str] = None
    request_id: Optional[str] = None
    kind: Optional[RequestKind] = None
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


class RequestOutcome(str, Enum):
    CREATED = "created"
    BLOCKED = "blocked"
    CONFIRMATION_REQUIRED = "confirmation_required"
    SESSION_INVALID = "session_invalid"
    FAILED = "failed"


class ServiceRequestResult(BaseModel):
    """Result of asking for a service."""

    outcome: RequestOutcome
    message: Optional[str] = None
    request_id: Optional[str] = None
    charge: float = 0.0
    remaining_ms: int = 0


class ServiceAvailability(BaseModel):
    key: str
    label: str
    policy: str
    available: bool
    requires_confirmation: bool = False
    charge: float = 0.0
    remaining_ms: int = 0
    message: Optional[str] = None


class RequestView(BaseModel):
    """One row of the requests or food tab."""

    id: str
    kind: RequestKind
    status: RequestStatus
    label: str
    name: Optional[str] = None
    created_at: Optional[datetime] = None
    charges: Optional[float] = None
    total_amount: Optional[float] = None
    percentage: Optional[float] = None
    remaining_ms: Optional[int] = None
    remaining_label: Optional[str] = None
    error: Optional[str] = None


class PortalView(BaseModel):
    """Dashboard state: guest header plus the services, requests and food tabs."""

    guest_name: str
    room_number: str
    admin: str
    session: str
    services: list[ServiceAvailability]
    requests: list[RequestView]
    food_orders: list[RequestView]
    notices: list[PortalEvent] = Field(default_factory=list)  # Unacknowledged arrivals and completions


class GuestPortal:
    """Dashboard state machine for one verified guest.

    Composes the session guard, the service request and food order
    trackers, the shared progress estimator and one gate per service.
    Everything the guest should see is pushed on ``events``; ``view``
    renders the current dashboard. Arrival and completion notices also
    stay in ``notices`` until the guest confirms or dismisses them, so a
    client that polls instead of streaming still sees them.
    """

    def __init__(
        self,
        store: DocumentStore,
        local_state: LocalStateStore,
        context: GuestContext,
        clock: Clock = utc_now,
        heartbeat_seconds: Optional[float] = None,
        max_events: int = 256,
    ):
        """Wire the portal components for a guest.

        Args:
            store: Remote document store
            local_state: Per-guest local state
            context: Verified guest context
            clock: Time source shared by every component
            heartbeat_seconds: Heartbeat interval; 0 disables the loop
            max_events: Queue size; the oldest event is dropped when full
        """
        self.store = store
        self.local_state = local_state
        self.context = context
        self.identity = context.identity
        self.clock = clock
        self.logger = logger.bind(
            guest_doc_id=context.guest_doc_id,
            room_number=str(context.room_number),
        )

        self.events: asyncio.Queue = asyncio.Queue(maxsize=max_events)
        self._tasks = TaskRegistry("portal")
        self._sending = asyncio.Lock()
        self._completion_notified: set[str] = set()
        # Arrival and completion notices stay pending until the guest acts on them
        self.notices: dict[str, PortalEvent] = {}
        self.closed = False

        self.guard = SessionGuard(
            store,
            context,
            on_terminated=self._on_terminated,
            clock=clock,
            heartbeat_seconds=heartbeat_seconds,
        )
        self.estimator = ProgressEstimator(
            on_arrival=self._on_arrival,
            clock=clock,
        )
        log_context = {"room_number": str(context.room_number)}
        self.service_requests = RequestTracker(
            store,
            local_state,
            storage_key=local_state.requests_key(self.identity),
            collection_path=settings.store.service_requests_collection,
            kind="service",
            estimator=self.estimator,
            on_change=self._on_entry_change,
            log_context=log_context,
        )
        self.food_orders = RequestTracker(
            store,
            local_state,
            storage_key=local_state.food_orders_key(self.identity),
            collection_path=settings.food_orders_path(context.admin_id),
            kind="food",
            estimator=self.estimator,
            on_change=self._on_entry_change,
            log_context=log_context,
        )
        self.gates: dict[str, RequestGate] = {
            key: build_gate(settings.portal.policy_for(key), local_state, self.identity, clock)
            for key in SERVICE_CATALOG
        }
        self.menu = MenuService(store, context.admin_id)

    @property
    def is_active(self) -> bool:
        return self.guard.is_active and not self.closed

    @property
    def termination_reason(self) -> Optional[TerminationReason]:
        return self.guard.termination_reason

    @property
    def termination_message(self) -> Optional[str]:
        reason = self.guard.termination_reason
        return TERMINATION_MESSAGES[reason] if reason else None

    # -- lifecycle ------------------------------------------------------

    async def start(self) -> bool:
        """Start monitoring the session and load the guest's history.

        Returns:
            False if the session was already invalid
        """
        self.guard.start()
        if not self.guard.is_active:
            return False

        await self.service_requests.load()
        await self.food_orders.load()
        self.service_requests.discover(
            {
                "adminId": self.context.admin_id,
                "guestMobile": self.context.mobile,
                "roomNumber": self.context.room_number,
            }
        )
        self.food_orders.discover(
            {"guestMobile": self.context.mobile, "roomNumber": self.context.room_number}
        )
        self.estimator.start()
        self.menu.watch()
        self.logger.info(
            "Guest portal started",
            service_requests=len(self.service_requests.ids),
            food_orders=len(self.food_orders.ids),
        )
        return self.guard.is_active

    async def close(self) -> None:
        """Stop every listener and timer. Writes nothing to the store."""
        if self.closed:
            return
        self.closed = True
        await self.guard.close()
        await self._teardown()
        await self._tasks.shutdown()
        self.logger.info("Guest portal closed")

    async def logout(self) -> None:
        """Sign the guest out and close the portal."""
        await self.guard.logout()
        await self.close()

    async def heartbeat(self) -> bool:
        return await self.guard.heartbeat()

    async def _teardown(self) -> None:
        self.service_requests.close()
        self.food_orders.close()
        self.menu.close()
        await self.estimator.shutdown()

    # -- service requests -----------------------------------------------

    async def request_service(
        self, service_key: str, confirm_charge: bool = False
    ) -> ServiceRequestResult:
        """Create a service request if the session and the gate allow it.

        Args:
            service_key: Catalog key ("laundry", "housekeeping")
            confirm_charge: Guest accepted the charge for a paid request

        Returns:
            ServiceRequestResult describing what happened

        Raises:
            UnknownServiceError: If the service key is not in the catalog
        """
        definition = SERVICE_CATALOG.get(service_key)
        if definition is None:
            raise UnknownServiceError(f"Unknown service: {service_key}")

        if not self.is_active:
            return ServiceRequestResult(
                outcome=RequestOutcome.SESSION_INVALID, message=SESSION_INVALID_MESSAGE
            )

        async with self._sending:
            gate = self.gates[service_key]
            decision = await gate.check(service_key, confirmed=confirm_charge)
            if decision.requires_confirmation:
                return ServiceRequestResult(
                    outcome=RequestOutcome.CONFIRMATION_REQUIRED,
                    message=decision.message,
                    charge=decision.charge,
                )
            if not decision.allowed:
                self._toast(decision.message)
                return ServiceRequestResult(
                    outcome=RequestOutcome.BLOCKED,
                    message=decision.message,
                    remaining_ms=decision.remaining_ms,
                )

            try:
                if not await self.guard.verify_active():
                    self.guard.terminate(TerminationReason.BOOKING_REMOVED)
                    return ServiceRequestResult(
                        outcome=RequestOutcome.SESSION_INVALID, message=BOOKING_GONE_MESSAGE
                    )

                now = SERVER_TIMESTAMP
                request_id = await self.store.add(
                    settings.store.service_requests_collection,
                    {
                        "adminId": self.context.admin_id,
                        "type": definition.label,
                        "roomNumber": self.context.room_number,
                        "guestName": self.context.guest_name,
                        "guestMobile": self.context.mobile,
                        "status": RequestStatus.PENDING.value,
                        "createdAt": now,
                        "updatedAt": now,
                        "source": settings.portal.request_source,
                        "charges": decision.charge,
                    },
                )
            except DocumentStoreError as e:
                self.logger.error(
                    "Service request failed", service=service_key, error=str(e)
                )
                self._toast(SEND_FAILED_MESSAGE)
                return ServiceRequestResult(
                    outcome=RequestOutcome.FAILED, message=SEND_FAILED_MESSAGE
                )

            await self.service_requests.add_id(request_id)
            await gate.record(service_key)

        self.logger.info(
            "Service request created",
            service=service_key,
            request_id=request_id,
            charge=decision.charge,
        )
        self._toast(definition.sent_message)
        return ServiceRequestResult(
            outcome=RequestOutcome.CREATED,
            message=definition.sent_message,
            request_id=request_id,
            charge=decision.charge,
        )

    # -- food orders ----------------------------------------------------

    def new_cart(self, counts: Optional[dict[str, int]] = None) -> Cart:
        cart = Cart(self.menu)
        for item_id, count in (counts or {}).items():
            cart.set_count(item_id, count)
        return cart

    async def place_food_order(self, cart: Cart) -> str:
        """Place a food order from a cart and track it.

        Returns:
            Id of the created order

        Raises:
            SessionInvalidError: If the session is no longer active
            OrderError: If the order could not be placed
        """
        if not self.is_active:
            raise SessionInvalidError(SESSION_INVALID_MESSAGE)
        if not self.menu.loaded:
            await self.menu.fetch()

        async with self._sending:
            try:
                order_id = await place_order(self.store, self.context, cart)
            except OrderError as e:
                self._toast(str(e))
                raise
            await self.food_orders.add_id(order_id)

        self._toast(ORDER_PLACED_MESSAGE)
        return order_id

    # -- history --------------------------------------------------------

    async def clear_request_history(self) -> None:
        self._drop_notices(self.service_requests.ids)
        await self.service_requests.clear()

    async def clear_food_order_history(self) -> None:
        self._drop_notices(self.food_orders.ids)
        await self.food_orders.clear()

    def _drop_notices(self, request_ids: list[str]) -> None:
        for request_id in request_ids:
            self.notices.pop(request_id, None)

    def _tracker_for(self, request_id: str) -> Optional[RequestTracker]:
        for tracker in (self.service_requests, self.food_orders):
            if request_id in tracker.ids:
                return tracker
        return None

    async def confirm_arrival(self, request_id: str) -> bool:
        """Guest confirmed an arrival: complete the request and stop tracking it.

        Returns:
            False if the id was not tracked
        """
        tracker = self._tracker_for(request_id)
        if tracker is None:
            return False

        self.notices.pop(request_id, None)
        await tracker.remove_id(request_id)
        now = SERVER_TIMESTAMP
        try:
            await self.store.update(
                tracker.collection_path,
                request_id,
                {
                    "status": RequestStatus.COMPLETED.value,
                    "completedAt": now,
                    "updatedAt": now,
                },
            )
        except DocumentStoreError as e:
            self.logger.error(
                "Failed to update request status", request_id=request_id, error=str(e)
            )
        return True

    async def acknowledge_completion(self, order_id: str) -> bool:
        """Guest dismissed a completion notice: stop tracking the order."""
        if order_id not in self.food_orders.ids:
            return False
        self.notices.pop(order_id, None)
        await self.food_orders.remove_id(order_id)
        return True

    # -- view -----------------------------------------------------------

    async def view(self) -> PortalView:
        services = []
        for key, definition in SERVICE_CATALOG.items():
            gate = self.gates[key]
            decision = await gate.check(key)
            services.append(
                ServiceAvailability(
                    key=key,
                    label=definition.label,
                    policy=gate.policy,
                    available=decision.allowed,
                    requires_confirmation=decision.requires_confirmation,
                    charge=decision.charge,
                    remaining_ms=decision.remaining_ms,
                    message=decision.message,
                )
            )

        # Finished orders leave the food tab; the completion notice covers them
        food_orders = [
            self._row(entry)
            for entry in self.food_orders.ordered_entries()
            if entry.status not in (RequestStatus.COMPLETED, RequestStatus.CANCELLED)
        ]
        return PortalView(
            guest_name=self.context.guest_name,
            room_number=str(self.context.room_number),
            admin=self.context.masked_admin,
            session=self.guard.state.value,
            services=services,
            requests=[self._row(entry) for entry in self.service_requests.ordered_entries()],
            food_orders=food_orders,
            notices=[
                event
                for request_id, event in self.notices.items()
                if self._tracker_for(request_id) is not None
            ],
        )

    def _row(self, entry: TrackedEntry) -> RequestView:
        row = RequestView(
            id=entry.request_id,
            kind=entry.kind,
            status=entry.status,
            label=RequestStatusMapper.label(entry.status),
            error=entry.error,
        )
        request = entry.request
        if request is not None:
            row.name = request.display_name
            row.created_at = request.created_at
            if request.kind == "service":
                row.charges = request.charges
            else:
                row.total_amount = request.total_amount
        progress = self.estimator.progress.get(entry.request_id)
        if progress is not None:
            row.percentage = round(progress.percentage, 1)
            row.remaining_ms = progress.remaining_ms
            row.remaining_label = progress.remaining_label
        return row

    # -- callbacks ------------------------------------------------------

    def _publish(self, event: PortalEvent) -> None:
        if self.events.full():
            self.events.get_nowait()
        self.events.put_nowait(event)

    def _notify(self, event: PortalEvent) -> None:
        self.notices[event.request_id] = event
        self._publish(event)

    def _toast(self, message: Optional[str]) -> None:
        if message:
            self._publish(PortalEvent(type=PortalEventType.TOAST, message=message))

    def _on_entry_change(self, entry: TrackedEntry, previous: Optional[RequestStatus]) -> None:
        if entry.status != previous:
            self._publish(
                PortalEvent(
                    type=PortalEventType.STATUS,
                    request_id=entry.request_id,
                    kind=entry.kind,
                    data={
                        "status": entry.status.value,
                        "label": RequestStatusMapper.label(entry.status),
                    },
                )
            )

        if (
            entry.kind == "food"
            and entry.status == RequestStatus.COMPLETED
            and entry.request_id not in self._completion_notified
        ):
            self._completion_notified.add(entry.request_id)
            name = entry.request.display_name if entry.request else "Food Order"
            self._notify(
                PortalEvent(
                    type=PortalEventType.COMPLETION,
                    request_id=entry.request_id,
                    kind="food",
                    message=f"Your {name} has been delivered!",
                )
            )

    def _on_arrival(self, request: TrackedRequest, progress: Progress) -> None:
        minutes = max(1, self.estimator.arrival_threshold_ms // 60000)
        self._notify(
            PortalEvent(
                type=PortalEventType.ARRIVAL,
                request_id=request.id,
                kind=request.kind,
                message=f"Your {request.display_name} is arriving in approximately {minutes} minutes!",
                data={"remaining_ms": progress.remaining_ms},
            )
        )

    def _on_terminated(self, reason: TerminationReason, message: str) -> None:
        self._publish(
            PortalEvent(
                type=PortalEventType.TERMINATED,
                message=message,
                data={"reason": reason.value},
            )
        )
        self._tasks.spawn("teardown", self._teardown)
