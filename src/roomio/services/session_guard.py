"""Live validation of a guest's session."""

import asyncio
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import ValidationError
from structlog import get_logger

from roomio.clients.document_store import (
    SERVER_TIMESTAMP,
    Document,
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreError,
    Subscription,
)
from roomio.config import settings
from roomio.models.guest import GuestBooking, GuestContext
from roomio.services.registry import TaskRegistry
from roomio.utils.time_utils import Clock, utc_now

logger = get_logger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    TERMINATED = "terminated"
    CLOSED = "closed"


class TerminationReason(str, Enum):
    """Why the store invalidated a session."""

    CHECKED_OUT = "checked_out"
    DISPLACED = "displaced"
    INACTIVE = "inactive"
    BOOKING_REMOVED = "booking_removed"
    IDLE = "idle"


TERMINATION_MESSAGES = {
    TerminationReason.CHECKED_OUT: "Your session has expired. Admin has checked you out.",
    TerminationReason.DISPLACED: (
        "Someone else logged in with your mobile number. "
        "Your session has been terminated."
    ),
    TerminationReason.INACTIVE: "Your booking is no longer active. Please contact reception.",
    TerminationReason.BOOKING_REMOVED: "Your booking is no longer active.",
    TerminationReason.IDLE: "Your session timed out. Please verify again.",
}

# Written to `logoutReason` so a guard can tell a reaped session from a displaced one
LOGOUT_REASON_IDLE = "idle"
LOGOUT_REASON_GUEST = "logout"

TerminationCallback = Callable[[TerminationReason, str], None]


class SessionGuard:
    """Watches a guest record and ends the session when it stops being valid.

    Two listeners run while the session is active: one on the guest
    document and one on the active-booking query. Whichever notices the
    invalidation first terminates the session; termination happens once,
    so overlapping listeners never produce a second notice.

    Liveness is a periodic heartbeat (``lastHeartbeat``). Closing the
    guard writes nothing; a session that stops heartbeating is logged out
    server-side by the session reaper.
    """

    def __init__(
        self,
        store: DocumentStore,
        context: GuestContext,
        on_terminated: Optional[TerminationCallback] = None,
        clock: Clock = utc_now,
        heartbeat_seconds: Optional[float] = None,
    ):
        self.store = store
        self.context = context
        self.on_terminated = on_terminated
        self.clock = clock
        self.heartbeat_seconds = (
            heartbeat_seconds
            if heartbeat_seconds is not None
            else settings.portal.heartbeat_seconds
        )
        self.guests_collection = settings.store.guests_collection

        self.state = SessionState.IDLE
        self.termination_reason: Optional[TerminationReason] = None
        self._subscriptions: list[Subscription] = []
        self._tasks = TaskRegistry("session")
        self.logger = logger.bind(
            guest_doc_id=context.guest_doc_id,
            room_number=str(context.room_number),
        )

    @property
    def booking_filter(self) -> dict[str, Any]:
        """Equality filter matching this guest's active booking."""
        return {
            "adminId": self.context.admin_id,
            "mobile": self.context.mobile,
            "roomNumber": self.context.room_number,
            "isActive": True,
        }

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    def start(self) -> None:
        """Subscribe to the guest record and start heartbeating."""
        if self.state != SessionState.IDLE:
            return
        self.state = SessionState.ACTIVE

        self._subscriptions.append(
            self.store.watch_document(
                self.guests_collection,
                self.context.guest_doc_id,
                on_snapshot=self._on_guest_snapshot,
                on_error=self._on_error,
            )
        )
        if not self.is_active:
            # Terminated by the initial snapshot
            self._unsubscribe_all()
            return

        self._subscriptions.append(
            self.store.watch_query(
                self.guests_collection,
                self.booking_filter,
                on_snapshot=self._on_booking_snapshot,
                on_error=self._on_error,
            )
        )
        if not self.is_active:
            self._unsubscribe_all()
            return

        if self.heartbeat_seconds > 0:
            self._tasks.spawn("heartbeat", self._heartbeat_loop)
        self.logger.info("Session monitoring started")

    # -- listeners ------------------------------------------------------

    def _on_guest_snapshot(self, document: Optional[Document]) -> None:
        if not self.is_active:
            return
        if document is None:
            self.terminate(TerminationReason.CHECKED_OUT)
            return

        try:
            booking = GuestBooking.model_validate({**document.data, "id": document.id})
        except ValidationError as e:
            self.logger.warning("Unreadable guest record", error=str(e))
            return

        if not booking.is_logged_in:
            if document.data.get("logoutReason") == LOGOUT_REASON_IDLE:
                self.terminate(TerminationReason.IDLE)
            else:
                self.terminate(TerminationReason.DISPLACED)
        elif not booking.is_active:
            self.terminate(TerminationReason.INACTIVE)
        elif booking.is_checked_out(self.clock()):
            self.terminate(TerminationReason.CHECKED_OUT)

    def _on_booking_snapshot(self, documents: list[Document]) -> None:
        if self.is_active and not documents:
            self.terminate(TerminationReason.BOOKING_REMOVED)

    def _on_error(self, error: DocumentStoreError) -> None:
        self.logger.error("Session monitoring error", error=str(error))

    # -- transitions ----------------------------------------------------

    def terminate(self, reason: TerminationReason) -> bool:
        """End the session because the store invalidated it.

        Returns:
            True if this call terminated the session, False if it had
            already ended
        """
        if not self.is_active:
            return False
        self.state = SessionState.TERMINATED
        self.termination_reason = reason
        self._unsubscribe_all()
        self._tasks.cancel_all()

        message = TERMINATION_MESSAGES[reason]
        self.logger.warning("Session terminated", reason=reason.value)
        if self.on_terminated is not None:
            self.on_terminated(reason, message)
        return True

    async def verify_active(self) -> bool:
        """One-shot check that the booking is still active.

        Raises:
            DocumentStoreError: If the booking cannot be read
        """
        documents = await self.store.query(self.guests_collection, self.booking_filter)
        return bool(documents)

    async def heartbeat(self) -> bool:
        """Stamp ``lastHeartbeat`` on the guest record.

        Returns:
            True if the heartbeat was written
        """
        if not self.is_active:
            return False
        try:
            await self.store.update(
                self.guests_collection,
                self.context.guest_doc_id,
                {"lastHeartbeat": SERVER_TIMESTAMP},
            )
        except DocumentNotFoundError:
            self.terminate(TerminationReason.CHECKED_OUT)
            return False
        except DocumentStoreError as e:
            self.logger.warning("Heartbeat failed", error=str(e))
            return False
        return True

    async def _heartbeat_loop(self) -> None:
        while self.is_active:
            await asyncio.sleep(self.heartbeat_seconds)
            await self.heartbeat()

    async def logout(self) -> None:
        """Sign out: stop monitoring, then mark the guest logged out."""
        was_active = self.is_active
        await self.close()
        if not was_active:
            return
        try:
            await self.store.update(
                self.guests_collection,
                self.context.guest_doc_id,
                {
                    "isLoggedIn": False,
                    "lastLogout": SERVER_TIMESTAMP,
                    "logoutReason": LOGOUT_REASON_GUEST,
                },
            )
            self.logger.info("Session cleaned up successfully")
        except DocumentStoreError as e:
            self.logger.error("Failed to cleanup session", error=str(e))

    async def close(self) -> None:
        """Stop monitoring without writing anything."""
        if self.state in (SessionState.IDLE, SessionState.ACTIVE):
            self.state = SessionState.CLOSED
        self._unsubscribe_all()
        await self._tasks.shutdown()

    def _unsubscribe_all(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
