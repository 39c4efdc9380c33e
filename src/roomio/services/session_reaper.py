"""Server-side expiry of guests who stopped heartbeating."""

import asyncio
from datetime import timedelta
from typing import Optional

from pydantic import ValidationError
from structlog import get_logger

from roomio.clients.document_store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    DocumentStoreError,
)
from roomio.config import settings
from roomio.models.guest import GuestBooking
from roomio.services.session_guard import LOGOUT_REASON_IDLE
from roomio.utils.time_utils import Clock, utc_now

logger = get_logger(__name__)


class SessionReaper:
    """Logs out guests whose last sign of life is older than the idle timeout.

    The last sign of life is the later of ``lastHeartbeat`` and
    ``lastLogin``. Expired guests get ``isLoggedIn=false`` with
    ``logoutReason="idle"``, which frees the mobile number for a new login
    and lets any still-open portal report an idle timeout.
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock = utc_now,
        idle_timeout_seconds: Optional[int] = None,
        interval_seconds: Optional[float] = None,
    ):
        self.store = store
        self.clock = clock
        self.idle_timeout = timedelta(
            seconds=idle_timeout_seconds
            if idle_timeout_seconds is not None
            else settings.portal.session_idle_timeout_seconds
        )
        self.interval_seconds = interval_seconds or settings.portal.reaper_interval_seconds
        self.guests_collection = settings.store.guests_collection

    async def reap_once(self) -> list[str]:
        """Expire every idle logged-in guest.

        Returns:
            Ids of the guest documents that were logged out
        """
        try:
            documents = await self.store.query(self.guests_collection, {"isLoggedIn": True})
        except DocumentStoreError as e:
            logger.error("Failed to query logged-in guests", error=str(e))
            return []

        cutoff = self.clock() - self.idle_timeout
        expired = []
        for document in documents:
            try:
                booking = GuestBooking.model_validate({**document.data, "id": document.id})
            except ValidationError as e:
                logger.warning("Skipping unreadable guest record", guest_doc_id=document.id, error=str(e))
                continue

            seen = [t for t in (booking.last_heartbeat, booking.last_login) if t is not None]
            if seen and max(seen) > cutoff:
                continue

            try:
                await self.store.update(
                    self.guests_collection,
                    document.id,
                    {
                        "isLoggedIn": False,
                        "lastLogout": SERVER_TIMESTAMP,
                        "logoutReason": LOGOUT_REASON_IDLE,
                    },
                )
            except DocumentStoreError as e:
                logger.warning("Failed to expire idle guest", guest_doc_id=document.id, error=str(e))
                continue
            expired.append(document.id)

        if expired:
            logger.info("Expired idle guest sessions", count=len(expired))
        return expired

    async def run(self) -> None:
        """Reap forever at the configured interval."""
        logger.info(
            "Session reaper started",
            interval_seconds=self.interval_seconds,
            idle_timeout_seconds=int(self.idle_timeout.total_seconds()),
        )
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.reap_once()
