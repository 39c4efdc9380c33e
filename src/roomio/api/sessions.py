"""In-process registry of open guest portals."""

import secrets
import time
from typing import Callable, Optional

from structlog import get_logger

from roomio.config import settings
from roomio.services.guest_portal import GuestPortal

logger = get_logger(__name__)


class PortalRegistry:
    """Open portals keyed by an opaque session id.

    A portal counts as idle when no API call has touched it for
    ``idle_seconds``. A portal whose session the store terminated is
    kept until it goes idle, so clients can still learn why it ended;
    portals closed for any other reason are dropped on the next sweep.
    """

    def __init__(
        self,
        idle_seconds: Optional[float] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.idle_seconds = (
            idle_seconds if idle_seconds is not None else settings.portal.portal_idle_seconds
        )
        self.monotonic = monotonic
        self._portals: dict[str, GuestPortal] = {}
        self._last_seen: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._portals)

    def add(self, portal: GuestPortal) -> str:
        session_id = secrets.token_urlsafe(24)
        self._portals[session_id] = portal
        self._last_seen[session_id] = self.monotonic()
        return session_id

    def get(self, session_id: str) -> Optional[GuestPortal]:
        """Live portal for a session id, refreshing its idle timer."""
        portal = self._portals.get(session_id)
        if portal is None or not portal.is_active:
            return None
        self.touch(session_id)
        return portal

    def touch(self, session_id: str) -> None:
        """Record client activity on a session."""
        if session_id in self._portals:
            self._last_seen[session_id] = self.monotonic()

    def peek(self, session_id: str) -> Optional[GuestPortal]:
        """Portal for a session id whatever its state, without touching it."""
        return self._portals.get(session_id)

    async def remove(self, session_id: str) -> Optional[GuestPortal]:
        portal = self._portals.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        if portal is not None:
            await portal.close()
        return portal

    async def close_idle(self) -> list[str]:
        """Close portals that went idle or were closed without a termination.

        Returns:
            Session ids that were closed
        """
        now = self.monotonic()
        stale = [
            session_id
            for session_id, portal in self._portals.items()
            if (not portal.is_active and portal.termination_reason is None)
            or now - self._last_seen.get(session_id, now) > self.idle_seconds
        ]
        for session_id in stale:
            await self.remove(session_id)
        if stale:
            logger.info("Closed idle guest portals", count=len(stale))
        return stale

    async def close_all(self) -> None:
        for session_id in list(self._portals):
            await self.remove(session_id)
