"""Progress estimation for accepted requests.

A request that is in progress, with an acceptance time and an estimated
duration in minutes, is interpolated linearly between the two:

    end       = accepted + estimated * 60000 ms
    progress  = clamp(0, 100, (now - accepted) / (end - accepted) * 100)
    remaining = max(0, end - now)

Reaching the end shows 100% and zero remaining but never changes the
request's status; only the store can do that.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from structlog import get_logger

from roomio.config import settings
from roomio.models.requests import TrackedRequest
from roomio.services.registry import TaskRegistry
from roomio.utils.time_utils import Clock, format_time_for_progress, utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class Progress:
    """Progress bar state for one request."""

    percentage: float
    remaining_ms: int

    @property
    def is_complete(self) -> bool:
        return self.remaining_ms == 0

    @property
    def remaining_label(self) -> str:
        return format_time_for_progress(self.remaining_ms)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def estimate_progress(
    accepted_at: datetime,
    estimated_minutes: float,
    now: datetime,
) -> Progress:
    """Interpolate progress between acceptance and estimated completion.

    Args:
        accepted_at: When the request was accepted
        estimated_minutes: Estimated duration in minutes (must be positive)
        now: Current time

    Returns:
        Progress with percentage in [0, 100] and non-negative remaining ms

    Raises:
        ValueError: If estimated_minutes is not positive
    """
    if estimated_minutes <= 0:
        raise ValueError("estimated_minutes must be positive")

    estimated_ms = estimated_minutes * 60_000
    elapsed_ms = (_aware(now) - _aware(accepted_at)).total_seconds() * 1000

    if elapsed_ms >= estimated_ms:
        return Progress(percentage=100.0, remaining_ms=0)

    percentage = min(100.0, max(0.0, elapsed_ms / estimated_ms * 100))
    remaining_ms = max(0, int(estimated_ms - elapsed_ms))
    return Progress(percentage=percentage, remaining_ms=remaining_ms)


def progress_for(request: TrackedRequest, now: datetime) -> Optional[Progress]:
    """Progress of a tracked request, or None when it has no progress bar."""
    if not request.has_progress:
        return None
    return estimate_progress(request.accepted_at, request.estimated_time, now)


ProgressCallback = Callable[[str, Progress], None]
ArrivalCallback = Callable[[TrackedRequest, Progress], None]


class ProgressEstimator:
    """Drives per-request progress ticks and the arrival sweep.

    Each in-progress request gets its own tick task that recomputes its
    progress every ``tick_seconds``. The tick stops as soon as the
    request leaves the in-progress state or stops being tracked.

    A single sweep task scans all ticking requests every
    ``sweep_seconds`` and fires ``on_arrival`` once per request when the
    remaining time first drops to the arrival threshold. The notified
    set lives in memory only, so a restart re-arms the notification.
    """

    def __init__(
        self,
        on_progress: Optional[ProgressCallback] = None,
        on_arrival: Optional[ArrivalCallback] = None,
        clock: Clock = utc_now,
        tick_seconds: Optional[float] = None,
        sweep_seconds: Optional[float] = None,
        arrival_threshold_ms: Optional[int] = None,
    ):
        self.on_progress = on_progress
        self.on_arrival = on_arrival
        self.clock = clock
        self.tick_seconds = tick_seconds or settings.portal.progress_tick_seconds
        self.sweep_seconds = sweep_seconds or settings.portal.arrival_sweep_seconds
        self.arrival_threshold_ms = (
            arrival_threshold_ms
            if arrival_threshold_ms is not None
            else settings.portal.arrival_threshold_seconds * 1000
        )

        self.ticks = TaskRegistry("progress")
        self.sweeper = TaskRegistry("arrival-sweep")
        self.progress: dict[str, Progress] = {}
        self._requests: dict[str, TrackedRequest] = {}
        self._notified: set[str] = set()

    @property
    def active_ids(self) -> list[str]:
        """Ids with a running tick."""
        return self.ticks.active_keys

    def was_notified(self, request_id: str) -> bool:
        return request_id in self._notified

    def track(self, request: TrackedRequest) -> None:
        """Feed the latest snapshot of a request.

        Starts a tick for in-progress requests with a usable estimate and
        stops it for anything else.
        """
        if not request.has_progress:
            self.untrack(request.id)
            return

        self._requests[request.id] = request
        self.refresh(request.id)
        if self.ticks.spawn(request.id, lambda: self._tick(request.id)):
            logger.debug("Progress tick started", request_id=request.id)

    def untrack(self, request_id: str) -> None:
        """Stop the tick of a request and forget its progress."""
        if request_id in self.ticks:
            logger.debug("Progress tick stopped", request_id=request_id)
        self.ticks.cancel(request_id)
        self._requests.pop(request_id, None)
        self.progress.pop(request_id, None)

    def refresh(self, request_id: str) -> Optional[Progress]:
        """Recompute one request's progress at the current time."""
        request = self._requests.get(request_id)
        if request is None:
            return None
        progress = progress_for(request, self.clock())
        if progress is None:
            return None
        self.progress[request_id] = progress
        if self.on_progress is not None:
            self.on_progress(request_id, progress)
        return progress

    async def _tick(self, request_id: str) -> None:
        while request_id in self._requests:
            await asyncio.sleep(self.tick_seconds)
            self.refresh(request_id)

    def sweep(self) -> list[str]:
        """Fire arrival notifications that are due.

        Returns:
            Ids notified by this sweep
        """
        now = self.clock()
        fired = []
        for request_id, request in list(self._requests.items()):
            if request_id in self._notified:
                continue
            progress = progress_for(request, now)
            if progress is None:
                continue
            if 0 < progress.remaining_ms <= self.arrival_threshold_ms:
                self._notified.add(request_id)
                fired.append(request_id)
                logger.info(
                    "Arrival imminent",
                    request_id=request_id,
                    remaining_ms=progress.remaining_ms,
                )
                if self.on_arrival is not None:
                    self.on_arrival(request, progress)
        return fired

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_seconds)
            self.sweep()

    def start(self) -> None:
        """Start the arrival sweep."""
        self.sweeper.spawn("sweep", self._sweep_loop)

    def clear(self, request_ids: Optional[list[str]] = None) -> None:
        """Stop ticks for the given ids, or for every request."""
        for request_id in list(self._requests if request_ids is None else request_ids):
            self.untrack(request_id)

    async def shutdown(self) -> None:
        """Stop every tick and the sweep."""
        self._requests.clear()
        self.progress.clear()
        await self.ticks.shutdown()
        await self.sweeper.shutdown()
