"""Client-side gating of repeat service requests.

Two policies exist and are never combined for one service:

- cooldown: after a request is sent, identical requests are blocked until
  the cooldown window has elapsed.
- quota: the first N requests are free; later ones need an explicit
  charge confirmation and carry the charge on the created document.

State lives in the guest's local state, so a guest who wipes it resets
the gate.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from structlog import get_logger

from roomio.clients.local_state import LocalStateStore
from roomio.config import settings
from roomio.config.settings import GatePolicy
from roomio.models.guest import GuestIdentity
from roomio.utils.time_utils import Clock, format_remaining, to_millis, utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class GateDecision:
    """Outcome of checking a gate before creating a request."""

    allowed: bool
    charge: float = 0.0
    requires_confirmation: bool = False
    remaining_ms: int = 0
    message: Optional[str] = None


class RequestGate(ABC):
    """Base class for request gates."""

    policy: GatePolicy

    def __init__(
        self,
        local_state: LocalStateStore,
        identity: GuestIdentity,
        clock: Clock = utc_now,
    ):
        self.local_state = local_state
        self.identity = identity
        self.clock = clock

    @abstractmethod
    async def check(self, service_key: str, confirmed: bool = False) -> GateDecision:
        """Decide whether a request may be created now.

        Args:
            service_key: Service type being requested
            confirmed: Whether the guest accepted a charge

        Returns:
            GateDecision for the request
        """

    @abstractmethod
    async def record(self, service_key: str) -> None:
        """Record that a request was created."""


class OpenGate(RequestGate):
    """No gating."""

    policy = "none"

    async def check(self, service_key: str, confirmed: bool = False) -> GateDecision:
        return GateDecision(allowed=True)

    async def record(self, service_key: str) -> None:
        return None


class CooldownGate(RequestGate):
    """Blocks a service until a fixed window has passed since the last request."""

    policy = "cooldown"

    def __init__(
        self,
        local_state: LocalStateStore,
        identity: GuestIdentity,
        clock: Clock = utc_now,
        cooldown_seconds: Optional[int] = None,
    ):
        super().__init__(local_state, identity, clock)
        seconds = cooldown_seconds if cooldown_seconds is not None else settings.portal.cooldown_seconds
        self.window_ms = seconds * 1000

    async def check(self, service_key: str, confirmed: bool = False) -> GateDecision:
        last_sent_ms = await self.local_state.get_number(
            self.local_state.cooldown_key(self.identity, service_key)
        )
        next_allowed_ms = last_sent_ms + self.window_ms
        now_ms = to_millis(self.clock())

        if last_sent_ms > 0 and now_ms < next_allowed_ms:
            remaining_ms = int(next_allowed_ms - now_ms)
            return GateDecision(
                allowed=False,
                remaining_ms=remaining_ms,
                message=f"⏳ Available in {format_remaining(remaining_ms)}",
            )
        return GateDecision(allowed=True)

    async def record(self, service_key: str) -> None:
        await self.local_state.set_number(
            self.local_state.cooldown_key(self.identity, service_key),
            to_millis(self.clock()),
        )


class FreeQuotaGate(RequestGate):
    """First ``free_requests`` are free; later requests are charged after confirmation."""

    policy = "quota"

    def __init__(
        self,
        local_state: LocalStateStore,
        identity: GuestIdentity,
        clock: Clock = utc_now,
        free_requests: Optional[int] = None,
        charge: Optional[float] = None,
    ):
        super().__init__(local_state, identity, clock)
        self.free_requests = free_requests if free_requests is not None else settings.portal.free_requests
        self.charge = charge if charge is not None else settings.portal.paid_request_charge

    async def used(self, service_key: str) -> int:
        count = await self.local_state.get_number(
            self.local_state.quota_key(self.identity, service_key)
        )
        return int(count)

    async def check(self, service_key: str, confirmed: bool = False) -> GateDecision:
        used = await self.used(service_key)
        if used < self.free_requests:
            return GateDecision(allowed=True, charge=0.0)
        if not confirmed:
            return GateDecision(
                allowed=False,
                charge=self.charge,
                requires_confirmation=True,
                message=(
                    f"You have used your {self.free_requests} free requests. "
                    f"This request will be charged {self.charge:g}."
                ),
            )
        return GateDecision(allowed=True, charge=self.charge)

    async def record(self, service_key: str) -> None:
        used = await self.used(service_key)
        await self.local_state.set_number(
            self.local_state.quota_key(self.identity, service_key), used + 1
        )


def build_gate(
    policy: GatePolicy,
    local_state: LocalStateStore,
    identity: GuestIdentity,
    clock: Clock = utc_now,
) -> RequestGate:
    """Instantiate the gate for a policy name."""
    if policy == "cooldown":
        return CooldownGate(local_state, identity, clock)
    if policy == "quota":
        return FreeQuotaGate(local_state, identity, clock)
    return OpenGate(local_state, identity, clock)
