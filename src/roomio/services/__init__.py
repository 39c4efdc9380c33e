"""Services package."""

from roomio.services.access import (
    AccessError,
    AlreadyLoggedInError,
    GuestAccessService,
    InvalidMobileError,
    MissingAdminError,
    NoActiveBookingError,
)
from roomio.services.gates import (
    CooldownGate,
    FreeQuotaGate,
    GateDecision,
    OpenGate,
    RequestGate,
    build_gate,
)
from roomio.services.guest_portal import (
    GuestPortal,
    PortalError,
    PortalEvent,
    PortalEventType,
    PortalView,
    RequestOutcome,
    ServiceRequestResult,
    SessionInvalidError,
    UnknownServiceError,
)
from roomio.services.menu_service import (
    Cart,
    EmptyCartError,
    MenuService,
    OrderError,
    OrderFailedError,
    OrderPermissionError,
    UnavailableItemError,
    place_order,
)
from roomio.services.progress import Progress, ProgressEstimator, estimate_progress
from roomio.services.registry import SubscriptionRegistry, TaskRegistry
from roomio.services.request_tracker import RequestTracker, TrackedEntry
from roomio.services.session_guard import (
    SessionGuard,
    SessionState,
    TerminationReason,
)
from roomio.services.session_reaper import SessionReaper

__all__ = [
    "AccessError",
    "AlreadyLoggedInError",
    "GuestAccessService",
    "InvalidMobileError",
    "MissingAdminError",
    "NoActiveBookingError",
    "CooldownGate",
    "FreeQuotaGate",
    "GateDecision",
    "OpenGate",
    "RequestGate",
    "build_gate",
    "GuestPortal",
    "PortalError",
    "PortalEvent",
    "PortalEventType",
    "PortalView",
    "RequestOutcome",
    "ServiceRequestResult",
    "SessionInvalidError",
    "UnknownServiceError",
    "Cart",
    "EmptyCartError",
    "MenuService",
    "OrderError",
    "OrderFailedError",
    "OrderPermissionError",
    "UnavailableItemError",
    "place_order",
    "Progress",
    "ProgressEstimator",
    "estimate_progress",
    "SubscriptionRegistry",
    "TaskRegistry",
    "RequestTracker",
    "TrackedEntry",
    "SessionGuard",
    "SessionState",
    "TerminationReason",
    "SessionReaper",
]
