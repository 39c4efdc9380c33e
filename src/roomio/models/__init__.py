"""Domain models for guests, tracked requests and the menu."""

from roomio.models.guest import GuestBooking, GuestContext, GuestIdentity, mask_email
from roomio.models.menu import CATEGORY_LABELS, MenuItem, category_label
from roomio.models.requests import (
    SERVICE_CATALOG,
    FoodOrder,
    OrderLine,
    RequestKind,
    ServiceDefinition,
    ServiceRequest,
    TrackedRequest,
    parse_tracked,
    summarize_lines,
)
from roomio.models.status import TERMINAL_STATUSES, RequestStatus, RequestStatusMapper

__all__ = [
    "GuestBooking",
    "GuestContext",
    "GuestIdentity",
    "mask_email",
    "CATEGORY_LABELS",
    "MenuItem",
    "category_label",
    "SERVICE_CATALOG",
    "FoodOrder",
    "OrderLine",
    "RequestKind",
    "ServiceDefinition",
    "ServiceRequest",
    "TrackedRequest",
    "parse_tracked",
    "summarize_lines",
    "TERMINAL_STATUSES",
    "RequestStatus",
    "RequestStatusMapper",
]
