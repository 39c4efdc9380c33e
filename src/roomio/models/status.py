"""Request status lifecycle and display mapping."""

from enum import Enum
from typing import Any


class RequestStatus(str, Enum):
    """Lifecycle of a tracked service request or food order.

    Server-driven states:
    - pending -> accepted / in-progress -> completed
    - pending / accepted / in-progress -> cancelled

    Local-only states:
    - loading: tracked id whose first snapshot has not arrived yet
    - deleted: the document no longer exists in the store
    - restricted: the subscription was refused (permissions)
    """
    LOADING = "loading"
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DELETED = "deleted"
    RESTRICTED = "restricted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {RequestStatus.COMPLETED, RequestStatus.CANCELLED, RequestStatus.DELETED}
)


class RequestStatusMapper:
    """Maps raw status strings and statuses to dashboard chips."""

    LABELS = {
        RequestStatus.LOADING: "LOADING",
        RequestStatus.PENDING: "PENDING",
        RequestStatus.ACCEPTED: "ACCEPTED",
        RequestStatus.IN_PROGRESS: "IN PROGRESS",
        RequestStatus.COMPLETED: "COMPLETED",
        RequestStatus.CANCELLED: "CANCELLED",
        RequestStatus.DELETED: "REMOVED",
        RequestStatus.RESTRICTED: "NO ACCESS",
    }

    @staticmethod
    def parse(raw: Any) -> RequestStatus:
        """Parse a stored status string.

        Matching is case-insensitive and accepts "in_progress" spellings.
        Missing or unknown values default to PENDING.

        Args:
            raw: Status value from a store document

        Returns:
            Parsed RequestStatus
        """
        if isinstance(raw, RequestStatus):
            return raw
        if not isinstance(raw, str) or not raw.strip():
            return RequestStatus.PENDING
        normalized = raw.strip().lower().replace("_", "-").replace(" ", "-")
        try:
            return RequestStatus(normalized)
        except ValueError:
            return RequestStatus.PENDING

    @staticmethod
    def label(status: RequestStatus) -> str:
        """Upper-case chip label shown on the dashboard."""
        return RequestStatusMapper.LABELS.get(status, "PENDING")
