"""Time helpers shared by the progress estimator, gates and views."""

from datetime import datetime, timezone
from typing import Any, Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_millis(value: datetime) -> int:
    """Epoch milliseconds of a datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return round(value.timestamp() * 1000)


def from_millis(millis: float) -> datetime:
    """Aware UTC datetime from epoch milliseconds."""
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def coerce_timestamp(value: Any) -> Optional[datetime]:
    """Normalize the timestamp shapes found in stored documents.

    Accepts datetimes (including the store SDK's subclasses), ISO-8601
    strings and epoch milliseconds. Anything else yields None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return from_millis(value)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def format_remaining(ms: float) -> str:
    """Format a wait time: "1h 5m" above an hour, "4m 12s" below."""
    total_seconds = max(0, int(ms // 1000))
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60

    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m {seconds}s"


def format_time_for_progress(ms: float) -> str:
    """Format remaining time for a progress bar: "1h 5m" or "12m"."""
    total_minutes = max(0, int(ms // 60000))
    hours = total_minutes // 60
    minutes = total_minutes % 60

    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
