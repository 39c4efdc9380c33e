"""Shared helpers."""

from roomio.utils.time_utils import (
    Clock,
    coerce_timestamp,
    format_remaining,
    format_time_for_progress,
    from_millis,
    to_millis,
    utc_now,
)

__all__ = [
    "Clock",
    "coerce_timestamp",
    "format_remaining",
    "format_time_for_progress",
    "from_millis",
    "to_millis",
    "utc_now",
]
