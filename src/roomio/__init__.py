"""Roomio guest portal: session guard, request tracking, progress and gating for hotel guests."""

__version__ = "0.1.0"
