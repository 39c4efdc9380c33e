"""Configuration package."""

from roomio.config.logging import configure_logging, get_logger
from roomio.config.settings import Settings, settings

__all__ = ["settings", "Settings", "configure_logging", "get_logger"]
