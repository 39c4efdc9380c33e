"""HTTP API package."""

from roomio.api.server import create_app
from roomio.api.sessions import PortalRegistry

__all__ = ["create_app", "PortalRegistry"]
