"""Redis-backed per-guest local state (recent ids, cooldowns, quota counters)."""

import json
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from structlog import get_logger

from roomio.config import settings
from roomio.models.guest import GuestIdentity

logger = get_logger(__name__)


class LocalStateStore:
    """Key/value state a guest's portal keeps between page loads.

    Keys are namespaced ``{prefix}:{list}:{admin}:{mobile}:{room}``.
    Reads and writes are best-effort: a Redis failure is logged and
    treated as an empty value, never raised to the caller. There is no
    locking; concurrent portals for the same guest race and the last
    write wins.
    """

    def __init__(self, redis_client: Optional[Any] = None, key_prefix: Optional[str] = None):
        """Initialize the Redis client used for guest state."""
        self.key_prefix = key_prefix or settings.redis.key_prefix
        if redis_client is None:
            redis_client = redis.Redis(
                host=settings.redis.host,
                port=settings.redis.port,
                db=settings.redis.db,
                password=settings.redis.password,
                ssl=settings.redis.ssl,
                decode_responses=True,  # Stored values are parsed as text
                socket_timeout=settings.redis.socket_timeout,
                socket_connect_timeout=settings.redis.socket_connect_timeout,
            )
        self.redis_client = redis_client

    # -- key layout -----------------------------------------------------

    def requests_key(self, identity: GuestIdentity) -> str:
        return f"{self.key_prefix}:requests:{identity.namespace}"

    def food_orders_key(self, identity: GuestIdentity) -> str:
        return f"{self.key_prefix}:foodOrders:{identity.namespace}"

    def cooldown_key(self, identity: GuestIdentity, service_key: str) -> str:
        return f"{self.requests_key(identity)}:{service_key}"

    def quota_key(self, identity: GuestIdentity, service_key: str) -> str:
        return f"{self.requests_key(identity)}:{service_key}:count"

    # -- id lists -------------------------------------------------------

    async def load_ids(self, key: str) -> list[str]:
        """Load a stored id list; anything malformed reads as empty."""
        raw = await self._get(key)
        if not raw:
            return []
        try:
            ids = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding malformed id list", key=key)
            return []
        if not isinstance(ids, list):
            return []
        return [str(x) for x in ids if isinstance(x, (str, int))]

    async def save_ids(self, key: str, ids: list[str]) -> None:
        await self._set(key, json.dumps(ids))

    # -- numbers --------------------------------------------------------

    async def get_number(self, key: str, default: float = 0) -> float:
        raw = await self._get(key)
        if raw is None or raw == "":
            return default
        try:
            return float(raw)
        except (TypeError, ValueError):
            return default

    async def set_number(self, key: str, value: float) -> None:
        await self._set(key, str(int(value)) if float(value).is_integer() else str(value))

    # -- primitives -----------------------------------------------------

    async def _get(self, key: str) -> Optional[str]:
        try:
            value = await self.redis_client.get(key)
        except RedisError as e:
            logger.warning("Local state read failed", key=key, error=str(e))
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def _set(self, key: str, value: str) -> None:
        try:
            await self.redis_client.set(key, value)
        except RedisError as e:
            logger.warning("Local state write failed", key=key, error=str(e))

    async def delete(self, key: str) -> None:
        try:
            await self.redis_client.delete(key)
        except RedisError as e:
            logger.warning("Local state delete failed", key=key, error=str(e))

    async def close(self) -> None:
        """Close Redis connection."""
        try:
            await self.redis_client.aclose()
            logger.debug("Closed Redis connection")
        except RedisError as e:
            logger.warning("Error closing Redis connection", error=str(e))
