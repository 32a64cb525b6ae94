"""Owner-scoped cache for referral and admin status flags

Entries are keyed by the owning identity's email and expire after a fixed
TTL. Registry mutations invalidate the owner's entries, so a read is never
staler than one TTL for changes made outside the registry (admin list edits).
Redis failures degrade to cache misses.
"""

import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from wallet_referrals.core.config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "referral"
OWNER_KINDS = ("referrer-status", "code-status")


class StatusCache:
    """Redis-backed status cache. With no client every lookup is a miss."""

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        status_ttl: int = settings.STATUS_CACHE_TTL_SECONDS,
        admin_ttl: int = settings.ADMIN_CACHE_TTL_SECONDS,
    ):
        self.client = client
        self.status_ttl = status_ttl
        self.admin_ttl = admin_ttl

    @staticmethod
    def _key(kind: str, email: str) -> str:
        return f"{KEY_PREFIX}:{kind}:{email.lower()}"

    async def get(self, kind: str, email: str) -> Optional[Dict[str, Any]]:
        if self.client is None:
            return None
        try:
            raw = await self.client.get(self._key(kind, email))
        except RedisError as e:
            logger.warning(f"Status cache read failed for {kind}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding undecodable status cache entry for {kind}")
            return None

    async def set(self, kind: str, email: str, payload: Dict[str, Any]) -> None:
        if self.client is None:
            return
        ttl = self.admin_ttl if kind == "admin" else self.status_ttl
        try:
            await self.client.set(self._key(kind, email), json.dumps(payload, default=str), ex=ttl)
        except RedisError as e:
            logger.warning(f"Status cache write failed for {kind}: {e}")

    async def invalidate(self, email: str) -> None:
        """Drop every status entry owned by this email."""
        if self.client is None:
            return
        try:
            await self.client.delete(*(self._key(kind, email) for kind in OWNER_KINDS))
        except RedisError as e:
            logger.warning(f"Status cache invalidation failed: {e}")

    async def ping(self) -> str:
        """Connectivity of the cache: disabled, healthy or unhealthy."""
        if self.client is None:
            return "disabled"
        try:
            await self.client.ping()
        except RedisError as e:
            logger.warning(f"Status cache ping failed: {e}")
            return "unhealthy"
        return "healthy"

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()


def build_status_cache() -> StatusCache:
    if not settings.STATUS_CACHE_ENABLED:
        logger.info("Status cache disabled, status reads go straight to the database")
        return StatusCache()
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return StatusCache(client)


status_cache = build_status_cache()


def get_status_cache() -> StatusCache:
    """Dependency for the shared status cache."""
    return status_cache
