"""Tests for the owner-scoped status cache."""

import json
import pytest
from unittest.mock import AsyncMock
from redis.exceptions import ConnectionError as RedisConnectionError

from wallet_referrals.core.status_cache import StatusCache


@pytest.fixture
def redis_client():
    return AsyncMock()


@pytest.fixture
def cache(redis_client):
    return StatusCache(redis_client, status_ttl=60, admin_ttl=600)


class TestStatusCache:

    async def test_without_client_everything_misses(self):
        cache = StatusCache()

        await cache.set("referrer-status", "a@example.com", {"status": "approved"})

        assert await cache.get("referrer-status", "a@example.com") is None
        assert await cache.ping() == "disabled"

    async def test_get_decodes_entry_with_lowercased_key(self, cache, redis_client):
        redis_client.get.return_value = json.dumps({"status": "pending"})

        assert await cache.get("code-status", "Alice@Example.com") == {"status": "pending"}
        redis_client.get.assert_awaited_once_with("referral:code-status:alice@example.com")

    async def test_admin_entries_use_admin_ttl(self, cache, redis_client):
        await cache.set("admin", "root@example.com", {"isAdmin": True})
        await cache.set("referrer-status", "a@example.com", {"status": "none"})

        assert redis_client.set.await_args_list[0].kwargs["ex"] == 600
        assert redis_client.set.await_args_list[1].kwargs["ex"] == 60

    async def test_invalidate_drops_owner_entries(self, cache, redis_client):
        await cache.invalidate("a@example.com")

        redis_client.delete.assert_awaited_once_with(
            "referral:referrer-status:a@example.com",
            "referral:code-status:a@example.com",
        )

    async def test_redis_errors_degrade_to_misses(self, cache, redis_client):
        redis_client.get.side_effect = RedisConnectionError("down")
        redis_client.set.side_effect = RedisConnectionError("down")
        redis_client.ping.side_effect = RedisConnectionError("down")

        assert await cache.get("referrer-status", "a@example.com") is None
        await cache.set("referrer-status", "a@example.com", {"status": "none"})
        assert await cache.ping() == "unhealthy"

    async def test_undecodable_entry_is_a_miss(self, cache, redis_client):
        redis_client.get.return_value = "{not json"

        assert await cache.get("referrer-status", "a@example.com") is None

    async def test_close_releases_the_client(self, cache, redis_client):
        await cache.close()

        redis_client.aclose.assert_awaited_once()
        redis_client.close.assert_not_called()
