"""Tier 2 fixtures: real Redis server."""

from __future__ import annotations

import os
import uuid

import pytest
import redis
from redis.exceptions import ConnectionError as RedisConnectionError

from stash_payouts.storage.redis_cache import RedisPayoutCache

REDIS_URL = os.environ.get("TEST_REDIS_URL", "redis://localhost:6379/15")


@pytest.fixture(scope="session")
def redis_available():
    """Check if a local Redis is running. Skip tier2 tests if not."""
    client = redis.Redis.from_url(REDIS_URL, socket_connect_timeout=2)
    try:
        client.ping()
    except (RedisConnectionError, OSError):
        pytest.skip(f"Redis not available at {REDIS_URL}")
    finally:
        client.close()
    return True


@pytest.fixture
async def redis_cache(redis_available):
    """Connected RedisPayoutCache under a throwaway key prefix.

    Every key the test wrote is deleted on teardown.
    """
    prefix = f"test:{uuid.uuid4().hex[:8]}:payout:"
    c = RedisPayoutCache(REDIS_URL, ttl=3600, scan_batch=5, prefix=prefix)
    await c.connect()
    yield c
    keys = [k async for k in c.client.scan_iter(match=f"{prefix}*")]
    if keys:
        await c.client.delete(*keys)
    await c.close()
