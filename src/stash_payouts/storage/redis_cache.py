"""Redis implementation of the PayoutCache protocol."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator, Iterable

import redis.asyncio as redis
from redis.asyncio import Redis

from stash_payouts.models.payouts import CacheStats, EraPayoutStatus, UnclaimedPayout

log = logging.getLogger(__name__)

KEY_PREFIX = "payout:"

# KEYS[1] = entry key, ARGV[1] = JSON list of pages, ARGV[2] = ttl seconds.
# Runs as one server-side step, so concurrent claim writers never lose pages.
MERGE_CLAIMED_PAGES = """
local data = redis.call('GET', KEYS[1])
if not data then
  return 0
end

local entry = cjson.decode(data)
local seen = {}
local merged = {}
for _, p in ipairs(entry.claimedPages) do
  if not seen[p] then
    seen[p] = true
    table.insert(merged, p)
  end
end
for _, p in ipairs(cjson.decode(ARGV[1])) do
  if p >= 0 and p < entry.totalPages and not seen[p] then
    seen[p] = true
    table.insert(merged, p)
  end
end
table.sort(merged)
entry.claimedPages = merged

local now = redis.call('TIME')
entry.lastChecked = tonumber(now[1]) + tonumber(now[2]) / 1000000

redis.call('SET', KEYS[1], cjson.encode(entry), 'EX', tonumber(ARGV[2]))
return 1
"""


def build_key(chain: str, validator: str, era: int, prefix: str = KEY_PREFIX) -> str:
    return f"{prefix}{chain}:{validator}:{era}"


def parse_key(key: str, prefix: str = KEY_PREFIX) -> tuple[str, str, int] | None:
    """Split a cache key into (chain, validator, era); None if it is not one of ours."""
    if not key.startswith(prefix):
        return None
    parts = key[len(prefix):].rsplit(":", 2)
    if len(parts) != 3 or not parts[2].isdigit():
        return None
    chain, validator, era = parts
    if not chain or not validator:
        return None
    return chain, validator, int(era)


class RedisPayoutCache:
    """Redis-backed payout cache shared by every scan worker.

    Entries are JSON documents stored with ``SET ... EX ttl``; enumeration
    uses ``SCAN`` in pages of ``scan_batch`` keys rather than ``KEYS``.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        ttl: int = 3600 * 24 * 7,
        scan_batch: int = 1000,
        prefix: str = KEY_PREFIX,
    ) -> None:
        self.url = url
        self._ttl = ttl
        self._scan_batch = scan_batch
        self._prefix = prefix
        self._client: Redis | None = None
        self._merge_script = None

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = redis.from_url(self.url, decode_responses=True)
        try:
            await self._client.ping()
        except Exception as exc:
            log.error("Failed to connect to Redis at %s: %s", self.url, exc)
            await self._client.aclose()
            self._client = None
            raise
        self._merge_script = self._client.register_script(MERGE_CLAIMED_PAGES)
        log.debug("Redis connection established (%s)", self.url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    @property
    def client(self) -> Redis:
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    def _key(self, chain: str, validator: str, era: int) -> str:
        return build_key(chain, validator, era, self._prefix)

    def _decode(self, key: str, data: str | None) -> EraPayoutStatus | None:
        if not data:
            return None
        try:
            status = EraPayoutStatus.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError) as exc:
            log.warning("Ignoring corrupt cache entry %s: %s", key, exc)
            return None
        if time.time() - status.last_checked > self._ttl:
            return None
        return status

    # ── Point operations ───────────────────────────────────

    async def get(self, chain: str, validator: str, era: int) -> EraPayoutStatus | None:
        key = self._key(chain, validator, era)
        return self._decode(key, await self.client.get(key))

    async def put(self, chain: str, status: EraPayoutStatus) -> None:
        key = self._key(chain, status.validator, status.era)
        await self.client.set(key, json.dumps(status.to_dict()), ex=self._ttl)

    async def put_many(self, chain: str, statuses: Iterable[EraPayoutStatus]) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            for status in statuses:
                key = self._key(chain, status.validator, status.era)
                pipe.set(key, json.dumps(status.to_dict()), ex=self._ttl)
            await pipe.execute()

    async def merge_claimed_pages(
        self, chain: str, validator: str, era: int, pages: Iterable[int]
    ) -> bool:
        if self._merge_script is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        key = self._key(chain, validator, era)
        result = await self._merge_script(
            keys=[key], args=[json.dumps(sorted({int(p) for p in pages})), self._ttl],
        )
        return int(result) == 1

    # ── Bulk operations ────────────────────────────────────

    async def _scan_keys(self, chain: str) -> AsyncIterator[list[str]]:
        """Yield the chain's keys one SCAN page at a time."""
        pattern = f"{self._prefix}{chain}:*"
        cursor = 0
        while True:
            cursor, keys = await self.client.scan(
                cursor=cursor, match=pattern, count=self._scan_batch,
            )
            if keys:
                yield keys
            if int(cursor) == 0:
                return

    async def scan_unclaimed(self, chain: str, current_era: int) -> list[UnclaimedPayout]:
        unclaimed: list[UnclaimedPayout] = []
        async for keys in self._scan_keys(chain):
            wanted = []
            for key in keys:
                parsed = parse_key(key, self._prefix)
                if parsed and parsed[0] == chain and parsed[2] < current_era:
                    wanted.append(key)
            if not wanted:
                continue
            for key, data in zip(wanted, await self.client.mget(wanted)):
                status = self._decode(key, data)
                payout = status.to_unclaimed() if status else None
                if payout is not None:
                    unclaimed.append(payout)
        return sorted(unclaimed, key=lambda p: (p.validator, p.era))

    async def stats(self, chain: str) -> CacheStats:
        stats = CacheStats()
        async for keys in self._scan_keys(chain):
            for key in keys:
                parsed = parse_key(key, self._prefix)
                if parsed and parsed[0] == chain:
                    stats.add(parsed[1], parsed[2])
        return stats

    async def prune(self, chain: str, keep_above_era: int) -> int:
        deleted = 0
        async for keys in self._scan_keys(chain):
            doomed = []
            for key in keys:
                parsed = parse_key(key, self._prefix)
                if parsed and parsed[0] == chain and parsed[2] < keep_above_era:
                    doomed.append(key)
            if doomed:
                deleted += await self.client.delete(*doomed)
        log.info("Pruned %d cache entries below era %d for %s", deleted, keep_above_era, chain)
        return deleted
