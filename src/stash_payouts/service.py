"""Payout service - wires chain, cache, scan coordinator and submission engine together."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from stash_payouts.config import cache_namespace
from stash_payouts.errors import ChainError
from stash_payouts.interfaces.cache import PayoutCache
from stash_payouts.interfaces.chain import ChainClient
from stash_payouts.models.config import CacheBackend, CacheConfig, PayoutConfig
from stash_payouts.models.payouts import EraRange, SettlementReport, UnclaimedPayout
from stash_payouts.scanner.coordinator import (
    ScanCoordinator,
    clip_era_range,
    default_era_range,
)
from stash_payouts.storage.redis_cache import RedisPayoutCache
from stash_payouts.storage.sqlite import SQLitePayoutCache
from stash_payouts.submission.engine import SubmissionEngine
from stash_payouts.substrate.client import SubstrateChainClient

log = logging.getLogger(__name__)

ChainFactory = Callable[[], Awaitable[ChainClient]]


def create_cache(cfg: CacheConfig) -> PayoutCache:
    """Build (but do not connect) the configured cache backend."""
    if cfg.backend is CacheBackend.SQLITE:
        return SQLitePayoutCache(cfg.db_path, ttl=cfg.ttl, scan_batch=cfg.scan_batch)
    return RedisPayoutCache(
        cfg.redis_url, ttl=cfg.ttl, scan_batch=cfg.scan_batch, prefix=cfg.key_prefix,
    )


class PayoutService:
    """Entry points used by the CLI: scan for unclaimed payouts and claim them."""

    def __init__(
        self,
        cfg: PayoutConfig,
        chain: str | None = None,
        endpoint: str | None = None,
        connect_chain: ChainFactory | None = None,
        cache: PayoutCache | None = None,
    ) -> None:
        self._cfg = cfg
        self.chain = chain or cfg.chain
        self.endpoint = endpoint or cfg.resolve_endpoint(self.chain)
        self.namespace = cache_namespace(self.chain)
        self._connect_chain = connect_chain or self._connect_substrate
        self._cache = cache

    async def _connect_substrate(self) -> ChainClient:
        client = SubstrateChainClient(self.endpoint, pool_size=self._cfg.rpc_connections)
        await client.connect()
        return client

    async def open_cache(self) -> PayoutCache:
        if self._cache is None:
            self._cache = create_cache(self._cfg.cache)
        await self._cache.connect()
        return self._cache

    async def close(self) -> None:
        if self._cache is not None:
            await self._cache.close()

    async def current_era_range(self, client: ChainClient) -> tuple[int, EraRange]:
        current = await client.get_active_era()
        if current is None:
            raise ChainError("No active era found")
        depth = await client.get_history_depth()
        log.info("Current era: %d, history depth: %d", current, depth)
        return current, default_era_range(current, depth)

    async def scan(
        self,
        stashes: Sequence[str],
        era_range: EraRange | None = None,
        workers: int | None = None,
        use_cache: bool | None = None,
    ) -> list[UnclaimedPayout]:
        """Find unclaimed payouts; the default range is every claimable past era.

        An explicit ``era_range`` is clipped to end before the active era.
        """
        log.info("Connecting to %s (%s)", self.chain, self.endpoint)
        client = await self._connect_chain()
        try:
            current, claimable = await self.current_era_range(client)
        finally:
            await client.close()

        if era_range is None:
            era_range = claimable
        elif era_range.end >= current:
            log.warning(
                "Era range %s reaches active era %d, scanning up to era %d only",
                era_range, current, current - 1,
            )
            era_range = clip_era_range(era_range, current)

        use_cache = self._cfg.cache.enabled if use_cache is None else use_cache
        cache = await self.open_cache() if use_cache else None
        try:
            coordinator = ScanCoordinator(
                chain_name=self.namespace,
                connect_chain=self._connect_chain,
                cache=cache,
                page_size=self._cfg.page_size,
                policy=self._cfg.era_error_policy,
            )
            return await coordinator.scan(stashes, era_range, workers or self._cfg.workers)
        finally:
            if cache is not None:
                await cache.close()

    async def submit(
        self,
        unclaimed: Sequence[UnclaimedPayout],
        signer: Any,
        dry_run: bool = False,
        use_cache: bool | None = None,
    ) -> SettlementReport | list[UnclaimedPayout]:
        """Claim ``unclaimed``. With ``dry_run`` nothing is signed or sent and
        the payouts that would be claimed are returned instead."""
        if dry_run:
            log.info("Dry run: %d payouts would be submitted", len(unclaimed))
            return list(unclaimed)
        if not unclaimed:
            return SettlementReport()

        use_cache = self._cfg.cache.enabled if use_cache is None else use_cache
        cache = await self.open_cache() if use_cache else None
        client = await self._connect_chain()
        try:
            engine = SubmissionEngine(
                queries=client,
                submitter=client,
                cache=cache,
                chain_name=self.namespace,
                fee_margin=self._cfg.fee_margin,
            )
            return await engine.submit(unclaimed, signer)
        finally:
            await client.close()
            if cache is not None:
                await cache.close()

    async def cached_unclaimed(self) -> list[UnclaimedPayout]:
        """Unclaimed payouts known to the cache, without scanning the chain."""
        client = await self._connect_chain()
        try:
            current, _ = await self.current_era_range(client)
        finally:
            await client.close()
        cache = await self.open_cache()
        try:
            return await cache.scan_unclaimed(self.namespace, current)
        finally:
            await cache.close()
