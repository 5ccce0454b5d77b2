"""Scan coordinator - shards stashes across workers and aggregates unclaimed payouts."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from stash_payouts.errors import ScanError
from stash_payouts.interfaces.cache import PayoutCache
from stash_payouts.interfaces.chain import ChainQueries
from stash_payouts.models.config import EraErrorPolicy
from stash_payouts.models.payouts import EraPayoutStatus, EraRange, UnclaimedPayout
from stash_payouts.scanner.resolver import NOMINATORS_PER_PAGE, EraPayoutResolver

log = logging.getLogger(__name__)

ChainFactory = Callable[[], Awaitable[ChainQueries]]


def default_era_range(current_era: int, history_depth: int) -> EraRange:
    """Claimable eras for ``current_era``; the active era itself is excluded.

    For era 0 there is nothing claimable and the range is empty.
    """
    return EraRange(start=max(0, current_era - history_depth), end=current_era - 1)


def clip_era_range(era_range: EraRange, current_era: int) -> EraRange:
    """Drop the active era and anything after it from ``era_range``."""
    return EraRange(start=era_range.start, end=min(era_range.end, current_era - 1))


def partition_stashes(stashes: Sequence[str], workers: int) -> list[list[str]]:
    """Split stashes into ``workers`` shards by index modulo worker count."""
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")
    return [
        [stash for idx, stash in enumerate(stashes) if idx % workers == i]
        for i in range(workers)
    ]


@dataclass
class ShardTask:
    """Work for one scan worker."""

    index: int
    stashes: list[str]
    era_range: EraRange


@dataclass
class ShardResult:
    """What one scan worker found."""

    index: int
    payouts: list[UnclaimedPayout] = field(default_factory=list)
    eras_checked: int = 0
    cache_hits: int = 0
    skipped: int = 0


class ScanCoordinator:
    """Fans a stash list out to shard tasks and joins their results.

    Each shard opens its own chain connection through ``connect_chain``; the
    cache is the only state shared between shards. A failing shard fails the
    whole scan.
    """

    def __init__(
        self,
        chain_name: str,
        connect_chain: ChainFactory,
        cache: PayoutCache | None = None,
        page_size: int = NOMINATORS_PER_PAGE,
        policy: EraErrorPolicy = EraErrorPolicy.SKIP,
    ) -> None:
        self._chain_name = chain_name
        self._connect_chain = connect_chain
        self._cache = cache
        self._page_size = page_size
        self._policy = policy

    async def scan(
        self,
        stashes: Sequence[str],
        era_range: EraRange,
        workers: int,
    ) -> list[UnclaimedPayout]:
        """Return every unclaimed payout for ``stashes`` in ``era_range``.

        Result order is unspecified.
        """
        if not stashes or len(era_range) == 0:
            return []

        tasks = [
            ShardTask(index=i, stashes=shard, era_range=era_range)
            for i, shard in enumerate(partition_stashes(stashes, workers))
            if shard
        ]
        log.info(
            "Scanning eras %s for %d stashes with %d workers",
            era_range, len(stashes), len(tasks),
        )
        start = time.monotonic()

        running = [
            asyncio.create_task(self._run_shard(task), name=f"scan-shard-{task.index}")
            for task in tasks
        ]
        try:
            results = await asyncio.gather(*running)
        except BaseException:
            for t in running:
                t.cancel()
            await asyncio.gather(*running, return_exceptions=True)
            raise

        payouts = [p for result in results for p in result.payouts]
        log.info(
            "Scan complete: %d unclaimed payouts, %d eras checked, %d cache hits, "
            "%d skipped in %dms",
            len(payouts),
            sum(r.eras_checked for r in results),
            sum(r.cache_hits for r in results),
            sum(r.skipped for r in results),
            int((time.monotonic() - start) * 1000),
        )
        return payouts

    async def _run_shard(self, task: ShardTask) -> ShardResult:
        result = ShardResult(index=task.index)
        try:
            chain = await self._connect_chain()
        except Exception as exc:
            raise ScanError(f"Shard {task.index} could not connect: {exc}", shard=task.index) from exc

        try:
            resolver = EraPayoutResolver(chain, self._page_size, self._policy)
            for stash in task.stashes:
                resolved: list[EraPayoutStatus] = []
                found = await asyncio.gather(*(
                    self._check_era(resolver, stash, era, result, resolved)
                    for era in task.era_range
                ))
                result.payouts.extend(p for p in found if p is not None)
                await self._cache_put_many(stash, resolved)
            log.debug(
                "Shard %d done: %d stashes, %d payouts",
                task.index, len(task.stashes), len(result.payouts),
            )
            return result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise ScanError(f"Shard {task.index} failed: {exc}", shard=task.index) from exc
        finally:
            await chain.close()

    async def _check_era(
        self,
        resolver: EraPayoutResolver,
        stash: str,
        era: int,
        result: ShardResult,
        resolved: list[EraPayoutStatus],
    ) -> UnclaimedPayout | None:
        result.eras_checked += 1

        cached = await self._cache_get(stash, era)
        if cached is not None:
            result.cache_hits += 1
            return cached.to_unclaimed()

        status = await resolver.resolve(stash, era)
        if status is None:
            result.skipped += 1
            return None

        resolved.append(status)
        return status.to_unclaimed()

    # ── Cache access (advisory, never fatal) ───────────────

    async def _cache_get(self, stash: str, era: int) -> EraPayoutStatus | None:
        if self._cache is None:
            return None
        try:
            return await self._cache.get(self._chain_name, stash, era)
        except Exception as exc:
            log.warning("Cache read failed for %s era %d: %s", stash, era, exc)
            return None

    async def _cache_put_many(self, stash: str, statuses: list[EraPayoutStatus]) -> None:
        """Write back one stash's freshly resolved eras in a single batch."""
        if self._cache is None or not statuses:
            return
        try:
            await self._cache.put_many(self._chain_name, statuses)
        except Exception as exc:
            log.warning("Cache write failed for %s (%d eras): %s", stash, len(statuses), exc)
