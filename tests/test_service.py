"""PayoutService: default era range, dry run, cache wiring."""

from __future__ import annotations

import pytest

from stash_payouts.errors import ChainError
from stash_payouts.models.config import CacheBackend, CacheConfig
from stash_payouts.models.payouts import EraRange, SettlementReport
from stash_payouts.service import PayoutService, create_cache
from stash_payouts.storage.redis_cache import RedisPayoutCache
from stash_payouts.storage.sqlite import SQLitePayoutCache

from tests.conftest import make_test_config
from tests.factories import STASH_A, STASH_B, make_unclaimed


@pytest.fixture
def service(test_config, chain_factory):
    return PayoutService(test_config, connect_chain=chain_factory)


@pytest.fixture
def cached_service(tmp_path, chain_factory):
    cfg = make_test_config(cache=CacheConfig(
        enabled=True, backend=CacheBackend.SQLITE, db_path=str(tmp_path / "cache.db"),
    ))
    return PayoutService(cfg, connect_chain=chain_factory)


# ── Construction ──────────────────────────────────────────────────


def test_known_chain_resolves_endpoint(test_config):
    service = PayoutService(test_config, chain="polkadot")
    assert service.endpoint == "wss://rpc.polkadot.io"
    assert service.namespace == "polkadot"


def test_endpoint_url_as_chain_gets_safe_namespace(test_config):
    service = PayoutService(test_config, chain="wss://example.org:443")
    assert service.endpoint == "wss://example.org:443"
    assert ":" not in service.namespace


def test_create_cache_picks_backend():
    assert isinstance(create_cache(CacheConfig(backend=CacheBackend.SQLITE)), SQLitePayoutCache)
    assert isinstance(create_cache(CacheConfig(backend=CacheBackend.REDIS)), RedisPayoutCache)


# ── Scan ──────────────────────────────────────────────────────────


async def test_scan_default_range_excludes_active_era(service, mock_chain):
    mock_chain.active_era = 100
    mock_chain.history_depth = 84
    mock_chain.set_era(STASH_A, 99, page_count=1)
    mock_chain.set_era(STASH_A, 100, page_count=1)
    mock_chain.set_era(STASH_A, 15, page_count=1)

    payouts = await service.scan([STASH_A])

    assert [(p.era, p.pages) for p in payouts] == [(99, (0,))]
    eras = {era for era, _ in mock_chain.exposure_calls}
    assert eras == set(range(16, 100))


async def test_scan_explicit_range(service, mock_chain):
    mock_chain.set_era(STASH_A, 5, page_count=1)

    payouts = await service.scan([STASH_A], EraRange(5, 6))

    assert [(p.era, p.pages) for p in payouts] == [(5, (0,))]
    assert {era for era, _ in mock_chain.exposure_calls} == {5, 6}


async def test_explicit_range_never_reaches_active_era(cached_service, mock_chain):
    """Range 99-101 at active era 100: only era 99 is resolved or cached, so
    era 101 is picked up once it becomes claimable."""
    mock_chain.set_era(STASH_A, 99, page_count=1)
    mock_chain.set_era(STASH_A, 100, page_count=1)

    payouts = await cached_service.scan([STASH_A], EraRange(99, 101))

    assert [(p.era, p.pages) for p in payouts] == [(99, (0,))]
    assert mock_chain.exposure_calls == [(99, STASH_A)]

    # Era 101 is paid out later and the chain moves on
    mock_chain.set_era(STASH_A, 101, page_count=1)
    mock_chain.active_era = 102
    payouts = await cached_service.scan([STASH_A], EraRange(100, 101))

    assert sorted((p.era, p.pages) for p in payouts) == [(100, (0,)), (101, (0,))]


async def test_explicit_range_past_active_era_is_empty(service, mock_chain):
    mock_chain.set_era(STASH_A, 100, page_count=1)

    assert await service.scan([STASH_A], EraRange(100, 105)) == []
    assert mock_chain.exposure_calls == []


async def test_explicit_range_still_needs_active_era(service, mock_chain):
    mock_chain.active_era = None

    with pytest.raises(ChainError):
        await service.scan([STASH_A], EraRange(5, 6))


async def test_scan_without_active_era_fails(service, mock_chain):
    mock_chain.active_era = None

    with pytest.raises(ChainError):
        await service.scan([STASH_A])


async def test_scan_populates_cache(cached_service, mock_chain):
    mock_chain.set_era(STASH_A, 98, page_count=2, claimed=[0])
    mock_chain.set_era(STASH_B, 99, page_count=1)

    await cached_service.scan([STASH_A, STASH_B], EraRange(98, 99))
    cached = await cached_service.cached_unclaimed()

    assert [(p.validator, p.era, p.pages) for p in cached] == [
        (STASH_A, 98, (1,)),
        (STASH_B, 99, (0,)),
    ]


async def test_second_scan_served_from_cache(cached_service, mock_chain):
    mock_chain.set_era(STASH_A, 98, page_count=1)

    await cached_service.scan([STASH_A], EraRange(98, 98))
    mock_chain.exposure_calls.clear()
    payouts = await cached_service.scan([STASH_A], EraRange(98, 98))

    assert [(p.era, p.pages) for p in payouts] == [(98, (0,))]
    assert mock_chain.exposure_calls == []


async def test_scan_cache_can_be_disabled(cached_service, mock_chain):
    mock_chain.set_era(STASH_A, 98, page_count=1)

    await cached_service.scan([STASH_A], EraRange(98, 98), use_cache=False)
    assert await cached_service.cached_unclaimed() == []


# ── Submit ────────────────────────────────────────────────────────


async def test_dry_run_sends_nothing(service, mock_chain, signer):
    unclaimed = [make_unclaimed(pages=(0, 1))]

    result = await service.submit(unclaimed, signer, dry_run=True)

    assert result == unclaimed
    assert mock_chain.submitted == []
    assert mock_chain.fee_calls == []


async def test_submit_empty(service, chain_factory, signer):
    result = await service.submit([], signer)

    assert result == SettlementReport()
    assert chain_factory.connections == 0


async def test_submit_claims_and_updates_cache(cached_service, mock_chain, signer):
    mock_chain.set_era(STASH_A, 98, page_count=2)
    unclaimed = await cached_service.scan([STASH_A], EraRange(98, 98))

    report = await cached_service.submit(unclaimed, signer)

    assert report.succeeded == 2
    assert mock_chain.closed
    assert await cached_service.cached_unclaimed() == []
