"""Era payout resolution: page counts, claimed-page shapes, error policy."""

from __future__ import annotations

import pytest

from stash_payouts.models.config import EraErrorPolicy
from stash_payouts.models.payouts import ExposureSummary
from stash_payouts.scanner.resolver import (
    EraPayoutResolver,
    build_status,
    normalize_claimed_pages,
    page_count,
)

from tests.factories import STASH_A, make_status
from tests.mocks import MockChain


class _Wrapped:
    """SCALE-style result object exposing its payload as ``.value``."""

    def __init__(self, value):
        self.value = value


# ── Page counts ───────────────────────────────────────────────────


def test_paged_exposure_uses_reported_page_count():
    assert page_count(ExposureSummary(total=10, page_count=3)) == 3


def test_stake_without_nominators_still_has_one_page():
    """A validator backed only by itself still has its own reward to claim."""
    assert page_count(ExposureSummary(total=10, page_count=0)) == 1
    assert page_count(ExposureSummary(total=10, nominator_count=0)) == 1


def test_legacy_exposure_pages_by_nominator_count():
    assert page_count(ExposureSummary(total=10, nominator_count=512)) == 1
    assert page_count(ExposureSummary(total=10, nominator_count=513)) == 2
    assert page_count(ExposureSummary(total=10, nominator_count=1025), page_size=512) == 3
    assert page_count(ExposureSummary(total=10, nominator_count=10), page_size=4) == 3


# ── Status construction ───────────────────────────────────────────


def test_unclaimed_pages_are_the_complement():
    """4 pages with {0, 2} claimed leaves pages 1 and 3."""
    status = build_status(STASH_A, 10, ExposureSummary(total=5, page_count=4), [0, 2])

    assert status.total_pages == 4
    assert status.claimed_pages == {0, 2}
    assert status.unclaimed_pages() == (1, 3)
    assert status.to_unclaimed().pages == (1, 3)


def test_unclaimed_pages_sorted_without_duplicates():
    status = make_status(total_pages=5, claimed={4, 0, 2})
    assert status.unclaimed_pages() == (1, 3)


def test_no_stake_means_zero_pages():
    status = build_status(STASH_A, 10, ExposureSummary(total=0, page_count=2), [0])

    assert status.total_pages == 0
    assert status.claimed_pages == frozenset()
    assert status.to_unclaimed() is None


def test_missing_exposure_means_zero_pages():
    assert build_status(STASH_A, 10, None).total_pages == 0


def test_fully_claimed_status_has_no_unclaimed_payout():
    status = make_status(total_pages=2, claimed={0, 1})

    assert status.fully_claimed
    assert status.to_unclaimed() is None


def test_claimed_pages_outside_range_are_dropped():
    status = build_status(STASH_A, 10, ExposureSummary(total=5, page_count=2), [0, 5, -1])

    assert status.claimed_pages == {0}
    assert status.unclaimed_pages() == (1,)


def test_build_status_records_check_time():
    status = build_status(STASH_A, 10, ExposureSummary(total=5, page_count=1), now=1234.5)
    assert status.last_checked == 1234.5


# ── Claimed-page normalization ────────────────────────────────────


@pytest.mark.parametrize("raw, expected", [
    (None, frozenset()),
    ([], frozenset()),
    ([2, 0, 2], frozenset({0, 2})),
    ((1,), frozenset({1})),
    ({3, 4}, frozenset({3, 4})),
    (_Wrapped([0, 1]), frozenset({0, 1})),
    (_Wrapped(None), frozenset()),
])
def test_normalize_claimed_pages_shapes(raw, expected):
    assert normalize_claimed_pages(raw) == expected


@pytest.mark.parametrize("raw", ["0,1", b"\x00", {"0": 1}, 7])
def test_normalize_claimed_pages_rejects_unknown_shapes(raw):
    with pytest.raises(TypeError):
        normalize_claimed_pages(raw)


def test_normalize_claimed_pages_filters_to_total():
    assert normalize_claimed_pages([0, 1, 2, 9], total_pages=2) == {0, 1}


# ── Resolver against chain state ──────────────────────────────────


async def test_resolver_reads_exposure_and_claimed():
    chain = MockChain()
    chain.set_era(STASH_A, 10, page_count=3, claimed=_Wrapped([1]))

    status = await EraPayoutResolver(chain).resolve(STASH_A, 10)

    assert status is not None
    assert status.unclaimed_pages() == (0, 2)


async def test_resolver_inactive_era_is_zero_pages():
    """No exposure recorded for the era → nothing claimable, no error."""
    chain = MockChain()

    status = await EraPayoutResolver(chain).resolve(STASH_A, 10)

    assert status is not None
    assert status.total_pages == 0


async def test_resolver_skip_policy_returns_none():
    chain = MockChain()
    chain.failing_eras.add(10)

    resolver = EraPayoutResolver(chain, policy=EraErrorPolicy.SKIP)
    assert await resolver.resolve(STASH_A, 10) is None


async def test_resolver_fail_policy_propagates():
    chain = MockChain()
    chain.failing_eras.add(10)

    resolver = EraPayoutResolver(chain, policy=EraErrorPolicy.FAIL)
    with pytest.raises(ConnectionError):
        await resolver.resolve(STASH_A, 10)


async def test_resolver_rejects_malformed_claimed_pages_under_fail():
    chain = MockChain()
    chain.set_era(STASH_A, 10, page_count=1, claimed="garbage")

    resolver = EraPayoutResolver(chain, policy=EraErrorPolicy.FAIL)
    with pytest.raises(TypeError):
        await resolver.resolve(STASH_A, 10)
