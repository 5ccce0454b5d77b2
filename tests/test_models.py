"""Payout records, cache wire format and cache key layout."""

from __future__ import annotations

import pytest

from stash_payouts.models.payouts import CacheStats, EraPayoutStatus, EraRange, SettlementReport
from stash_payouts.storage.redis_cache import build_key, parse_key

from tests.factories import STASH_A, make_status


# ── EraRange ──────────────────────────────────────────────────────


def test_era_range_is_inclusive():
    era_range = EraRange(10, 12)
    assert list(era_range) == [10, 11, 12]
    assert len(era_range) == 3
    assert str(era_range) == "10-12"


def test_inverted_era_range_is_empty():
    assert len(EraRange(5, 4)) == 0
    assert list(EraRange(5, 4)) == []


# ── Wire format ───────────────────────────────────────────────────


def test_status_wire_format():
    status = make_status(STASH_A, era=10, total_pages=3, claimed={2, 0}, last_checked=1700000000.5)

    assert status.to_dict() == {
        "validator": STASH_A,
        "era": 10,
        "totalPages": 3,
        "claimedPages": [0, 2],
        "lastChecked": 1700000000.5,
    }
    assert EraPayoutStatus.from_dict(status.to_dict()) == status


def test_empty_claimed_pages_object_reads_as_empty():
    """cjson encodes an empty Lua table as {}."""
    status = EraPayoutStatus.from_dict({
        "validator": STASH_A, "era": 10, "totalPages": 1,
        "claimedPages": {}, "lastChecked": 1.0,
    })
    assert status.claimed_pages == frozenset()
    assert status.unclaimed_pages() == (0,)


def test_from_dict_requires_core_fields():
    with pytest.raises(KeyError):
        EraPayoutStatus.from_dict({"validator": STASH_A, "era": 10})


# ── Cache keys ────────────────────────────────────────────────────


def test_key_layout():
    assert build_key("kusama", STASH_A, 6000) == f"payout:kusama:{STASH_A}:6000"


def test_parse_key():
    assert parse_key(build_key("kusama", STASH_A, 6000)) == ("kusama", STASH_A, 6000)


def test_parse_key_with_custom_prefix():
    key = build_key("dot", STASH_A, 1, prefix="test:payout:")
    assert parse_key(key, prefix="test:payout:") == ("dot", STASH_A, 1)
    assert parse_key(key) is None


@pytest.mark.parametrize("key", [
    "other:kusama:abc:1",
    "payout:kusama:abc",
    "payout:kusama:abc:notanera",
    "payout::abc:1",
    "payout:kusama::1",
])
def test_parse_key_rejects_foreign_keys(key):
    assert parse_key(key) is None


# ── Aggregates ────────────────────────────────────────────────────


def test_cache_stats_add():
    stats = CacheStats()
    stats.add("a", 12)
    stats.add("b", 10)
    stats.add("a", 15)

    assert stats.total_keys == 3
    assert stats.validators == {"a", "b"}
    assert (stats.min_era, stats.max_era) == (10, 15)


def test_empty_report_all_succeeded():
    report = SettlementReport()
    assert report.failed == 0
    assert report.all_succeeded
