"""Shared fixtures for stash_payouts tests."""

from __future__ import annotations

import pytest

from stash_payouts.models.config import CacheConfig, EraErrorPolicy, PayoutConfig
from stash_payouts.storage.sqlite import SQLitePayoutCache

from tests.mocks import ChainFactory, MockChain, MockSigner

TEST_CHAIN = "kusama"


def make_test_config(**overrides) -> PayoutConfig:
    """Build a PayoutConfig suitable for testing."""
    defaults = dict(
        chain=TEST_CHAIN,
        workers=2,
        page_size=512,
        era_error_policy=EraErrorPolicy.SKIP,
        fee_margin=2,
        cache=CacheConfig(enabled=False, backend="sqlite", db_path=":memory:"),
    )
    defaults.update(overrides)
    return PayoutConfig(**defaults)


@pytest.fixture
def test_config():
    """Default PayoutConfig for tests."""
    return make_test_config()


@pytest.fixture
async def cache():
    """Connected in-memory SQLitePayoutCache."""
    c = SQLitePayoutCache(":memory:", ttl=3600, scan_batch=2)
    await c.connect()
    yield c
    await c.close()


@pytest.fixture
def mock_chain():
    return MockChain()


@pytest.fixture
def chain_factory(mock_chain):
    return ChainFactory(mock_chain)


@pytest.fixture
def signer():
    return MockSigner()
