"""Configuration models for the payout scanner and submitter."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum

DEFAULT_ENDPOINTS = {
    "polkadot": "wss://rpc.polkadot.io",
    "kusama": "wss://kusama-rpc.polkadot.io",
    "westend": "wss://westend-rpc.polkadot.io",
    "paseo": "wss://paseo.dotters.network",
}


def default_workers() -> int:
    return min(os.cpu_count() or 1, 4)


class EraErrorPolicy(str, Enum):
    """What to do when a single (stash, era) lookup fails."""

    SKIP = "skip"  # log and leave the era out of the results
    FAIL = "fail"  # propagate, failing the shard and the whole scan


class CacheBackend(str, Enum):
    REDIS = "redis"
    SQLITE = "sqlite"


@dataclass
class CacheConfig:
    """Payout status cache configuration."""

    enabled: bool = False
    backend: CacheBackend = CacheBackend.REDIS
    redis_url: str = "redis://localhost:6379"
    db_path: str = "~/.stash_payouts/cache.db"
    ttl: int = 3600 * 24 * 7  # seconds
    scan_batch: int = 1000  # keys per SCAN page
    key_prefix: str = "payout:"


@dataclass
class PayoutConfig:
    """Complete scanner/submitter configuration."""

    # Chain
    chain: str = "kusama"
    endpoints: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ENDPOINTS))
    rpc_connections: int = 4  # connections per scan worker

    # Scanning
    workers: int = field(default_factory=default_workers)
    page_size: int = 512  # nominators per reward page (legacy exposure)
    era_error_policy: EraErrorPolicy = EraErrorPolicy.SKIP

    # Submission
    fee_margin: int = 2  # required balance = fee_margin x total fee

    log_level: str = "info"

    cache: CacheConfig = field(default_factory=CacheConfig)

    def resolve_endpoint(self, chain: str | None = None) -> str:
        """Map a known chain name to its RPC endpoint; URLs pass through."""
        name = chain or self.chain
        return self.endpoints.get(name, name)
