"""Data models for stash_payouts."""

from stash_payouts.models.config import (
    CacheBackend,
    CacheConfig,
    DEFAULT_ENDPOINTS,
    EraErrorPolicy,
    PayoutConfig,
)
from stash_payouts.models.payouts import (
    AccountInfo,
    CacheStats,
    ClaimFailure,
    ClaimResult,
    ClaimTransaction,
    EraPayoutStatus,
    EraRange,
    ExposureSummary,
    SettlementReport,
    UnclaimedPayout,
)

__all__ = [
    "CacheBackend", "CacheConfig", "DEFAULT_ENDPOINTS", "EraErrorPolicy", "PayoutConfig",
    "AccountInfo", "CacheStats", "ClaimFailure", "ClaimResult", "ClaimTransaction",
    "EraPayoutStatus", "EraRange", "ExposureSummary", "SettlementReport",
    "UnclaimedPayout",
]
