"""Unclaimed payout detection."""

from stash_payouts.scanner.coordinator import (
    ScanCoordinator,
    ShardResult,
    ShardTask,
    clip_era_range,
    default_era_range,
    partition_stashes,
)
from stash_payouts.scanner.resolver import (
    NOMINATORS_PER_PAGE,
    EraPayoutResolver,
    build_status,
    normalize_claimed_pages,
    page_count,
)

__all__ = [
    "ScanCoordinator", "ShardResult", "ShardTask",
    "clip_era_range", "default_era_range", "partition_stashes",
    "NOMINATORS_PER_PAGE", "EraPayoutResolver", "build_status",
    "normalize_claimed_pages", "page_count",
]
