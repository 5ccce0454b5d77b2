"""PayoutCache protocol - memoizes per-era payout status across runs."""

from __future__ import annotations

from typing import Iterable, Protocol

from stash_payouts.models.payouts import CacheStats, EraPayoutStatus, UnclaimedPayout


class PayoutCache(Protocol):
    """Advisory (chain, validator, era) -> EraPayoutStatus store with a TTL.

    Absent, expired and unparsable entries all read as None; callers fall
    back to live chain resolution.
    """

    # ── Lifecycle ──────────────────────────────────────────

    async def connect(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def ping(self) -> bool:
        ...

    # ── Point operations ───────────────────────────────────

    async def get(self, chain: str, validator: str, era: int) -> EraPayoutStatus | None:
        ...

    async def put(self, chain: str, status: EraPayoutStatus) -> None:
        """Write through and reset the TTL."""
        ...

    async def put_many(self, chain: str, statuses: Iterable[EraPayoutStatus]) -> None:
        """Write several statuses in one batch (the scan's per-stash write-back)."""
        ...

    async def merge_claimed_pages(
        self, chain: str, validator: str, era: int, pages: Iterable[int]
    ) -> bool:
        """Atomically union ``pages`` into an entry. False if there is no entry."""
        ...

    # ── Bulk operations ────────────────────────────────────

    async def scan_unclaimed(self, chain: str, current_era: int) -> list[UnclaimedPayout]:
        ...

    async def stats(self, chain: str) -> CacheStats:
        ...

    async def prune(self, chain: str, keep_above_era: int) -> int:
        """Delete entries with era < keep_above_era. Returns the number deleted."""
        ...
