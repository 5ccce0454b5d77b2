"""Payout status records, claim transactions and settlement results."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class EraRange:
    """Inclusive range of eras to scan."""

    start: int
    end: int

    def __iter__(self):
        return iter(range(self.start, self.end + 1))

    def __len__(self) -> int:
        return max(0, self.end - self.start + 1)

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class ExposureSummary:
    """A validator's backing for one era.

    ``page_count`` is reported by the paged exposure storage; for the legacy
    clipped storage it is None and the page count is derived from
    ``nominator_count``.
    """

    total: int
    page_count: int | None = None
    nominator_count: int = 0

    @property
    def paged(self) -> bool:
        return self.page_count is not None


@dataclass(frozen=True)
class UnclaimedPayout:
    """Pages of one (validator, era) that still have to be claimed."""

    validator: str
    era: int
    pages: tuple[int, ...]


@dataclass(frozen=True)
class EraPayoutStatus:
    """Everything known about the reward pages of one validator in one era."""

    validator: str
    era: int
    total_pages: int
    claimed_pages: frozenset[int] = frozenset()
    last_checked: float = field(default_factory=time.time)

    def unclaimed_pages(self) -> tuple[int, ...]:
        return tuple(p for p in range(self.total_pages) if p not in self.claimed_pages)

    @property
    def fully_claimed(self) -> bool:
        return not self.unclaimed_pages()

    def to_unclaimed(self) -> UnclaimedPayout | None:
        pages = self.unclaimed_pages()
        if not pages:
            return None
        return UnclaimedPayout(validator=self.validator, era=self.era, pages=pages)

    def to_dict(self) -> dict[str, Any]:
        """Cache wire format."""
        return {
            "validator": self.validator,
            "era": self.era,
            "totalPages": self.total_pages,
            "claimedPages": sorted(self.claimed_pages),
            "lastChecked": self.last_checked,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EraPayoutStatus:
        # An empty Lua table round-trips through cjson as {} rather than []
        claimed = data.get("claimedPages") or []
        return cls(
            validator=str(data["validator"]),
            era=int(data["era"]),
            total_pages=int(data["totalPages"]),
            claimed_pages=frozenset(int(p) for p in claimed),
            last_checked=float(data.get("lastChecked", 0)),
        )


@dataclass(frozen=True)
class ClaimTransaction:
    """A single payout claim for one page, with its pre-assigned nonce."""

    validator: str
    era: int
    page: int
    nonce: int


@dataclass
class ClaimResult:
    """Outcome of one signed claim once it finalized (or failed)."""

    transaction: ClaimTransaction
    success: bool
    extrinsic_hash: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ClaimFailure:
    validator: str
    era: int
    page: int
    error: str


@dataclass
class SettlementReport:
    """Aggregate outcome of a claim batch."""

    total: int = 0
    succeeded: int = 0
    failures: list[ClaimFailure] = field(default_factory=list)
    fee_per_tx: int = 0
    total_fee: int = 0
    start_nonce: int | None = None

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def all_succeeded(self) -> bool:
        return self.succeeded == self.total


@dataclass(frozen=True)
class AccountInfo:
    """Nonce and free balance of the signing account."""

    nonce: int
    free: int


@dataclass
class CacheStats:
    """Summary of the cache entries held for one chain."""

    total_keys: int = 0
    validators: set[str] = field(default_factory=set)
    min_era: int | None = None
    max_era: int | None = None

    def add(self, validator: str, era: int) -> None:
        self.total_keys += 1
        self.validators.add(validator)
        self.min_era = era if self.min_era is None else min(self.min_era, era)
        self.max_era = era if self.max_era is None else max(self.max_era, era)
