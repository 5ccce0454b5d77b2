"""Era payout resolver - turns exposure and claimed-page state into an EraPayoutStatus."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Iterable
from typing import Any

from stash_payouts.interfaces.chain import ChainQueries
from stash_payouts.models.config import EraErrorPolicy
from stash_payouts.models.payouts import EraPayoutStatus, ExposureSummary

log = logging.getLogger(__name__)

NOMINATORS_PER_PAGE = 512


def normalize_claimed_pages(raw: Any, total_pages: int | None = None) -> frozenset[int]:
    """Coerce a claimed-pages value into a set of page indices.

    Accepts None (nothing claimed), any iterable of integers, or a SCALE
    object wrapping one in ``.value``. When ``total_pages`` is given, pages
    outside ``[0, total_pages)`` are dropped.
    """
    if raw is None:
        return frozenset()
    if hasattr(raw, "value") and not isinstance(raw, (str, bytes)):
        return normalize_claimed_pages(raw.value, total_pages)
    if isinstance(raw, (str, bytes, dict)) or not isinstance(raw, Iterable):
        raise TypeError(f"Unsupported claimed pages value: {raw!r}")

    pages = frozenset(int(p) for p in raw)
    if total_pages is not None:
        pages = frozenset(p for p in pages if 0 <= p < total_pages)
    return pages


def page_count(exposure: ExposureSummary, page_size: int = NOMINATORS_PER_PAGE) -> int:
    """Number of reward pages for an active exposure.

    A validator with stake but no nominators still has its own reward to
    claim, so it always gets at least one page.
    """
    if exposure.paged:
        count = int(exposure.page_count or 0)
    else:
        count = math.ceil(exposure.nominator_count / page_size)
    if count == 0 and exposure.total > 0:
        count = 1
    return count


def build_status(
    validator: str,
    era: int,
    exposure: ExposureSummary | None,
    claimed: Any = None,
    page_size: int = NOMINATORS_PER_PAGE,
    now: float | None = None,
) -> EraPayoutStatus:
    """Pure resolution of one (validator, era) from raw chain values."""
    checked = time.time() if now is None else now
    if exposure is None or exposure.total <= 0:
        return EraPayoutStatus(
            validator=validator, era=era, total_pages=0,
            claimed_pages=frozenset(), last_checked=checked,
        )

    total = page_count(exposure, page_size)
    return EraPayoutStatus(
        validator=validator,
        era=era,
        total_pages=total,
        claimed_pages=normalize_claimed_pages(claimed, total),
        last_checked=checked,
    )


class EraPayoutResolver:
    """Resolves payout status for (validator, era) pairs against live chain state."""

    def __init__(
        self,
        chain: ChainQueries,
        page_size: int = NOMINATORS_PER_PAGE,
        policy: EraErrorPolicy = EraErrorPolicy.SKIP,
    ) -> None:
        self._chain = chain
        self._page_size = page_size
        self._policy = policy

    async def resolve(self, validator: str, era: int) -> EraPayoutStatus | None:
        """Query the chain for one era.

        Returns None when the lookup failed and the policy is SKIP; with the
        FAIL policy the error propagates to the caller.
        """
        try:
            exposure = await self._chain.get_exposure(era, validator)
            if exposure is None or exposure.total <= 0:
                # Inactive that era, nothing will ever be claimable
                return build_status(validator, era, None)

            claimed = await self._chain.get_claimed_pages(era, validator)
            return build_status(validator, era, exposure, claimed, self._page_size)

        except Exception as exc:
            if self._policy is EraErrorPolicy.FAIL:
                log.error("Error checking era %d for %s: %s", era, validator, exc)
                raise
            log.warning("Error checking era %d for %s, skipping: %s", era, validator, exc)
            return None
