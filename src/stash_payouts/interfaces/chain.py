"""Chain protocols - the staking queries and claim transactions the core depends on."""

from __future__ import annotations

from typing import Any, Protocol

from stash_payouts.models.payouts import (
    AccountInfo,
    ClaimResult,
    ClaimTransaction,
    ExposureSummary,
)


class ChainQueries(Protocol):
    """Read-only staking state."""

    async def get_active_era(self) -> int | None:
        """Index of the active era, or None if the chain reports none."""
        ...

    async def get_history_depth(self) -> int:
        ...

    async def get_exposure(self, era: int, stash: str) -> ExposureSummary | None:
        """Paged exposure if the runtime has it, else the legacy clipped one."""
        ...

    async def get_claimed_pages(self, era: int, stash: str) -> Any:
        """Raw claimed-pages value; shape depends on the runtime."""
        ...

    async def get_account(self, address: str) -> AccountInfo:
        ...

    async def close(self) -> None:
        ...


class ChainSubmitter(Protocol):
    """Builds, prices and broadcasts payout claims."""

    async def estimate_fee(self, validator: str, era: int, page: int, signer: Any) -> int:
        ...

    async def sign_and_submit(self, tx: ClaimTransaction, signer: Any) -> ClaimResult:
        """Sign with the pre-assigned nonce and wait for finalization."""
        ...


class ChainClient(ChainQueries, ChainSubmitter, Protocol):
    """Both halves over one endpoint."""
