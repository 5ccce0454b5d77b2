"""Submission engine - fee preflight, nonce assignment and concurrent claim broadcast."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from stash_payouts.errors import InsufficientBalanceError
from stash_payouts.interfaces.cache import PayoutCache
from stash_payouts.interfaces.chain import ChainQueries, ChainSubmitter
from stash_payouts.models.payouts import (
    ClaimFailure,
    ClaimResult,
    ClaimTransaction,
    SettlementReport,
    UnclaimedPayout,
)

log = logging.getLogger(__name__)


def build_transactions(
    unclaimed: Sequence[UnclaimedPayout], start_nonce: int
) -> list[ClaimTransaction]:
    """Flatten payouts into one claim per page with sequential nonces, in input order."""
    txs: list[ClaimTransaction] = []
    nonce = start_nonce
    for payout in unclaimed:
        for page in payout.pages:
            txs.append(ClaimTransaction(
                validator=payout.validator, era=payout.era, page=page, nonce=nonce,
            ))
            nonce += 1
    return txs


def signer_address(signer: Any) -> str:
    return getattr(signer, "ss58_address", None) or str(signer)


@dataclass
class Preflight:
    """Fee and account state checked before anything is sent."""

    fee_per_tx: int
    total_fee: int
    required: int
    nonce: int
    free: int


class SubmissionEngine:
    """Claims a batch of unclaimed payouts.

    Every page becomes its own transaction. Nonces are assigned up front so
    all transactions can be broadcast at once; each is awaited to
    finalization independently and a failure never cancels its siblings.
    """

    def __init__(
        self,
        queries: ChainQueries,
        submitter: ChainSubmitter,
        cache: PayoutCache | None = None,
        chain_name: str = "",
        fee_margin: int = 2,
    ) -> None:
        self._queries = queries
        self._submitter = submitter
        self._cache = cache
        self._chain_name = chain_name
        self._fee_margin = fee_margin

    async def preflight(self, unclaimed: Sequence[UnclaimedPayout], signer: Any) -> Preflight:
        """Price the batch and check the signer can afford it.

        Raises InsufficientBalanceError when free balance is below
        ``fee_margin`` times the total fee.
        """
        count = sum(len(p.pages) for p in unclaimed)
        first = unclaimed[0]
        fee = await self._submitter.estimate_fee(
            first.validator, first.era, first.pages[0], signer,
        )
        total_fee = fee * count
        required = total_fee * self._fee_margin

        account = await self._queries.get_account(signer_address(signer))
        if account.free < required:
            raise InsufficientBalanceError(account.free, required)

        log.info("Fee: %d per tx, %d total for %d txs", fee, total_fee, count)
        log.info("Nonce: %d, free balance: %d", account.nonce, account.free)
        return Preflight(
            fee_per_tx=fee, total_fee=total_fee, required=required,
            nonce=account.nonce, free=account.free,
        )

    async def submit(self, unclaimed: Sequence[UnclaimedPayout], signer: Any) -> SettlementReport:
        """Claim every page in ``unclaimed`` and report per-transaction outcomes."""
        unclaimed = [p for p in unclaimed if p.pages]
        if not unclaimed:
            return SettlementReport()

        pre = await self.preflight(unclaimed, signer)
        txs = build_transactions(unclaimed, pre.nonce)

        log.info("Broadcasting %d claim transactions", len(txs))
        outcomes = await asyncio.gather(
            *(self._broadcast(tx, signer) for tx in txs), return_exceptions=True,
        )

        report = SettlementReport(
            total=len(txs),
            fee_per_tx=pre.fee_per_tx,
            total_fee=pre.total_fee,
            start_nonce=pre.nonce,
        )
        for tx, outcome in zip(txs, outcomes):
            if isinstance(outcome, BaseException):
                outcome = ClaimResult(transaction=tx, success=False, error=str(outcome))
            if outcome.success:
                report.succeeded += 1
            else:
                report.failures.append(ClaimFailure(
                    validator=tx.validator,
                    era=tx.era,
                    page=tx.page,
                    error=outcome.error or "dispatch error",
                ))

        log.info("Claimed %d/%d", report.succeeded, report.total)
        return report

    async def _broadcast(self, tx: ClaimTransaction, signer: Any) -> ClaimResult:
        try:
            result = await self._submitter.sign_and_submit(tx, signer)
        except Exception as exc:
            log.error(
                "Claim failed for %s era %d page %d (nonce %d): %s",
                tx.validator, tx.era, tx.page, tx.nonce, exc,
            )
            return ClaimResult(transaction=tx, success=False, error=str(exc))

        if not result.success:
            log.error(
                "Claim dispatch error for %s era %d page %d: %s",
                tx.validator, tx.era, tx.page, result.error,
            )
            return result

        log.info(
            "Claimed %s era %d page %d (tx=%s)",
            tx.validator, tx.era, tx.page,
            result.extrinsic_hash[:16] if result.extrinsic_hash else "?",
        )
        await self._record_claim(tx)
        return result

    async def _record_claim(self, tx: ClaimTransaction) -> None:
        if self._cache is None:
            return
        try:
            merged = await self._cache.merge_claimed_pages(
                self._chain_name, tx.validator, tx.era, [tx.page],
            )
            if not merged:
                log.debug("No cache entry to update for %s era %d", tx.validator, tx.era)
        except Exception as exc:
            log.warning("Cache update failed for %s era %d: %s", tx.validator, tx.era, exc)
