"""Batched payout claim submission."""

from stash_payouts.submission.engine import (
    Preflight,
    SubmissionEngine,
    build_transactions,
    signer_address,
)

__all__ = ["Preflight", "SubmissionEngine", "build_transactions", "signer_address"]
