"""Exceptions raised by the scanner and submitter."""

from __future__ import annotations


class PayoutError(Exception):
    """Base class for all stash_payouts errors."""


class ConfigError(PayoutError):
    """Raise on invalid configuration or operator input (stash file, key file, era range)."""


class ChainError(PayoutError):
    """Raise if the chain cannot provide a value the scan depends on."""


class ScanError(PayoutError):
    """Raise if a scan shard fails. The scan returns no partial result."""

    def __init__(self, message: str, shard: int | None = None) -> None:
        super().__init__(message)
        self.shard = shard


class InsufficientBalanceError(PayoutError):
    """Raise if the signer cannot cover the fee margin. Nothing was broadcast."""

    def __init__(self, free: int, required: int) -> None:
        super().__init__(f"Insufficient balance: {free} < {required}")
        self.free = free
        self.required = required
