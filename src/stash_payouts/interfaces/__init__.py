"""Protocol interfaces for all stash_payouts components."""

from stash_payouts.interfaces.cache import PayoutCache
from stash_payouts.interfaces.chain import ChainClient, ChainQueries, ChainSubmitter

__all__ = [
    "PayoutCache",
    "ChainClient", "ChainQueries", "ChainSubmitter",
]
