"""Substrate chain integration components."""

from stash_payouts.substrate.client import SubstrateChainClient
from stash_payouts.substrate.keys import load_signer, read_key_file

__all__ = ["SubstrateChainClient", "load_signer", "read_key_file"]
