"""Signer loading from key files (mnemonic, seed or derivation URI)."""

from __future__ import annotations

import logging
from pathlib import Path

from substrateinterface import Keypair, KeypairType

from stash_payouts.errors import ConfigError

log = logging.getLogger(__name__)


def looks_like_key(key: str) -> bool:
    """Cheap shape check: a derivation URI, a 12+ word mnemonic or a hex seed."""
    return "//" in key or len(key.split()) >= 12 or key.startswith("0x")


def read_key_file(path: str | Path) -> str:
    """Read and validate the secret URI stored in ``path``."""
    p = Path(path).expanduser()
    try:
        key = p.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        raise ConfigError(f"Key file not found: {p}") from None
    except OSError as exc:
        raise ConfigError(f"Error reading key file: {exc}") from exc

    if not key:
        raise ConfigError("Key file is empty")
    if not looks_like_key(key):
        raise ConfigError("Invalid key format in file")
    return key


def load_signer(uri: str, crypto_type: int = KeypairType.SR25519) -> Keypair:
    """Build a keypair from a mnemonic, hex seed or derivation URI."""
    try:
        keypair = Keypair.create_from_uri(uri.strip(), crypto_type=crypto_type)
    except Exception as exc:
        raise ConfigError(f"Could not derive signer from key: {exc}") from exc
    log.info("Using account: %s", keypair.ss58_address)
    return keypair
