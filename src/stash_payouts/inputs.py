"""Operator input: stash list files and era range arguments."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stash_payouts.errors import ConfigError
from stash_payouts.models.payouts import EraRange

log = logging.getLogger(__name__)

_ERA_RANGE = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")


@dataclass
class ChainStashes:
    """Stashes to check on one chain, with an optional endpoint override."""

    chain: str
    stashes: list[str] = field(default_factory=list)
    endpoint: str | None = None


def _read_json(path: str | Path) -> Any:
    p = Path(path).expanduser()
    try:
        with open(p, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Stashes file not found: {p}") from None
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Error loading stashes from {p}: {exc}") from exc


def _clean(stashes: Any, source: str) -> list[str]:
    if not isinstance(stashes, list) or not all(isinstance(s, str) for s in stashes):
        raise ConfigError(f"Invalid stashes format in {source}")
    # Preserve order, drop blanks and duplicates
    return list(dict.fromkeys(s.strip() for s in stashes if s.strip()))


def _is_multichain(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and "stashes" not in data
        and bool(data)
        and all(isinstance(v, dict) for v in data.values())
    )


def load_multichain_stashes(path: str | Path, default_chain: str = "kusama") -> dict[str, ChainStashes]:
    """Load a stashes file as {chain: ChainStashes}.

    Single-chain files are returned under ``default_chain``.
    """
    data = _read_json(path)
    if not _is_multichain(data):
        return {default_chain: ChainStashes(default_chain, _single_chain(data, str(path)))}

    result: dict[str, ChainStashes] = {}
    for chain, entry in data.items():
        result[chain] = ChainStashes(
            chain=chain,
            stashes=_clean(entry.get("stashes", []), f"{path} [{chain}]"),
            endpoint=entry.get("endpoint"),
        )
    return result


def _single_chain(data: Any, source: str) -> list[str]:
    if isinstance(data, str):
        return _clean([data], source)
    if isinstance(data, list):
        return _clean(data, source)
    if isinstance(data, dict) and "stashes" in data:
        return _clean(data["stashes"], source)
    raise ConfigError(f"Invalid stashes format in {source}")


def load_stashes(path: str | Path, chain: str = "kusama") -> ChainStashes:
    """Load the stashes for ``chain``.

    Accepts a JSON list, a bare string, an object with a ``stashes`` list,
    or a multi-chain object keyed by chain name.
    """
    chains = load_multichain_stashes(path, default_chain=chain)
    if chain not in chains:
        raise ConfigError(
            f"Chain '{chain}' not found in stashes file "
            f"(available: {', '.join(sorted(chains))})"
        )
    entry = chains[chain]
    if not entry.stashes:
        raise ConfigError(f"No stashes configured for {chain} in {path}")
    log.debug("Loaded %d stashes for %s", len(entry.stashes), chain)
    return entry


def parse_era_range(value: str) -> EraRange:
    """Parse ``START-END`` (inclusive)."""
    m = _ERA_RANGE.match(value or "")
    if not m:
        raise ConfigError("Invalid era range format. Use: --era-range START-END")
    start, end = int(m.group(1)), int(m.group(2))
    if start > end:
        raise ConfigError(f"Invalid era range {value}: start is after end")
    return EraRange(start, end)
