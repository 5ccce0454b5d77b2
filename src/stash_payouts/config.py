"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
import re
from pathlib import Path

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from stash_payouts.errors import ConfigError
from stash_payouts.models.config import (
    CacheBackend,
    CacheConfig,
    EraErrorPolicy,
    PayoutConfig,
)


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "STASH_PAYOUTS_",
) -> PayoutConfig:
    """Load configuration from a TOML file and environment variables.

    Priority (highest wins):
        1. Environment variables (STASH_PAYOUTS_CHAIN, REDIS_URL, etc.)
        2. TOML config file
        3. Defaults from PayoutConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                try:
                    raw = tomllib.load(f)
                except tomllib.TOMLDecodeError as exc:
                    raise ConfigError(f"Invalid config file {p}: {exc}") from exc

    cfg = PayoutConfig()

    try:
        # ── Chain section ──────────────────────────────────────
        chain = raw.get("chain", {})
        if v := chain.get("name"):
            cfg.chain = str(v)
        if v := chain.get("rpc_connections"):
            cfg.rpc_connections = int(v)
        for name, url in chain.get("endpoints", {}).items():
            cfg.endpoints[str(name)] = str(url)

        # ── Scan section ───────────────────────────────────────
        scan = raw.get("scan", {})
        if v := scan.get("workers"):
            cfg.workers = int(v)
        if v := scan.get("page_size"):
            cfg.page_size = int(v)
        if v := scan.get("era_error_policy"):
            cfg.era_error_policy = EraErrorPolicy(v)

        # ── Submit section ─────────────────────────────────────
        submit = raw.get("submit", {})
        if v := submit.get("fee_margin"):
            cfg.fee_margin = int(v)

        # ── Logging ────────────────────────────────────────────
        if v := raw.get("logging", {}).get("level"):
            cfg.log_level = str(v)

        # ── Cache section ──────────────────────────────────────
        cache_raw = raw.get("cache", {})
        defaults = CacheConfig()
        cfg.cache = CacheConfig(
            enabled=cache_raw.get("enabled", defaults.enabled),
            backend=CacheBackend(cache_raw.get("backend", defaults.backend.value)),
            redis_url=cache_raw.get("redis_url", defaults.redis_url),
            db_path=cache_raw.get("db_path", defaults.db_path),
            ttl=int(cache_raw.get("ttl", defaults.ttl)),
            scan_batch=int(cache_raw.get("scan_batch", defaults.scan_batch)),
            key_prefix=cache_raw.get("key_prefix", defaults.key_prefix),
        )

        # ── Environment variable overrides (highest priority) ──
        if v := os.environ.get(f"{env_prefix}CHAIN"):
            cfg.chain = v
        if v := os.environ.get(f"{env_prefix}WORKERS"):
            cfg.workers = int(v)
        if v := os.environ.get(f"{env_prefix}ERA_ERROR_POLICY"):
            cfg.era_error_policy = EraErrorPolicy(v)
        if v := os.environ.get(f"{env_prefix}CACHE_BACKEND"):
            cfg.cache.backend = CacheBackend(v)
        if v := os.environ.get(f"{env_prefix}REDIS_URL") or os.environ.get("REDIS_URL"):
            cfg.cache.redis_url = v
    except ValueError as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc

    if cfg.workers < 1:
        raise ConfigError(f"workers must be >= 1, got {cfg.workers}")

    # Expand ~ in paths
    cfg.cache.db_path = str(Path(cfg.cache.db_path).expanduser())

    return cfg


def cache_namespace(chain: str) -> str:
    """Key-safe cache namespace for a chain name or endpoint URL."""
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", chain).strip("_") or "default"
