"""CLI entry point for stash_payouts."""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from stash_payouts.config import load_config
from stash_payouts.errors import PayoutError
from stash_payouts.inputs import load_multichain_stashes, load_stashes, parse_era_range
from stash_payouts.models.payouts import EraRange, SettlementReport, UnclaimedPayout
from stash_payouts.service import PayoutService, create_cache
from stash_payouts.substrate.client import SubstrateChainClient
from stash_payouts.substrate.keys import load_signer, read_key_file


def _run(coro):
    """Run a coroutine, turning PayoutError into a clean non-zero exit."""
    try:
        return asyncio.run(coro)
    except PayoutError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _era_range(value: str | None) -> EraRange | None:
    if not value:
        return None
    try:
        era_range = parse_era_range(value)
    except PayoutError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Checking specific era range: {era_range.start} to {era_range.end}")
    return era_range


def _print_unclaimed(unclaimed: list[UnclaimedPayout]) -> None:
    for p in sorted(unclaimed, key=lambda p: (p.validator, p.era)):
        click.echo(f"  {p.validator} - Era {p.era} - Pages: {', '.join(map(str, p.pages))}")


def _print_report(report: SettlementReport) -> None:
    click.echo(f"\nClaimed {report.succeeded}/{report.total}")
    if report.failures:
        click.echo("\nFailed:")
        for f in report.failures:
            click.echo(f"  {f.validator[:8]} era {f.era} page {f.page}: {f.error}")


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """stash-payouts - find and claim unclaimed validator staking rewards."""
    ctx.ensure_object(dict)
    try:
        ctx.obj["cfg"] = load_config(config_path)
    except PayoutError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    level = logging.DEBUG if verbose else getattr(
        logging, ctx.obj["cfg"].log_level.upper(), logging.INFO,
    )
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Check ──────────────────────────────────────────────


@cli.command()
@click.option("-s", "--stashes", "stashes_path", required=True, help="JSON file containing stash addresses")
@click.option("--chain", default=None, help="Chain name or RPC endpoint")
@click.option("-w", "--workers", type=int, default=None, help="Number of scan workers")
@click.option("--cache/--no-cache", "use_cache", default=None, help="Use the payout cache")
@click.option("--all", "all_chains", is_flag=True, help="Check every chain in a multi-chain stashes file")
@click.option("--era-range", default=None, help="Check specific era range (e.g. 8136-8148)")
@click.pass_context
def check(
    ctx: click.Context,
    stashes_path: str,
    chain: str | None,
    workers: int | None,
    use_cache: bool | None,
    all_chains: bool,
    era_range: str | None,
) -> None:
    """Check for unclaimed payouts."""
    cfg = ctx.obj["cfg"]
    eras = _era_range(era_range)

    async def _check():
        if all_chains:
            targets = list(load_multichain_stashes(stashes_path, cfg.chain).values())
        else:
            targets = [load_stashes(stashes_path, chain or cfg.chain)]

        total = 0
        for target in targets:
            endpoint = target.endpoint or cfg.endpoints.get(target.chain)
            if all_chains and not endpoint:
                click.echo(f"No endpoint configured for {target.chain}, skipping")
                continue

            click.echo(f"\nChecking {target.chain}...")
            service = PayoutService(cfg, chain=target.chain, endpoint=endpoint)
            unclaimed = await service.scan(target.stashes, eras, workers, use_cache)
            total += len(unclaimed)

            if not unclaimed:
                click.echo(f"All payouts claimed on {target.chain}!")
            else:
                click.echo(f"Found {len(unclaimed)} unclaimed payouts on {target.chain}:")
                _print_unclaimed(unclaimed)

        if all_chains:
            click.echo(f"\nTotal unclaimed payouts across all chains: {total}")

    _run(_check())


# ── Submit ─────────────────────────────────────────────


@cli.command()
@click.option("-s", "--stashes", "stashes_path", required=True, help="JSON file containing stash addresses")
@click.option("-k", "--keyfile", required=True, help="File containing key (mnemonic/seed/derivation path)")
@click.option("--chain", default=None, help="Chain name or RPC endpoint")
@click.option("--dry-run", is_flag=True, help="Show what would be submitted without submitting")
@click.option("--era-range", default=None, help="Submit payouts for specific era range (e.g. 8136-8148)")
@click.pass_context
def submit(
    ctx: click.Context,
    stashes_path: str,
    keyfile: str,
    chain: str | None,
    dry_run: bool,
    era_range: str | None,
) -> None:
    """Scan, then submit payout transactions for everything unclaimed."""
    cfg = ctx.obj["cfg"]
    eras = _era_range(era_range)

    async def _submit():
        target = load_stashes(stashes_path, chain or cfg.chain)
        # Validate key material before touching the chain
        signer = None if dry_run else load_signer(read_key_file(keyfile))

        service = PayoutService(cfg, chain=target.chain, endpoint=target.endpoint)
        unclaimed = await service.scan(target.stashes, eras)
        if not unclaimed:
            click.echo("No unclaimed payouts found")
            return

        if dry_run:
            click.echo("\nDRY RUN - Not submitting transactions")
            click.echo("\nPayouts that would be submitted:")
            _print_unclaimed(await service.submit(unclaimed, signer, dry_run=True))
            return

        click.echo(f"\nUsing account: {signer.ss58_address}")
        click.echo(f"Found {sum(len(p.pages) for p in unclaimed)} unclaimed pages")
        report = await service.submit(unclaimed, signer)
        _print_report(report)

    _run(_submit())


# ── Cache maintenance ──────────────────────────────────


@cli.group()
def cache():
    """Inspect and maintain the payout cache."""
    pass


@cache.command("stats")
@click.option("--chain", default=None, help="Chain name")
@click.pass_context
def cache_stats(ctx: click.Context, chain: str | None) -> None:
    """Show cached entry counts and era range."""
    cfg = ctx.obj["cfg"]
    service = PayoutService(cfg, chain=chain)

    async def _stats():
        store = await service.open_cache()
        try:
            stats = await store.stats(service.namespace)
        finally:
            await store.close()

        click.echo(f"Chain:       {service.chain}")
        click.echo(f"Entries:     {stats.total_keys}")
        click.echo(f"Validators:  {len(stats.validators)}")
        if stats.min_era is not None:
            click.echo(f"Eras:        {stats.min_era} - {stats.max_era}")

    _run(_stats())


@cache.command("unclaimed")
@click.option("--chain", default=None, help="Chain name")
@click.pass_context
def cache_unclaimed(ctx: click.Context, chain: str | None) -> None:
    """List unclaimed payouts known to the cache (no era scan)."""
    cfg = ctx.obj["cfg"]
    service = PayoutService(cfg, chain=chain)

    async def _unclaimed():
        unclaimed = await service.cached_unclaimed()
        if not unclaimed:
            click.echo("No unclaimed payouts in cache.")
            return
        _print_unclaimed(unclaimed)

    _run(_unclaimed())


@cache.command("prune")
@click.option("--keep-above", type=int, required=True, help="Delete entries for eras below this one")
@click.option("--chain", default=None, help="Chain name")
@click.pass_context
def cache_prune(ctx: click.Context, keep_above: int, chain: str | None) -> None:
    """Delete cached entries for old eras."""
    cfg = ctx.obj["cfg"]
    service = PayoutService(cfg, chain=chain)

    async def _prune():
        store = await service.open_cache()
        try:
            deleted = await store.prune(service.namespace, keep_above)
        finally:
            await store.close()
        click.echo(f"Deleted {deleted} entries below era {keep_above}")

    _run(_prune())


# ── Health ─────────────────────────────────────────────


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check the cache backend and every configured RPC endpoint."""
    cfg = ctx.obj["cfg"]

    async def _health() -> bool:
        ok = True
        if cfg.cache.enabled:
            store = create_cache(cfg.cache)
            try:
                await store.connect()
                await store.ping()
                click.echo(f"cache ({cfg.cache.backend.value}): ok")
            except Exception as exc:
                click.echo(f"cache ({cfg.cache.backend.value}) unhealthy: {exc}", err=True)
                ok = False
            finally:
                await store.close()

        for chain, endpoint in cfg.endpoints.items():
            client = SubstrateChainClient(endpoint, pool_size=1)
            try:
                era = await client.get_active_era()
                click.echo(f"{chain}: ok (era {era})")
            except Exception as exc:
                click.echo(f"{chain} RPC unhealthy: {exc}", err=True)
                ok = False
            finally:
                await client.close()
        return ok

    if not _run(_health()):
        sys.exit(1)
    click.echo("Health check passed")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
