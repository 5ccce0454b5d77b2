"""SQLite implementation of the PayoutCache protocol."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Iterable
from pathlib import Path

import aiosqlite

from stash_payouts.models.payouts import CacheStats, EraPayoutStatus, UnclaimedPayout

log = logging.getLogger(__name__)

SCHEMA = """
-- One row per (chain, validator, era) payout status
CREATE TABLE IF NOT EXISTS payout_cache (
    chain TEXT NOT NULL,
    validator TEXT NOT NULL,
    era INTEGER NOT NULL,
    total_pages INTEGER NOT NULL,
    claimed_pages TEXT NOT NULL DEFAULT '[]',
    last_checked REAL NOT NULL,
    expires_at REAL NOT NULL,
    PRIMARY KEY (chain, validator, era)
);
CREATE INDEX IF NOT EXISTS idx_payout_cache_era ON payout_cache(chain, era);
"""


def _row_to_status(row: aiosqlite.Row) -> EraPayoutStatus:
    return EraPayoutStatus(
        validator=row["validator"],
        era=row["era"],
        total_pages=row["total_pages"],
        claimed_pages=frozenset(int(p) for p in json.loads(row["claimed_pages"])),
        last_checked=row["last_checked"],
    )


class SQLitePayoutCache:
    """SQLite-backed payout cache for single-host use.

    The connection runs in autocommit mode; multi-statement writes open
    their own ``BEGIN IMMEDIATE`` transaction so that the read-modify-write
    in ``merge_claimed_pages`` holds the database write lock throughout.
    """

    def __init__(self, db_path: str, ttl: int = 3600 * 24 * 7, scan_batch: int = 1000) -> None:
        self._db_path = db_path
        self._ttl = ttl
        self._scan_batch = scan_batch
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        path = self._db_path
        if path != ":memory:":
            path = str(Path(path).expanduser())
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(path, isolation_level=None)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def ping(self) -> bool:
        async with self.db.execute("SELECT 1") as cur:
            return (await cur.fetchone()) is not None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Cache not connected. Call connect() first."
        return self._db

    # ── Point operations ───────────────────────────────────

    async def get(self, chain: str, validator: str, era: int) -> EraPayoutStatus | None:
        async with self.db.execute(
            "SELECT * FROM payout_cache"
            " WHERE chain=? AND validator=? AND era=? AND expires_at > ?",
            (chain, validator, era, time.time()),
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        try:
            return _row_to_status(row)
        except (ValueError, TypeError) as exc:
            log.warning("Ignoring corrupt cache entry %s/%s/%d: %s", chain, validator, era, exc)
            return None

    async def put(self, chain: str, status: EraPayoutStatus) -> None:
        async with self._write_lock:
            await self.db.execute(*self._upsert(chain, status))

    async def put_many(self, chain: str, statuses: Iterable[EraPayoutStatus]) -> None:
        async with self._write_lock:
            await self.db.execute("BEGIN IMMEDIATE")
            try:
                for status in statuses:
                    await self.db.execute(*self._upsert(chain, status))
            except BaseException:
                await self.db.execute("ROLLBACK")
                raise
            await self.db.execute("COMMIT")

    def _upsert(self, chain: str, status: EraPayoutStatus) -> tuple[str, tuple]:
        return (
            "INSERT INTO payout_cache"
            " (chain, validator, era, total_pages, claimed_pages, last_checked, expires_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?)"
            " ON CONFLICT(chain, validator, era) DO UPDATE SET"
            " total_pages=excluded.total_pages, claimed_pages=excluded.claimed_pages,"
            " last_checked=excluded.last_checked, expires_at=excluded.expires_at",
            (
                chain, status.validator, status.era, status.total_pages,
                json.dumps(sorted(status.claimed_pages)), status.last_checked,
                time.time() + self._ttl,
            ),
        )

    async def merge_claimed_pages(
        self, chain: str, validator: str, era: int, pages: Iterable[int]
    ) -> bool:
        new_pages = {int(p) for p in pages}
        async with self._write_lock:
            await self.db.execute("BEGIN IMMEDIATE")
            try:
                now = time.time()
                async with self.db.execute(
                    "SELECT total_pages, claimed_pages FROM payout_cache"
                    " WHERE chain=? AND validator=? AND era=? AND expires_at > ?",
                    (chain, validator, era, now),
                ) as cur:
                    row = await cur.fetchone()
                if row is None:
                    await self.db.execute("ROLLBACK")
                    return False

                total = row["total_pages"]
                merged = set(json.loads(row["claimed_pages"]))
                merged.update(p for p in new_pages if 0 <= p < total)
                await self.db.execute(
                    "UPDATE payout_cache SET claimed_pages=?, last_checked=?, expires_at=?"
                    " WHERE chain=? AND validator=? AND era=?",
                    (json.dumps(sorted(merged)), now, now + self._ttl, chain, validator, era),
                )
            except BaseException:
                await self.db.execute("ROLLBACK")
                raise
            await self.db.execute("COMMIT")
            return True

    # ── Bulk operations ────────────────────────────────────

    async def _iter_rows(self, chain: str) -> AsyncIterator[list[aiosqlite.Row]]:
        """Page through a chain's live entries by rowid, ``scan_batch`` at a time."""
        last_rowid = 0
        while True:
            async with self.db.execute(
                "SELECT rowid, * FROM payout_cache"
                " WHERE chain=? AND rowid > ? AND expires_at > ?"
                " ORDER BY rowid LIMIT ?",
                (chain, last_rowid, time.time(), self._scan_batch),
            ) as cur:
                rows = await cur.fetchall()
            if not rows:
                return
            yield list(rows)
            last_rowid = rows[-1]["rowid"]

    async def scan_unclaimed(self, chain: str, current_era: int) -> list[UnclaimedPayout]:
        unclaimed: list[UnclaimedPayout] = []
        async for rows in self._iter_rows(chain):
            for row in rows:
                if row["era"] >= current_era:
                    continue
                try:
                    payout = _row_to_status(row).to_unclaimed()
                except (ValueError, TypeError):
                    log.warning("Skipping corrupt cache entry %s/%s/%d", chain, row["validator"], row["era"])
                    continue
                if payout is not None:
                    unclaimed.append(payout)
        return sorted(unclaimed, key=lambda p: (p.validator, p.era))

    async def stats(self, chain: str) -> CacheStats:
        stats = CacheStats()
        async for rows in self._iter_rows(chain):
            for row in rows:
                stats.add(row["validator"], row["era"])
        return stats

    async def prune(self, chain: str, keep_above_era: int) -> int:
        async with self._write_lock:
            cur = await self.db.execute(
                "DELETE FROM payout_cache WHERE chain=? AND era < ?", (chain, keep_above_era),
            )
            deleted = cur.rowcount
            await cur.close()
        log.info("Pruned %d cache entries below era %d for %s", deleted, keep_above_era, chain)
        return deleted
