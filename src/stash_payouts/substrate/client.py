"""Staking queries and payout extrinsics over py-substrate-interface."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, TypeVar

from substrateinterface import Keypair, SubstrateInterface

from stash_payouts.models.payouts import (
    AccountInfo,
    ClaimResult,
    ClaimTransaction,
    ExposureSummary,
)

log = logging.getLogger(__name__)

T = TypeVar("T")


def _value(result: Any) -> Any:
    """Unwrap a ScaleType query result to its Python value."""
    return getattr(result, "value", result)


class SubstrateChainClient:
    """Implements ChainQueries and ChainSubmitter for one RPC endpoint.

    SubstrateInterface is blocking and its websocket cannot be shared
    between threads, so queries run via ``asyncio.to_thread`` on a small
    pool of connections. Each broadcast opens its own connection for the
    duration of its finalization wait so concurrent claims do not queue
    behind each other.
    """

    def __init__(self, url: str, pool_size: int = 4) -> None:
        self._url = url
        self._pool_size = max(1, pool_size)
        self._pool: asyncio.Queue[SubstrateInterface] = asyncio.Queue()
        self._connections: list[SubstrateInterface] = []
        self._paged: bool | None = None

    @property
    def url(self) -> str:
        return self._url

    async def connect(self) -> None:
        if self._connections:
            return
        for _ in range(self._pool_size):
            substrate = await asyncio.to_thread(SubstrateInterface, url=self._url)
            self._connections.append(substrate)
            self._pool.put_nowait(substrate)
        log.debug("Opened %d connections to %s", self._pool_size, self._url)

    async def close(self) -> None:
        for substrate in self._connections:
            try:
                await asyncio.to_thread(substrate.close)
            except Exception as exc:
                log.debug("Error closing connection to %s: %s", self._url, exc)
        self._connections.clear()
        self._pool = asyncio.Queue()

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[SubstrateInterface]:
        if not self._connections:
            await self.connect()
        substrate = await self._pool.get()
        try:
            yield substrate
        finally:
            self._pool.put_nowait(substrate)

    async def _call(self, fn: Callable[[SubstrateInterface], T]) -> T:
        async with self._connection() as substrate:
            return await asyncio.to_thread(fn, substrate)

    # ── Queries ────────────────────────────────────────────

    async def get_active_era(self) -> int | None:
        active = _value(await self._call(lambda s: s.query("Staking", "ActiveEra")))
        if not active or active.get("index") is None:
            return None
        return int(active["index"])

    async def get_history_depth(self) -> int:
        const = await self._call(lambda s: s.get_constant("Staking", "HistoryDepth"))
        return int(_value(const))

    async def has_paged_exposure(self) -> bool:
        """Whether the runtime stores exposure in the paged ErasStakersOverview map."""
        if self._paged is None:
            fn = await self._call(
                lambda s: s.get_metadata_storage_function("Staking", "ErasStakersOverview")
            )
            self._paged = fn is not None
        return self._paged

    async def get_exposure(self, era: int, stash: str) -> ExposureSummary | None:
        if await self.has_paged_exposure():
            overview = _value(await self._call(
                lambda s: s.query("Staking", "ErasStakersOverview", [era, stash])
            ))
            if not overview:
                return None
            return ExposureSummary(
                total=int(overview.get("total") or 0),
                page_count=int(overview.get("page_count") or 0),
                nominator_count=int(overview.get("nominator_count") or 0),
            )

        clipped = _value(await self._call(
            lambda s: s.query("Staking", "ErasStakersClipped", [era, stash])
        ))
        if not clipped:
            return None
        return ExposureSummary(
            total=int(clipped.get("total") or 0),
            nominator_count=len(clipped.get("others") or []),
        )

    async def get_claimed_pages(self, era: int, stash: str) -> Any:
        return _value(await self._call(
            lambda s: s.query("Staking", "ClaimedRewards", [era, stash])
        ))

    async def get_account(self, address: str) -> AccountInfo:
        account = _value(await self._call(lambda s: s.query("System", "Account", [address])))
        return AccountInfo(
            nonce=int(account["nonce"]),
            free=int(account["data"]["free"]),
        )

    # ── Transactions ───────────────────────────────────────

    async def _payout_call(self, validator: str, era: int, page: int) -> dict[str, Any]:
        """compose_call kwargs for claiming one page.

        Paged runtimes claim an explicit page; legacy runtimes have a single
        page per era and take no page argument.
        """
        if await self.has_paged_exposure():
            return dict(
                call_module="Staking",
                call_function="payout_stakers_by_page",
                call_params={"validator_stash": validator, "era": era, "page": page},
            )
        return dict(
            call_module="Staking",
            call_function="payout_stakers",
            call_params={"validator_stash": validator, "era": era},
        )

    async def estimate_fee(self, validator: str, era: int, page: int, signer: Keypair) -> int:
        params = await self._payout_call(validator, era, page)

        def _estimate(substrate: SubstrateInterface) -> Any:
            call = substrate.compose_call(**params)
            return substrate.get_payment_info(call=call, keypair=signer)

        info = await self._call(_estimate)
        return int(info["partial_fee"])

    async def sign_and_submit(self, tx: ClaimTransaction, signer: Keypair) -> ClaimResult:
        params = await self._payout_call(tx.validator, tx.era, tx.page)
        substrate = await asyncio.to_thread(SubstrateInterface, url=self._url)
        try:
            def _send():
                call = substrate.compose_call(**params)
                extrinsic = substrate.create_signed_extrinsic(
                    call=call, keypair=signer, nonce=tx.nonce,
                )
                return substrate.submit_extrinsic(extrinsic, wait_for_finalization=True)

            receipt = await asyncio.to_thread(_send)
            if receipt.is_success:
                return ClaimResult(
                    transaction=tx, success=True, extrinsic_hash=receipt.extrinsic_hash,
                )
            return ClaimResult(
                transaction=tx,
                success=False,
                extrinsic_hash=receipt.extrinsic_hash,
                error=_dispatch_error(receipt.error_message),
            )
        finally:
            await asyncio.to_thread(substrate.close)


def _dispatch_error(error: Any) -> str:
    if isinstance(error, dict):
        name = error.get("name") or error.get("type") or "dispatch error"
        docs = error.get("docs")
        if docs:
            return f"{name}: {' '.join(docs) if isinstance(docs, list) else docs}"
        return str(name)
    return str(error) if error else "dispatch error"
