"""HTTP-based LedgerStore client for downstream readers.

Reads the operator's ledger state and block snapshots over HTTP, e.g. for a
proof generator answering "what were the balances at block N". Read-only.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

import bittensor as bt
import httpx

from monoledger.errors import CollaboratorUnavailable
from monoledger.ledger.models import BalanceEntry, BlockSnapshot, LedgerState


class HTTPLedgerStore:
    """Client for fetching ledger data from a running operator."""

    def __init__(
        self,
        operator_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
    ):
        self.operator_url = operator_url.rstrip("/")
        self._client = httpx.AsyncClient(timeout=timeout)
        self._max_retries = max(1, max_retries)
        self._retry_backoff = retry_backoff

    async def close(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str) -> httpx.Response:
        """GET with retry on transport errors."""
        for attempt in range(self._max_retries):
            try:
                return await self._client.get(f"{self.operator_url}{path}")
            except httpx.TransportError as e:
                if attempt == self._max_retries - 1:
                    raise CollaboratorUnavailable(f"GET {path} failed: {e}") from e
                wait = self._retry_backoff * 2 ** attempt
                bt.logging.warning({"ledger_http_client": {"retry": attempt, "wait": wait, "error": str(e)}})
                await asyncio.sleep(wait)
        raise CollaboratorUnavailable("Max retries exceeded")

    # -- LedgerStore interface --

    async def save_state(self, state: LedgerState) -> None:
        raise NotImplementedError("Client is read-only")

    async def save_block(
        self, balances: Iterable[BalanceEntry], block_number: int,
    ) -> BlockSnapshot:
        raise NotImplementedError("Client is read-only")

    async def load_state(self) -> LedgerState | None:
        resp = await self._get("/ledger/state")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return LedgerState(**resp.json())

    async def load_block(self, block_number: int) -> BlockSnapshot | None:
        resp = await self._get(f"/ledger/blocks/{block_number}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return BlockSnapshot(**resp.json())

    async def block_exists(self, block_number: int) -> bool:
        resp = await self._get(f"/ledger/blocks/{block_number}/exists")
        resp.raise_for_status()
        return bool(resp.json().get("exists", False))


__all__ = ["HTTPLedgerStore"]
