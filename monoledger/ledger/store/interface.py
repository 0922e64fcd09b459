"""LedgerStore protocol - pluggable persistence interface.

Implementations: FilesystemStore, SQLStore, HTTPLedgerStore (read-only
client for proof generators and other downstream readers).
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from monoledger.ledger.models import BalanceEntry, BlockSnapshot, LedgerState


@runtime_checkable
class LedgerStore(Protocol):
    """Abstract interface for reading/writing ledger checkpoints."""

    async def load_state(self) -> LedgerState | None:
        """Fetch the most recent full checkpoint, or None if nothing was saved yet."""
        ...

    async def save_state(self, state: LedgerState) -> None:
        """Persist balances and cursor together as one checkpoint."""
        ...

    async def load_block(self, block_number: int) -> BlockSnapshot | None:
        """Fetch the balances committed for a block."""
        ...

    async def save_block(
        self, balances: Iterable[BalanceEntry], block_number: int,
    ) -> BlockSnapshot:
        """Write a block snapshot. Returns the stored snapshot."""
        ...

    async def block_exists(self, block_number: int) -> bool:
        """Whether a snapshot for the block has been committed."""
        ...


__all__ = ["LedgerStore"]
