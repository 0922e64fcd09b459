"""Checkpoint coordination against a LedgerStore.

A full-state save always carries balances and cursor together, so the
stored cursor never runs ahead of the stored balances. Block snapshots are
write-once and taken at most every ``block_interval`` blocks.
"""

from __future__ import annotations

from collections.abc import Awaitable, Iterable
from typing import TypeVar

import bittensor as bt

from monoledger.errors import CollaboratorUnavailable, ConfigurationMismatch
from monoledger.ledger.models import BalanceEntry, BlockSnapshot, LedgerState, normalize_address
from monoledger.ledger.store.interface import LedgerStore

T = TypeVar("T")


class CheckpointCoordinator:
    """Loads and persists ledger checkpoints."""

    def __init__(self, store: LedgerStore, block_interval: int = 1):
        self.store = store
        self.block_interval = max(1, int(block_interval))
        self.last_block_saved: int | None = None
        self.states_saved = 0

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except CollaboratorUnavailable:
            raise
        except Exception as e:
            raise CollaboratorUnavailable(f"store.{operation} failed: {e}") from e

    async def load_state(self, contract_address: str) -> LedgerState:
        """Load the last checkpoint, or a genesis state if the store is empty.

        Raises ConfigurationMismatch if the checkpoint belongs to another contract.
        """
        expected = normalize_address(contract_address)
        state = await self._call("load_state", self.store.load_state())
        if state is None:
            bt.logging.info({"checkpoint": {"status": "genesis", "contract": expected}})
            return LedgerState.genesis(expected)

        if state.contract_address != expected:
            raise ConfigurationMismatch(expected=expected, found=state.contract_address)

        bt.logging.info({
            "checkpoint": {
                "status": "loaded",
                "root_chain_block": state.root_chain_block,
                "members": len(state.balances),
            }
        })
        return state

    async def save_state(self, state: LedgerState) -> None:
        await self._call("save_state", self.store.save_state(state.model_copy(deep=True)))
        self.states_saved += 1
        bt.logging.info({
            "checkpoint": {
                "status": "state_saved",
                "root_chain_block": state.root_chain_block,
                "members": len(state.balances),
            }
        })

    async def block_exists(self, block_number: int) -> bool:
        return await self._call("block_exists", self.store.block_exists(block_number))

    async def load_block(self, block_number: int) -> BlockSnapshot | None:
        return await self._call("load_block", self.store.load_block(block_number))

    async def save_block(self, balances: Iterable[BalanceEntry], block_number: int) -> bool:
        """Write a block snapshot unless one was already committed. Returns True if written."""
        if await self.block_exists(block_number):
            bt.logging.debug({"checkpoint": {"status": "block_exists", "block": block_number}})
            if self.last_block_saved is None or block_number > self.last_block_saved:
                self.last_block_saved = block_number
            return False

        entries = [entry.model_copy() for entry in balances]
        await self._call("save_block", self.store.save_block(entries, block_number))
        if self.last_block_saved is None or block_number > self.last_block_saved:
            self.last_block_saved = block_number
        bt.logging.info({"checkpoint": {"status": "block_saved", "block": block_number, "members": len(entries)}})
        return True

    def block_due(self, block_number: int) -> bool:
        if block_number < 0:
            return False
        if self.last_block_saved is None:
            return True
        return block_number - self.last_block_saved >= self.block_interval

    async def commit(self, state: LedgerState) -> None:
        """Save full state, then a block snapshot if the interval has elapsed."""
        await self.save_state(state)
        if self.block_due(state.root_chain_block):
            await self.save_block(state.balances, state.root_chain_block)


__all__ = ["CheckpointCoordinator"]
