"""Chain collaborator: token transfers into the operated contract.

``Chain`` is what the operator consumes. ``Web3Chain`` implements it over a
web3.py ``AsyncWeb3`` client by reading ERC-20 ``Transfer`` logs whose
recipient is the contract. Live events come from a polling task that always
delivers whole blocks, in ascending order.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import bittensor as bt
from web3 import Web3

from monoledger.errors import CollaboratorUnavailable
from monoledger.ledger.models import TransferEvent

TransferCallback = Callable[[TransferEvent], None]

TRANSFER_EVENT_ABI: list[dict[str, Any]] = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"},
        ],
        "name": "Transfer",
        "type": "event",
    },
]


@runtime_checkable
class Subscription(Protocol):
    async def unsubscribe(self) -> None:
        ...


@runtime_checkable
class Chain(Protocol):
    """Interface the operator consumes for on-chain transfer events."""

    async def get_block_number(self) -> int:
        """Current chain head."""
        ...

    async def get_past_events(self, from_block: int, to_block: int) -> list[TransferEvent]:
        """Transfer events in the inclusive block range, in chain order."""
        ...

    async def subscribe_transfer(
        self, on_event: TransferCallback, from_block: int | None = None,
    ) -> Subscription:
        """Deliver transfer events from ``from_block`` onwards (default: next block)."""
        ...


def _tx_hash(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return value.hex() if hasattr(value, "hex") else str(value)


class _PollingSubscription:
    """Background task feeding new blocks' transfer events to a callback."""

    def __init__(self, chain: Web3Chain, on_event: TransferCallback, next_block: int):
        self.chain = chain
        self.on_event = on_event
        self.next_block = next_block
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except CollaboratorUnavailable as e:
                bt.logging.warning({"chain_poll_error": {"next_block": self.next_block, "error": str(e)}})
            await asyncio.sleep(self.chain.poll_interval)

    async def poll_once(self) -> int:
        """Deliver events up to the current head. Returns the number delivered."""
        head = await self.chain.get_block_number()
        if head < self.next_block:
            return 0
        events = await self.chain.get_past_events(self.next_block, head)
        for event in events:
            try:
                self.on_event(event)
            except Exception as e:
                bt.logging.error({"chain_callback_error": {"block": event.block_number, "error": str(e)}})
        self.next_block = head + 1
        return len(events)

    async def unsubscribe(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class Web3Chain:
    """Chain implementation over web3.py's AsyncWeb3."""

    def __init__(
        self,
        web3: Any,
        token_address: str,
        contract_address: str,
        poll_interval: float = 5.0,
        max_block_range: int = 10_000,
    ):
        self.web3 = web3
        self.token_address = Web3.to_checksum_address(token_address)
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.poll_interval = poll_interval
        self.max_block_range = max(1, max_block_range)
        self.token = web3.eth.contract(address=self.token_address, abi=TRANSFER_EVENT_ABI)

    async def get_block_number(self) -> int:
        try:
            return int(await self.web3.eth.block_number)
        except Exception as e:
            raise CollaboratorUnavailable(f"get_block_number failed: {e}") from e

    async def get_past_events(self, from_block: int, to_block: int) -> list[TransferEvent]:
        events: list[TransferEvent] = []
        start = from_block
        while start <= to_block:
            end = min(to_block, start + self.max_block_range - 1)
            try:
                logs = await self.token.events.Transfer.get_logs(
                    from_block=start,
                    to_block=end,
                    argument_filters={"to": self.contract_address},
                )
            except Exception as e:
                raise CollaboratorUnavailable(
                    f"get_logs {start}..{end} failed: {e}"
                ) from e
            events.extend(self._to_event(log) for log in logs)
            start = end + 1

        events.sort(key=lambda event: event.position)
        bt.logging.debug({"chain_events": {"from": from_block, "to": to_block, "count": len(events)}})
        return events

    async def subscribe_transfer(
        self, on_event: TransferCallback, from_block: int | None = None,
    ) -> _PollingSubscription:
        if from_block is None:
            from_block = await self.get_block_number() + 1
        subscription = _PollingSubscription(self, on_event, from_block)
        subscription.start()
        bt.logging.info({"chain_subscription": {"status": "started", "from_block": from_block}})
        return subscription

    @staticmethod
    def _to_event(log: Any) -> TransferEvent:
        return TransferEvent(
            amount=int(log["args"]["value"]),
            block_number=int(log["blockNumber"]),
            log_index=log.get("logIndex"),
            transaction_hash=_tx_hash(log.get("transactionHash")),
        )


__all__ = ["TRANSFER_EVENT_ABI", "Chain", "Subscription", "Web3Chain"]
