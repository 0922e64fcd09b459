"""Applies live channel commands to the ledger.

Only the operator's mailbox worker calls into this module, so commands are
applied one at a time in arrival order.
"""

from __future__ import annotations

from collections import Counter

import bittensor as bt

from monoledger.ledger.ledger import Ledger
from monoledger.ledger.models import Command, JoinCommand, PartCommand, RevenueCommand


class CommandHandler:
    """Dispatches join / part / revenue commands onto a ledger."""

    def __init__(self) -> None:
        self.applied: Counter[str] = Counter()

    def apply(self, ledger: Ledger, command: Command) -> Ledger:
        if isinstance(command, JoinCommand):
            self.join(ledger, command.addresses, command.weight)
        elif isinstance(command, PartCommand):
            self.part(ledger, command.addresses)
        elif isinstance(command, RevenueCommand):
            self.revenue(ledger, command.amount)
        else:
            raise TypeError(f"Unsupported command: {type(command).__name__}")
        self.applied[command.kind] += 1
        return ledger

    def join(self, ledger: Ledger, addresses: list[str], weight: int = 1) -> None:
        added = [address for address in addresses if address not in ledger]
        for address in added:
            ledger.add_member(address, weight=weight)
        bt.logging.info({"command": {"kind": "join", "added": len(added), "members": len(ledger)}})

    def part(self, ledger: Ledger, addresses: list[str]) -> None:
        removed = [address for address in addresses if address in ledger]
        for address in removed:
            ledger.remove_member(address)
        bt.logging.info({"command": {"kind": "part", "removed": len(removed), "members": len(ledger)}})

    def revenue(self, ledger: Ledger, amount: int) -> None:
        ledger.distribute(amount)
        bt.logging.info({"command": {"kind": "revenue", "amount": str(amount), "members": len(ledger)}})


__all__ = ["CommandHandler"]
