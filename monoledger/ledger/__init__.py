"""Balance ledger for revenue-sharing members.

The ledger module holds the data model, the pure mutation operations
(join, part, distribute) and the pluggable stores that persist:
- Full state: ordered balances plus the last applied block (the cursor)
- Block snapshots: balances as of a committed block, for historical lookups
"""

from .distribution import distribute, split_amount
from .ledger import Ledger
from .models import (
    LEDGER_SCHEMA_VERSION,
    BalanceEntry,
    BlockSnapshot,
    Command,
    JoinCommand,
    LedgerState,
    PartCommand,
    RevenueCommand,
    TransferEvent,
    parse_command,
)

__all__ = [
    "LEDGER_SCHEMA_VERSION",
    "BalanceEntry",
    "BlockSnapshot",
    "Command",
    "JoinCommand",
    "Ledger",
    "LedgerState",
    "PartCommand",
    "RevenueCommand",
    "TransferEvent",
    "distribute",
    "parse_command",
    "split_amount",
]
