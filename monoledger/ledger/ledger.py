"""In-memory balance ledger.

Entries are kept in insertion order; every operation either completes or
leaves the ledger untouched.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from .distribution import distribute
from .models import BalanceEntry, normalize_address


class Ledger:
    """Ordered set of member balances keyed by address."""

    def __init__(self, balances: Iterable[BalanceEntry] = ()):
        self._entries: dict[str, BalanceEntry] = {}
        for entry in balances:
            if entry.address in self._entries:
                raise ValueError(f"Duplicate address in ledger: {entry.address}")
            self._entries[entry.address] = entry.model_copy()

    # -- Mutations --

    def add_member(self, address: str, weight: int = 1) -> Ledger:
        """Append a member with zero earnings. Existing members are left as they are."""
        key = normalize_address(address)
        if key not in self._entries:
            self._entries[key] = BalanceEntry(address=key, weight=weight)
        return self

    def remove_member(self, address: str) -> Ledger:
        """Drop a member from the ledger. Unknown addresses are ignored."""
        self._entries.pop(normalize_address(address), None)
        return self

    def distribute(self, amount: int) -> Ledger:
        """Credit ``amount`` to current members by weight.

        Raises DistributionError (ledger unchanged) when there are no
        members or the amount is negative.
        """
        updated = distribute(list(self._entries.values()), amount)
        self._entries = {entry.address: entry for entry in updated}
        return self

    # -- Queries --

    @property
    def balances(self) -> list[BalanceEntry]:
        """Copies of the current entries, in ledger order."""
        return [entry.model_copy() for entry in self._entries.values()]

    @property
    def members(self) -> list[str]:
        return list(self._entries)

    @property
    def total_earnings(self) -> int:
        return sum(entry.earnings for entry in self._entries.values())

    def get(self, address: str) -> BalanceEntry | None:
        entry = self._entries.get(normalize_address(address))
        return entry.model_copy() if entry is not None else None

    def copy(self) -> Ledger:
        return Ledger(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, address: object) -> bool:
        if not isinstance(address, str):
            return False
        return address.strip().lower() in self._entries

    def __iter__(self) -> Iterator[BalanceEntry]:
        return iter(self.balances)

    def __repr__(self) -> str:
        return f"Ledger(members={len(self._entries)}, total_earnings={self.total_earnings})"


__all__ = ["Ledger"]
