"""Revenue distribution: split a token amount across members by weight.

Shares are floor(amount * weight / total_weight). Whatever flooring leaves
over goes to the first member in ledger order, so the credited total always
equals the distributed amount and the result is reproducible.
"""

from __future__ import annotations

from collections.abc import Sequence

from monoledger.errors import DistributionError

from .models import BalanceEntry


def split_amount(amount: int, weights: Sequence[int]) -> list[int]:
    """Split ``amount`` into one integer share per weight.

    The flooring remainder is assigned to index 0.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise DistributionError(f"amount must be an integer, got {type(amount).__name__}")
    if amount < 0:
        raise DistributionError(f"cannot distribute a negative amount: {amount}")
    if not weights:
        raise DistributionError(f"no members to distribute {amount} to")

    total_weight = sum(weights)
    if total_weight <= 0:
        raise DistributionError(f"total member weight must be positive, got {total_weight}")

    shares = [amount * weight // total_weight for weight in weights]
    shares[0] += amount - sum(shares)
    return shares


def distribute(balances: Sequence[BalanceEntry], amount: int) -> list[BalanceEntry]:
    """Return new entries with ``amount`` credited across ``balances``.

    The input entries are not modified.
    """
    shares = split_amount(amount, [entry.weight for entry in balances])
    return [
        entry.model_copy(update={"earnings": entry.earnings + share})
        for entry, share in zip(balances, shares)
    ]


__all__ = ["distribute", "split_amount"]
