"""Pydantic models for the operator ledger.

Three persisted shapes:
- LedgerState: full balances plus the sync cursor (root_chain_block)
- BlockSnapshot: balances as of a committed block, written once
- BalanceEntry: one member's cumulative earnings and share weight

Token amounts are arbitrary-precision ints and serialize to JSON as decimal
strings so that no consumer ever routes them through a float.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    TypeAdapter,
    ValidationError,
    model_validator,
)
from web3 import Web3

from monoledger.errors import InvalidCommand


# ---------------------------------------------------------------------------
# Schema version - bump on breaking changes to the persisted format
# ---------------------------------------------------------------------------

LEDGER_SCHEMA_VERSION = 1

COMMAND_KINDS = ("join", "part", "revenue")


# ---------------------------------------------------------------------------
# Field types
# ---------------------------------------------------------------------------


def normalize_address(value: Any) -> str:
    """Lowercase and strip an address; rejects empty or non-string values."""
    if not isinstance(value, str):
        raise ValueError(f"address must be a string, got {type(value).__name__}")
    address = value.strip().lower()
    if not address:
        raise ValueError("address must not be empty")
    return address


def _coerce_token_amount(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("token amounts must be integers, not booleans")
    if isinstance(value, float):
        raise ValueError("token amounts must be integers, not floats")
    if isinstance(value, str):
        text = value.strip()
        if not text.isdigit():
            raise ValueError(f"invalid token amount: {value!r}")
        return int(text)
    return value


def _evm_address(value: Any) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"not an EVM address: {value!r}")
    return value.lower()


Address = Annotated[str, BeforeValidator(normalize_address)]

MemberAddress = Annotated[str, BeforeValidator(_evm_address)]

TokenAmount = Annotated[
    int,
    BeforeValidator(_coerce_token_amount),
    Field(ge=0),
    PlainSerializer(str, return_type=str, when_used="json"),
]


# ---------------------------------------------------------------------------
# Ledger records
# ---------------------------------------------------------------------------


class BalanceEntry(BaseModel):
    """A member's cumulative earnings and revenue share weight."""

    address: Address
    earnings: TokenAmount = 0
    weight: int = Field(default=1, ge=1)


class LedgerState(BaseModel):
    """Full ledger checkpoint: ordered balances plus the sync cursor."""

    schema_version: int = LEDGER_SCHEMA_VERSION
    contract_address: Address
    root_chain_block: int = Field(default=-1, ge=-1)
    balances: list[BalanceEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_addresses(self) -> LedgerState:
        seen: set[str] = set()
        for entry in self.balances:
            if entry.address in seen:
                raise ValueError(f"duplicate address in balances: {entry.address}")
            seen.add(entry.address)
        return self

    @classmethod
    def genesis(cls, contract_address: str) -> LedgerState:
        """Empty state for a contract that has never been synced."""
        return cls(contract_address=contract_address)

    @property
    def total_earnings(self) -> int:
        return sum(entry.earnings for entry in self.balances)


class BlockSnapshot(BaseModel):
    """Balances as of a committed block. Never modified after capture."""

    model_config = ConfigDict(frozen=True)

    block_number: int = Field(ge=0)
    balances: list[BalanceEntry] = Field(default_factory=list)
    total_earnings: TokenAmount = 0

    @classmethod
    def capture(cls, block_number: int, balances: Iterable[BalanceEntry]) -> BlockSnapshot:
        entries = [entry.model_copy() for entry in balances]
        return cls(
            block_number=block_number,
            balances=entries,
            total_earnings=sum(entry.earnings for entry in entries),
        )


# ---------------------------------------------------------------------------
# Chain events
# ---------------------------------------------------------------------------


class TransferEvent(BaseModel):
    """Tokens received by the contract, to be split among current members."""

    amount: TokenAmount
    block_number: int = Field(ge=0)
    log_index: int | None = Field(default=None, ge=0)
    transaction_hash: str = ""

    @property
    def position(self) -> tuple[int, int]:
        """Ordering key within the chain. Events without a log index sort first in their block."""
        return (self.block_number, -1 if self.log_index is None else self.log_index)


# ---------------------------------------------------------------------------
# Channel commands
# ---------------------------------------------------------------------------


class _CommandBase(BaseModel):

    def payload(self) -> dict[str, Any]:
        """Channel payload that parses back into this command."""
        return self.model_dump(mode="json", exclude={"kind"})


def _dedupe(addresses: list[str]) -> list[str]:
    return list(dict.fromkeys(addresses))


class JoinCommand(_CommandBase):
    kind: Literal["join"] = "join"
    addresses: list[MemberAddress] = Field(default_factory=list)
    weight: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _unique(self) -> JoinCommand:
        self.addresses = _dedupe(self.addresses)
        return self


class PartCommand(_CommandBase):
    kind: Literal["part"] = "part"
    addresses: list[MemberAddress] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique(self) -> PartCommand:
        self.addresses = _dedupe(self.addresses)
        return self


class RevenueCommand(_CommandBase):
    kind: Literal["revenue"] = "revenue"
    amount: TokenAmount


Command = Annotated[
    Union[JoinCommand, PartCommand, RevenueCommand],
    Field(discriminator="kind"),
]

_COMMAND_ADAPTER: TypeAdapter[Command] = TypeAdapter(Command)


def _address_list(payload: Any) -> list[Any]:
    if isinstance(payload, str):
        return [payload]
    if isinstance(payload, (set, frozenset)):
        return sorted(payload, key=str)
    if isinstance(payload, (list, tuple)):
        return list(payload)
    raise InvalidCommand(f"expected a collection of addresses, got {type(payload).__name__}")


def parse_command(kind: str, payload: Any) -> Command:
    """Validate a raw channel payload into a typed command.

    join/part accept a collection of addresses or ``{"addresses": [...]}``
    (join also takes an optional ``weight``); revenue accepts an amount or
    ``{"amount": ...}``. Raises InvalidCommand on anything else.
    """
    if kind in ("join", "part"):
        if isinstance(payload, Mapping):
            data = {key: value for key, value in payload.items() if key != "kind"}
            data["addresses"] = _address_list(payload.get("addresses"))
        else:
            data = {"addresses": _address_list(payload)}
    elif kind == "revenue":
        amount = payload.get("amount") if isinstance(payload, Mapping) else payload
        data = {"amount": amount}
    else:
        raise InvalidCommand(f"unknown command kind: {kind!r}")

    data["kind"] = kind
    try:
        return _COMMAND_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise InvalidCommand(f"invalid {kind} payload: {e}") from e


__all__ = [
    "COMMAND_KINDS",
    "LEDGER_SCHEMA_VERSION",
    "BalanceEntry",
    "BlockSnapshot",
    "Command",
    "JoinCommand",
    "LedgerState",
    "PartCommand",
    "RevenueCommand",
    "TransferEvent",
    "normalize_address",
    "parse_command",
]
