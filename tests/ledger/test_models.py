"""Tests for ledger Pydantic models."""

import pytest
from pydantic import ValidationError

from monoledger.errors import InvalidCommand
from monoledger.ledger.models import (
    LEDGER_SCHEMA_VERSION,
    BalanceEntry,
    BlockSnapshot,
    JoinCommand,
    LedgerState,
    PartCommand,
    RevenueCommand,
    TransferEvent,
    parse_command,
)

A = "0x2f428050ea2448ed2e4409be47e1a50ebac0b2d2"
B = "0xb3428050ea2448ed2e4409be47e1a50ebac0b2d2"
C = "0x5ffe8050112448ed2e4409be47e1a50ebac0b299"


class TestBalanceEntry:

    def test_defaults(self):
        entry = BalanceEntry(address=A)
        assert entry.earnings == 0
        assert entry.weight == 1

    def test_address_is_lowercased(self):
        entry = BalanceEntry(address="  0x2F428050EA2448ED2E4409BE47E1A50EBAC0B2D2 ")
        assert entry.address == A

    def test_earnings_serialize_as_decimal_string(self):
        entry = BalanceEntry(address=A, earnings=10**30)
        data = entry.model_dump(mode="json")
        assert data["earnings"] == "1000000000000000000000000000000"
        assert BalanceEntry(**data).earnings == 10**30

    def test_python_dump_keeps_int(self):
        entry = BalanceEntry(address=A, earnings=50)
        assert entry.model_dump()["earnings"] == 50

    def test_float_earnings_rejected(self):
        with pytest.raises(ValidationError):
            BalanceEntry(address=A, earnings=1.5)

    def test_negative_earnings_rejected(self):
        with pytest.raises(ValidationError):
            BalanceEntry(address=A, earnings=-1)
        with pytest.raises(ValidationError):
            BalanceEntry(address=A, earnings="-1")

    def test_zero_weight_rejected(self):
        with pytest.raises(ValidationError):
            BalanceEntry(address=A, weight=0)

    def test_empty_address_rejected(self):
        with pytest.raises(ValidationError):
            BalanceEntry(address="   ")


class TestLedgerState:

    def test_genesis(self):
        state = LedgerState.genesis("0xCONTRACT")
        assert state.balances == []
        assert state.root_chain_block == -1
        assert state.contract_address == "0xcontract"
        assert state.schema_version == LEDGER_SCHEMA_VERSION

    def test_duplicate_addresses_rejected(self):
        with pytest.raises(ValidationError, match="duplicate address"):
            LedgerState(
                contract_address="c",
                balances=[BalanceEntry(address=A), BalanceEntry(address=A.upper().replace("0X", "0x"))],
            )

    def test_serialization_roundtrip_preserves_order(self):
        state = LedgerState(
            contract_address="c",
            root_chain_block=5,
            balances=[
                BalanceEntry(address=B, earnings=20),
                BalanceEntry(address=A, earnings=50),
            ],
        )
        data = state.model_dump(mode="json")
        restored = LedgerState(**data)
        assert [e.address for e in restored.balances] == [B, A]
        assert restored.root_chain_block == 5
        assert restored.total_earnings == 70


class TestBlockSnapshot:

    def test_capture_copies_and_totals(self):
        balances = [BalanceEntry(address=A, earnings=50), BalanceEntry(address=B, earnings=20)]
        snapshot = BlockSnapshot.capture(10, balances)
        balances[0].earnings = 999
        assert snapshot.balances[0].earnings == 50
        assert snapshot.total_earnings == 70
        assert snapshot.block_number == 10

    def test_frozen(self):
        snapshot = BlockSnapshot.capture(1, [])
        with pytest.raises(ValidationError):
            snapshot.block_number = 2


class TestTransferEvent:

    def test_position_orders_by_block_then_log_index(self):
        events = [
            TransferEvent(amount=1, block_number=5, log_index=2),
            TransferEvent(amount=1, block_number=4, log_index=9),
            TransferEvent(amount=1, block_number=5, log_index=0),
        ]
        ordered = sorted(events, key=lambda e: e.position)
        assert [e.position for e in ordered] == [(4, 9), (5, 0), (5, 2)]

    def test_amount_from_string(self):
        assert TransferEvent(amount="100", block_number=1).amount == 100


class TestParseCommand:

    def test_join_from_list(self):
        command = parse_command("join", [C.upper().replace("0X", "0x")])
        assert isinstance(command, JoinCommand)
        assert command.addresses == [C]
        assert command.weight == 1

    def test_join_from_mapping_with_weight(self):
        command = parse_command("join", {"addresses": [A, B], "weight": 3})
        assert command.addresses == [A, B]
        assert command.weight == 3

    def test_join_from_set_is_sorted(self):
        command = parse_command("join", {B, A})
        assert command.addresses == sorted([A, B])

    def test_join_deduplicates(self):
        command = parse_command("join", [A, B, A])
        assert command.addresses == [A, B]

    def test_part_single_address(self):
        command = parse_command("part", B)
        assert isinstance(command, PartCommand)
        assert command.addresses == [B]

    def test_revenue_from_amount_and_mapping(self):
        assert parse_command("revenue", 100) == RevenueCommand(amount=100)
        assert parse_command("revenue", {"amount": "100"}).amount == 100

    def test_payload_parses_back(self):
        command = parse_command("join", {"addresses": [A], "weight": 2})
        assert parse_command("join", command.payload()) == command
        revenue = parse_command("revenue", 10**25)
        assert parse_command("revenue", revenue.payload()) == revenue

    def test_invalid_address_rejected(self):
        with pytest.raises(InvalidCommand):
            parse_command("join", ["not-an-address"])

    def test_negative_revenue_rejected(self):
        with pytest.raises(InvalidCommand):
            parse_command("revenue", -5)

    def test_float_revenue_rejected(self):
        with pytest.raises(InvalidCommand):
            parse_command("revenue", 1.5)

    def test_unknown_kind_rejected(self):
        with pytest.raises(InvalidCommand, match="unknown command kind"):
            parse_command("transfer", [A])

    def test_missing_addresses_rejected(self):
        with pytest.raises(InvalidCommand):
            parse_command("part", {"weight": 1})
