"""Tests for the filesystem LedgerStore."""

from __future__ import annotations

import gzip
import json
import tempfile

import pytest

from monoledger.ledger.models import BalanceEntry, LedgerState
from monoledger.ledger.store.filesystem import FilesystemStore
from monoledger.ledger.store.interface import LedgerStore

A = "0x2f428050ea2448ed2e4409be47e1a50ebac0b2d2"
B = "0xb3428050ea2448ed2e4409be47e1a50ebac0b2d2"


@pytest.fixture
def tmp_dir():
    with tempfile.TemporaryDirectory() as d:
        yield d


@pytest.fixture
def store(tmp_dir):
    return FilesystemStore(data_dir=tmp_dir)


def _state(root=10, earnings=(50, 20)):
    return LedgerState(
        contract_address="0xc0ffee",
        root_chain_block=root,
        balances=[
            BalanceEntry(address=A, earnings=earnings[0]),
            BalanceEntry(address=B, earnings=earnings[1]),
        ],
    )


@pytest.mark.asyncio
class TestFilesystemState:

    async def test_satisfies_protocol(self, store):
        assert isinstance(store, LedgerStore)

    async def test_load_state_empty(self, store):
        assert await store.load_state() is None

    async def test_state_roundtrip(self, store):
        state = _state()
        await store.save_state(state)
        loaded = await store.load_state()
        assert loaded == state
        assert [e.address for e in loaded.balances] == [A, B]

    async def test_state_file_uses_string_amounts(self, store):
        await store.save_state(_state(earnings=(10**30, 0)))
        data = json.loads(store.state_path.read_text())
        assert data["balances"][0]["earnings"] == str(10**30)
        assert data["root_chain_block"] == 10

    async def test_save_overwrites_and_leaves_no_temp_files(self, store):
        await store.save_state(_state(root=5))
        await store.save_state(_state(root=6))
        assert (await store.load_state()).root_chain_block == 6
        assert not list(store.base.glob("*.tmp"))

    async def test_output_is_byte_stable(self, store):
        await store.save_state(_state())
        first = store.state_path.read_bytes()
        await store.save_state(_state())
        assert store.state_path.read_bytes() == first


@pytest.mark.asyncio
class TestFilesystemBlocks:

    async def test_block_roundtrip(self, store):
        snapshot = await store.save_block(_state().balances, 10)
        assert snapshot.total_earnings == 70
        assert await store.block_exists(10)
        assert not await store.block_exists(11)
        assert await store.load_block(10) == snapshot

    async def test_missing_block(self, store):
        assert await store.load_block(3) is None

    async def test_block_files_are_gzip_and_reproducible(self, store, tmp_dir):
        await store.save_block(_state().balances, 7)
        path = store._block_path(7)
        first = path.read_bytes()
        assert json.loads(gzip.decompress(first))["block_number"] == 7

        other = FilesystemStore(data_dir=tmp_dir + "/other")
        await other.save_block(_state().balances, 7)
        assert other._block_path(7).read_bytes() == first

    async def test_list_and_latest_block(self, store):
        assert await store.latest_block() is None
        for n in (12, 3, 40):
            await store.save_block(_state().balances, n)
        assert await store.list_blocks() == [3, 12, 40]
        assert await store.latest_block() == 40
