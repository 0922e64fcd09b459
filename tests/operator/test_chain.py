"""Tests for Web3Chain against a stubbed AsyncWeb3 client."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from monoledger.errors import CollaboratorUnavailable
from monoledger.operator.chain import TRANSFER_EVENT_ABI, Chain, Web3Chain

TOKEN = "0x00000000000000000000000000000000000000aa"
CONTRACT = "0x00000000000000000000000000000000c0ffee00"


class _Transfer:
    def __init__(self, eth):
        self.eth = eth
        self.calls = []

    async def get_logs(self, from_block, to_block, argument_filters):
        self.calls.append((from_block, to_block, argument_filters))
        if self.eth.error is not None:
            raise self.eth.error
        return [log for log in self.eth.logs if from_block <= log["blockNumber"] <= to_block]


class _Contract:
    def __init__(self, eth):
        self.events = SimpleNamespace(Transfer=_Transfer(eth))


class _Eth:
    def __init__(self, head=10, logs=()):
        self.head = head
        self.logs = list(logs)
        self.error = None
        self.contracts = []

    @property
    def block_number(self):
        async def _head():
            if self.error is not None:
                raise self.error
            return self.head
        return _head()

    def contract(self, address, abi):
        contract = _Contract(self)
        self.contracts.append((address, abi, contract))
        return contract


class _Web3:
    def __init__(self, eth):
        self.eth = eth


def _log(value, block, log_index=0):
    return {
        "args": {"from": TOKEN, "to": CONTRACT, "value": value},
        "blockNumber": block,
        "logIndex": log_index,
        "transactionHash": bytes.fromhex("ab" * 32),
    }


def _chain(eth, **kwargs):
    return Web3Chain(_Web3(eth), token_address=TOKEN, contract_address=CONTRACT, **kwargs)


def _transfer(eth):
    return eth.contracts[0][2].events.Transfer


@pytest.mark.asyncio
class TestWeb3Chain:

    async def test_satisfies_protocol(self):
        assert isinstance(_chain(_Eth()), Chain)

    async def test_binds_token_contract(self):
        eth = _Eth()
        chain = _chain(eth)
        address, abi, _ = eth.contracts[0]
        assert address == chain.token_address
        assert address.lower() == TOKEN
        assert abi == TRANSFER_EVENT_ABI

    async def test_get_block_number(self):
        assert await _chain(_Eth(head=42)).get_block_number() == 42

    async def test_get_block_number_failure(self):
        eth = _Eth()
        eth.error = OSError("connection refused")
        with pytest.raises(CollaboratorUnavailable, match="get_block_number"):
            await _chain(eth).get_block_number()

    async def test_get_past_events_decodes_and_sorts(self):
        eth = _Eth(logs=[_log(5, 8, 1), _log(100, 7), _log(3, 8, 0)])
        chain = _chain(eth)
        events = await chain.get_past_events(6, 10)

        assert [(e.block_number, e.log_index, e.amount) for e in events] == [
            (7, 0, 100), (8, 0, 3), (8, 1, 5),
        ]
        assert events[0].transaction_hash == "ab" * 32
        _, _, filters = _transfer(eth).calls[0]
        assert filters == {"to": chain.contract_address}

    async def test_large_ranges_are_chunked(self):
        eth = _Eth(logs=[_log(1, 1), _log(2, 5)])
        events = await _chain(eth, max_block_range=2).get_past_events(1, 5)
        assert [(c[0], c[1]) for c in _transfer(eth).calls] == [(1, 2), (3, 4), (5, 5)]
        assert [e.amount for e in events] == [1, 2]

    async def test_get_logs_failure(self):
        eth = _Eth()
        eth.error = ValueError("query returned more than 10000 results")
        with pytest.raises(CollaboratorUnavailable, match="get_logs 1..5"):
            await _chain(eth).get_past_events(1, 5)


@pytest.mark.asyncio
class TestPollingSubscription:

    async def test_delivers_new_blocks_once(self):
        eth = _Eth(head=10, logs=[_log(100, 9), _log(7, 11)])
        chain = _chain(eth, poll_interval=0.01)
        received = []

        subscription = await chain.subscribe_transfer(received.append)
        try:
            await asyncio.sleep(0.05)
            assert received == []

            eth.head = 11
            for _ in range(50):
                await asyncio.sleep(0.01)
                if received:
                    break
            await asyncio.sleep(0.05)
            assert [(e.block_number, e.amount) for e in received] == [(11, 7)]
        finally:
            await subscription.unsubscribe()

    async def test_from_block_replays_missed_blocks(self):
        eth = _Eth(head=10, logs=[_log(100, 9)])
        chain = _chain(eth, poll_interval=3600)
        received = []

        subscription = await chain.subscribe_transfer(received.append, from_block=9)
        try:
            for _ in range(50):
                await asyncio.sleep(0.01)
                if received:
                    break
            assert [e.block_number for e in received] == [9]
            assert subscription.next_block == 11
        finally:
            await subscription.unsubscribe()

    async def test_poll_errors_do_not_stop_subscription(self):
        eth = _Eth(head=10, logs=[_log(5, 11)])
        chain = _chain(eth, poll_interval=0.01)
        received = []

        subscription = await chain.subscribe_transfer(received.append)
        try:
            eth.error = OSError("node restarting")
            await asyncio.sleep(0.05)
            eth.error = None
            eth.head = 11
            for _ in range(50):
                await asyncio.sleep(0.01)
                if received:
                    break
            assert [e.amount for e in received] == [5]
        finally:
            await subscription.unsubscribe()

    async def test_callback_errors_are_isolated(self):
        eth = _Eth(head=10, logs=[_log(1, 10, 0), _log(2, 10, 1)])
        chain = _chain(eth, poll_interval=3600)
        received = []

        def on_event(event):
            if event.amount == 1:
                raise RuntimeError("boom")
            received.append(event)

        subscription = await chain.subscribe_transfer(on_event, from_block=10)
        try:
            for _ in range(50):
                await asyncio.sleep(0.01)
                if received:
                    break
            assert [e.amount for e in received] == [2]
        finally:
            await subscription.unsubscribe()
