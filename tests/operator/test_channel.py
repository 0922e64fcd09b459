"""Tests for LocalChannel."""

import pytest

from monoledger.operator.channel import Channel, LocalChannel


class TestLocalChannel:

    def test_satisfies_protocol(self):
        assert isinstance(LocalChannel(), Channel)

    def test_publish_delivers_in_subscription_order(self):
        channel = LocalChannel()
        seen = []
        channel.subscribe("join", lambda payload: seen.append(("first", payload)))
        channel.subscribe("join", lambda payload: seen.append(("second", payload)))

        assert channel.publish("join", ["0xabc"]) == 2
        assert seen == [("first", ["0xabc"]), ("second", ["0xabc"])]

    def test_kinds_are_separate(self):
        channel = LocalChannel()
        seen = []
        channel.subscribe("part", seen.append)
        assert channel.publish("join", ["0xabc"]) == 0
        assert seen == []

    def test_unsubscribe(self):
        channel = LocalChannel()
        seen = []
        channel.subscribe("revenue", seen.append)
        channel.unsubscribe("revenue", seen.append)
        channel.unsubscribe("revenue", seen.append)
        assert channel.subscribers("revenue") == 0
        assert channel.publish("revenue", 10) == 0

    def test_failing_handler_does_not_block_others(self):
        channel = LocalChannel()
        seen = []

        def broken(payload):
            raise RuntimeError("boom")

        channel.subscribe("revenue", broken)
        channel.subscribe("revenue", seen.append)
        assert channel.publish("revenue", 10) == 1
        assert seen == [10]

    def test_unknown_kind_rejected(self):
        channel = LocalChannel()
        with pytest.raises(ValueError, match="Unknown command kind"):
            channel.subscribe("transfer", print)
        with pytest.raises(ValueError):
            channel.publish("transfer", {})
