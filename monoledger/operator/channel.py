"""Side channel carrying membership and revenue commands.

The operator only needs ``subscribe``/``unsubscribe``; ``publish`` is how
administrators (and tests) inject commands. LocalChannel is the in-process
implementation served over HTTP by LedgerHTTPServer; ChannelClient publishes
to a remote operator through that endpoint.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import bittensor as bt
import httpx

from monoledger.ledger.models import COMMAND_KINDS

CommandHandlerFn = Callable[[Any], None]


@runtime_checkable
class Channel(Protocol):
    """Interface the operator consumes for live commands."""

    def subscribe(self, kind: str, handler: CommandHandlerFn) -> None:
        ...

    def unsubscribe(self, kind: str, handler: CommandHandlerFn) -> None:
        ...

    def publish(self, kind: str, payload: Any) -> int:
        ...


def _check_kind(kind: str) -> None:
    if kind not in COMMAND_KINDS:
        raise ValueError(f"Unknown command kind: {kind!r} (expected one of {COMMAND_KINDS})")


class LocalChannel:
    """In-process pub/sub. Delivery is synchronous, in subscription order."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[CommandHandlerFn]] = {kind: [] for kind in COMMAND_KINDS}

    def subscribe(self, kind: str, handler: CommandHandlerFn) -> None:
        _check_kind(kind)
        self._handlers[kind].append(handler)

    def unsubscribe(self, kind: str, handler: CommandHandlerFn) -> None:
        _check_kind(kind)
        try:
            self._handlers[kind].remove(handler)
        except ValueError:
            pass

    def subscribers(self, kind: str) -> int:
        _check_kind(kind)
        return len(self._handlers[kind])

    def publish(self, kind: str, payload: Any) -> int:
        """Deliver payload to every handler of ``kind``. Returns the delivery count.

        A failing handler is logged and does not stop delivery to the rest.
        """
        _check_kind(kind)
        delivered = 0
        for handler in list(self._handlers[kind]):
            try:
                handler(payload)
                delivered += 1
            except Exception as e:
                bt.logging.warning({"channel_handler_error": {"kind": kind, "error": str(e)}})
        return delivered


def _jsonable(payload: Any) -> Any:
    if isinstance(payload, (set, frozenset)):
        return sorted(payload, key=str)
    if isinstance(payload, dict):
        return {key: _jsonable(value) for key, value in payload.items()}
    return payload


class ChannelClient:
    """Publishes commands to a remote operator's ``POST /channel/{kind}``."""

    def __init__(self, operator_url: str, timeout: float = 10.0):
        self.operator_url = operator_url.rstrip("/")
        self._client = httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def publish(self, kind: str, payload: Any) -> dict[str, Any]:
        _check_kind(kind)
        resp = await self._client.post(
            f"{self.operator_url}/channel/{kind}",
            json=_jsonable(payload),
        )
        if resp.status_code != 200:
            raise ConnectionError(f"Publish failed: {resp.status_code} {resp.text}")
        return resp.json()

    async def join(self, addresses: Any) -> dict[str, Any]:
        return await self.publish("join", {"addresses": addresses})

    async def part(self, addresses: Any) -> dict[str, Any]:
        return await self.publish("part", {"addresses": addresses})

    async def revenue(self, amount: int) -> dict[str, Any]:
        return await self.publish("revenue", {"amount": str(amount)})


__all__ = ["COMMAND_KINDS", "Channel", "ChannelClient", "LocalChannel"]
