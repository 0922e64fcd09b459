"""HTTP endpoint exposing ledger data and accepting admin commands.

Runs as an async task in the operator's event loop. Routes:
  GET  /ledger/state                - current ledger (live if an operator is attached)
  GET  /ledger/blocks/{n}           - block snapshot
  GET  /ledger/blocks/{n}/exists    - whether a block snapshot was committed
  POST /channel/{kind}              - inject a join/part/revenue command (local only)
"""

from __future__ import annotations

from typing import Any

import bittensor as bt
from aiohttp import web

from monoledger.errors import InvalidCommand
from monoledger.ledger.models import parse_command

from .interface import LedgerStore

_LOCAL_PEERS = ("127.0.0.1", "::1", "localhost")


class LedgerHTTPServer:
    """Lightweight async HTTP server for ledger reads and channel injection."""

    def __init__(
        self,
        store: LedgerStore,
        channel: Any = None,
        operator: Any = None,
        host: str = "127.0.0.1",
        port: int = 8300,
    ):
        self.store = store
        self.channel = channel
        self.operator = operator
        self.host = host
        self.port = port
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    def _build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ledger/state", self._handle_state)
        app.router.add_get("/ledger/blocks/{block_number}", self._handle_block)
        app.router.add_get("/ledger/blocks/{block_number}/exists", self._handle_block_exists)
        app.router.add_post("/channel/{kind}", self._handle_publish)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self._build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        bt.logging.info({"ledger_http": {"status": "started", "port": self.port}})

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            bt.logging.info({"ledger_http": "stopped"})

    # -- Read routes --

    async def _handle_state(self, request: web.Request) -> web.Response:
        if self.operator is not None:
            state = self.operator.snapshot()
        else:
            state = await self.store.load_state()
        if state is None:
            bt.logging.info({"ledger_request": {"endpoint": "state", "status": 404}})
            return web.json_response({"error": "no_state"}, status=404)

        bt.logging.debug({"ledger_request": {"endpoint": "state", "status": 200, "members": len(state.balances)}})
        return web.json_response(state.model_dump(mode="json"))

    def _block_number(self, request: web.Request) -> int | None:
        try:
            block_number = int(request.match_info["block_number"])
        except ValueError:
            return None
        return block_number if block_number >= 0 else None

    async def _handle_block(self, request: web.Request) -> web.Response:
        block_number = self._block_number(request)
        if block_number is None:
            return web.json_response({"error": "invalid_block_number"}, status=400)

        snapshot = await self.store.load_block(block_number)
        if snapshot is None:
            bt.logging.info({"ledger_request": {"endpoint": "blocks/{n}", "status": 404, "block": block_number}})
            return web.json_response({"error": "not_found"}, status=404)

        bt.logging.debug({"ledger_request": {"endpoint": "blocks/{n}", "status": 200, "block": block_number}})
        return web.json_response(snapshot.model_dump(mode="json"))

    async def _handle_block_exists(self, request: web.Request) -> web.Response:
        block_number = self._block_number(request)
        if block_number is None:
            return web.json_response({"error": "invalid_block_number"}, status=400)

        exists = await self.store.block_exists(block_number)
        return web.json_response({"block_number": block_number, "exists": exists})

    # -- Channel route --

    async def _handle_publish(self, request: web.Request) -> web.Response:
        """Publish a command into the attached channel (local peers only)."""
        peer = request.remote
        if peer not in _LOCAL_PEERS:
            bt.logging.warning({"ledger_request": {"endpoint": "channel", "status": 403, "peer": peer}})
            return web.json_response({"error": "forbidden"}, status=403)

        if self.channel is None:
            return web.json_response({"error": "channel_not_configured"}, status=404)

        kind = request.match_info["kind"]
        try:
            body = await request.json()
        except ValueError:  # bad JSON or bad UTF-8
            return web.json_response({"error": "invalid_body"}, status=400)

        try:
            command = parse_command(kind, body)
        except InvalidCommand as e:
            bt.logging.warning({"ledger_request": {"endpoint": "channel", "kind": kind, "status": 400, "error": str(e)}})
            return web.json_response({"error": "invalid_command", "detail": str(e)}, status=400)

        delivered = self.channel.publish(kind, command.payload())
        bt.logging.info({"ledger_request": {"endpoint": "channel", "kind": kind, "status": 200, "delivered": delivered}})
        return web.json_response({"status": "ok", "kind": kind, "delivered": delivered})


__all__ = ["LedgerHTTPServer"]
