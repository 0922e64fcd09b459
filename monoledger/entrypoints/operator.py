"""Ledger operator entrypoint.

Long-running process that follows token transfers into the operated
contract, applies membership/revenue commands from the HTTP channel and
checkpoints the ledger to a filesystem or SQL store.
"""

import argparse
import asyncio
import os
import signal
import sys

import bittensor as bt
from dotenv import load_dotenv


def _setting(args: argparse.Namespace, env_key: str, dest: str, default=None):
    """Env var (MONOLEDGER_<SECTION>__<KEY>) takes precedence over CLI."""
    value = os.environ.get(env_key)
    if value is not None and value != "":
        return value
    value = getattr(args, dest, None)
    return default if value is None else value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Monoledger operator")
    bt.logging.add_args(parser)
    parser.add_argument("--chain.rpc_url", type=str, required=False)
    parser.add_argument("--chain.token_address", type=str, required=False)
    parser.add_argument("--chain.contract_address", type=str, required=False)
    parser.add_argument("--chain.poll_interval", type=float, default=5.0)
    parser.add_argument("--store.data_dir", type=str, default="monoledger/data")
    parser.add_argument("--store.database_url", type=str, required=False)
    parser.add_argument("--http.host", type=str, default="127.0.0.1")
    parser.add_argument("--http.port", type=int, default=8300)
    parser.add_argument("--operator.checkpoint_interval", type=float, default=60.0)
    parser.add_argument("--operator.block_interval", type=int, default=1)
    return parser


async def run(settings: dict) -> None:
    from web3 import AsyncWeb3

    from monoledger.errors import StartupError
    from monoledger.ledger.store.filesystem import FilesystemStore
    from monoledger.ledger.store.http_server import LedgerHTTPServer
    from monoledger.ledger.store.sql import SQLStore
    from monoledger.operator.chain import Web3Chain
    from monoledger.operator.channel import LocalChannel
    from monoledger.operator.operator import Operator

    web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(settings["rpc_url"]))
    chain = Web3Chain(
        web3,
        token_address=settings["token_address"],
        contract_address=settings["contract_address"],
        poll_interval=settings["poll_interval"],
    )

    if settings["database_url"]:
        store = SQLStore(settings["database_url"])
        await store.init()
    else:
        store = FilesystemStore(data_dir=settings["data_dir"])

    channel = LocalChannel()
    operator = Operator(
        chain=chain,
        channel=channel,
        store=store,
        contract_address=settings["contract_address"],
        config={
            "checkpoint_interval_seconds": settings["checkpoint_interval"],
            "block_interval": settings["block_interval"],
        },
    )
    server = LedgerHTTPServer(
        store=store,
        channel=channel,
        operator=operator,
        host=settings["http_host"],
        port=settings["http_port"],
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler(sig, frame):
        bt.logging.info({"operator": "shutdown_signal_received"})
        loop.call_soon_threadsafe(stop_event.set)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        try:
            await operator.start()
        except StartupError as e:
            bt.logging.error({"operator": "startup_failed", "error": str(e)})
            raise SystemExit(1) from e

        await server.start()
        await stop_event.wait()
    finally:
        await server.stop()
        await operator.stop()
        if isinstance(store, SQLStore):
            await store.close()


def main() -> None:
    # Load .env if not in test mode
    if os.environ.get("MONOLEDGER_TEST_MODE") != "true":
        load_dotenv()

    bt.logging.info({"operator": "starting"})

    args = build_parser().parse_args()

    settings = {
        "rpc_url": _setting(args, "MONOLEDGER_CHAIN__RPC_URL", "chain.rpc_url", ""),
        "token_address": _setting(args, "MONOLEDGER_CHAIN__TOKEN_ADDRESS", "chain.token_address", ""),
        "contract_address": _setting(args, "MONOLEDGER_CHAIN__CONTRACT_ADDRESS", "chain.contract_address", ""),
        "poll_interval": float(_setting(args, "MONOLEDGER_CHAIN__POLL_INTERVAL", "chain.poll_interval", 5.0)),
        "data_dir": _setting(args, "MONOLEDGER_STORE__DATA_DIR", "store.data_dir", "monoledger/data"),
        "database_url": _setting(args, "MONOLEDGER_STORE__DATABASE_URL", "store.database_url", ""),
        "http_host": _setting(args, "MONOLEDGER_HTTP__HOST", "http.host", "127.0.0.1"),
        "http_port": int(_setting(args, "MONOLEDGER_HTTP__PORT", "http.port", 8300)),
        "checkpoint_interval": float(_setting(
            args, "MONOLEDGER_OPERATOR__CHECKPOINT_INTERVAL", "operator.checkpoint_interval", 60.0,
        )),
        "block_interval": int(_setting(
            args, "MONOLEDGER_OPERATOR__BLOCK_INTERVAL", "operator.block_interval", 1,
        )),
    }

    for key, env_key in (
        ("rpc_url", "MONOLEDGER_CHAIN__RPC_URL"),
        ("token_address", "MONOLEDGER_CHAIN__TOKEN_ADDRESS"),
        ("contract_address", "MONOLEDGER_CHAIN__CONTRACT_ADDRESS"),
    ):
        if not settings[key]:
            bt.logging.error(f"{env_key} is required")
            sys.exit(1)

    bt.logging.info({"operator_config": {k: v for k, v in settings.items() if k != "database_url"}})

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        bt.logging.info({"operator": "keyboard_interrupt"})
    finally:
        bt.logging.info({"operator": "stopped"})


if __name__ == "__main__":
    main()
