"""Operator: composition root and single owner of the ledger.

Lifecycle: load checkpoint -> replay the gap up to the chain head ->
checkpoint -> listen. While listening, chain events, channel commands,
playback and checkpoint requests are all queued on one mailbox and handled
by one worker task, so ledger mutations never interleave and each source's
order is preserved.
"""

from __future__ import annotations

import asyncio
import functools
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import bittensor as bt

from monoledger.errors import CollaboratorUnavailable, InvalidCommand, StartupError
from monoledger.ledger.ledger import Ledger
from monoledger.ledger.models import (
    COMMAND_KINDS,
    BalanceEntry,
    Command,
    LedgerState,
    TransferEvent,
    normalize_address,
    parse_command,
)
from monoledger.ledger.store.interface import LedgerStore

from .chain import Chain, Subscription
from .channel import Channel
from .checkpoint import CheckpointCoordinator
from .commands import CommandHandler
from .playback import PlaybackEngine, PlaybackResult

T = TypeVar("T")

_TRANSIENT_ERRORS = (CollaboratorUnavailable, ConnectionError, TimeoutError)


class OperatorStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING_BACK = "playing_back"
    CHECKPOINTING = "checkpointing"
    LISTENING = "listening"
    MUTATING = "mutating"
    STOPPED = "stopped"


@dataclass
class _Message:
    kind: str  # "event", "command", "checkpoint", "playback", "stop"
    payload: Any = None
    future: asyncio.Future | None = None


class Operator:
    """Keeps the ledger in sync with the chain and the command channel."""

    def __init__(
        self,
        chain: Chain,
        channel: Channel,
        store: LedgerStore,
        contract_address: str,
        config: dict[str, Any] | None = None,
    ):
        self.chain = chain
        self.channel = channel
        self.config = config or {}
        self.contract_address = normalize_address(contract_address)

        self.checkpoint = CheckpointCoordinator(
            store, block_interval=int(self.config.get("block_interval", 1)),
        )
        self.engine = PlaybackEngine(chain)
        self.commands = CommandHandler()

        self._checkpoint_interval = float(self.config.get("checkpoint_interval_seconds", 60))
        self._max_retries = max(1, int(self.config.get("max_retries", 5)))
        self._retry_backoff = float(self.config.get("retry_backoff_seconds", 1.0))
        self._playback_shortcut = bool(self.config.get("playback_shortcut", False))

        # State
        self._ledger = Ledger()
        self._root_chain_block = -1
        self._last_position: tuple[int, float] = (-1, math.inf)
        self._synced_block = -1
        self._adopted = False
        self._stop_requested = False
        self._dirty = False
        self.status = OperatorStatus.IDLE

        # Listening machinery
        self._mailbox: asyncio.Queue[_Message] | None = None
        self._worker: asyncio.Task | None = None
        self._timer: asyncio.Task | None = None
        self._accepting = False
        self._chain_subscription: Subscription | None = None
        self._channel_handlers: dict[str, Callable[[Any], None]] = {}

    # -- Read-only view --

    @property
    def root_chain_block(self) -> int:
        return self._root_chain_block

    @property
    def balances(self) -> list[BalanceEntry]:
        return self._ledger.balances

    def snapshot(self) -> LedgerState:
        """Copy of the current ledger state."""
        return LedgerState(
            contract_address=self.contract_address,
            root_chain_block=self._root_chain_block,
            balances=self._ledger.balances,
        )

    # -- Lifecycle --

    async def start(self) -> None:
        """Load the last checkpoint, catch up with the chain, then start listening.

        Raises StartupError (ConfigurationMismatch for a foreign checkpoint)
        if the operator cannot reach a consistent state.
        """
        if self.status is not OperatorStatus.IDLE:
            raise RuntimeError(f"Operator cannot start from status {self.status.value}")

        bt.logging.info({"operator": {"status": "starting", "contract": self.contract_address}})
        try:
            self.status = OperatorStatus.LOADING
            state = await self._retry(
                "load_state", lambda: self.checkpoint.load_state(self.contract_address),
            )
            self._ensure_not_stopped()
            self._adopt(state)

            head = await self._retry("get_block_number", self.chain.get_block_number)
            if self._playback_shortcut and head > self._root_chain_block:
                await self._restore_committed_block(head)

            await self._retry(
                "playback", lambda: self.playback(self._root_chain_block + 1, head),
            )
            self._ensure_not_stopped()
            await self._listen()
        except StartupError as e:
            await self._abort_start(e)
            raise
        except Exception as e:
            await self._abort_start(e)
            raise StartupError(f"Operator failed to start: {e}") from e

        bt.logging.info({
            "operator": {
                "status": "listening",
                "root_chain_block": self._root_chain_block,
                "members": len(self._ledger),
            }
        })

    async def stop(self) -> None:
        """Unsubscribe, finish queued work and write a final checkpoint.

        Nothing is written if no checkpoint was loaded yet, so a stop that
        races a start never overwrites the stored ledger.
        """
        if self.status is OperatorStatus.STOPPED:
            return
        self._stop_requested = True
        if self.status is OperatorStatus.IDLE:
            self.status = OperatorStatus.STOPPED
            return

        bt.logging.info({"operator": {"status": "stopping"}})
        await self._teardown()
        try:
            if self._adopted:
                await self._checkpoint()
            else:
                bt.logging.info({"operator": {"final_checkpoint": "skipped", "reason": "no_state_loaded"}})
        finally:
            self.status = OperatorStatus.STOPPED
            bt.logging.info({"operator": {"status": "stopped", "root_chain_block": self._root_chain_block}})

    async def save_state(self) -> None:
        """Checkpoint now. While listening this runs after every queued mutation."""
        self._check_operational("save_state")
        if self._accepting:
            await self._submit("checkpoint")
        else:
            await self._checkpoint()

    async def playback(self, from_block: int, to_block: int) -> PlaybackResult:
        """Replay transfers in ``[from_block, to_block]`` and checkpoint."""
        self._check_operational("playback")
        if self._accepting:
            return await self._submit("playback", (from_block, to_block))
        return await self._playback(from_block, to_block)

    def _check_operational(self, operation: str) -> None:
        if not self._adopted:
            raise RuntimeError(f"Operator cannot {operation} before its state is loaded")
        if self._stop_requested or self.status is OperatorStatus.STOPPED:
            raise RuntimeError(f"Operator cannot {operation} after stop")

    def _ensure_not_stopped(self) -> None:
        if self._stop_requested:
            raise StartupError("Operator was stopped during startup")

    # -- Startup helpers --

    def _adopt(self, state: LedgerState) -> None:
        self._ledger = Ledger(state.balances)
        self._root_chain_block = state.root_chain_block
        self._adopted = True
        self._mark_synced()

    async def _retry(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """Run func, retrying transient collaborator failures with capped backoff."""
        attempt = 0
        while True:
            try:
                return await func()
            except _TRANSIENT_ERRORS as e:
                attempt += 1
                if attempt >= self._max_retries:
                    raise StartupError(f"{operation} failed after {attempt} attempts: {e}") from e
                wait = min(30.0, self._retry_backoff * 2 ** (attempt - 1))
                bt.logging.warning({"operator_retry": {"operation": operation, "attempt": attempt, "wait": wait, "error": str(e)}})
                await asyncio.sleep(wait)

    async def _restore_committed_block(self, block_number: int) -> None:
        """Adopt an already committed snapshot of ``block_number`` instead of replaying."""
        exists = await self._retry(
            "block_exists", lambda: self.checkpoint.block_exists(block_number),
        )
        if not exists:
            return
        snapshot = await self._retry(
            "load_block", lambda: self.checkpoint.load_block(block_number),
        )
        if snapshot is None:
            return
        self._ledger = Ledger(snapshot.balances)
        self._advance_cursor(block_number)
        self._mark_synced()
        bt.logging.info({"operator": {"status": "restored_block", "block": block_number, "members": len(self._ledger)}})

    async def _abort_start(self, error: Exception) -> None:
        bt.logging.error({"operator_startup_error": str(error)})
        await self._teardown()
        self.status = OperatorStatus.STOPPED

    async def _listen(self) -> None:
        self._mailbox = asyncio.Queue()
        self._accepting = True
        self._worker = asyncio.create_task(self._run_mailbox())

        for kind in COMMAND_KINDS:
            handler = functools.partial(self._on_command, kind)
            self.channel.subscribe(kind, handler)
            self._channel_handlers[kind] = handler

        self._chain_subscription = await self._retry(
            "subscribe_transfer",
            lambda: self.chain.subscribe_transfer(
                self._on_transfer, from_block=self._root_chain_block + 1,
            ),
        )
        if self._checkpoint_interval > 0:
            self._timer = asyncio.create_task(self._run_timer())
        self.status = OperatorStatus.LISTENING

    async def _teardown(self) -> None:
        self._accepting = False

        if self._chain_subscription is not None:
            try:
                await self._chain_subscription.unsubscribe()
            except Exception as e:
                bt.logging.warning({"operator": {"unsubscribe_error": str(e)}})
            self._chain_subscription = None

        for kind, handler in self._channel_handlers.items():
            self.channel.unsubscribe(kind, handler)
        self._channel_handlers.clear()

        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None

        if self._worker is not None and self._mailbox is not None:
            self._mailbox.put_nowait(_Message("stop"))
            await self._worker
            self._worker = None

    # -- Producers --

    def _on_transfer(self, event: TransferEvent) -> None:
        self._enqueue(_Message("event", event))

    def _on_command(self, kind: str, payload: Any) -> None:
        try:
            command = parse_command(kind, payload)
        except InvalidCommand as e:
            bt.logging.warning({"operator_command_rejected": {"kind": kind, "error": str(e)}})
            return
        self._enqueue(_Message("command", command))

    def _enqueue(self, message: _Message) -> bool:
        if not self._accepting or self._mailbox is None:
            bt.logging.debug({"operator": {"dropped": message.kind, "reason": "not_listening"}})
            return False
        self._mailbox.put_nowait(message)
        return True

    async def _submit(self, kind: str, payload: Any = None) -> Any:
        future = asyncio.get_running_loop().create_future()
        if not self._enqueue(_Message(kind, payload, future)):
            raise RuntimeError("Operator is not listening")
        return await future

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self._checkpoint_interval)
            if self._dirty:
                self._enqueue(_Message("checkpoint"))

    # -- Consumer --

    async def _run_mailbox(self) -> None:
        """Apply queued messages one at a time until the stop message."""
        mailbox = self._mailbox
        while True:
            message = await mailbox.get()
            if message.kind == "stop":
                mailbox.task_done()
                break
            try:
                result = await self._dispatch(message)
            except Exception as e:
                bt.logging.error({"operator_message_error": {"kind": message.kind, "error": str(e)}})
                if message.future is not None and not message.future.done():
                    message.future.set_exception(e)
            else:
                if message.future is not None and not message.future.done():
                    message.future.set_result(result)
            finally:
                mailbox.task_done()
                if self._accepting:
                    self.status = OperatorStatus.LISTENING

    async def _dispatch(self, message: _Message) -> Any:
        if message.kind == "event":
            return self._apply_transfer(message.payload)
        if message.kind == "command":
            return self._apply_command(message.payload)
        if message.kind == "checkpoint":
            return await self._checkpoint()
        if message.kind == "playback":
            return await self._playback(*message.payload)
        raise ValueError(f"Unknown message kind: {message.kind}")

    # -- Mutations (worker only, or before listening starts) --

    def _advance_cursor(self, block_number: int) -> None:
        if block_number > self._root_chain_block:
            self._root_chain_block = block_number

    def _mark_synced(self) -> None:
        """Everything up to the cursor came from a checkpoint or a replay."""
        self._synced_block = max(self._synced_block, self._root_chain_block)
        self._last_position = max(self._last_position, (self._root_chain_block, math.inf))

    def _is_duplicate(self, event: TransferEvent) -> bool:
        if event.block_number <= self._synced_block:
            return True
        # without a log index two transfers in one block are indistinguishable
        if event.log_index is None:
            return False
        return event.position <= self._last_position

    def _apply_transfer(self, event: TransferEvent) -> bool:
        if self._is_duplicate(event):
            bt.logging.debug({
                "operator": {
                    "duplicate_event": {"block": event.block_number, "log_index": event.log_index},
                    "root_chain_block": self._root_chain_block,
                }
            })
            return False

        self.status = OperatorStatus.MUTATING
        try:
            self._ledger.distribute(event.amount)
        finally:
            if event.log_index is not None:
                self._last_position = max(self._last_position, event.position)
            self._advance_cursor(event.block_number)
            self._dirty = True
        return True

    def _apply_command(self, command: Command) -> None:
        self.status = OperatorStatus.MUTATING
        self.commands.apply(self._ledger, command)
        self._dirty = True

    async def _playback(self, from_block: int, to_block: int) -> PlaybackResult:
        self.status = OperatorStatus.PLAYING_BACK
        result = await self.engine.playback(
            self._ledger, self._root_chain_block, from_block, to_block,
        )
        if not result.skipped:
            self._ledger = result.ledger
            self._advance_cursor(result.root_chain_block)
            self._mark_synced()
        await self._checkpoint()
        return result

    async def _checkpoint(self) -> None:
        self.status = OperatorStatus.CHECKPOINTING
        await self.checkpoint.commit(self.snapshot())
        self._dirty = False


__all__ = ["Operator", "OperatorStatus"]
