"""Ledger synchronization operator.

Keeps the balance ledger in step with two asynchronous inputs: token
transfers into the contract (replayed from history on startup, then
followed live) and membership/revenue commands from a side channel.
All mutations go through one mailbox worker; checkpoints persist balances
and the block cursor together.
"""

from .chain import Chain, Web3Chain
from .channel import Channel, ChannelClient, LocalChannel
from .checkpoint import CheckpointCoordinator
from .commands import CommandHandler
from .operator import Operator, OperatorStatus
from .playback import PlaybackEngine, PlaybackResult

__all__ = [
    "Chain",
    "Channel",
    "ChannelClient",
    "CheckpointCoordinator",
    "CommandHandler",
    "LocalChannel",
    "Operator",
    "OperatorStatus",
    "PlaybackEngine",
    "PlaybackResult",
    "Web3Chain",
]
