"""Event playback: bring a ledger up to date with historical transfers.

The ledger's cursor (root_chain_block) is the only record of what has been
applied, so a replay always starts after it. Events are fetched in full
before anything is applied and are applied to a copy; a chain failure
mid-range therefore leaves the caller's ledger and cursor untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import bittensor as bt

from monoledger.errors import CollaboratorUnavailable, DistributionError
from monoledger.ledger.ledger import Ledger
from monoledger.ledger.models import TransferEvent

from .chain import Chain


@dataclass
class PlaybackResult:
    """Outcome of replaying a block range."""

    from_block: int
    to_block: int
    ledger: Ledger
    root_chain_block: int
    events_applied: int = 0
    undistributed: list[TransferEvent] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        """True when the range was already covered by the cursor."""
        return self.from_block > self.to_block


class PlaybackEngine:
    """Replays transfer events from the chain onto a ledger."""

    def __init__(self, chain: Chain):
        self.chain = chain

    async def playback(
        self,
        ledger: Ledger,
        root_chain_block: int,
        from_block: int,
        to_block: int,
    ) -> PlaybackResult:
        """Replay transfers in ``[from_block, to_block]`` not yet covered by the cursor.

        Returns the replayed ledger copy and the new cursor; the ledger
        passed in is not modified.
        """
        start = max(from_block, root_chain_block + 1)
        if start > to_block:
            bt.logging.debug({"playback": {"status": "up_to_date", "from": from_block, "to": to_block, "root_chain_block": root_chain_block}})
            return PlaybackResult(
                from_block=start,
                to_block=to_block,
                ledger=ledger,
                root_chain_block=root_chain_block,
            )

        try:
            events = await self.chain.get_past_events(start, to_block)
        except CollaboratorUnavailable:
            raise
        except Exception as e:
            raise CollaboratorUnavailable(f"get_past_events {start}..{to_block} failed: {e}") from e

        in_range = sorted(
            (event for event in events if start <= event.block_number <= to_block),
            key=lambda event: event.position,
        )
        if len(in_range) != len(events):
            bt.logging.warning({"playback": {"dropped_out_of_range": len(events) - len(in_range)}})

        replayed = ledger.copy()
        result = PlaybackResult(
            from_block=start,
            to_block=to_block,
            ledger=replayed,
            root_chain_block=to_block,
        )
        for event in in_range:
            try:
                replayed.distribute(event.amount)
            except DistributionError as e:
                bt.logging.warning({"playback": {"undistributed": event.amount, "block": event.block_number, "error": str(e)}})
                result.undistributed.append(event)
                continue
            result.events_applied += 1

        bt.logging.info({
            "playback": {
                "from": start,
                "to": to_block,
                "events": result.events_applied,
                "undistributed": len(result.undistributed),
            }
        })
        return result


__all__ = ["PlaybackEngine", "PlaybackResult"]
