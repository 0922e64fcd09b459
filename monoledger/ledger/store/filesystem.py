"""Filesystem-based LedgerStore implementation.

Layout under {data_dir}/ledger/:
  state.json                      - latest full checkpoint (plain JSON)
  blocks/block_{N:012d}.json.gz   - block snapshots (gzip JSON)

Every file is written to a temp file and renamed into place, so a crash
never leaves a half-written checkpoint. Output is byte-stable: keys are
sorted and the gzip header carries no timestamp.
"""

from __future__ import annotations

import gzip
import json
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from monoledger.ledger.models import BalanceEntry, BlockSnapshot, LedgerState

_BLOCK_PREFIX = "block_"
_BLOCK_SUFFIX = ".json.gz"


def _encode(data: Any) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode()


def _write_atomic(path: Path, raw: bytes) -> None:
    """Write bytes to path via tmp + rename, creating parent dirs as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(tmp_fd, "wb") as f:
            f.write(raw)
        os.replace(tmp_path, str(path))
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _read_json(path: Path) -> Any:
    with open(path, "rb") as f:
        return json.loads(f.read())


def _read_gzip_json(path: Path) -> Any:
    with gzip.open(path, "rb") as f:
        return json.loads(f.read())


class FilesystemStore:
    """Local filesystem LedgerStore implementation."""

    def __init__(self, data_dir: str):
        self.base = Path(data_dir) / "ledger"
        self.state_path = self.base / "state.json"
        self.blocks_dir = self.base / "blocks"
        self.base.mkdir(parents=True, exist_ok=True)

    def _block_path(self, block_number: int) -> Path:
        return self.blocks_dir / f"{_BLOCK_PREFIX}{block_number:012d}{_BLOCK_SUFFIX}"

    async def load_state(self) -> LedgerState | None:
        if not self.state_path.exists():
            return None
        return LedgerState(**_read_json(self.state_path))

    async def save_state(self, state: LedgerState) -> None:
        _write_atomic(self.state_path, _encode(state.model_dump(mode="json")))

    async def load_block(self, block_number: int) -> BlockSnapshot | None:
        path = self._block_path(block_number)
        if not path.exists():
            return None
        return BlockSnapshot(**_read_gzip_json(path))

    async def save_block(
        self, balances: Iterable[BalanceEntry], block_number: int,
    ) -> BlockSnapshot:
        snapshot = BlockSnapshot.capture(block_number, balances)
        raw = gzip.compress(_encode(snapshot.model_dump(mode="json")), mtime=0)
        _write_atomic(self._block_path(block_number), raw)
        return snapshot

    async def block_exists(self, block_number: int) -> bool:
        return self._block_path(block_number).exists()

    async def list_blocks(self) -> list[int]:
        """Block numbers with a stored snapshot, ascending."""
        if not self.blocks_dir.exists():
            return []
        numbers = []
        for path in self.blocks_dir.iterdir():
            name = path.name
            if name.startswith(_BLOCK_PREFIX) and name.endswith(_BLOCK_SUFFIX):
                digits = name[len(_BLOCK_PREFIX):-len(_BLOCK_SUFFIX)]
                if digits.isdigit():
                    numbers.append(int(digits))
        return sorted(numbers)

    async def latest_block(self) -> int | None:
        blocks = await self.list_blocks()
        return blocks[-1] if blocks else None


__all__ = ["FilesystemStore"]
