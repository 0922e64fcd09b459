"""SQL-backed LedgerStore using SQLAlchemy's asyncio extension.

Works with any async driver SQLAlchemy supports, e.g.
``sqlite+aiosqlite:///ledger.db`` or ``postgresql+asyncpg://...``.
Call ``init()`` once to create tables.
"""

from __future__ import annotations

import json
from collections.abc import Iterable

import bittensor as bt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from monoledger.ledger.models import BalanceEntry, BlockSnapshot, LedgerState

from .schema import Base, BlockSnapshotRow, LedgerStateRow


def _dump_balances(balances: Iterable[BalanceEntry]) -> str:
    return json.dumps(
        [entry.model_dump(mode="json") for entry in balances],
        sort_keys=True,
        separators=(",", ":"),
    )


class SQLStore:
    """Database LedgerStore implementation."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine = create_async_engine(url, echo=echo)
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    async def init(self) -> None:
        """Create tables if they do not exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        bt.logging.info({"sql_store": {"status": "initialized", "dialect": self.engine.dialect.name}})

    async def close(self) -> None:
        await self.engine.dispose()

    async def load_state(self) -> LedgerState | None:
        async with self._sessions() as session:
            row = await session.get(LedgerStateRow, 1)
        if row is None:
            return None
        return LedgerState(
            schema_version=row.schema_version,
            contract_address=row.contract_address,
            root_chain_block=row.root_chain_block,
            balances=json.loads(row.balances),
        )

    async def save_state(self, state: LedgerState) -> None:
        async with self._sessions() as session, session.begin():
            row = await session.get(LedgerStateRow, 1)
            if row is None:
                row = LedgerStateRow(id=1)
                session.add(row)
            row.schema_version = state.schema_version
            row.contract_address = state.contract_address
            row.root_chain_block = state.root_chain_block
            row.balances = _dump_balances(state.balances)

    async def load_block(self, block_number: int) -> BlockSnapshot | None:
        async with self._sessions() as session:
            row = await session.get(BlockSnapshotRow, block_number)
        if row is None:
            return None
        return BlockSnapshot(
            block_number=row.block_number,
            balances=json.loads(row.balances),
            total_earnings=row.total_earnings,
        )

    async def save_block(
        self, balances: Iterable[BalanceEntry], block_number: int,
    ) -> BlockSnapshot:
        snapshot = BlockSnapshot.capture(block_number, balances)
        async with self._sessions() as session, session.begin():
            await session.merge(BlockSnapshotRow(
                block_number=block_number,
                balances=_dump_balances(snapshot.balances),
                total_earnings=str(snapshot.total_earnings),
            ))
        return snapshot

    async def block_exists(self, block_number: int) -> bool:
        stmt = select(BlockSnapshotRow.block_number).where(
            BlockSnapshotRow.block_number == block_number,
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none() is not None

    async def list_blocks(self) -> list[int]:
        stmt = select(BlockSnapshotRow.block_number).order_by(BlockSnapshotRow.block_number)
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())


__all__ = ["SQLStore"]
