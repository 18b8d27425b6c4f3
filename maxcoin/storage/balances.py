import time
from typing import Optional

import aiosqlite

from maxcoin.records import AMOUNT_PRECISION, EPSILON, POOLS, SegmentedBalance


def _check_pool(pool: str):
    # Pool names are interpolated into SQL, so only the known ones get through
    if pool not in POOLS:
        raise ValueError(f"Unknown pool: {pool}")


class BalanceRepo:
    """Segmented balance rows. Callers must hold a unit of work for writes."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def get(self, account_id: str) -> Optional[SegmentedBalance]:
        async with self._db.execute(
            f"SELECT {SegmentedBalance.COLUMNS} FROM balances WHERE account_id = ?",
            (account_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return SegmentedBalance.from_row(row) if row else None

    async def add(self, account_id: str, pool: str, amount: float) -> bool:
        _check_pool(pool)
        cursor = await self._db.execute(
            f"UPDATE balances SET {pool} = ROUND({pool} + ?, {AMOUNT_PRECISION}), updated_at = ? "
            "WHERE account_id = ?",
            (amount, time.time(), account_id),
        )
        return cursor.rowcount > 0

    async def subtract(self, account_id: str, pool: str, amount: float) -> bool:
        """Guarded decrement. Returns False (and changes nothing) if the pool is short."""
        _check_pool(pool)
        cursor = await self._db.execute(
            f"UPDATE balances SET {pool} = MAX(ROUND({pool} - ?, {AMOUNT_PRECISION}), 0.0), "
            "updated_at = ? WHERE account_id = ? AND "
            f"{pool} >= ? - {EPSILON}",
            (amount, time.time(), account_id, amount),
        )
        return cursor.rowcount > 0

    async def increment_withdrawal_count(self, account_id: str):
        await self._db.execute(
            "UPDATE balances SET withdrawal_count = withdrawal_count + 1, updated_at = ? "
            "WHERE account_id = ?",
            (time.time(), account_id),
        )

    async def set_gate_open(self, account_id: str, gate_open: bool):
        await self._db.execute(
            "UPDATE balances SET gate_open = ?, updated_at = ? WHERE account_id = ?",
            (1 if gate_open else 0, time.time(), account_id),
        )

    async def totals(self) -> dict:
        async with self._db.execute(
            "SELECT COALESCE(SUM(purchased), 0), COALESCE(SUM(mining), 0), "
            "COALESCE(SUM(commission), 0) FROM balances"
        ) as cursor:
            row = await cursor.fetchone()
        return {"purchased": row[0], "mining": row[1], "commission": row[2]}
