import sqlite3
import time
from typing import Optional

import aiosqlite

from maxcoin.errors import DuplicateCommission


class CommissionRepo:
    """Dedupe ledger for commission distributions, keyed by source transaction id."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def claim(self, source_tx_id: str, source_account: str, base_amount: float):
        """Register a distribution. Raises DuplicateCommission if already claimed."""
        try:
            await self._db.execute(
                "INSERT INTO commission_events (source_tx_id, source_account, base_amount, created_at) "
                "VALUES (?, ?, ?, ?)",
                (source_tx_id, source_account, base_amount, time.time()),
            )
        except sqlite3.IntegrityError:
            raise DuplicateCommission(
                f"Commission for {source_tx_id} already distributed",
                source_tx_id=source_tx_id,
            )

    async def set_total(self, source_tx_id: str, total_credited: float):
        await self._db.execute(
            "UPDATE commission_events SET total_credited = ? WHERE source_tx_id = ?",
            (total_credited, source_tx_id),
        )

    async def get(self, source_tx_id: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT source_tx_id, source_account, base_amount, total_credited, created_at "
            "FROM commission_events WHERE source_tx_id = ?",
            (source_tx_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "source_tx_id": row[0],
            "source_account": row[1],
            "base_amount": row[2],
            "total_credited": row[3],
            "created_at": row[4],
        }

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM commission_events") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
