import time
import uuid
from typing import List, Optional

import aiosqlite

from maxcoin.records import Transaction, TxMeta


def new_tx_id() -> str:
    return f"TXN-{uuid.uuid4().hex[:16].upper()}"


class TransactionRepo:
    """Append-only transaction log. Rows are inserted once and never updated."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def append(
        self,
        account_id: str,
        meta: TxMeta,
        purchased_delta: float = 0.0,
        mining_delta: float = 0.0,
        commission_delta: float = 0.0,
        tx_id: Optional[str] = None,
    ) -> Transaction:
        tx_id = tx_id or new_tx_id()
        amount = round(purchased_delta + mining_delta + commission_delta, 8)
        now = time.time()
        await self._db.execute(
            "INSERT INTO transactions (tx_id, account_id, type, amount, purchased_delta, "
            "mining_delta, commission_delta, usd_value, from_account, to_account, "
            "commission_amount, commission_rate, correlation_id, idempotency_key, "
            "description, status, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (tx_id, account_id, meta.type.value, amount, purchased_delta, mining_delta,
             commission_delta, meta.usd_value, meta.from_account, meta.to_account,
             meta.commission_amount, meta.commission_rate, meta.correlation_id,
             meta.idempotency_key, meta.description, meta.status.value, now),
        )
        return Transaction(
            tx_id=tx_id,
            account_id=account_id,
            type=meta.type.value,
            amount=amount,
            purchased_delta=purchased_delta,
            mining_delta=mining_delta,
            commission_delta=commission_delta,
            usd_value=meta.usd_value,
            from_account=meta.from_account,
            to_account=meta.to_account,
            commission_amount=meta.commission_amount,
            commission_rate=meta.commission_rate,
            correlation_id=meta.correlation_id,
            idempotency_key=meta.idempotency_key,
            description=meta.description,
            status=meta.status.value,
            created_at=now,
        )

    async def get(self, tx_id: str) -> Optional[Transaction]:
        async with self._db.execute(
            f"SELECT {Transaction.COLUMNS} FROM transactions WHERE tx_id = ?", (tx_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return Transaction.from_row(row) if row else None

    async def get_by_idempotency_key(self, account_id: str, key: str) -> Optional[Transaction]:
        async with self._db.execute(
            f"SELECT {Transaction.COLUMNS} FROM transactions "
            "WHERE account_id = ? AND idempotency_key = ?",
            (account_id, key),
        ) as cursor:
            row = await cursor.fetchone()
        return Transaction.from_row(row) if row else None

    async def list_by_correlation(self, correlation_id: str) -> List[Transaction]:
        results = []
        async with self._db.execute(
            f"SELECT {Transaction.COLUMNS} FROM transactions WHERE correlation_id = ? "
            "ORDER BY id",
            (correlation_id,),
        ) as cursor:
            async for row in cursor:
                results.append(Transaction.from_row(row))
        return results

    async def list_for_account(
        self,
        account_id: str,
        tx_type: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Transaction]:
        query = f"SELECT {Transaction.COLUMNS} FROM transactions WHERE account_id = ?"
        params: list = [account_id]
        if tx_type:
            query += " AND type = ?"
            params.append(tx_type)
        query += " ORDER BY id DESC"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        results = []
        async with self._db.execute(query, tuple(params)) as cursor:
            async for row in cursor:
                results.append(Transaction.from_row(row))
        return results

    async def completed_sums(self, account_id: str) -> dict:
        """Signed per-pool sums over completed transactions."""
        async with self._db.execute(
            "SELECT COALESCE(SUM(purchased_delta), 0), COALESCE(SUM(mining_delta), 0), "
            "COALESCE(SUM(commission_delta), 0), COALESCE(SUM(amount), 0) "
            "FROM transactions WHERE account_id = ? AND status = 'completed'",
            (account_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return {
            "purchased": row[0],
            "mining": row[1],
            "commission": row[2],
            "total": row[3],
        }

    async def count(self, account_id: Optional[str] = None) -> int:
        if account_id:
            query, params = "SELECT COUNT(*) FROM transactions WHERE account_id = ?", (account_id,)
        else:
            query, params = "SELECT COUNT(*) FROM transactions", ()
        async with self._db.execute(query, params) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
