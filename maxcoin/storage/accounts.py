import logging
import time
from typing import List, Optional

import aiosqlite

from maxcoin.records import Account

logger = logging.getLogger("storage")


class AccountRepo:
    """CRUD operations for the accounts table. Writes join the caller's unit of work."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def create(
        self,
        account_id: str,
        username: str,
        referral_code: str,
        password_hash: str = "",
        referred_by: Optional[str] = None,
        role: str = "user",
        api_key: str = "",
    ) -> Account:
        now = time.time()
        await self._db.execute(
            "INSERT INTO accounts (account_id, username, password_hash, api_key, role, "
            "referral_code, referred_by, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (account_id, username, password_hash, api_key, role,
             referral_code, referred_by, now, now),
        )
        await self._db.execute(
            "INSERT INTO balances (account_id, updated_at) VALUES (?, ?)",
            (account_id, now),
        )
        return await self.get(account_id)

    async def _fetch_one(self, where: str, params: tuple) -> Optional[Account]:
        async with self._db.execute(
            f"SELECT {Account.COLUMNS} FROM accounts WHERE {where}", params,
        ) as cursor:
            row = await cursor.fetchone()
        return Account.from_row(row) if row else None

    async def get(self, account_id: str) -> Optional[Account]:
        return await self._fetch_one("account_id = ?", (account_id,))

    async def get_by_username(self, username: str) -> Optional[Account]:
        return await self._fetch_one("username = ? COLLATE NOCASE", (username,))

    async def get_by_referral_code(self, referral_code: str) -> Optional[Account]:
        if not referral_code:
            return None
        return await self._fetch_one("referral_code = ?", (referral_code.strip().upper(),))

    async def get_by_api_key(self, api_key: str) -> Optional[Account]:
        if not api_key:
            return None
        return await self._fetch_one("api_key = ? AND api_key != ''", (api_key,))

    async def get_password_hash(self, account_id: str) -> str:
        async with self._db.execute(
            "SELECT password_hash FROM accounts WHERE account_id = ?", (account_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else ""

    async def referral_code_exists(self, referral_code: str) -> bool:
        async with self._db.execute(
            "SELECT 1 FROM accounts WHERE referral_code = ?", (referral_code,),
        ) as cursor:
            return await cursor.fetchone() is not None

    async def set_api_key(self, account_id: str, api_key: str):
        await self._db.execute(
            "UPDATE accounts SET api_key = ?, updated_at = ? WHERE account_id = ?",
            (api_key, time.time(), account_id),
        )

    async def set_blocked(self, account_id: str, blocked: bool) -> bool:
        cursor = await self._db.execute(
            "UPDATE accounts SET is_blocked = ?, updated_at = ? WHERE account_id = ?",
            (1 if blocked else 0, time.time(), account_id),
        )
        return cursor.rowcount > 0

    async def record_purchase(self, account_id: str, amount: float, power_increase: float):
        await self._db.execute(
            "UPDATE accounts SET lifetime_purchases = lifetime_purchases + ?, "
            "has_first_purchase = 1, mining_power = mining_power + ?, updated_at = ? "
            "WHERE account_id = ?",
            (amount, power_increase, time.time(), account_id),
        )

    async def mark_unlock_paid(self, account_id: str, paid_at: float) -> bool:
        """Flip unlock_paid once. False when it was already set."""
        cursor = await self._db.execute(
            "UPDATE accounts SET unlock_paid = 1, unlock_paid_at = ?, "
            "last_mined_at = COALESCE(last_mined_at, ?), updated_at = ? "
            "WHERE account_id = ? AND unlock_paid = 0",
            (paid_at, paid_at, paid_at, account_id),
        )
        return cursor.rowcount > 0

    async def set_last_mined_at(self, account_id: str, mined_at: float):
        await self._db.execute(
            "UPDATE accounts SET last_mined_at = ?, updated_at = ? WHERE account_id = ?",
            (mined_at, time.time(), account_id),
        )

    async def set_mining_access(self, account_id: str, expires_at: float, renewal: bool):
        await self._db.execute(
            "UPDATE accounts SET mining_access_expires_at = ?, "
            "mining_access_renewals = mining_access_renewals + ?, updated_at = ? "
            "WHERE account_id = ?",
            (expires_at, 1 if renewal else 0, time.time(), account_id),
        )

    async def get_referrer_chain(self, account_id: str, max_depth: int) -> List[str]:
        """Return ancestor ids, nearest first, at most `max_depth` long."""
        chain: List[str] = []
        seen = {account_id}
        current = account_id
        while len(chain) < max_depth:
            async with self._db.execute(
                "SELECT referred_by FROM accounts WHERE account_id = ?", (current,),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None or row[0] is None:
                break
            parent = row[0]
            if parent in seen:
                logger.error("Referral cycle detected at %s (chain=%s)", parent, chain)
                break
            chain.append(parent)
            seen.add(parent)
            current = parent
        return chain

    async def list_children(self, account_id: str) -> List[Account]:
        results = []
        async with self._db.execute(
            f"SELECT {Account.COLUMNS} FROM accounts WHERE referred_by = ? ORDER BY created_at",
            (account_id,),
        ) as cursor:
            async for row in cursor:
                results.append(Account.from_row(row))
        return results

    async def count_children(self, account_id: str) -> int:
        async with self._db.execute(
            "SELECT COUNT(*) FROM accounts WHERE referred_by = ?", (account_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def count_active_referrals(self, account_id: str, now: float) -> int:
        """Children with lifetime purchases > 0 or mining access still running."""
        async with self._db.execute(
            "SELECT COUNT(*) FROM accounts WHERE referred_by = ? AND "
            "(lifetime_purchases > 0 OR (mining_access_expires_at IS NOT NULL "
            "AND mining_access_expires_at > ?))",
            (account_id, now),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def sum_children_purchases(self, account_id: str) -> float:
        async with self._db.execute(
            "SELECT COALESCE(SUM(lifetime_purchases), 0) FROM accounts WHERE referred_by = ?",
            (account_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0.0

    async def list_all(self, limit: Optional[int] = None, offset: int = 0) -> List[Account]:
        query = f"SELECT {Account.COLUMNS} FROM accounts ORDER BY created_at"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params = (limit, offset)
        results = []
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                results.append(Account.from_row(row))
        return results

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM accounts") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
