import asyncio
import contextvars
import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Optional

try:
    import aiosqlite
except ImportError:
    raise ImportError(
        "aiosqlite is required for the storage layer. "
        "Install with: pip install aiosqlite"
    )

from maxcoin.errors import StorageUnavailable

from ._migrate import run_migrations
from .accounts import AccountRepo
from .balances import BalanceRepo
from .commissions import CommissionRepo
from .config_repo import ConfigRepo
from .lottery import LotteryRepo
from .transactions import TransactionRepo

logger = logging.getLogger("storage")

DEFAULT_TIMEOUT = 5.0


class StorageManager:
    """Top-level manager: opens the database, runs migrations, exposes repos.

    All writes go through `transaction()`, which serializes ledger mutations
    on the single connection and makes each unit of work atomic.
    """

    def __init__(self, db_path: str = "data/maxcoin.db", timeout: float = DEFAULT_TIMEOUT):
        self.db_path = db_path
        self.timeout = timeout
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()
        self._depth: contextvars.ContextVar[int] = contextvars.ContextVar(
            f"tx_depth_{id(self)}", default=0
        )
        self.accounts: Optional[AccountRepo] = None
        self.balances: Optional[BalanceRepo] = None
        self.transactions: Optional[TransactionRepo] = None
        self.commissions: Optional[CommissionRepo] = None
        self.lottery: Optional[LotteryRepo] = None
        self.config: Optional[ConfigRepo] = None

    async def initialize(self):
        # isolation_level=None: transactions are begun and ended explicitly
        self._db = await aiosqlite.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await run_migrations(self._db, logger)

        self.accounts = AccountRepo(self._db)
        self.balances = BalanceRepo(self._db)
        self.transactions = TransactionRepo(self._db)
        self.commissions = CommissionRepo(self._db)
        self.lottery = LotteryRepo(self._db)
        self.config = ConfigRepo(self._db)

        logger.info("Storage initialized: %s", self.db_path)

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Storage closed")

    @property
    def in_transaction(self) -> bool:
        return self._depth.get() > 0

    @asynccontextmanager
    async def transaction(self):
        """Unit of work. Nested calls in the same task become savepoints."""
        depth = self._depth.get()
        if depth > 0:
            async with self._savepoint(depth):
                yield self._db
            return

        try:
            await asyncio.wait_for(self._write_lock.acquire(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise StorageUnavailable("Timed out waiting for the ledger write lock")

        token = self._depth.set(1)
        try:
            try:
                await self._db.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                logger.warning("Could not begin transaction: %s", e)
                raise StorageUnavailable(f"Database busy: {e}")
            try:
                yield self._db
            except BaseException as e:
                await self._rollback()
                if isinstance(e, sqlite3.OperationalError):
                    logger.exception("Transaction failed, rolled back")
                    raise StorageUnavailable(f"Database error: {e}") from e
                raise
            try:
                await self._db.execute("COMMIT")
            except sqlite3.OperationalError as e:
                await self._rollback()
                logger.exception("Commit failed, rolled back")
                raise StorageUnavailable(f"Commit failed: {e}") from e
        finally:
            self._depth.reset(token)
            self._write_lock.release()

    @asynccontextmanager
    async def _savepoint(self, depth: int):
        name = f"sp_{depth}"
        token = self._depth.set(depth + 1)
        try:
            await self._db.execute(f"SAVEPOINT {name}")
            try:
                yield
            except BaseException:
                await self._db.execute(f"ROLLBACK TO {name}")
                await self._db.execute(f"RELEASE {name}")
                raise
            await self._db.execute(f"RELEASE {name}")
        finally:
            self._depth.reset(token)

    async def _rollback(self):
        try:
            await self._db.execute("ROLLBACK")
        except sqlite3.OperationalError:
            logger.exception("Rollback failed")
