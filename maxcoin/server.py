"""
server.py - MaxCoin platform server entry point.

Single-process server combining:
 - SQLite persistent storage via StorageManager
 - Ledger services (ledger, commissions, withdrawals, transfers, lottery, mining)
 - Lottery draw scheduler
 - REST API (FastAPI on uvicorn, port 8080)

Usage:
    python -m maxcoin.server [--api-port 8080] [--db-path data/maxcoin.db]
"""

import argparse
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from maxcoin import __version__
from maxcoin.account import AccountService
from maxcoin.auth import DEFAULT_ADMIN_KEY, AuthService
from maxcoin.commission import CommissionEngine
from maxcoin.config import ConfigService
from maxcoin.ledger import LedgerStore
from maxcoin.lottery import LotteryEngine
from maxcoin.mining import MiningService
from maxcoin.pricing import DEFAULT_USD_PER_TOKEN, FixedPriceFeed, PriceFeed
from maxcoin.routers import register_all_routers
from maxcoin.scheduler import DEFAULT_INTERVAL, DrawScheduler
from maxcoin.storage import StorageManager
from maxcoin.storage.manager import DEFAULT_TIMEOUT
from maxcoin.transfer import TransferEngine
from maxcoin.withdrawal import WithdrawalGate

logger = logging.getLogger("server")


class PlatformServer:
    """Wires storage, services and the REST API together."""

    def __init__(
        self,
        api_port: int = 8080,
        db_path: str = "data/maxcoin.db",
        admin_key: str = DEFAULT_ADMIN_KEY,
        jwt_secret: str = "",
        storage_timeout: float = DEFAULT_TIMEOUT,
        draw_check_interval: float = DEFAULT_INTERVAL,
        price_feed: Optional[PriceFeed] = None,
        config_overrides: Optional[dict] = None,
    ):
        self.api_port = api_port
        self.db_path = db_path
        self._admin_key = admin_key
        self._jwt_secret = jwt_secret
        self._storage_timeout = storage_timeout
        self._draw_check_interval = draw_check_interval
        self._config_overrides = config_overrides or {}
        self.price_feed: PriceFeed = price_feed or FixedPriceFeed()

        # Storage + services are initialized async on startup
        self.storage: Optional[StorageManager] = None
        self.config: Optional[ConfigService] = None
        self.accounts: Optional[AccountService] = None
        self.ledger: Optional[LedgerStore] = None
        self.commissions: Optional[CommissionEngine] = None
        self.withdrawals: Optional[WithdrawalGate] = None
        self.transfers: Optional[TransferEngine] = None
        self.lottery: Optional[LotteryEngine] = None
        self.mining: Optional[MiningService] = None
        self.auth: Optional[AuthService] = None
        self.scheduler: Optional[DrawScheduler] = None

        self.app = FastAPI(title="MaxCoin Platform", version=__version__, lifespan=self._lifespan)
        self.app.state.server = self
        register_all_routers(self.app)

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self._init_services()
        if self._draw_check_interval > 0:
            self.scheduler.start()
        try:
            yield
        finally:
            await self.shutdown()

    async def _init_services(self):
        """Initialize storage and wire up services (must be called in async context)."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self.storage = StorageManager(self.db_path, timeout=self._storage_timeout)
        await self.storage.initialize()

        self.config = ConfigService(self.storage, self._config_overrides)
        await self.config.load()

        self.accounts = AccountService(self.storage)
        await self.accounts.setup_defaults()

        self.ledger = LedgerStore(self.storage)
        self.commissions = CommissionEngine(self.storage, self.ledger)
        self.withdrawals = WithdrawalGate(self.storage, self.ledger, self.accounts, self.config)
        self.transfers = TransferEngine(
            self.storage, self.ledger, self.commissions, self.accounts, self.config,
        )
        self.lottery = LotteryEngine(self.storage, self.ledger, self.accounts, self.config)
        self.mining = MiningService(
            self.storage, self.ledger, self.commissions, self.accounts, self.config,
            price_feed=self.price_feed,
        )
        self.auth = AuthService(
            self.storage, self.accounts, admin_key=self._admin_key, jwt_secret=self._jwt_secret,
        )
        self.scheduler = DrawScheduler(self.lottery, interval=self._draw_check_interval or DEFAULT_INTERVAL)

        logger.info("Services initialized (db=%s)", self.db_path)

    async def shutdown(self):
        """Stop the scheduler and close storage."""
        if self.scheduler:
            await self.scheduler.stop()
        if self.storage:
            await self.storage.close()

    async def start(self):
        """Run the API server until it exits."""
        config = uvicorn.Config(
            self.app,
            host="0.0.0.0",
            port=self.api_port,
            log_level="info",
        )
        self._uvicorn_server = uvicorn.Server(config)
        logger.info("REST API starting on port %d", self.api_port)
        await self._uvicorn_server.serve()


def main():
    """CLI entry point for the platform server."""
    parser = argparse.ArgumentParser(description="MaxCoin Platform Server")
    parser.add_argument("--api-port", type=int, default=8080, help="REST API port (default: 8080)")
    parser.add_argument("--db-path", default="data/maxcoin.db", help="SQLite database path (default: data/maxcoin.db)")
    parser.add_argument("--admin-key", default=os.environ.get("MAXCOIN_ADMIN_KEY", DEFAULT_ADMIN_KEY),
                        help="API key that authenticates as admin")
    parser.add_argument("--jwt-secret", default=os.environ.get("MAXCOIN_JWT_SECRET", ""),
                        help="HS256 secret for session tokens (default: ephemeral)")
    parser.add_argument("--storage-timeout", type=float, default=DEFAULT_TIMEOUT,
                        help="Seconds to wait for the ledger write lock (default: 5)")
    parser.add_argument("--draw-check-interval", type=float, default=DEFAULT_INTERVAL,
                        help="Seconds between lottery draw checks, 0 disables (default: 30)")
    parser.add_argument("--token-price", type=float, default=DEFAULT_USD_PER_TOKEN,
                        help="Initial MXI price in USD (default: 0.4)")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)-10s] %(levelname)-5s %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.admin_key == DEFAULT_ADMIN_KEY:
        logger.warning("Using the default admin key; pass --admin-key in production")

    server = PlatformServer(
        api_port=args.api_port,
        db_path=args.db_path,
        admin_key=args.admin_key,
        jwt_secret=args.jwt_secret,
        storage_timeout=args.storage_timeout,
        draw_check_interval=args.draw_check_interval,
        price_feed=FixedPriceFeed(args.token_price),
    )

    logger.info("=" * 60)
    logger.info("  MaxCoin Platform Server v%s", __version__)
    logger.info("  REST API:    http://localhost:%d", args.api_port)
    logger.info("  Database:    %s", args.db_path)
    logger.info("  Draw check:  %s", f"every {args.draw_check_interval:g}s"
                if args.draw_check_interval > 0 else "disabled")
    logger.info("=" * 60)

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
