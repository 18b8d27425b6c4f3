"""Shared fixtures for the maxcoin engine tests.

Every test gets a fresh in-memory StorageManager with the treasury account
created and all services wired the way PlatformServer wires them.
"""

import pytest
import pytest_asyncio

from maxcoin.account import AccountService
from maxcoin.commission import CommissionEngine
from maxcoin.config import ConfigService
from maxcoin.ledger import LedgerStore
from maxcoin.lottery import LotteryEngine
from maxcoin.mining import MiningService
from maxcoin.pricing import FixedPriceFeed
from maxcoin.records import POOL_PURCHASED, TxMeta, TxType
from maxcoin.storage import StorageManager
from maxcoin.transfer import TransferEngine
from maxcoin.withdrawal import WithdrawalGate


@pytest_asyncio.fixture
async def storage():
    sm = StorageManager(":memory:")
    await sm.initialize()
    yield sm
    await sm.close()


@pytest_asyncio.fixture
async def config(storage):
    return ConfigService(storage)


@pytest_asyncio.fixture
async def accounts(storage):
    svc = AccountService(storage)
    await svc.setup_defaults()
    return svc


@pytest.fixture
def ledger(storage):
    return LedgerStore(storage)


@pytest.fixture
def commissions(storage, ledger):
    return CommissionEngine(storage, ledger)


@pytest.fixture
def withdrawals(storage, ledger, accounts, config):
    return WithdrawalGate(storage, ledger, accounts, config)


@pytest.fixture
def transfers(storage, ledger, commissions, accounts, config):
    return TransferEngine(storage, ledger, commissions, accounts, config)


@pytest.fixture
def lottery(storage, ledger, accounts, config):
    return LotteryEngine(storage, ledger, accounts, config)


@pytest.fixture
def price_feed():
    return FixedPriceFeed(0.5)


@pytest.fixture
def mining(storage, ledger, commissions, accounts, config, price_feed):
    return MiningService(storage, ledger, commissions, accounts, config, price_feed=price_feed)


# ── Helpers ───────────────────────────────────────────────────────────────

@pytest.fixture
def make_chain(accounts):
    """Create accounts where each one is referred by the previous. Returns them in order."""
    async def _make(*usernames):
        created = []
        code = None
        for name in usernames:
            acct = await accounts.create_account(name, referral_code=code)
            created.append(acct)
            code = acct.referral_code
        return created
    return _make


@pytest.fixture
def fund(ledger):
    """Credit a pool directly, bypassing purchase rules."""
    async def _fund(account_id, amount, pool=POOL_PURCHASED):
        return await ledger.credit(
            account_id, pool, amount, TxMeta(type=TxType.PURCHASE, description="test funding"),
        )
    return _fund
