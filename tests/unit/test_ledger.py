"""
test_ledger.py - Segmented balance ledger

Tests:
 - credit/debit touch exactly one pool and append one transaction
 - debits never drive a pool negative (single and multi-pool)
 - spend order purchased -> commission -> mining
 - balance conservation against the completed transaction log
 - reversals post compensating rows and refuse doubles
 - unit of work rollback, nesting and lock timeouts
 - a fresh database is created at schema version 1
"""

import asyncio

import aiosqlite
import pytest

from maxcoin.errors import AccountNotFound, InsufficientFunds, InvalidAmount, StorageUnavailable
from maxcoin.ledger import plan_spend
from maxcoin.records import (
    POOL_COMMISSION,
    POOL_MINING,
    POOL_PURCHASED,
    SegmentedBalance,
    TxMeta,
    TxType,
)
from maxcoin.storage import SCHEMA_VERSION, StorageManager

pytestmark = pytest.mark.asyncio


def _meta(tx_type=TxType.PURCHASE, **kw):
    return TxMeta(type=tx_type, **kw)


# ── credit / debit ────────────────────────────────────────────────────────

class TestCreditDebit:

    async def test_credit_updates_single_pool(self, accounts, ledger):
        alice = await accounts.create_account("alice")
        tx = await ledger.credit(alice.account_id, POOL_MINING, 2.5, _meta(TxType.MINING))
        bal = await ledger.get_balances(alice.account_id)
        assert (bal.purchased, bal.mining, bal.commission) == (0.0, 2.5, 0.0)
        assert tx.amount == 2.5
        assert tx.mining_delta == 2.5
        assert tx.purchased_delta == 0.0

    async def test_debit_updates_single_pool(self, accounts, ledger, fund):
        alice = await accounts.create_account("alice")
        await fund(alice.account_id, 10)
        tx = await ledger.debit(alice.account_id, POOL_PURCHASED, 4, _meta(TxType.WITHDRAWAL))
        bal = await ledger.get_balances(alice.account_id)
        assert bal.purchased == 6.0
        assert tx.amount == -4.0
        assert tx.purchased_delta == -4.0

    async def test_debit_more_than_pool_raises(self, accounts, ledger, fund):
        alice = await accounts.create_account("alice")
        await fund(alice.account_id, 3)
        with pytest.raises(InsufficientFunds) as exc:
            await ledger.debit(alice.account_id, POOL_PURCHASED, 3.5, _meta(TxType.WITHDRAWAL))
        assert exc.value.details["available_amount"] == 3.0
        bal = await ledger.get_balances(alice.account_id)
        assert bal.purchased == 3.0

    async def test_debit_other_pool_does_not_borrow(self, accounts, ledger, fund):
        alice = await accounts.create_account("alice")
        await fund(alice.account_id, 10, POOL_MINING)
        with pytest.raises(InsufficientFunds):
            await ledger.debit(alice.account_id, POOL_PURCHASED, 1, _meta(TxType.WITHDRAWAL))

    @pytest.mark.parametrize("amount", [0, -1, float("nan"), float("inf"), "abc"])
    async def test_invalid_amounts_rejected(self, accounts, ledger, amount):
        alice = await accounts.create_account("alice")
        with pytest.raises(InvalidAmount):
            await ledger.credit(alice.account_id, POOL_PURCHASED, amount, _meta())
        assert await ledger.history(alice.account_id) == []

    async def test_unknown_account(self, ledger):
        with pytest.raises(AccountNotFound):
            await ledger.credit("nobody", POOL_PURCHASED, 1, _meta())
        with pytest.raises(AccountNotFound):
            await ledger.get_balances("nobody")

    async def test_unknown_pool(self, accounts, ledger):
        alice = await accounts.create_account("alice")
        with pytest.raises(ValueError):
            await ledger.credit(alice.account_id, "bonus", 1, _meta())


# ── spend ─────────────────────────────────────────────────────────────────

class TestSpend:

    async def test_plan_spend_order(self):
        bal = SegmentedBalance("a", purchased=3, mining=10, commission=2)
        plan = plan_spend(bal, 7)
        assert plan == {POOL_PURCHASED: 3, POOL_COMMISSION: 2, POOL_MINING: 2}

    async def test_plan_spend_insufficient(self):
        bal = SegmentedBalance("a", purchased=1, mining=1, commission=1)
        with pytest.raises(InsufficientFunds) as exc:
            plan_spend(bal, 3.5)
        assert exc.value.details["available_amount"] == 3.0

    async def test_plan_spend_restricted_order(self):
        bal = SegmentedBalance("a", purchased=1, mining=50, commission=1)
        with pytest.raises(InsufficientFunds):
            plan_spend(bal, 5, order=(POOL_PURCHASED, POOL_COMMISSION))

    async def test_spend_posts_one_transaction(self, accounts, ledger, fund):
        alice = await accounts.create_account("alice")
        await fund(alice.account_id, 3)
        await fund(alice.account_id, 2, POOL_COMMISSION)
        await fund(alice.account_id, 10, POOL_MINING)
        tx = await ledger.spend(alice.account_id, 7, _meta(TxType.TRANSFER))
        assert tx.amount == -7.0
        assert (tx.purchased_delta, tx.commission_delta, tx.mining_delta) == (-3.0, -2.0, -2.0)
        bal = await ledger.get_balances(alice.account_id)
        assert (bal.purchased, bal.commission, bal.mining) == (0.0, 0.0, 8.0)

    async def test_concurrent_spends_never_go_negative(self, accounts, ledger, fund):
        alice = await accounts.create_account("alice")
        await fund(alice.account_id, 10)

        async def attempt():
            try:
                await ledger.spend(alice.account_id, 3, _meta(TxType.WITHDRAWAL))
                return True
            except InsufficientFunds:
                return False

        results = await asyncio.gather(*[attempt() for _ in range(6)])
        assert results.count(True) == 3
        bal = await ledger.get_balances(alice.account_id)
        assert bal.purchased == pytest.approx(1.0)


# ── conservation / audit ──────────────────────────────────────────────────

class TestConservation:

    async def test_balance_equals_completed_log(self, accounts, ledger, fund):
        alice = await accounts.create_account("alice")
        await fund(alice.account_id, 12.5)
        await fund(alice.account_id, 0.3, POOL_MINING)
        await fund(alice.account_id, 1.1, POOL_COMMISSION)
        await ledger.spend(alice.account_id, 13, _meta(TxType.TRANSFER))
        await ledger.debit(alice.account_id, POOL_MINING, 0.1, _meta(TxType.WITHDRAWAL))

        bal = await ledger.get_balances(alice.account_id)
        log = await ledger.history(alice.account_id)
        assert bal.total == pytest.approx(sum(t.amount for t in log if t.status == "completed"))

        report = await ledger.audit(alice.account_id)
        assert report["consistent"] is True
        for pool in (POOL_PURCHASED, POOL_MINING, POOL_COMMISSION):
            assert report["pools"][pool]["difference"] == pytest.approx(0.0)

    async def test_audit_detects_tampering(self, accounts, ledger, storage, fund):
        alice = await accounts.create_account("alice")
        await fund(alice.account_id, 5)
        async with storage.transaction():
            await storage.balances.add(alice.account_id, POOL_MINING, 1.0)
        report = await ledger.audit(alice.account_id)
        assert report["consistent"] is False
        assert report["pools"][POOL_MINING]["difference"] == pytest.approx(1.0)


# ── reversal ──────────────────────────────────────────────────────────────

class TestReversal:

    async def test_reverse_credit(self, accounts, ledger, fund):
        alice = await accounts.create_account("alice")
        tx = await fund(alice.account_id, 5)
        rev = await ledger.reverse(tx.tx_id)
        assert rev.type == "reversal"
        assert rev.amount == -5.0
        assert (await ledger.get_balances(alice.account_id)).purchased == 0.0
        original = await ledger._storage.transactions.get(tx.tx_id)
        assert original.amount == 5.0
        assert original.status == "completed"
        assert (await ledger.audit(alice.account_id))["consistent"] is True

    async def test_reverse_twice_rejected(self, accounts, ledger, fund):
        alice = await accounts.create_account("alice")
        tx = await fund(alice.account_id, 5)
        await ledger.reverse(tx.tx_id)
        with pytest.raises(ValueError):
            await ledger.reverse(tx.tx_id)

    async def test_reverse_reversal_rejected(self, accounts, ledger, fund):
        alice = await accounts.create_account("alice")
        tx = await fund(alice.account_id, 5)
        rev = await ledger.reverse(tx.tx_id)
        with pytest.raises(ValueError):
            await ledger.reverse(rev.tx_id)

    async def test_reverse_spent_credit_fails(self, accounts, ledger, fund):
        alice = await accounts.create_account("alice")
        tx = await fund(alice.account_id, 5)
        await ledger.debit(alice.account_id, POOL_PURCHASED, 4, _meta(TxType.WITHDRAWAL))
        with pytest.raises(InsufficientFunds):
            await ledger.reverse(tx.tx_id)
        assert (await ledger.get_balances(alice.account_id)).purchased == 1.0

    async def test_reverse_unknown(self, ledger):
        with pytest.raises(KeyError):
            await ledger.reverse("TXN-NOPE")


# ── unit of work ──────────────────────────────────────────────────────────

class TestUnitOfWork:

    async def test_exception_rolls_back_everything(self, accounts, ledger, storage, fund):
        alice = await accounts.create_account("alice")
        bob = await accounts.create_account("bob")
        await fund(alice.account_id, 10)
        with pytest.raises(InsufficientFunds):
            async with storage.transaction():
                await ledger.credit(bob.account_id, POOL_PURCHASED, 5, _meta(TxType.TRANSFER))
                await ledger.debit(alice.account_id, POOL_PURCHASED, 50, _meta(TxType.TRANSFER))
        assert (await ledger.get_balances(bob.account_id)).purchased == 0.0
        assert (await ledger.get_balances(alice.account_id)).purchased == 10.0
        assert await ledger.history(bob.account_id) == []

    async def test_nested_failure_only_undoes_inner(self, accounts, ledger, storage):
        alice = await accounts.create_account("alice")
        async with storage.transaction():
            await ledger.credit(alice.account_id, POOL_PURCHASED, 1, _meta())
            with pytest.raises(InsufficientFunds):
                await ledger.debit(alice.account_id, POOL_MINING, 1, _meta(TxType.WITHDRAWAL))
        bal = await ledger.get_balances(alice.account_id)
        assert bal.purchased == 1.0
        assert len(await ledger.history(alice.account_id)) == 1

    async def test_lock_timeout_is_storage_unavailable(self, accounts, storage):
        storage.timeout = 0.05
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with storage.transaction():
                entered.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await entered.wait()
        try:
            with pytest.raises(StorageUnavailable) as exc:
                async with storage.transaction():
                    pass
            assert exc.value.retryable is True
        finally:
            release.set()
            await task


class TestSchema:

    async def test_fresh_database_is_version_one(self, tmp_path):
        path = str(tmp_path / "maxcoin.db")
        for _ in range(2):
            sm = StorageManager(path)
            await sm.initialize()
            await sm.close()
        async with aiosqlite.connect(path) as db:
            async with db.execute("SELECT version FROM schema_version") as cursor:
                assert [row[0] async for row in cursor] == [SCHEMA_VERSION] == [1]
            async with db.execute("PRAGMA table_info(accounts)") as cursor:
                columns = {row[1] async for row in cursor}
        assert {"last_mined_at", "mining_access_expires_at", "mining_access_renewals"} <= columns
