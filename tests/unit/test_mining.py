"""
test_mining.py - Purchases, unlock payment, mining access and accrual

Tests:
 - purchase credits purchased pool, boosts power, pays 5/2/1 commissions
 - purchase limits and idempotency keys
 - unlock payment converts USDT via the price feed, only once
 - mining access grant/renew windows
 - accrual requires access, unlock or bypass and scales with power
 - accrual is bounded by elapsed time since the last accrual
"""

import asyncio
import time

import pytest

from maxcoin.errors import InvalidAmount, MiningLocked
from maxcoin.mining import SECONDS_PER_DAY, power_increase

pytestmark = pytest.mark.asyncio

NOW = 1_760_000_000.0


class TestPurchase:

    async def test_purchase_effects(self, make_chain, mining, ledger, storage):
        a, b, c, buyer = await make_chain("anna", "ben", "cora", "buyer")
        result = await mining.purchase(buyer.account_id, 100)

        assert result.success is True
        assert result.usd_value == 50.0
        assert result.power_increase == pytest.approx(0.1)
        assert result.mining_power == pytest.approx(1.1)
        assert (await ledger.get_balances(buyer.account_id)).purchased == 100.0
        assert result.commission.total_credited == 8.0
        assert (await ledger.get_balances(c.account_id)).commission == 5.0
        assert (await ledger.get_balances(b.account_id)).commission == 2.0
        assert (await ledger.get_balances(a.account_id)).commission == 1.0

        acct = await storage.accounts.get(buyer.account_id)
        assert acct.has_first_purchase is True
        assert acct.lifetime_purchases == 100.0

    @pytest.mark.parametrize("amount", [0.01, 10001])
    async def test_limits(self, accounts, mining, amount):
        buyer = await accounts.create_account("buyer")
        result = await mining.purchase(buyer.account_id, amount)
        assert result.success is False
        assert result.error == "invalid_amount"

    async def test_idempotent_purchase(self, make_chain, mining, ledger):
        ref, buyer = await make_chain("ref", "buyer")
        first = await mining.purchase(buyer.account_id, 10, idempotency_key="p-1")
        second = await mining.purchase(buyer.account_id, 10, idempotency_key="p-1")
        assert second.replayed is True
        assert second.tx_id == first.tx_id
        assert (await ledger.get_balances(buyer.account_id)).purchased == 10.0
        assert (await ledger.get_balances(ref.account_id)).commission == 0.5

    async def test_key_reused_by_another_operation(self, accounts, mining, withdrawals,
                                                   ledger, fund):
        buyer = await accounts.create_account("buyer")
        await fund(buyer.account_id, 50)
        await withdrawals.withdraw(buyer.account_id, 5, idempotency_key="shared")
        result = await mining.purchase(buyer.account_id, 10, idempotency_key="shared")
        assert result.success is False
        assert result.error == "idempotency_conflict"
        assert (await ledger.get_balances(buyer.account_id)).purchased == 45.0

    async def test_blocked_buyer(self, accounts, mining):
        buyer = await accounts.create_account("buyer")
        await accounts.set_blocked(buyer.account_id, True)
        result = await mining.purchase(buyer.account_id, 10)
        assert result.error == "account_blocked"

    async def test_power_formula(self):
        assert power_increase(10, 10, 1) == pytest.approx(0.01)
        assert power_increase(250, 10, 1) == pytest.approx(0.25)


class TestUnlock:

    async def test_unlock_posts_purchase_once(self, accounts, mining, ledger, storage):
        buyer = await accounts.create_account("buyer")
        result = await mining.record_unlock_payment(buyer.account_id, now=NOW)
        assert result.success is True
        assert result.amount == 200.0  # 100 USDT at $0.50
        assert result.usd_value == 100.0
        acct = await storage.accounts.get(buyer.account_id)
        assert acct.unlock_paid is True
        assert acct.unlock_paid_at == NOW
        assert acct.last_mined_at == NOW

        again = await mining.record_unlock_payment(buyer.account_id, now=NOW)
        assert again.success is False
        assert again.error == "already_unlocked"
        assert (await ledger.get_balances(buyer.account_id)).purchased == 200.0

    async def test_concurrent_unlocks_credit_once(self, make_chain, mining, ledger, storage):
        ref, buyer = await make_chain("ref", "buyer")
        results = await asyncio.gather(
            mining.record_unlock_payment(buyer.account_id, now=NOW),
            mining.record_unlock_payment(buyer.account_id, now=NOW),
        )
        assert sorted(r.success for r in results) == [False, True]
        assert [r.error for r in results if not r.success] == ["already_unlocked"]
        assert (await ledger.get_balances(buyer.account_id)).purchased == 200.0
        assert (await ledger.get_balances(ref.account_id)).commission == 10.0
        assert len(await ledger.history(buyer.account_id, tx_type="purchase")) == 1
        acct = await storage.accounts.get(buyer.account_id)
        assert acct.mining_power == pytest.approx(1.2)


class TestMiningAccess:

    async def test_grant_and_renew(self, accounts, mining):
        acct = await accounts.create_account("miner")
        granted = await mining.purchase_mining_access(acct.account_id, now=NOW)
        assert granted.mining_access_expires_at == NOW + 30 * SECONDS_PER_DAY
        assert await mining.has_mining_access(acct.account_id, now=NOW + 1)

        renewed = await mining.renew_mining_access(acct.account_id, now=NOW + SECONDS_PER_DAY)
        assert renewed.mining_access_expires_at == NOW + 60 * SECONDS_PER_DAY
        assert renewed.mining_access_renewals == 1

    async def test_renew_after_expiry_starts_now(self, accounts, mining):
        acct = await accounts.create_account("miner")
        await mining.purchase_mining_access(acct.account_id, now=NOW)
        later = NOW + 45 * SECONDS_PER_DAY
        assert not await mining.has_mining_access(acct.account_id, now=later)
        renewed = await mining.renew_mining_access(acct.account_id, now=later)
        assert renewed.mining_access_expires_at == later + 30 * SECONDS_PER_DAY

    async def test_renew_without_access(self, accounts, mining):
        acct = await accounts.create_account("miner")
        with pytest.raises(ValueError):
            await mining.renew_mining_access(acct.account_id, now=NOW)


class TestAccrual:

    async def test_locked_without_access(self, accounts, mining):
        acct = await accounts.create_account("miner")
        with pytest.raises(MiningLocked):
            await mining.accrue_mining(acct.account_id, 60, now=NOW)

    async def test_accrual_scales_with_power(self, accounts, mining, ledger, storage):
        acct = await accounts.create_account("miner")
        await mining.purchase_mining_access(acct.account_id, now=NOW)
        async with storage.transaction():
            await storage.accounts.record_purchase(acct.account_id, 0.0, 1.0)
        tx = await mining.accrue_mining(acct.account_id, 60, now=NOW + 3600)
        # 0.0002 per minute at power 2.0
        assert tx.amount == pytest.approx(0.024)
        assert tx.type == "mining"
        assert (await ledger.get_balances(acct.account_id)).mining == pytest.approx(0.024)

    async def test_minutes_capped_at_elapsed_time(self, accounts, mining, ledger, storage):
        acct = await accounts.create_account("miner")
        await mining.purchase_mining_access(acct.account_id, now=NOW)
        tx = await mining.accrue_mining(acct.account_id, 1e9, now=NOW + 600)
        assert tx.amount == pytest.approx(0.002)  # 10 minutes at power 1.0
        assert (await storage.accounts.get(acct.account_id)).last_mined_at == NOW + 600

        with pytest.raises(InvalidAmount):
            await mining.accrue_mining(acct.account_id, 1e9, now=NOW + 600)
        assert (await ledger.get_balances(acct.account_id)).mining == pytest.approx(0.002)

    async def test_partial_claims_keep_the_remainder(self, accounts, mining, ledger):
        acct = await accounts.create_account("miner")
        await mining.purchase_mining_access(acct.account_id, now=NOW)
        await mining.accrue_mining(acct.account_id, 5, now=NOW + 600)
        tx = await mining.accrue_mining(acct.account_id, 60, now=NOW + 600)
        assert tx.amount == pytest.approx(0.001)
        assert (await ledger.get_balances(acct.account_id)).mining == pytest.approx(0.002)

    async def test_expired_access_cannot_accrue(self, accounts, mining):
        acct = await accounts.create_account("miner")
        await mining.purchase_mining_access(acct.account_id, now=NOW)
        with pytest.raises(MiningLocked):
            await mining.accrue_mining(acct.account_id, 60, now=NOW + 31 * SECONDS_PER_DAY)

    async def test_gap_between_windows_earns_nothing(self, accounts, mining, storage):
        acct = await accounts.create_account("miner")
        await mining.purchase_mining_access(acct.account_id, now=NOW)
        later = NOW + 45 * SECONDS_PER_DAY
        await mining.renew_mining_access(acct.account_id, now=later)
        assert (await storage.accounts.get(acct.account_id)).last_mined_at == later
        tx = await mining.accrue_mining(acct.account_id, 1e9, now=later + 60)
        assert tx.amount == pytest.approx(0.0002)

    async def test_unlock_or_bypass_allows_accrual(self, accounts, mining, config):
        paid = await accounts.create_account("paid")
        await mining.record_unlock_payment(paid.account_id, now=NOW)
        assert (await mining.accrue_mining(paid.account_id, 1, now=NOW + 60)).amount > 0

        await config.update(unlock_bypass=True)
        free = await accounts.create_account("free")
        tx = await mining.accrue_mining(free.account_id, 1, now=time.time() + 120)
        assert tx.amount == pytest.approx(0.0002)

    async def test_invalid_minutes(self, accounts, mining, config):
        await config.update(unlock_bypass=True)
        acct = await accounts.create_account("miner")
        with pytest.raises(InvalidAmount):
            await mining.accrue_mining(acct.account_id, 0)
