"""
mining.py - Purchases, mining power and mining accrual.

A purchase credits the purchased pool, raises mining power, marks the first
qualifying purchase and pays level 1-3 referral commissions, all in one unit
of work. Mining accrual credits the mining pool at
`mining_rate_per_minute * mining_power` per minute for accounts that hold
mining access, have paid the one-time unlock, or run under the global bypass.
"""

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from maxcoin.errors import (
    AlreadyUnlocked,
    IdempotencyConflict,
    InvalidAmount,
    LedgerError,
    MiningLocked,
    StorageUnavailable,
    validate_amount,
)
from maxcoin.records import (
    POOL_MINING,
    POOL_PURCHASED,
    Account,
    Transaction,
    TxMeta,
    TxType,
    round_amount,
)

if TYPE_CHECKING:
    from maxcoin.account import AccountService
    from maxcoin.commission import CommissionEngine, CommissionResult
    from maxcoin.config import ConfigService
    from maxcoin.ledger import LedgerStore
    from maxcoin.pricing import PriceFeed
    from maxcoin.storage import StorageManager

logger = logging.getLogger("mining")

SECONDS_PER_DAY = 86400


def power_increase(amount: float, threshold: float, percent: float) -> float:
    """Mining power gained from a purchase of `amount`."""
    return (amount / threshold) * (percent / 100)


@dataclass
class PurchaseResult:
    success: bool
    amount: float = 0.0
    tx_id: Optional[str] = None
    usd_value: Optional[float] = None
    power_increase: float = 0.0
    mining_power: Optional[float] = None
    commission: Optional["CommissionResult"] = None
    error: Optional[str] = None
    message: str = ""
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "amount": self.amount,
            "tx_id": self.tx_id,
            "usd_value": self.usd_value,
            "power_increase": self.power_increase,
            "mining_power": self.mining_power,
            "commission": self.commission.to_dict() if self.commission else None,
            "error": self.error,
            "message": self.message,
            "replayed": self.replayed,
        }


class MiningService:
    """Token purchases, unlock payment, mining access and accrual."""

    def __init__(
        self,
        storage: "StorageManager",
        ledger: "LedgerStore",
        commissions: "CommissionEngine",
        accounts: "AccountService",
        config: "ConfigService",
        price_feed: Optional["PriceFeed"] = None,
    ):
        self._storage = storage
        self._ledger = ledger
        self._commissions = commissions
        self._accounts = accounts
        self._config = config
        self._price_feed = price_feed

    # -------------------------------------------------------------------
    # Purchases
    # -------------------------------------------------------------------

    async def purchase(
        self,
        account_id: str,
        amount: float,
        usd_value: Optional[float] = None,
        idempotency_key: Optional[str] = None,
        description: str = "",
    ) -> PurchaseResult:
        cfg = self._config.current
        try:
            amount = round_amount(validate_amount(amount))
            if amount < cfg.min_purchase or amount > cfg.max_purchase:
                raise InvalidAmount(
                    f"Purchase must be between {cfg.min_purchase} and {cfg.max_purchase} MXI",
                    amount=amount, minimum=cfg.min_purchase, maximum=cfg.max_purchase,
                )
            await self._accounts.require_account(account_id)
            async with self._storage.transaction():
                if idempotency_key:
                    prior = await self._storage.transactions.get_by_idempotency_key(
                        account_id, idempotency_key,
                    )
                    if prior is not None:
                        if prior.type != TxType.PURCHASE.value:
                            raise IdempotencyConflict(
                                f"Idempotency key {idempotency_key} was used by a {prior.type}",
                                idempotency_key=idempotency_key, tx_id=prior.tx_id,
                            )
                        acct = await self._storage.accounts.get(account_id)
                        logger.info("Purchase %s replayed for key %s", prior.tx_id, idempotency_key)
                        return PurchaseResult(
                            success=True, amount=prior.amount, tx_id=prior.tx_id,
                            usd_value=prior.usd_value, mining_power=acct.mining_power,
                            message="Purchase already processed", replayed=True,
                        )
                result = await self._post_purchase(
                    account_id, amount, usd_value, idempotency_key,
                    description or f"Purchased {amount:g} MXI",
                )
        except LedgerError as e:
            if isinstance(e, StorageUnavailable):
                raise
            logger.info("Purchase rejected for %s: %s", account_id, e.message)
            return PurchaseResult(success=False, error=e.code, message=e.message)
        return result

    async def _post_purchase(self, account_id: str, amount: float, usd_value: Optional[float],
                             idempotency_key: Optional[str], description: str) -> PurchaseResult:
        """Credit, boost and pay commissions. Caller holds the unit of work."""
        cfg = self._config.current
        if usd_value is None and self._price_feed is not None:
            usd_value = self._price_feed.to_usd(amount)
        tx = await self._ledger.credit(
            account_id,
            POOL_PURCHASED,
            amount,
            TxMeta(
                type=TxType.PURCHASE,
                description=description,
                usd_value=usd_value,
                to_account=account_id,
                idempotency_key=idempotency_key,
            ),
        )
        boost = power_increase(amount, cfg.power_increase_threshold, cfg.power_increase_percent)
        await self._storage.accounts.record_purchase(account_id, amount, boost)
        commission = await self._commissions.distribute(
            account_id, amount, cfg.commission_rates, source_tx_id=tx.tx_id,
            description="Purchase commission",
        )
        acct = await self._storage.accounts.get(account_id)
        logger.info("Purchase %s: %s +%.8f MXI power=%.6f (+%.6f)",
                    tx.tx_id, account_id, amount, acct.mining_power, boost)
        return PurchaseResult(
            success=True,
            amount=amount,
            tx_id=tx.tx_id,
            usd_value=usd_value,
            power_increase=boost,
            mining_power=acct.mining_power,
            commission=commission,
            message="Purchase completed",
        )

    async def record_unlock_payment(self, account_id: str,
                                    now: Optional[float] = None) -> PurchaseResult:
        """One-time unlock: the USDT fee is converted to MXI and posted as a purchase."""
        now = time.time() if now is None else now
        cfg = self._config.current
        if self._price_feed is None:
            raise RuntimeError("A price feed is required to record unlock payments")
        try:
            tokens = round_amount(self._price_feed.to_tokens(cfg.unlock_cost_usdt))
            async with self._storage.transaction():
                acct = await self._accounts.require_account(account_id)
                if acct.unlock_paid:
                    raise AlreadyUnlocked("Unlock payment already recorded")
                if not await self._storage.accounts.mark_unlock_paid(account_id, now):
                    raise AlreadyUnlocked("Unlock payment already recorded")
                result = await self._post_purchase(
                    account_id, tokens, cfg.unlock_cost_usdt, None,
                    f"Unlock payment ({cfg.unlock_cost_usdt:g} USDT)",
                )
        except LedgerError as e:
            if isinstance(e, StorageUnavailable):
                raise
            logger.info("Unlock payment rejected for %s: %s", account_id, e.message)
            return PurchaseResult(success=False, error=e.code, message=e.message)
        logger.info("Account %s unlocked (%.8f MXI)", account_id, tokens)
        result.message = "Unlock payment recorded"
        return result

    # -------------------------------------------------------------------
    # Mining access
    # -------------------------------------------------------------------

    async def purchase_mining_access(self, account_id: str,
                                     now: Optional[float] = None) -> Account:
        return await self._grant_access(account_id, renewal=False, now=now)

    async def renew_mining_access(self, account_id: str,
                                  now: Optional[float] = None) -> Account:
        return await self._grant_access(account_id, renewal=True, now=now)

    async def _grant_access(self, account_id: str, renewal: bool,
                            now: Optional[float] = None) -> Account:
        now = time.time() if now is None else now
        cfg = self._config.current
        async with self._storage.transaction():
            acct = await self._accounts.require_account(account_id)
            if renewal and acct.mining_access_expires_at is None:
                raise ValueError("No mining access to renew")
            # Renewing while still active extends from the current expiry
            start = max(now, acct.mining_access_expires_at or now)
            expires_at = start + cfg.mining_access_days * SECONDS_PER_DAY
            await self._storage.accounts.set_mining_access(account_id, expires_at, renewal)
            if not acct.unlock_paid and not acct.has_mining_access(now):
                # The gap since the last window earns nothing
                await self._storage.accounts.set_last_mined_at(account_id, now)
        logger.info("Mining access %s for %s until %.0f",
                    "renewed" if renewal else "granted", account_id, expires_at)
        return await self._storage.accounts.get(account_id)

    async def has_mining_access(self, account_id: str, now: Optional[float] = None) -> bool:
        acct = await self._accounts.require_account(account_id, allow_blocked=True)
        return acct.has_mining_access(time.time() if now is None else now)

    # -------------------------------------------------------------------
    # Accrual
    # -------------------------------------------------------------------

    async def accrue_mining(self, account_id: str, minutes: float,
                            now: Optional[float] = None) -> Transaction:
        """Credit up to `minutes` of mining, never more than has elapsed.

        Minutes are counted from the account's last accrual, or from when its
        unlock or access window started.
        """
        now = time.time() if now is None else now
        cfg = self._config.current
        minutes = validate_amount(minutes, field="minutes")
        async with self._storage.transaction():
            acct = await self._accounts.require_account(account_id)
            if not (cfg.unlock_bypass or acct.unlock_paid or acct.has_mining_access(now)):
                raise MiningLocked("Mining requires active mining access or the unlock payment")
            since = acct.last_mined_at if acct.last_mined_at is not None else acct.created_at
            minutes = min(minutes, max(0.0, (now - since) / 60))
            amount = round_amount(cfg.mining_rate_per_minute * acct.mining_power * minutes)
            if amount <= 0:
                raise InvalidAmount("Nothing to accrue", minutes=minutes)
            tx = await self._ledger.credit(
                account_id,
                POOL_MINING,
                amount,
                TxMeta(
                    type=TxType.MINING,
                    description=f"Mining reward ({minutes:g} min at power {acct.mining_power:.4f})",
                    usd_value=self._price_feed.to_usd(amount) if self._price_feed else None,
                    to_account=account_id,
                ),
            )
            await self._storage.accounts.set_last_mined_at(account_id, since + minutes * 60)
        return tx
