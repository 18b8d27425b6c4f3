"""
withdrawal.py - Withdrawal gate and withdraw operation.

Purchased and commission funds are always withdrawable. Mining funds are
gated: they only become withdrawable once the account has either completed
`withdrawal_grace_count` withdrawals or has `active_referrals_required`
active referrals. Withdrawals spend purchased first, then commission, then
mining (SPEND_ORDER), so gated funds are the last to leave.
"""

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from maxcoin.errors import (
    IdempotencyConflict,
    InvalidAmount,
    LedgerError,
    StorageUnavailable,
    WithdrawalRestricted,
    validate_amount,
)
from maxcoin.records import POOL_MINING, SPEND_ORDER, TxMeta, TxType, round_amount

if TYPE_CHECKING:
    from maxcoin.account import AccountService
    from maxcoin.config import ConfigService
    from maxcoin.ledger import LedgerStore
    from maxcoin.storage import StorageManager

logger = logging.getLogger("withdrawal")


@dataclass
class WithdrawalDecision:
    allowed: bool
    available_amount: float
    reason: str
    gate_open: bool
    active_referrals: int
    withdrawal_count: int
    requested_amount: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "available_amount": self.available_amount,
            "reason": self.reason,
            "gate_open": self.gate_open,
            "active_referrals": self.active_referrals,
            "withdrawal_count": self.withdrawal_count,
            "requested_amount": self.requested_amount,
        }


@dataclass
class WithdrawalResult:
    success: bool
    amount: float = 0.0
    error: Optional[str] = None
    message: str = ""
    available_amount: Optional[float] = None
    tx_id: Optional[str] = None
    withdrawal_count: Optional[int] = None
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "amount": self.amount,
            "error": self.error,
            "message": self.message,
            "available_amount": self.available_amount,
            "tx_id": self.tx_id,
            "withdrawal_count": self.withdrawal_count,
            "replayed": self.replayed,
        }


class WithdrawalGate:
    """Decides how much of an account's balance may leave the platform."""

    def __init__(
        self,
        storage: "StorageManager",
        ledger: "LedgerStore",
        accounts: "AccountService",
        config: "ConfigService",
    ):
        self._storage = storage
        self._ledger = ledger
        self._accounts = accounts
        self._config = config

    async def can_withdraw(self, account_id: str, amount: float,
                           now: Optional[float] = None) -> WithdrawalDecision:
        """Evaluate the gate. Raises InvalidAmount for zero/negative/NaN amounts."""
        amount = validate_amount(amount)
        now = time.time() if now is None else now
        cfg = self._config.current

        balance = await self._ledger.get_balances(account_id)
        active = await self._accounts.count_active_referrals(account_id, now)
        gate_open = (
            balance.withdrawal_count >= cfg.withdrawal_grace_count
            or active >= cfg.active_referrals_required
        )
        available = round_amount(
            balance.purchased + balance.commission + (balance.mining if gate_open else 0.0)
        )

        if amount <= available:
            reason = "Withdrawal allowed"
            allowed = True
        else:
            allowed = False
            if not gate_open and balance.mining > 0:
                reason = (
                    f"Only {available:.6f} MXI is withdrawable. Mining earnings "
                    f"({balance.mining:.6f} MXI) unlock after {cfg.active_referrals_required} "
                    f"active referrals (you have {active}) or {cfg.withdrawal_grace_count} "
                    f"completed withdrawals (you have {balance.withdrawal_count})."
                )
            else:
                reason = f"Insufficient withdrawable balance: {available:.6f} MXI available"

        return WithdrawalDecision(
            allowed=allowed,
            available_amount=available,
            reason=reason,
            gate_open=gate_open,
            active_referrals=active,
            withdrawal_count=balance.withdrawal_count,
            requested_amount=amount,
        )

    async def withdraw(
        self,
        account_id: str,
        amount: float,
        usd_value: Optional[float] = None,
        idempotency_key: Optional[str] = None,
        now: Optional[float] = None,
    ) -> WithdrawalResult:
        """Gate, then debit and count the withdrawal in one unit of work."""
        cfg = self._config.current
        try:
            amount = round_amount(validate_amount(amount))
            if amount < cfg.min_withdrawal:
                raise InvalidAmount(
                    f"Minimum withdrawal is {cfg.min_withdrawal} MXI",
                    amount=amount, minimum=cfg.min_withdrawal,
                )
            await self._accounts.require_account(account_id)

            async with self._storage.transaction():
                if idempotency_key:
                    prior = await self._storage.transactions.get_by_idempotency_key(
                        account_id, idempotency_key,
                    )
                    if prior is not None:
                        if prior.type != TxType.WITHDRAWAL.value:
                            raise IdempotencyConflict(
                                f"Idempotency key {idempotency_key} was used by a {prior.type}",
                                idempotency_key=idempotency_key, tx_id=prior.tx_id,
                            )
                        balance = await self._ledger.get_balances(account_id)
                        return WithdrawalResult(
                            success=True, amount=-prior.amount, tx_id=prior.tx_id,
                            message="Withdrawal already processed",
                            withdrawal_count=balance.withdrawal_count, replayed=True,
                        )

                decision = await self.can_withdraw(account_id, amount, now)
                if not decision.allowed:
                    raise WithdrawalRestricted(
                        decision.reason, available_amount=decision.available_amount,
                    )
                order = SPEND_ORDER if decision.gate_open else tuple(
                    p for p in SPEND_ORDER if p != POOL_MINING
                )
                tx = await self._ledger.spend(
                    account_id,
                    amount,
                    TxMeta(
                        type=TxType.WITHDRAWAL,
                        description="Withdrawal to external wallet",
                        usd_value=usd_value,
                        from_account=account_id,
                        idempotency_key=idempotency_key,
                    ),
                    order=order,
                )
                await self._storage.balances.increment_withdrawal_count(account_id)
                count = decision.withdrawal_count + 1
                gate_open = decision.gate_open or count >= cfg.withdrawal_grace_count
                await self._storage.balances.set_gate_open(account_id, gate_open)
        except LedgerError as e:
            if isinstance(e, (WithdrawalRestricted, InvalidAmount)):
                logger.info("Withdrawal rejected for %s: %s", account_id, e.message)
            else:
                logger.warning("Withdrawal failed for %s: %s", account_id, e.message)
            if isinstance(e, StorageUnavailable):
                raise
            return WithdrawalResult(
                success=False,
                error=e.code,
                message=e.message,
                available_amount=e.details.get("available_amount"),
            )

        logger.info("Withdrawal %s: %s -%.8f (count=%d)", tx.tx_id, account_id, amount, count)
        return WithdrawalResult(
            success=True,
            amount=amount,
            tx_id=tx.tx_id,
            message="Withdrawal completed",
            withdrawal_count=count,
        )

    async def status(self, account_id: str, now: Optional[float] = None) -> dict:
        """Withdrawal panel data: pool breakdown and gate progress."""
        now = time.time() if now is None else now
        cfg = self._config.current
        balance = await self._ledger.get_balances(account_id)
        active = await self._accounts.count_active_referrals(account_id, now)
        gate_open = (
            balance.withdrawal_count >= cfg.withdrawal_grace_count
            or active >= cfg.active_referrals_required
        )
        return {
            "account_id": account_id,
            "purchased": balance.purchased,
            "commission": balance.commission,
            "mining": balance.mining,
            "gate_open": gate_open,
            "available_amount": round_amount(
                balance.purchased + balance.commission + (balance.mining if gate_open else 0.0)
            ),
            "active_referrals": active,
            "active_referrals_required": cfg.active_referrals_required,
            "withdrawal_count": balance.withdrawal_count,
            "withdrawal_grace_count": cfg.withdrawal_grace_count,
        }
