"""
transfer.py - Peer-to-peer transfer engine.

A transfer moves `amount` from the sender to the account owning a referral
code. The sender pays the full amount; the recipient receives it minus the
transfer commission, credited to the recipient's purchased pool so it is
immediately withdrawable. The commission is split up the sender's referral
chain in proportion to the level rates, and whatever the chain cannot absorb
(missing levels) goes to the platform treasury. Everything happens in one
unit of work.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from maxcoin.account import TREASURY_ACCOUNT_ID
from maxcoin.errors import (
    IdempotencyConflict,
    InvalidAmount,
    LedgerError,
    RecipientNotFound,
    StorageUnavailable,
    validate_amount,
)
from maxcoin.records import (
    POOL_COMMISSION,
    POOL_PURCHASED,
    TxMeta,
    TxType,
    round_amount,
)

if TYPE_CHECKING:
    from maxcoin.account import AccountService
    from maxcoin.commission import CommissionEngine
    from maxcoin.config import ConfigService
    from maxcoin.ledger import LedgerStore
    from maxcoin.storage import StorageManager

logger = logging.getLogger("transfer")


def fee_split_rates(level_rates: List[float]) -> List[float]:
    """Turn level rates into percentages of the fee itself (summing to 100)."""
    total = sum(level_rates)
    if total <= 0:
        return [0.0 for _ in level_rates]
    return [r * 100.0 / total for r in level_rates]


@dataclass
class TransferResult:
    success: bool
    amount: float = 0.0
    recipient_receives: float = 0.0
    commission: float = 0.0
    commission_rate: float = 0.0
    commission_distributed: float = 0.0
    treasury_share: float = 0.0
    recipient_account: Optional[str] = None
    correlation_id: Optional[str] = None
    tx_ids: List[str] = field(default_factory=list)
    usd_value: Optional[float] = None
    error: Optional[str] = None
    message: str = ""
    available_amount: Optional[float] = None
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "amount": self.amount,
            "recipient_receives": self.recipient_receives,
            "commission": self.commission,
            "commission_rate": self.commission_rate,
            "commission_distributed": self.commission_distributed,
            "treasury_share": self.treasury_share,
            "recipient_account": self.recipient_account,
            "correlation_id": self.correlation_id,
            "tx_ids": list(self.tx_ids),
            "usd_value": self.usd_value,
            "error": self.error,
            "message": self.message,
            "available_amount": self.available_amount,
            "replayed": self.replayed,
        }


class TransferEngine:
    """Moves funds between accounts and routes the fee through commissions."""

    def __init__(
        self,
        storage: "StorageManager",
        ledger: "LedgerStore",
        commissions: "CommissionEngine",
        accounts: "AccountService",
        config: "ConfigService",
    ):
        self._storage = storage
        self._ledger = ledger
        self._commissions = commissions
        self._accounts = accounts
        self._config = config

    async def transfer(
        self,
        sender_id: str,
        recipient_code: str,
        amount: float,
        usd_value: Optional[float] = None,
        description: str = "",
        idempotency_key: Optional[str] = None,
    ) -> TransferResult:
        cfg = self._config.current
        rate = cfg.transfer_commission_rate
        try:
            amount = round_amount(validate_amount(amount))
            await self._accounts.require_account(sender_id)

            async with self._storage.transaction():
                if idempotency_key:
                    prior = await self._storage.transactions.get_by_idempotency_key(
                        sender_id, idempotency_key,
                    )
                    if prior is not None:
                        if prior.type != TxType.TRANSFER.value or prior.amount >= 0:
                            raise IdempotencyConflict(
                                f"Idempotency key {idempotency_key} was used by a {prior.type}",
                                idempotency_key=idempotency_key, tx_id=prior.tx_id,
                            )
                        return await self._replay(prior)

                recipient = await self._accounts.find_by_referral_code(recipient_code)
                if recipient is None or recipient.is_blocked or recipient.role == "system":
                    raise RecipientNotFound(
                        f"No account with referral code {recipient_code!r}",
                        recipient_code=recipient_code,
                    )
                if recipient.account_id == sender_id:
                    raise InvalidAmount("Cannot transfer to your own account")

                commission = round_amount(amount * rate / 100)
                net = round_amount(amount - commission)
                correlation_id = f"XFR-{uuid.uuid4().hex[:16].upper()}"

                debit = await self._ledger.spend(
                    sender_id,
                    amount,
                    TxMeta(
                        type=TxType.TRANSFER,
                        description=description or f"Transfer to {recipient.referral_code}",
                        usd_value=usd_value,
                        from_account=sender_id,
                        to_account=recipient.account_id,
                        commission_amount=commission,
                        commission_rate=rate,
                        correlation_id=correlation_id,
                        idempotency_key=idempotency_key,
                    ),
                )
                credit = await self._ledger.credit(
                    recipient.account_id,
                    POOL_PURCHASED,
                    net,
                    TxMeta(
                        type=TxType.TRANSFER,
                        description=description or "Transfer received",
                        usd_value=usd_value,
                        from_account=sender_id,
                        to_account=recipient.account_id,
                        commission_amount=commission,
                        commission_rate=rate,
                        correlation_id=correlation_id,
                    ),
                )
                tx_ids = [debit.tx_id, credit.tx_id]

                distributed = await self._commissions.distribute(
                    sender_id,
                    commission,
                    fee_split_rates(cfg.commission_rates),
                    source_tx_id=debit.tx_id,
                    description="Transfer commission",
                )
                tx_ids.extend(c.tx_id for c in distributed.credits)
                treasury_share = max(0.0, round_amount(commission - distributed.total_credited))
                if treasury_share > 0:
                    fee_tx = await self._ledger.credit(
                        TREASURY_ACCOUNT_ID,
                        POOL_COMMISSION,
                        treasury_share,
                        TxMeta(
                            type=TxType.COMMISSION,
                            description="Undistributed transfer commission",
                            from_account=sender_id,
                            to_account=TREASURY_ACCOUNT_ID,
                            commission_amount=treasury_share,
                            commission_rate=rate,
                            correlation_id=debit.tx_id,
                        ),
                    )
                    tx_ids.append(fee_tx.tx_id)
        except LedgerError as e:
            if isinstance(e, StorageUnavailable):
                raise
            logger.info("Transfer from %s rejected: %s", sender_id, e.message)
            return TransferResult(
                success=False,
                amount=amount if isinstance(amount, float) else 0.0,
                commission_rate=rate,
                error=e.code,
                message=e.message,
                available_amount=e.details.get("available_amount"),
            )

        logger.info(
            "Transfer %s: %s -> %s amount=%.8f net=%.8f commission=%.8f (chain=%.8f treasury=%.8f)",
            correlation_id, sender_id, recipient.account_id, amount, net, commission,
            distributed.total_credited, treasury_share,
        )
        return TransferResult(
            success=True,
            amount=amount,
            recipient_receives=net,
            commission=commission,
            commission_rate=rate,
            commission_distributed=distributed.total_credited,
            treasury_share=treasury_share,
            recipient_account=recipient.account_id,
            correlation_id=correlation_id,
            tx_ids=tx_ids,
            usd_value=usd_value,
            message="Transfer completed",
        )

    async def _replay(self, debit) -> TransferResult:
        """Rebuild the result of an already-posted transfer from its legs."""
        legs = await self._storage.transactions.list_by_correlation(debit.correlation_id)
        fee_legs = await self._storage.transactions.list_by_correlation(debit.tx_id)
        credit = next((t for t in legs if t.account_id == debit.to_account), None)
        treasury = sum(t.amount for t in fee_legs if t.account_id == TREASURY_ACCOUNT_ID)
        commission = debit.commission_amount or 0.0
        logger.info("Transfer %s replayed for idempotency key %s",
                    debit.correlation_id, debit.idempotency_key)
        return TransferResult(
            success=True,
            amount=-debit.amount,
            recipient_receives=credit.amount if credit else 0.0,
            commission=commission,
            commission_rate=debit.commission_rate or 0.0,
            commission_distributed=round_amount(commission - treasury),
            treasury_share=round_amount(treasury),
            recipient_account=debit.to_account,
            correlation_id=debit.correlation_id,
            tx_ids=[t.tx_id for t in legs + fee_legs],
            usd_value=debit.usd_value,
            message="Transfer already processed",
            replayed=True,
        )
