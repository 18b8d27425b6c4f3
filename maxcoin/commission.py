"""
commission.py - Multi-level referral commission engine.

Given a value-generating event (purchase or transfer fee) and the source
account, walks up to MAX_LEVELS referrers and credits each ancestor's
commission pool with `base_amount * rate[level] / 100`. A distribution is
keyed by the originating transaction id: replaying the same event is
absorbed and reported as a duplicate instead of paying twice.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Sequence

from maxcoin.errors import DuplicateCommission, InvalidAmount
from maxcoin.records import POOL_COMMISSION, TxMeta, TxType, round_amount

if TYPE_CHECKING:
    from maxcoin.ledger import LedgerStore
    from maxcoin.storage import StorageManager

logger = logging.getLogger("commission")

MAX_LEVELS = 3


@dataclass
class CommissionCredit:
    level: int
    account_id: str
    rate: float
    amount: float
    tx_id: str

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "account_id": self.account_id,
            "rate": self.rate,
            "amount": self.amount,
            "tx_id": self.tx_id,
        }


@dataclass
class CommissionResult:
    source_tx_id: str
    source_account: str
    base_amount: float
    credits: List[CommissionCredit] = field(default_factory=list)
    duplicate: bool = False

    @property
    def total_credited(self) -> float:
        return round_amount(sum(c.amount for c in self.credits))

    def to_dict(self) -> dict:
        return {
            "source_tx_id": self.source_tx_id,
            "source_account": self.source_account,
            "base_amount": self.base_amount,
            "total_credited": self.total_credited,
            "duplicate": self.duplicate,
            "credits": [c.to_dict() for c in self.credits],
        }


def normalize_rates(level_rates: Sequence[float]) -> List[float]:
    rates = [float(r) for r in list(level_rates)[:MAX_LEVELS]]
    if any(r < 0 or r != r for r in rates):
        raise InvalidAmount("Commission rates must be non-negative", rates=rates)
    return rates


class CommissionEngine:
    """Distributes commissions up the referral chain."""

    def __init__(self, storage: "StorageManager", ledger: "LedgerStore"):
        self._storage = storage
        self._ledger = ledger

    async def distribute(
        self,
        source_account: str,
        base_amount: float,
        level_rates: Sequence[float],
        source_tx_id: str,
        description: str = "",
    ) -> CommissionResult:
        """Credit up to 3 ancestors. Safe to re-run with the same source_tx_id."""
        rates = normalize_rates(level_rates)
        result = CommissionResult(
            source_tx_id=source_tx_id,
            source_account=source_account,
            base_amount=base_amount,
        )
        if base_amount <= 0:
            return result

        try:
            async with self._storage.transaction():
                await self._storage.commissions.claim(source_tx_id, source_account, base_amount)
                chain = await self._storage.accounts.get_referrer_chain(source_account, MAX_LEVELS)
                # Per-level rounding must not pay out more than the rates allow in total
                budget = round_amount(base_amount * sum(rates) / 100)
                for level, ancestor in enumerate(chain, start=1):
                    if level > len(rates):
                        break
                    rate = rates[level - 1]
                    amount = min(round_amount(base_amount * rate / 100),
                                 round_amount(budget - result.total_credited))
                    if amount <= 0:
                        continue
                    tx = await self._ledger.credit(
                        ancestor,
                        POOL_COMMISSION,
                        amount,
                        TxMeta(
                            type=TxType.COMMISSION,
                            description=description or f"Level {level} commission",
                            from_account=source_account,
                            to_account=ancestor,
                            commission_amount=amount,
                            commission_rate=rate,
                            correlation_id=source_tx_id,
                        ),
                    )
                    result.credits.append(CommissionCredit(
                        level=level, account_id=ancestor, rate=rate, amount=amount, tx_id=tx.tx_id,
                    ))
                await self._storage.commissions.set_total(source_tx_id, result.total_credited)
        except DuplicateCommission:
            logger.debug("Commission for %s already distributed, skipping", source_tx_id)
            result.duplicate = True
            return result

        if result.credits:
            logger.info(
                "Distributed %.8f commission for %s across %d level(s)",
                result.total_credited, source_tx_id, len(result.credits),
            )
        return result

    async def preview(self, source_account: str, base_amount: float,
                      level_rates: Sequence[float]) -> List[dict]:
        """What `distribute` would credit, without posting anything."""
        rates = normalize_rates(level_rates)
        chain = await self._storage.accounts.get_referrer_chain(source_account, MAX_LEVELS)
        return [
            {"level": level, "account_id": ancestor, "rate": rates[level - 1],
             "amount": round_amount(base_amount * rates[level - 1] / 100)}
            for level, ancestor in enumerate(chain, start=1)
            if level <= len(rates)
        ]
