"""
ledger.py - Segmented balance ledger.

Every account holds three provenance-tagged pools (purchased, mining,
commission). credit/debit mutate exactly one pool and append the matching
transaction in the same unit of work, so the balance row and the log can
never disagree. `spend` draws a total across pools in SPEND_ORDER for
operations that don't care about provenance (transfers, withdrawals, tickets).
"""

import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from maxcoin.errors import AccountNotFound, InsufficientFunds, validate_amount
from maxcoin.records import (
    EPSILON,
    POOL_COMMISSION,
    POOL_MINING,
    POOL_PURCHASED,
    POOLS,
    SPEND_ORDER,
    SegmentedBalance,
    Transaction,
    TxMeta,
    TxType,
    round_amount,
)

if TYPE_CHECKING:
    from maxcoin.storage import StorageManager

logger = logging.getLogger("ledger")


def _delta_kwargs(deltas: Dict[str, float]) -> dict:
    return {
        "purchased_delta": deltas.get(POOL_PURCHASED, 0.0),
        "mining_delta": deltas.get(POOL_MINING, 0.0),
        "commission_delta": deltas.get(POOL_COMMISSION, 0.0),
    }


def plan_spend(balance: SegmentedBalance, amount: float,
               order: Iterable[str] = SPEND_ORDER) -> Dict[str, float]:
    """Split `amount` across pools in `order`. Raises InsufficientFunds."""
    order = tuple(order)
    available = round_amount(sum(balance.pool(p) for p in order))
    if available + EPSILON < amount:
        raise InsufficientFunds(
            f"Insufficient balance: have {available:.6f}, need {amount:.6f}",
            available_amount=available,
            requested_amount=amount,
        )
    plan: Dict[str, float] = {}
    remaining = amount
    for pool in order:
        if remaining <= EPSILON:
            break
        take = round_amount(min(balance.pool(pool), remaining))
        if take > 0:
            plan[pool] = take
            remaining = round_amount(remaining - take)
    return plan


class LedgerStore:
    """credit / debit / getBalances over the balances and transactions tables."""

    def __init__(self, storage: "StorageManager"):
        self._storage = storage

    async def get_balances(self, account_id: str) -> SegmentedBalance:
        balance = await self._storage.balances.get(account_id)
        if balance is None:
            raise AccountNotFound(f"Account {account_id} not found", account_id=account_id)
        return balance

    async def credit(self, account_id: str, pool: str, amount: float, meta: TxMeta) -> Transaction:
        amount = round_amount(validate_amount(amount))
        if pool not in POOLS:
            raise ValueError(f"Unknown pool: {pool}")
        async with self._storage.transaction():
            if not await self._storage.balances.add(account_id, pool, amount):
                raise AccountNotFound(f"Account {account_id} not found", account_id=account_id)
            tx = await self._storage.transactions.append(
                account_id, meta, **_delta_kwargs({pool: amount})
            )
        logger.info("Credit %s %s +%.8f (%s %s)", account_id, pool, amount, tx.type, tx.tx_id)
        return tx

    async def debit(self, account_id: str, pool: str, amount: float, meta: TxMeta) -> Transaction:
        amount = round_amount(validate_amount(amount))
        if pool not in POOLS:
            raise ValueError(f"Unknown pool: {pool}")
        async with self._storage.transaction():
            if not await self._storage.balances.subtract(account_id, pool, amount):
                balance = await self.get_balances(account_id)
                raise InsufficientFunds(
                    f"Insufficient {pool} balance: have {balance.pool(pool):.6f}, need {amount:.6f}",
                    available_amount=balance.pool(pool),
                    requested_amount=amount,
                    pool=pool,
                )
            tx = await self._storage.transactions.append(
                account_id, meta, **_delta_kwargs({pool: -amount})
            )
        logger.info("Debit %s %s -%.8f (%s %s)", account_id, pool, amount, tx.type, tx.tx_id)
        return tx

    async def spend(
        self,
        account_id: str,
        amount: float,
        meta: TxMeta,
        order: Iterable[str] = SPEND_ORDER,
    ) -> Transaction:
        """Debit `amount` across pools in `order` as a single transaction."""
        amount = round_amount(validate_amount(amount))
        async with self._storage.transaction():
            balance = await self.get_balances(account_id)
            plan = plan_spend(balance, amount, order)
            for pool, take in plan.items():
                if not await self._storage.balances.subtract(account_id, pool, take):
                    raise InsufficientFunds(
                        f"Insufficient {pool} balance", available_amount=balance.total,
                        requested_amount=amount,
                    )
            tx = await self._storage.transactions.append(
                account_id, meta, **_delta_kwargs({p: -v for p, v in plan.items()})
            )
        logger.info("Spend %s -%.8f %s (%s %s)", account_id, amount, plan, tx.type, tx.tx_id)
        return tx

    async def reverse(self, tx_id: str, description: str = "") -> Transaction:
        """Post a compensating transaction. The original row is left untouched."""
        async with self._storage.transaction():
            original = await self._storage.transactions.get(tx_id)
            if original is None:
                raise KeyError(f"Transaction {tx_id} not found")
            if original.type == TxType.REVERSAL.value:
                raise ValueError("A reversal cannot itself be reversed")
            if await self._storage.transactions.list_by_correlation(f"REV-{tx_id}"):
                raise ValueError(f"Transaction {tx_id} already reversed")
            deltas = {pool: -value for pool, value in original.deltas().items() if value}
            for pool, value in deltas.items():
                if value > 0:
                    await self._storage.balances.add(original.account_id, pool, value)
                elif not await self._storage.balances.subtract(original.account_id, pool, -value):
                    balance = await self.get_balances(original.account_id)
                    raise InsufficientFunds(
                        f"Cannot reverse {tx_id}: {pool} pool has {balance.pool(pool):.6f}",
                        available_amount=balance.pool(pool),
                        requested_amount=-value,
                        pool=pool,
                    )
            tx = await self._storage.transactions.append(
                original.account_id,
                TxMeta(
                    type=TxType.REVERSAL,
                    description=description or f"Reversal of {tx_id}",
                    from_account=original.from_account,
                    to_account=original.to_account,
                    correlation_id=f"REV-{tx_id}",
                ),
                **_delta_kwargs(deltas),
            )
        logger.info("Reversed %s with %s (amount=%.8f)", tx_id, tx.tx_id, tx.amount)
        return tx

    async def history(self, account_id: str, tx_type: Optional[str] = None,
                      limit: Optional[int] = None, offset: int = 0) -> List[Transaction]:
        return await self._storage.transactions.list_for_account(
            account_id, tx_type=tx_type, limit=limit, offset=offset,
        )

    async def audit(self, account_id: str) -> dict:
        """Compare each pool with the signed sum of completed transactions."""
        async with self._storage.transaction():
            balance = await self.get_balances(account_id)
            sums = await self._storage.transactions.completed_sums(account_id)
        pools = {}
        consistent = True
        for pool in POOLS:
            diff = round_amount(balance.pool(pool) - sums[pool])
            ok = abs(diff) <= 1e-6
            consistent = consistent and ok
            pools[pool] = {"balance": balance.pool(pool), "ledger": round_amount(sums[pool]),
                           "difference": diff}
        if not consistent:
            logger.error("Ledger mismatch for %s: %s", account_id, pools)
        return {
            "account_id": account_id,
            "consistent": consistent,
            "balance_total": balance.total,
            "ledger_total": round_amount(sums["total"]),
            "pools": pools,
        }
