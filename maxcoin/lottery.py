"""
lottery.py - Weekly lottery: ticket sales, prize pool and draw resolution.

Tickets always attach to the *current* draw window, which is the next
occurrence of the configured weekday/hour (UTC) strictly after the purchase
time. `prize_pool_percentage` of every sale accrues to that draw's prize pool;
the rest is the operator share, credited to the platform treasury.

At draw time a draw with enough tickets picks `number_of_winners` distinct
tickets uniformly at random and splits the pool by rank weight; a draw that
misses `min_tickets_for_draw` is cancelled and its pool rolls into the next
window.
"""

import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, List, Optional

from maxcoin.account import TREASURY_ACCOUNT_ID
from maxcoin.errors import (
    DrawClosed,
    DrawNotDue,
    DrawNotFound,
    InvalidAmount,
    LedgerError,
    LotteryLocked,
    StorageUnavailable,
)
from maxcoin.records import (
    POOL_PURCHASED,
    DrawStatus,
    LotteryDraw,
    LotteryTicket,
    LotteryWinner,
    TxMeta,
    TxType,
    round_amount,
)

if TYPE_CHECKING:
    from maxcoin.account import AccountService
    from maxcoin.config import ConfigService
    from maxcoin.ledger import LedgerStore
    from maxcoin.storage import StorageManager

logger = logging.getLogger("lottery")

RANK_WEIGHTS = (50.0, 30.0, 15.0, 5.0)


# ---------------------------------------------------------------------------
# Schedule helpers
# ---------------------------------------------------------------------------

def next_draw_time(now: float, draw_day: int, draw_hour: int) -> datetime:
    """Next `draw_day` at `draw_hour`:00 UTC strictly after `now`.

    `draw_day` counts from Sunday = 0 to Saturday = 6.
    """
    current = datetime.fromtimestamp(now, tz=timezone.utc)
    weekday = (current.weekday() + 1) % 7  # Monday=0 -> Sunday=0
    candidate = current.replace(hour=draw_hour, minute=0, second=0, microsecond=0)
    candidate += timedelta(days=(draw_day - weekday) % 7)
    if candidate <= current:
        candidate += timedelta(days=7)
    return candidate


def draw_id_for(scheduled: datetime) -> str:
    return f"DRAW-{scheduled.strftime('%Y-%m-%dT%H')}"


def rank_weights(winners: int) -> List[float]:
    """Percentage of the pool for each rank, summing to 100."""
    if winners <= 0:
        return []
    weights = list(RANK_WEIGHTS[:winners])
    while len(weights) < winners:
        weights.append(weights[-1] / 2)
    total = sum(weights)
    return [w * 100.0 / total for w in weights]


def split_prize_pool(pool: float, winners: int) -> List[float]:
    """Split `pool` by rank weight; the last rank absorbs rounding."""
    weights = rank_weights(winners)
    prizes = [round_amount(pool * w / 100) for w in weights[:-1]]
    if weights:
        prizes.append(round_amount(pool - sum(prizes)))
    return prizes


def winning_odds(owned_tickets: int, total_tickets: int) -> float:
    """Display-only chance of holding a winning ticket (0..1)."""
    if total_tickets <= 0:
        return 0.0
    return owned_tickets / total_tickets


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class TicketPurchaseResult:
    success: bool
    tickets: List[LotteryTicket] = field(default_factory=list)
    total_cost: float = 0.0
    draw_id: Optional[str] = None
    prize_pool: Optional[float] = None
    tx_id: Optional[str] = None
    error: Optional[str] = None
    message: str = ""
    available_amount: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "tickets": [t.to_dict() for t in self.tickets],
            "total_cost": self.total_cost,
            "draw_id": self.draw_id,
            "prize_pool": self.prize_pool,
            "tx_id": self.tx_id,
            "error": self.error,
            "message": self.message,
            "available_amount": self.available_amount,
        }


@dataclass
class DrawResolution:
    draw: LotteryDraw
    next_draw_id: Optional[str] = None
    rolled_over: float = 0.0
    already_resolved: bool = False

    def to_dict(self) -> dict:
        return {
            "draw": self.draw.to_dict(),
            "next_draw_id": self.next_draw_id,
            "rolled_over": self.rolled_over,
            "already_resolved": self.already_resolved,
        }


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class LotteryEngine:
    """Sells tickets against the current draw and resolves due draws."""

    def __init__(
        self,
        storage: "StorageManager",
        ledger: "LedgerStore",
        accounts: "AccountService",
        config: "ConfigService",
        rng: Optional[random.Random] = None,
    ):
        self._storage = storage
        self._ledger = ledger
        self._accounts = accounts
        self._config = config
        self._rng = rng or random.SystemRandom()

    def current_schedule(self, now: Optional[float] = None) -> datetime:
        cfg = self._config.current
        return next_draw_time(time.time() if now is None else now, cfg.draw_day, cfg.draw_hour)

    async def _open_draw(self, now: float) -> LotteryDraw:
        scheduled = self.current_schedule(now)
        return await self._storage.lottery.ensure_draw(draw_id_for(scheduled), scheduled.timestamp())

    async def purchase_tickets(self, account_id: str, quantity: int,
                               now: Optional[float] = None) -> TicketPurchaseResult:
        now = time.time() if now is None else now
        cfg = self._config.current
        try:
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise InvalidAmount("Ticket quantity must be a whole number >= 1", quantity=quantity)
            acct = await self._accounts.require_account(account_id)
            if not (cfg.unlock_bypass or acct.has_first_purchase):
                raise LotteryLocked("Make a first purchase to unlock the lottery")

            total_cost = round_amount(quantity * cfg.ticket_price)
            pool_share = round_amount(total_cost * cfg.prize_pool_percentage / 100)
            admin_share = round_amount(total_cost - pool_share)

            async with self._storage.transaction():
                draw = await self._open_draw(now)
                if draw.status != DrawStatus.PENDING.value:
                    raise DrawClosed(f"Draw {draw.draw_id} is {draw.status}", draw_id=draw.draw_id)
                tx = await self._ledger.spend(
                    account_id,
                    total_cost,
                    TxMeta(
                        type=TxType.LOTTERY,
                        description=f"{quantity} lottery ticket(s) for {draw.draw_id}",
                        from_account=account_id,
                        correlation_id=draw.draw_id,
                    ),
                )
                first = await self._storage.lottery.add_tickets_and_pool(
                    draw.draw_id, quantity, pool_share,
                )
                tickets = []
                for number in range(first, first + quantity):
                    ticket = LotteryTicket(
                        ticket_id=f"TKT-{uuid.uuid4().hex[:12].upper()}",
                        account_id=account_id,
                        draw_id=draw.draw_id,
                        ticket_number=number,
                        purchased_at=now,
                    )
                    await self._storage.lottery.insert_ticket(ticket)
                    tickets.append(ticket)
                if admin_share > 0:
                    await self._ledger.credit(
                        TREASURY_ACCOUNT_ID,
                        POOL_PURCHASED,
                        admin_share,
                        TxMeta(
                            type=TxType.LOTTERY,
                            description=f"Operator share of ticket sales for {draw.draw_id}",
                            from_account=account_id,
                            to_account=TREASURY_ACCOUNT_ID,
                            correlation_id=tx.tx_id,
                        ),
                    )
                draw = await self._storage.lottery.get_draw(draw.draw_id, with_winners=False)
        except LedgerError as e:
            if isinstance(e, StorageUnavailable):
                raise
            logger.info("Ticket purchase rejected for %s: %s", account_id, e.message)
            return TicketPurchaseResult(
                success=False,
                error=e.code,
                message=e.message,
                available_amount=e.details.get("available_amount"),
            )

        logger.info(
            "%s bought %d ticket(s) #%d-#%d for %s (cost=%.8f pool=%.8f)",
            account_id, quantity, first, first + quantity - 1, draw.draw_id,
            total_cost, draw.prize_pool,
        )
        return TicketPurchaseResult(
            success=True,
            tickets=tickets,
            total_cost=total_cost,
            draw_id=draw.draw_id,
            prize_pool=draw.prize_pool,
            tx_id=tx.tx_id,
            message=f"Purchased {quantity} ticket(s)",
        )

    async def resolve_draw(self, draw_id: str, now: Optional[float] = None,
                           rng: Optional[random.Random] = None) -> DrawResolution:
        """Pick winners and pay prizes, or cancel and roll the pool over.

        Resolving a draw that is no longer pending returns it unchanged.
        """
        now = time.time() if now is None else now
        rng = rng or self._rng
        cfg = self._config.current

        async with self._storage.transaction():
            draw = await self._storage.lottery.get_draw(draw_id)
            if draw is None:
                raise DrawNotFound(f"Draw {draw_id} not found", draw_id=draw_id)
            if draw.status != DrawStatus.PENDING.value:
                return DrawResolution(draw=draw, already_resolved=True)
            if now < draw.scheduled_at:
                raise DrawNotDue(
                    f"Draw {draw_id} is scheduled for {draw.scheduled_at}",
                    draw_id=draw_id, scheduled_at=draw.scheduled_at,
                )

            next_draw = await self._open_draw(max(now, draw.scheduled_at))

            if draw.total_tickets < cfg.min_tickets_for_draw:
                await self._storage.lottery.set_status(draw_id, DrawStatus.CANCELLED.value, now)
                if draw.prize_pool > 0:
                    await self._storage.lottery.add_carry_over(next_draw.draw_id, draw.prize_pool)
                logger.info(
                    "Draw %s cancelled: %d/%d tickets, %.8f rolled into %s",
                    draw_id, draw.total_tickets, cfg.min_tickets_for_draw,
                    draw.prize_pool, next_draw.draw_id,
                )
                return DrawResolution(
                    draw=await self._storage.lottery.get_draw(draw_id),
                    next_draw_id=next_draw.draw_id,
                    rolled_over=draw.prize_pool,
                )

            tickets = await self._storage.lottery.list_tickets(draw_id)
            picked = rng.sample(tickets, min(cfg.number_of_winners, len(tickets)))
            prizes = split_prize_pool(draw.prize_pool, len(picked))
            for rank, (ticket, prize) in enumerate(zip(picked, prizes), start=1):
                if prize > 0:
                    await self._ledger.credit(
                        ticket.account_id,
                        POOL_PURCHASED,
                        prize,
                        TxMeta(
                            type=TxType.LOTTERY,
                            description=f"Lottery prize rank {rank} ({draw_id})",
                            to_account=ticket.account_id,
                            correlation_id=draw_id,
                        ),
                    )
                await self._storage.lottery.insert_winner(draw_id, LotteryWinner(
                    rank=rank, account_id=ticket.account_id,
                    ticket_id=ticket.ticket_id, prize_amount=prize,
                ))
            await self._storage.lottery.set_status(draw_id, DrawStatus.COMPLETED.value, now)
            resolved = await self._storage.lottery.get_draw(draw_id)

        logger.info(
            "Draw %s completed: %d tickets, pool %.8f, winners=%s",
            draw_id, draw.total_tickets, draw.prize_pool,
            [(w.rank, w.ticket_id, w.prize_amount) for w in resolved.winners],
        )
        return DrawResolution(draw=resolved, next_draw_id=next_draw.draw_id)

    async def resolve_due(self, now: Optional[float] = None) -> List[DrawResolution]:
        """Resolve every pending draw whose scheduled time has passed."""
        now = time.time() if now is None else now
        results = []
        for draw in await self._storage.lottery.list_due(now):
            results.append(await self.resolve_draw(draw.draw_id, now=now))
        return results

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    async def current_draw(self, now: Optional[float] = None) -> LotteryDraw:
        now = time.time() if now is None else now
        async with self._storage.transaction():
            return await self._open_draw(now)

    async def user_tickets(self, account_id: str, draw_id: Optional[str] = None,
                           now: Optional[float] = None) -> List[LotteryTicket]:
        if draw_id is None:
            draw_id = draw_id_for(self.current_schedule(now))
        return await self._storage.lottery.list_tickets(draw_id, account_id=account_id)

    async def history(self, status: Optional[str] = None, limit: int = 20) -> List[LotteryDraw]:
        return await self._storage.lottery.list_draws(status=status, limit=limit)

    async def get_draw(self, draw_id: str) -> LotteryDraw:
        draw = await self._storage.lottery.get_draw(draw_id)
        if draw is None:
            raise DrawNotFound(f"Draw {draw_id} not found", draw_id=draw_id)
        return draw

    async def info(self, account_id: Optional[str] = None, now: Optional[float] = None) -> dict:
        """Lottery panel data for the current draw."""
        now = time.time() if now is None else now
        cfg = self._config.current
        draw = await self.current_draw(now)
        owned = 0
        if account_id:
            owned = await self._storage.lottery.count_tickets(draw.draw_id, account_id)
        return {
            "draw_id": draw.draw_id,
            "scheduled_at": draw.scheduled_at,
            "draw_time": datetime.fromtimestamp(draw.scheduled_at, tz=timezone.utc).isoformat(),
            "seconds_until_draw": max(0.0, draw.scheduled_at - now),
            "total_tickets": draw.total_tickets,
            "prize_pool": draw.prize_pool,
            "carried_over": draw.carried_over,
            "ticket_price": cfg.ticket_price,
            "min_tickets_for_draw": cfg.min_tickets_for_draw,
            "number_of_winners": cfg.number_of_winners,
            "rank_weights": rank_weights(cfg.number_of_winners),
            "user_tickets": owned,
            "winning_odds": winning_odds(owned, draw.total_tickets),
        }
