import time
from typing import List, Optional

import aiosqlite

from maxcoin.records import AMOUNT_PRECISION, LotteryDraw, LotteryTicket, LotteryWinner


class LotteryRepo:
    """Draws, tickets and winners. Callers must hold a unit of work for writes."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    # -------------------------------------------------------------------
    # Draws
    # -------------------------------------------------------------------

    async def ensure_draw(self, draw_id: str, scheduled_at: float) -> LotteryDraw:
        await self._db.execute(
            "INSERT OR IGNORE INTO lottery_draws (draw_id, scheduled_at, created_at) "
            "VALUES (?, ?, ?)",
            (draw_id, scheduled_at, time.time()),
        )
        return await self.get_draw(draw_id)

    async def get_draw(self, draw_id: str, with_winners: bool = True) -> Optional[LotteryDraw]:
        async with self._db.execute(
            f"SELECT {LotteryDraw.COLUMNS} FROM lottery_draws WHERE draw_id = ?", (draw_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        draw = LotteryDraw.from_row(row)
        if with_winners:
            draw.winners = await self.list_winners(draw_id)
        return draw

    async def list_draws(self, status: Optional[str] = None, limit: Optional[int] = None) -> List[LotteryDraw]:
        query = f"SELECT {LotteryDraw.COLUMNS} FROM lottery_draws"
        params: list = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY scheduled_at DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        draws = []
        async with self._db.execute(query, tuple(params)) as cursor:
            async for row in cursor:
                draws.append(LotteryDraw.from_row(row))
        for draw in draws:
            draw.winners = await self.list_winners(draw.draw_id)
        return draws

    async def list_due(self, now: float) -> List[LotteryDraw]:
        draws = []
        async with self._db.execute(
            f"SELECT {LotteryDraw.COLUMNS} FROM lottery_draws "
            "WHERE status = 'pending' AND scheduled_at <= ? ORDER BY scheduled_at",
            (now,),
        ) as cursor:
            async for row in cursor:
                draws.append(LotteryDraw.from_row(row))
        return draws

    async def add_tickets_and_pool(self, draw_id: str, quantity: int, pool_increase: float) -> int:
        """Bump the ticket counter and prize pool. Returns the first new ticket number."""
        async with self._db.execute(
            "SELECT total_tickets FROM lottery_draws WHERE draw_id = ?", (draw_id,),
        ) as cursor:
            row = await cursor.fetchone()
        first_number = row[0] + 1
        await self._db.execute(
            "UPDATE lottery_draws SET total_tickets = total_tickets + ?, "
            f"prize_pool = ROUND(prize_pool + ?, {AMOUNT_PRECISION}) WHERE draw_id = ?",
            (quantity, pool_increase, draw_id),
        )
        return first_number

    async def add_carry_over(self, draw_id: str, amount: float):
        await self._db.execute(
            f"UPDATE lottery_draws SET prize_pool = ROUND(prize_pool + ?, {AMOUNT_PRECISION}), "
            f"carried_over = ROUND(carried_over + ?, {AMOUNT_PRECISION}) WHERE draw_id = ?",
            (amount, amount, draw_id),
        )

    async def set_status(self, draw_id: str, status: str, resolved_at: float) -> bool:
        cursor = await self._db.execute(
            "UPDATE lottery_draws SET status = ?, resolved_at = ? "
            "WHERE draw_id = ? AND status = 'pending'",
            (status, resolved_at, draw_id),
        )
        return cursor.rowcount > 0

    # -------------------------------------------------------------------
    # Tickets
    # -------------------------------------------------------------------

    async def insert_ticket(self, ticket: LotteryTicket):
        await self._db.execute(
            f"INSERT INTO lottery_tickets ({LotteryTicket.COLUMNS}) VALUES (?, ?, ?, ?, ?)",
            (ticket.ticket_id, ticket.account_id, ticket.draw_id,
             ticket.ticket_number, ticket.purchased_at),
        )

    async def list_tickets(self, draw_id: str, account_id: Optional[str] = None) -> List[LotteryTicket]:
        query = f"SELECT {LotteryTicket.COLUMNS} FROM lottery_tickets WHERE draw_id = ?"
        params: list = [draw_id]
        if account_id:
            query += " AND account_id = ?"
            params.append(account_id)
        query += " ORDER BY ticket_number"
        results = []
        async with self._db.execute(query, tuple(params)) as cursor:
            async for row in cursor:
                results.append(LotteryTicket.from_row(row))
        return results

    async def count_tickets(self, draw_id: str, account_id: Optional[str] = None) -> int:
        query = "SELECT COUNT(*) FROM lottery_tickets WHERE draw_id = ?"
        params: list = [draw_id]
        if account_id:
            query += " AND account_id = ?"
            params.append(account_id)
        async with self._db.execute(query, tuple(params)) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    # -------------------------------------------------------------------
    # Winners
    # -------------------------------------------------------------------

    async def insert_winner(self, draw_id: str, winner: LotteryWinner):
        await self._db.execute(
            "INSERT INTO lottery_winners (draw_id, rank, account_id, ticket_id, prize_amount) "
            "VALUES (?, ?, ?, ?, ?)",
            (draw_id, winner.rank, winner.account_id, winner.ticket_id, winner.prize_amount),
        )

    async def list_winners(self, draw_id: str) -> List[LotteryWinner]:
        results = []
        async with self._db.execute(
            "SELECT rank, account_id, ticket_id, prize_amount FROM lottery_winners "
            "WHERE draw_id = ? ORDER BY rank",
            (draw_id,),
        ) as cursor:
            async for row in cursor:
                results.append(LotteryWinner(rank=row[0], account_id=row[1],
                                             ticket_id=row[2], prize_amount=row[3]))
        return results
