"""Lottery router - /api/lottery/* endpoints."""

from typing import Optional

from fastapi import APIRouter, Header
from starlette.requests import Request

from maxcoin.deps import current_account, get_server, http_error
from maxcoin.errors import LedgerError
from maxcoin.models import TicketRequest

router = APIRouter()


@router.get("/api/lottery/current")
async def current_draw(
    request: Request,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = None
    if x_api_key or authorization:
        caller = await srv.auth.resolve_account(x_api_key, authorization)
    return await srv.lottery.info(caller.account_id if caller else None)


@router.post("/api/lottery/tickets")
async def buy_tickets(
    request: Request,
    req: TicketRequest,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await current_account(request, x_api_key, authorization)
    result = await srv.lottery.purchase_tickets(caller.account_id, req.quantity)
    if not result.success:
        raise http_error(result.to_dict())
    return result.to_dict()


@router.get("/api/lottery/tickets")
async def my_tickets(
    request: Request,
    draw_id: Optional[str] = None,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await current_account(request, x_api_key, authorization)
    tickets = await srv.lottery.user_tickets(caller.account_id, draw_id=draw_id)
    return {"items": [t.to_dict() for t in tickets], "count": len(tickets)}


@router.get("/api/lottery/draws")
async def list_draws(request: Request, status: Optional[str] = None, limit: int = 20):
    srv = get_server(request)
    draws = await srv.lottery.history(status=status, limit=limit)
    return {"items": [d.to_dict() for d in draws]}


@router.post("/api/lottery/draws/{draw_id}/resolve")
async def resolve_draw(
    request: Request,
    draw_id: str,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    await srv.auth.require_admin(x_api_key, authorization)
    try:
        result = await srv.lottery.resolve_draw(draw_id)
    except LedgerError as e:
        raise http_error(e)
    return result.to_dict()
