"""Withdrawal router - POST /api/withdraw."""

from fastapi import APIRouter, Header
from starlette.requests import Request

from maxcoin.deps import current_account, get_server, http_error
from maxcoin.models import WithdrawRequest

router = APIRouter()


@router.post("/api/withdraw")
async def withdraw(
    request: Request,
    req: WithdrawRequest,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await current_account(request, x_api_key, authorization)
    result = await srv.withdrawals.withdraw(
        caller.account_id, req.amount, usd_value=req.usd_value,
        idempotency_key=req.idempotency_key,
    )
    if not result.success:
        raise http_error(result.to_dict())
    return result.to_dict()
