"""Transfer router - POST /api/transfer."""

from fastapi import APIRouter, Header
from starlette.requests import Request

from maxcoin.deps import current_account, get_server, http_error
from maxcoin.models import TransferRequest

router = APIRouter()


@router.post("/api/transfer")
async def transfer(
    request: Request,
    req: TransferRequest,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await current_account(request, x_api_key, authorization)
    result = await srv.transfers.transfer(
        caller.account_id,
        req.recipient_code,
        req.amount,
        usd_value=req.usd_value,
        description=req.description,
        idempotency_key=req.idempotency_key,
    )
    if not result.success:
        raise http_error(result.to_dict())
    return result.to_dict()
