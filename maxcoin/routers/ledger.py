"""Ledger router - purchases, unlock payment, mining access and accrual."""

from fastapi import APIRouter, Header, HTTPException
from starlette.requests import Request

from maxcoin.deps import current_account, get_server, http_error
from maxcoin.errors import LedgerError
from maxcoin.models import AccrueRequest, MiningAccessRequest, PurchaseRequest

router = APIRouter()


@router.post("/api/purchase")
async def purchase(
    request: Request,
    req: PurchaseRequest,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await current_account(request, x_api_key, authorization)
    result = await srv.mining.purchase(
        caller.account_id, req.amount, usd_value=req.usd_value,
        idempotency_key=req.idempotency_key,
    )
    if not result.success:
        raise http_error(result.to_dict())
    return result.to_dict()


@router.post("/api/unlock")
async def unlock(
    request: Request,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await current_account(request, x_api_key, authorization)
    result = await srv.mining.record_unlock_payment(caller.account_id)
    if not result.success:
        raise http_error(result.to_dict())
    return result.to_dict()


@router.post("/api/mining/access")
async def mining_access(
    request: Request,
    req: MiningAccessRequest,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await current_account(request, x_api_key, authorization)
    try:
        if req.renew:
            acct = await srv.mining.renew_mining_access(caller.account_id)
        else:
            acct = await srv.mining.purchase_mining_access(caller.account_id)
    except LedgerError as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "account_id": acct.account_id,
        "mining_access_expires_at": acct.mining_access_expires_at,
        "mining_access_renewals": acct.mining_access_renewals,
    }


@router.post("/api/mining/accrue")
async def accrue(
    request: Request,
    req: AccrueRequest,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    caller = await current_account(request, x_api_key, authorization)
    try:
        tx = await srv.mining.accrue_mining(caller.account_id, req.minutes)
    except LedgerError as e:
        raise http_error(e)
    return tx.to_dict()
