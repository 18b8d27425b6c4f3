"""Account router - /api/auth/*, /api/accounts/{id}/* endpoints."""

from typing import Optional

from fastapi import APIRouter, Header, HTTPException
from starlette.requests import Request

from maxcoin.deps import check_owner, current_account, get_server, http_error
from maxcoin.errors import LedgerError
from maxcoin.models import LoginRequest, RegisterRequest

router = APIRouter()


@router.post("/api/auth/register")
async def auth_register(request: Request, req: RegisterRequest):
    srv = get_server(request)
    try:
        return await srv.auth.register(req.username, req.password, req.referral_code)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/api/auth/login")
async def auth_login(request: Request, req: LoginRequest):
    srv = get_server(request)
    try:
        return await srv.auth.login(req.username, req.password)
    except KeyError:
        raise HTTPException(status_code=401, detail="Invalid username or password")


@router.get("/api/auth/me")
async def auth_me(
    request: Request,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    caller = await current_account(request, x_api_key, authorization)
    return caller.to_dict()


@router.get("/api/accounts/{account_id}/balance")
async def get_balance(
    request: Request,
    account_id: str,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    check_owner(await current_account(request, x_api_key, authorization), account_id)
    try:
        balance = await srv.ledger.get_balances(account_id)
    except LedgerError as e:
        raise http_error(e)
    data = balance.to_dict()
    data["usd_value"] = srv.price_feed.to_usd(balance.total)
    return data


@router.get("/api/accounts/{account_id}/transactions")
async def list_transactions(
    request: Request,
    account_id: str,
    type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    check_owner(await current_account(request, x_api_key, authorization), account_id)
    items = await srv.ledger.history(account_id, tx_type=type, limit=limit, offset=offset)
    return {"items": [t.to_dict() for t in items], "limit": limit, "offset": offset}


@router.get("/api/accounts/{account_id}/referrals")
async def get_referrals(
    request: Request,
    account_id: str,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    check_owner(await current_account(request, x_api_key, authorization), account_id)
    try:
        metrics = await srv.accounts.referral_metrics(account_id)
    except LedgerError as e:
        raise http_error(e)
    children = await srv.accounts.list_referrals(account_id)
    metrics["referrals"] = [
        {
            "account_id": c.account_id,
            "username": c.username,
            "lifetime_purchases": c.lifetime_purchases,
            "created_at": c.created_at,
        }
        for c in children
    ]
    return metrics


@router.get("/api/accounts/{account_id}/withdrawal-status")
async def withdrawal_status(
    request: Request,
    account_id: str,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    check_owner(await current_account(request, x_api_key, authorization), account_id)
    try:
        return await srv.withdrawals.status(account_id)
    except LedgerError as e:
        raise http_error(e)


@router.get("/api/accounts/{account_id}/audit")
async def audit_account(
    request: Request,
    account_id: str,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    check_owner(await current_account(request, x_api_key, authorization), account_id)
    try:
        return await srv.ledger.audit(account_id)
    except LedgerError as e:
        raise http_error(e)
