"""Admin router - /api/admin/* endpoints: config, blocking, accounts, reversals."""

from fastapi import APIRouter, Header, HTTPException
from starlette.requests import Request

from maxcoin.deps import get_server, http_error
from maxcoin.errors import LedgerError
from maxcoin.models import ConfigUpdateRequest, ReverseRequest

router = APIRouter()


@router.get("/api/admin/config")
async def get_config(
    request: Request,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    await srv.auth.require_admin(x_api_key, authorization)
    cfg = srv.config.current
    data = cfg.model_dump()
    data["admin_percentage"] = cfg.admin_percentage
    return data


@router.put("/api/admin/config")
async def update_config(
    request: Request,
    req: ConfigUpdateRequest,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    await srv.auth.require_admin(x_api_key, authorization)
    try:
        cfg = await srv.config.update(**req.changes)
    except LedgerError as e:
        raise http_error(e)
    return cfg.model_dump()


@router.post("/api/admin/config/reset")
async def reset_config(
    request: Request,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    await srv.auth.require_admin(x_api_key, authorization)
    cfg = await srv.config.reset()
    return cfg.model_dump()


@router.get("/api/admin/accounts")
async def list_accounts(
    request: Request,
    limit: int = 50,
    offset: int = 0,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    await srv.auth.require_admin(x_api_key, authorization)
    accounts = await srv.accounts.list_accounts(limit=limit, offset=offset)
    total = await srv.storage.accounts.count()
    return {
        "items": [a.to_dict() for a in accounts],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


async def _set_blocked(request: Request, account_id: str, blocked: bool,
                       x_api_key: str, authorization: str) -> dict:
    srv = get_server(request)
    await srv.auth.require_admin(x_api_key, authorization)
    try:
        acct = await srv.accounts.set_blocked(account_id, blocked)
    except LedgerError as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"account_id": acct.account_id, "is_blocked": acct.is_blocked}


@router.post("/api/admin/accounts/{account_id}/block")
async def block_account(
    request: Request,
    account_id: str,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    return await _set_blocked(request, account_id, True, x_api_key, authorization)


@router.post("/api/admin/accounts/{account_id}/unblock")
async def unblock_account(
    request: Request,
    account_id: str,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    return await _set_blocked(request, account_id, False, x_api_key, authorization)


@router.post("/api/admin/transactions/{tx_id}/reverse")
async def reverse_transaction(
    request: Request,
    tx_id: str,
    req: ReverseRequest,
    x_api_key: str = Header(default=""),
    authorization: str = Header(default=""),
):
    srv = get_server(request)
    await srv.auth.require_admin(x_api_key, authorization)
    try:
        tx = await srv.ledger.reverse(tx_id, description=req.description)
    except LedgerError as e:
        raise http_error(e)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Transaction {tx_id} not found")
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return tx.to_dict()
