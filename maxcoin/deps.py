"""Dependency helpers for router modules."""

from fastapi import HTTPException
from starlette.requests import Request

from maxcoin.errors import LedgerError

# error code -> HTTP status
ERROR_STATUS = {
    "invalid_amount": 400,
    "configuration_invalid": 400,
    "insufficient_funds": 402,
    "account_blocked": 403,
    "lottery_locked": 403,
    "mining_locked": 403,
    "withdrawal_restricted": 403,
    "account_not_found": 404,
    "recipient_not_found": 404,
    "draw_not_found": 404,
    "draw_not_due": 409,
    "duplicate_commission": 409,
    "already_unlocked": 409,
    "draw_closed": 409,
    "idempotency_conflict": 409,
    "storage_unavailable": 503,
}


def get_server(request: Request):
    return request.app.state.server


async def current_account(request: Request, x_api_key: str, authorization: str):
    """Resolve the caller or fail with 401."""
    return await get_server(request).auth.get_current_account(x_api_key, authorization)


def check_owner(caller, account_id: str):
    if caller.role != "admin" and caller.account_id != account_id:
        raise HTTPException(status_code=403, detail="You can only access your own account")


def http_error(error) -> HTTPException:
    """Map a LedgerError (or a failed result's error code) to an HTTPException."""
    if isinstance(error, LedgerError):
        return HTTPException(status_code=ERROR_STATUS.get(error.code, 400), detail=error.to_dict())
    return HTTPException(
        status_code=ERROR_STATUS.get(error.get("error"), 400), detail=error,
    )
