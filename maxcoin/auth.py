"""
auth.py - Username/password + API key authentication.

Supports two auth flows:
  1. Session: POST /api/auth/login with username + password -> JWT
  2. API key: X-API-Key header (issued at registration)

resolve_account() checks Authorization: Bearer <jwt> first, then X-API-Key.
The configured admin key authenticates as a synthetic admin principal.
"""

import logging
import secrets
import time
from typing import TYPE_CHECKING, Optional

import jwt as pyjwt
from fastapi import Header, HTTPException
from passlib.hash import argon2

from maxcoin.records import Account

if TYPE_CHECKING:
    from maxcoin.account import AccountService
    from maxcoin.storage import StorageManager

logger = logging.getLogger("auth")

DEFAULT_ADMIN_KEY = "admin-test-key-do-not-use-in-production"
JWT_TTL = 86400  # 24 hours
MIN_PASSWORD_LENGTH = 6

_hasher = argon2.using(time_cost=2, memory_cost=19456, parallelism=1)


def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return argon2.verify(password, password_hash)
    except ValueError:
        # malformed hash
        return False


def _admin_principal(api_key: str) -> Account:
    now = time.time()
    return Account(
        account_id="_admin", username="admin", role="admin", referral_code="",
        referred_by=None, mining_power=1.0, lifetime_purchases=0.0,
        has_first_purchase=False, unlock_paid=False, unlock_paid_at=None,
        mining_access_expires_at=None, mining_access_renewals=0, is_blocked=False,
        api_key=api_key, created_at=now, updated_at=now,
    )


class AuthService:
    """Password + API key authentication and role-based access."""

    def __init__(
        self,
        storage: "StorageManager",
        accounts: "AccountService",
        admin_key: str = DEFAULT_ADMIN_KEY,
        jwt_secret: str = "",
    ):
        self._storage = storage
        self._accounts = accounts
        self._admin_key = admin_key
        self._jwt_secret = jwt_secret or secrets.token_hex(32)
        if not jwt_secret:
            logger.warning(
                "No --jwt-secret provided; generated ephemeral secret "
                "(JWTs will invalidate on restart)"
            )

    @staticmethod
    def generate_api_key() -> str:
        return secrets.token_hex(16)

    # -------------------------------------------------------------------
    # JWT
    # -------------------------------------------------------------------

    def issue_jwt(self, account: Account) -> str:
        payload = {
            "sub": account.username,
            "role": account.role,
            "account_id": account.account_id,
            "iat": int(time.time()),
            "exp": int(time.time()) + JWT_TTL,
        }
        return pyjwt.encode(payload, self._jwt_secret, algorithm="HS256")

    def decode_jwt(self, token: str) -> Optional[dict]:
        try:
            return pyjwt.decode(token, self._jwt_secret, algorithms=["HS256"])
        except pyjwt.ExpiredSignatureError:
            return None
        except pyjwt.InvalidTokenError:
            return None

    # -------------------------------------------------------------------
    # Registration / login
    # -------------------------------------------------------------------

    async def register(self, username: str, password: str,
                       referral_code: Optional[str] = None) -> dict:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        api_key = self.generate_api_key()
        acct = await self._accounts.create_account(
            username,
            password_hash=hash_password(password),
            referral_code=referral_code,
            api_key=api_key,
        )
        logger.info("Registered account %s (%s)", acct.account_id, acct.username)
        return {
            "account": acct.to_dict(),
            "api_key": api_key,
            "token": self.issue_jwt(acct),
        }

    async def login(self, username: str, password: str) -> dict:
        acct = await self._storage.accounts.get_by_username(username.strip())
        if acct is None or acct.role == "system":
            raise KeyError("Invalid username or password")
        if not verify_password(password, await self._storage.accounts.get_password_hash(acct.account_id)):
            logger.info("Failed login for %s", username)
            raise KeyError("Invalid username or password")
        api_key = acct.api_key
        if not api_key:
            api_key = self.generate_api_key()
            async with self._storage.transaction():
                await self._storage.accounts.set_api_key(acct.account_id, api_key)
        return {
            "account": acct.to_dict(),
            "api_key": api_key,
            "token": self.issue_jwt(acct),
        }

    # -------------------------------------------------------------------
    # FastAPI dependencies
    # -------------------------------------------------------------------

    async def resolve_account(
        self,
        x_api_key: str = Header(default=""),
        authorization: str = Header(default=""),
    ) -> Optional[Account]:
        """Resolve JWT or API key to an account. Returns None if no credentials."""
        if authorization.startswith("Bearer "):
            claims = self.decode_jwt(authorization[7:])
            if claims:
                acct = await self._storage.accounts.get(claims.get("account_id", ""))
                if acct:
                    return acct

        if not x_api_key:
            return None

        if secrets.compare_digest(x_api_key.encode(), self._admin_key.encode()):
            return _admin_principal(x_api_key)

        return await self._storage.accounts.get_by_api_key(x_api_key)

    async def get_current_account(
        self,
        x_api_key: str = Header(default=""),
        authorization: str = Header(default=""),
    ) -> Account:
        acct = await self.resolve_account(x_api_key, authorization)
        if acct is None:
            raise HTTPException(
                status_code=401,
                detail="Missing or invalid credentials. Pass Authorization: Bearer <jwt> or X-API-Key header.",
            )
        return acct

    async def require_admin(
        self,
        x_api_key: str = Header(default=""),
        authorization: str = Header(default=""),
    ) -> Account:
        acct = await self.get_current_account(x_api_key, authorization)
        if acct.role != "admin":
            raise HTTPException(status_code=403, detail="Admin access required")
        return acct
