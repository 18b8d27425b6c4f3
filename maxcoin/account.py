"""
account.py - Account service.

Registration-side account management: referral code assignment, referrer
linking, the referral forest queries used by the withdrawal gate, and
administrative blocking. Accounts are never deleted; blocking is the only
way to take one out of circulation.
"""

import logging
import secrets
import string
import time
import uuid
from typing import TYPE_CHECKING, List, Optional

from maxcoin.errors import AccountBlocked, AccountNotFound
from maxcoin.records import Account

if TYPE_CHECKING:
    from maxcoin.storage import StorageManager

logger = logging.getLogger("account")

TREASURY_ACCOUNT_ID = "platform-treasury"
TREASURY_REFERRAL_CODE = "TREASURY"

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_SUFFIX_LEN = 6
_MAX_CODE_ATTEMPTS = 20


def generate_referral_code(username: str) -> str:
    """First three letters of the username plus six random base36 characters."""
    prefix = "".join(c for c in username.upper() if c.isalnum())[:3] or "MXI"
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(_CODE_SUFFIX_LEN))
    return prefix + suffix


class AccountService:
    """Account lifecycle and referral forest queries."""

    def __init__(self, storage: "StorageManager"):
        self._storage = storage

    async def setup_defaults(self):
        """Ensure the platform treasury account exists."""
        if await self._storage.accounts.get(TREASURY_ACCOUNT_ID) is None:
            async with self._storage.transaction():
                await self._storage.accounts.create(
                    TREASURY_ACCOUNT_ID, TREASURY_ACCOUNT_ID, TREASURY_REFERRAL_CODE, role="system",
                )
            logger.info("Created treasury account %s", TREASURY_ACCOUNT_ID)

    async def create_account(
        self,
        username: str,
        password_hash: str = "",
        referral_code: Optional[str] = None,
        role: str = "user",
        api_key: str = "",
    ) -> Account:
        username = username.strip()
        if not username:
            raise ValueError("Username is required")
        async with self._storage.transaction():
            if await self._storage.accounts.get_by_username(username) is not None:
                raise ValueError(f"Username '{username}' is already taken")

            referred_by = None
            if referral_code:
                referrer = await self._storage.accounts.get_by_referral_code(referral_code)
                if referrer is None or referrer.role == "system":
                    logger.info("Unknown referral code %r for %s, registering without referrer",
                                referral_code, username)
                else:
                    referred_by = referrer.account_id

            code = await self._unique_referral_code(username)
            account_id = uuid.uuid4().hex
            acct = await self._storage.accounts.create(
                account_id, username, code,
                password_hash=password_hash, referred_by=referred_by, role=role, api_key=api_key,
            )
        logger.info("Created account %s (%s) code=%s referrer=%s",
                    account_id, username, code, referred_by)
        return acct

    async def _unique_referral_code(self, username: str) -> str:
        for _ in range(_MAX_CODE_ATTEMPTS):
            code = generate_referral_code(username)
            if not await self._storage.accounts.referral_code_exists(code):
                return code
        raise RuntimeError("Could not allocate a unique referral code")

    async def get_account(self, account_id: str) -> Optional[Account]:
        return await self._storage.accounts.get(account_id)

    async def require_account(self, account_id: str, allow_blocked: bool = False) -> Account:
        acct = await self._storage.accounts.get(account_id)
        if acct is None:
            raise AccountNotFound(f"Account {account_id} not found", account_id=account_id)
        if acct.is_blocked and not allow_blocked:
            raise AccountBlocked(f"Account {account_id} is blocked", account_id=account_id)
        return acct

    async def find_by_referral_code(self, referral_code: str) -> Optional[Account]:
        return await self._storage.accounts.get_by_referral_code(referral_code)

    async def count_active_referrals(self, account_id: str, now: Optional[float] = None) -> int:
        return await self._storage.accounts.count_active_referrals(
            account_id, time.time() if now is None else now,
        )

    async def list_referrals(self, account_id: str) -> List[Account]:
        return await self._storage.accounts.list_children(account_id)

    async def referral_metrics(self, account_id: str, now: Optional[float] = None) -> dict:
        now = time.time() if now is None else now
        acct = await self.require_account(account_id, allow_blocked=True)
        return {
            "account_id": account_id,
            "referral_code": acct.referral_code,
            "referred_by": acct.referred_by,
            "total": await self._storage.accounts.count_children(account_id),
            "active": await self._storage.accounts.count_active_referrals(account_id, now),
            "total_purchases": await self._storage.accounts.sum_children_purchases(account_id),
        }

    async def set_blocked(self, account_id: str, blocked: bool) -> Account:
        if account_id == TREASURY_ACCOUNT_ID:
            raise ValueError("The treasury account cannot be blocked")
        async with self._storage.transaction():
            if not await self._storage.accounts.set_blocked(account_id, blocked):
                raise AccountNotFound(f"Account {account_id} not found", account_id=account_id)
        logger.info("Account %s %s", account_id, "blocked" if blocked else "unblocked")
        return await self._storage.accounts.get(account_id)

    async def list_accounts(self, limit: Optional[int] = None, offset: int = 0) -> List[Account]:
        return await self._storage.accounts.list_all(limit=limit, offset=offset)
