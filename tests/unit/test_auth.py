"""
test_auth.py - Password hashing, JWT sessions, API keys and admin access
"""

import time

import jwt as pyjwt
import pytest
from fastapi import HTTPException

from maxcoin.auth import AuthService, hash_password, verify_password

pytestmark = pytest.mark.asyncio

SECRET = "unit-test-secret"
ADMIN_KEY = "unit-admin-key"


@pytest.fixture
def auth(storage, accounts):
    return AuthService(storage, accounts, admin_key=ADMIN_KEY, jwt_secret=SECRET)


class TestPasswords:

    async def test_hash_and_verify(self):
        hashed = hash_password("correct horse")
        assert hashed.startswith("$argon2")
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    async def test_empty_or_malformed_hash(self):
        assert verify_password("anything", "") is False
        assert verify_password("anything", "not-a-hash") is False


class TestRegisterLogin:

    async def test_register_returns_credentials(self, auth, storage):
        result = await auth.register("alice", "secret123")
        assert result["account"]["username"] == "alice"
        assert "api_key" not in result["account"]
        assert len(result["api_key"]) == 32
        claims = auth.decode_jwt(result["token"])
        assert claims["sub"] == "alice"
        assert claims["account_id"] == result["account"]["account_id"]
        acct = await storage.accounts.get_by_api_key(result["api_key"])
        assert acct.username == "alice"

    async def test_register_with_referral(self, auth, accounts):
        parent = await accounts.create_account("parent")
        result = await auth.register("child", "secret123", referral_code=parent.referral_code)
        assert result["account"]["referred_by"] == parent.account_id

    async def test_short_password(self, auth):
        with pytest.raises(ValueError):
            await auth.register("alice", "12345")

    async def test_login(self, auth):
        registered = await auth.register("alice", "secret123")
        result = await auth.login("alice", "secret123")
        assert result["api_key"] == registered["api_key"]
        assert auth.decode_jwt(result["token"])["sub"] == "alice"

    async def test_login_bad_password(self, auth):
        await auth.register("alice", "secret123")
        with pytest.raises(KeyError):
            await auth.login("alice", "nope-nope")

    async def test_login_treasury_rejected(self, auth):
        with pytest.raises(KeyError):
            await auth.login("platform-treasury", "whatever")


class TestJwt:

    async def test_expired_token(self, auth):
        token = pyjwt.encode(
            {"sub": "x", "account_id": "x", "exp": int(time.time()) - 10}, SECRET, algorithm="HS256",
        )
        assert auth.decode_jwt(token) is None

    async def test_foreign_secret(self, auth):
        token = pyjwt.encode({"sub": "x", "account_id": "x"}, "other", algorithm="HS256")
        assert auth.decode_jwt(token) is None


class TestResolve:

    async def test_bearer_and_api_key(self, auth):
        reg = await auth.register("alice", "secret123")
        by_jwt = await auth.resolve_account("", f"Bearer {reg['token']}")
        by_key = await auth.resolve_account(reg["api_key"], "")
        assert by_jwt.account_id == by_key.account_id == reg["account"]["account_id"]

    async def test_no_credentials(self, auth):
        assert await auth.resolve_account("", "") is None
        with pytest.raises(HTTPException) as exc:
            await auth.get_current_account("", "")
        assert exc.value.status_code == 401

    async def test_admin_key(self, auth):
        admin = await auth.require_admin(ADMIN_KEY, "")
        assert admin.role == "admin"

    async def test_user_is_not_admin(self, auth):
        reg = await auth.register("alice", "secret123")
        with pytest.raises(HTTPException) as exc:
            await auth.require_admin(reg["api_key"], "")
        assert exc.value.status_code == 403
