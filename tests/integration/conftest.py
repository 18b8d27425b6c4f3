"""
Shared fixtures for maxcoin API integration tests.

Provides:
 - a PlatformServer backed by a temporary SQLite file
 - a TestClient that runs the server lifespan (storage + services)
 - helpers to register users and build auth headers
"""

import pytest
from fastapi.testclient import TestClient

from maxcoin.pricing import FixedPriceFeed
from maxcoin.server import PlatformServer

ADMIN_KEY = "integration-admin-key"
JWT_SECRET = "integration-jwt-secret"
ADMIN_HEADERS = {"X-API-Key": ADMIN_KEY}


@pytest.fixture
def server(tmp_path):
    return PlatformServer(
        db_path=str(tmp_path / "maxcoin.db"),
        admin_key=ADMIN_KEY,
        jwt_secret=JWT_SECRET,
        draw_check_interval=0,
        price_feed=FixedPriceFeed(0.5),
    )


@pytest.fixture
def client(server):
    with TestClient(server.app) as c:
        yield c


@pytest.fixture
def register(client):
    """Register a user and return (account_dict, headers)."""
    def _register(username, password="secret123", referral_code=None):
        resp = client.post("/api/auth/register", json={
            "username": username, "password": password, "referral_code": referral_code,
        })
        assert resp.status_code == 200, resp.text
        data = resp.json()
        return data["account"], {"X-API-Key": data["api_key"]}
    return _register


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)
