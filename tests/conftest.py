"""Shared test fixtures."""

import time
from datetime import timedelta

import pytest

from gate.acls import AllowList
from gate.auth import AuthService
from gate.signature import derive_secret, sign

BOT_TOKEN = "123456:TEST-token"
MAX_AGE = timedelta(days=14)


@pytest.fixture
def secret() -> bytes:
    return derive_secret(BOT_TOKEN)


@pytest.fixture
def make_params(secret):
    """Build correctly signed widget parameters."""

    def _make(**overrides) -> dict:
        params = {
            "id": "42",
            "first_name": "Alice",
            "username": "alice",
            "auth_date": str(int(time.time()) - 60),
        }
        params.update(overrides)
        return sign(params, secret)

    return _make


@pytest.fixture
def allowed() -> AllowList:
    return AllowList.parse("42, @bob")


@pytest.fixture
def auth(allowed) -> AuthService:
    return AuthService(BOT_TOKEN, MAX_AGE, allowed, bot_name="gate_test_bot")
