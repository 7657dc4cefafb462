"""Tests for login-widget signature checks."""

import hashlib
import hmac

import pytest

from gate.config import ConfigError
from gate.signature import check_signature, derive_secret, expected_hash, sign
from gate.ticket import Ticket

from .conftest import BOT_TOKEN


def test_secret_is_sha256_of_token():
    assert derive_secret(BOT_TOKEN) == hashlib.sha256(BOT_TOKEN.encode()).digest()
    assert len(derive_secret(BOT_TOKEN)) == 32


def test_empty_token_is_config_error():
    with pytest.raises(ConfigError):
        derive_secret("")
    with pytest.raises(ConfigError):
        derive_secret("   ")


def test_known_vector(secret):
    t = Ticket.from_mapping(
        {"id": "1", "username": "u", "auth_date": "100", "hash": "x"}
    )
    msg = b"auth_date=100\nid=1\nusername=u"
    assert expected_hash(t, secret) == hmac.new(secret, msg, hashlib.sha256).hexdigest()


def test_signed_ticket_verifies(make_params, secret):
    assert check_signature(Ticket.from_mapping(make_params()), secret)


def test_hash_is_lowercase_hex(make_params):
    h = make_params()["hash"]
    assert h == h.lower()
    assert len(h) == 64


def test_uppercase_hash_rejected(make_params, secret):
    params = make_params()
    params["hash"] = params["hash"].upper()
    assert not check_signature(Ticket.from_mapping(params), secret)


@pytest.mark.parametrize("field", ["id", "first_name", "username", "auth_date", "last_name", "photo_url"])
def test_tampered_field_rejected(make_params, secret, field):
    params = make_params(last_name="Liddell", photo_url="https://t.me/i/a.jpg")
    params[field] = params[field] + "0"
    assert not check_signature(Ticket.from_mapping(params), secret)


def test_added_field_rejected(make_params, secret):
    params = make_params()
    params["last_name"] = "Injected"
    assert not check_signature(Ticket.from_mapping(params), secret)


def test_unknown_fields_do_not_affect_signature(make_params, secret):
    params = make_params()
    params["return_url"] = "/somewhere"
    assert check_signature(Ticket.from_mapping(params), secret)


def test_wrong_secret_rejected(make_params):
    t = Ticket.from_mapping(make_params())
    assert not check_signature(t, derive_secret("other:token"))


def test_non_ascii_hash_rejected_without_error(make_params, secret):
    params = make_params()
    params["hash"] = "ё" * 64
    assert not check_signature(Ticket.from_mapping(params), secret)


def test_survives_cookie_round_trip(make_params, secret):
    t = Ticket.from_mapping(make_params(first_name="Алиса"))
    assert check_signature(Ticket.from_cookie(t.to_cookie_value()), secret)
