"""Tests for the access decision and session cookies."""

import time
from datetime import datetime, timedelta, timezone

import pytest

from gate.auth import AUTH_COOKIE_NAME, AccessResult, AuthService, CookieInstruction
from gate.ticket import Ticket

from .conftest import MAX_AGE


def _at(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class TestCheckAccess:
    def test_absent_ticket(self, auth):
        assert auth.check_access(None) is AccessResult.NO_TICKET

    def test_bad_signature_looks_like_no_ticket(self, auth, make_params):
        params = make_params()
        params["username"] = "bob"
        assert auth.check_access(Ticket.from_mapping(params)) is AccessResult.NO_TICKET

    def test_has_access_by_id(self, auth, make_params):
        t = Ticket.from_mapping(make_params())
        assert auth.check_access(t) is AccessResult.HAS_ACCESS

    def test_has_access_by_username(self, auth, make_params):
        t = Ticket.from_mapping(make_params(id="7", username="bob"))
        assert auth.check_access(t) is AccessResult.HAS_ACCESS

    def test_not_on_list(self, auth, make_params):
        t = Ticket.from_mapping(make_params(id="7", username="mallory"))
        assert auth.check_access(t) is AccessResult.NO_ACCESS

    def test_expired_just_past_window(self, auth, make_params):
        now = int(time.time())
        window = int(MAX_AGE.total_seconds())
        t = Ticket.from_mapping(make_params(auth_date=str(now - window - 1)))
        assert auth.check_access(t, now=_at(now)) is AccessResult.TICKET_EXPIRED

    def test_fresh_just_inside_window(self, auth, make_params):
        now = int(time.time())
        window = int(MAX_AGE.total_seconds())
        t = Ticket.from_mapping(make_params(auth_date=str(now - window + 1)))
        assert auth.check_access(t, now=_at(now)) is AccessResult.HAS_ACCESS

    def test_exactly_at_window_is_fresh(self, auth, make_params):
        now = int(time.time())
        window = int(MAX_AGE.total_seconds())
        t = Ticket.from_mapping(make_params(auth_date=str(now - window)))
        assert auth.check_access(t, now=_at(now)) is AccessResult.HAS_ACCESS

    def test_expiry_takes_precedence_over_allow_list(self, auth, make_params):
        t = Ticket.from_mapping(make_params(id="7", username="mallory", auth_date="1000"))
        assert auth.check_access(t) is AccessResult.TICKET_EXPIRED

    def test_unparsable_auth_date_is_expired(self, auth, make_params):
        t = Ticket.from_mapping(make_params(auth_date="soon"))
        assert auth.check_access(t) is AccessResult.TICKET_EXPIRED

    def test_bad_id_falls_to_username(self, auth, make_params):
        t = Ticket.from_mapping(make_params(id="x", username="bob"))
        assert auth.check_access(t) is AccessResult.HAS_ACCESS

    def test_not_cached_between_calls(self, auth, make_params):
        now = int(time.time())
        t = Ticket.from_mapping(make_params(auth_date=str(now)))
        assert auth.check_access(t, now=_at(now)) is AccessResult.HAS_ACCESS
        later = _at(now) + MAX_AGE + timedelta(seconds=1)
        assert auth.check_access(t, now=later) is AccessResult.TICKET_EXPIRED

    def test_other_bot_token_rejected(self, allowed, make_params):
        other = AuthService("999:other", MAX_AGE, allowed)
        t = Ticket.from_mapping(make_params())
        assert other.check_access(t) is AccessResult.NO_TICKET


class TestSessionCookies:
    def test_login_cookie(self, auth, make_params):
        t = Ticket.from_mapping(make_params(auth_date="1700000000"))
        cookie = auth.login(t)
        assert cookie.name == AUTH_COOKIE_NAME
        assert cookie.path == "/"
        assert cookie.http_only
        assert cookie.expires == _at(1700000000) + MAX_AGE
        assert Ticket.from_cookie(cookie.value) == t

    def test_login_expiry_anchored_on_auth_date(self, auth, make_params):
        old = int(time.time()) - 3600
        cookie = auth.login(Ticket.from_mapping(make_params(auth_date=str(old))))
        assert cookie.expires == _at(old) + MAX_AGE

    def test_login_header(self, auth, make_params):
        t = Ticket.from_mapping(make_params(auth_date="1700000000"))
        header = auth.login(t).header()
        assert header.startswith(f"{AUTH_COOKIE_NAME}=%7B")
        assert "; Path=/" in header
        assert "; Expires=Tue, 28 Nov 2023 22:13:20 GMT" in header
        assert header.endswith("; HttpOnly")

    def test_login_requires_auth_date(self, auth):
        t = Ticket.from_mapping({"id": "42", "username": "a", "auth_date": "x", "hash": "h"})
        with pytest.raises(ValueError):
            auth.login(t)

    def test_logout_cookie(self, auth):
        cookie = auth.logout()
        assert cookie.name == AUTH_COOKIE_NAME
        assert cookie.value == ""
        assert cookie.max_age == 0
        assert "Max-Age=0" in cookie.header()


def test_cookie_header_minimal():
    assert CookieInstruction(name="a", value="b").header() == "a=b; Path=/"
