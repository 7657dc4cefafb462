"""
gate.auth
~~~~~~~~~
Access decision and session cookies.

``AuthService`` owns the two pieces of process-wide state (the signing
secret and the allow-list), both fixed at construction, so a single
instance is shared by every connection without locking.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import Optional

from .acls import AllowList
from .signature import check_signature, derive_secret
from .ticket import Ticket

AUTH_COOKIE_NAME = ".auth"


class AccessResult(enum.Enum):
    NO_ACCESS = "no_access"
    HAS_ACCESS = "has_access"
    NO_TICKET = "no_ticket"
    TICKET_EXPIRED = "ticket_expired"


@dataclass(frozen=True, slots=True)
class CookieInstruction:
    """A ``Set-Cookie`` header waiting to be written."""

    name: str
    value: str
    path: str = "/"
    expires: Optional[datetime] = None
    max_age: Optional[int] = None
    http_only: bool = False

    def header(self) -> str:
        parts = [f"{self.name}={self.value}", f"Path={self.path}"]
        if self.expires is not None:
            parts.append(f"Expires={format_datetime(self.expires, usegmt=True)}")
        if self.max_age is not None:
            parts.append(f"Max-Age={self.max_age}")
        if self.http_only:
            parts.append("HttpOnly")
        return "; ".join(parts)


class AuthService:
    def __init__(
        self,
        bot_token: str,
        max_auth_age: timedelta,
        allowed: AllowList,
        bot_name: str = "",
    ) -> None:
        self._secret = derive_secret(bot_token)
        self.allowed = allowed
        self.max_auth_age = max_auth_age
        self.bot_name = bot_name

    def check_access(
        self, ticket: Optional[Ticket], now: Optional[datetime] = None
    ) -> AccessResult:
        if ticket is None:
            return AccessResult.NO_TICKET

        # tampered and missing look the same from outside
        if not check_signature(ticket, self._secret):
            return AccessResult.NO_TICKET

        auth_date = ticket.authenticated_at
        if auth_date is None:
            return AccessResult.TICKET_EXPIRED
        age = (now or datetime.now(tz=timezone.utc)) - auth_date
        if age > self.max_auth_age:
            return AccessResult.TICKET_EXPIRED

        if not self.allowed.is_allowed(ticket):
            return AccessResult.NO_ACCESS

        return AccessResult.HAS_ACCESS

    def login(self, ticket: Ticket) -> CookieInstruction:
        """Session cookie for a ticket that already passed ``check_access``.

        Expiry is anchored on ``auth_date``, so the session never outlives
        the ticket's own freshness window.
        """
        auth_date = ticket.authenticated_at
        if auth_date is None:
            raise ValueError("login() called with an unverified ticket")
        return CookieInstruction(
            name=AUTH_COOKIE_NAME,
            value=ticket.to_cookie_value(),
            expires=auth_date + self.max_auth_age,
            http_only=True,
        )

    def logout(self) -> CookieInstruction:
        return CookieInstruction(
            name=AUTH_COOKIE_NAME,
            value="",
            expires=datetime(1970, 1, 1, tzinfo=timezone.utc),
            max_age=0,
        )
