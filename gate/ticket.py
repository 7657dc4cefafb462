"""
gate.ticket
~~~~~~~~~~~
Login-widget ticket: the signed set of identity fields Telegram hands
back after a successful widget login.

Two transport forms are understood:

* URL query parameters on ``/_/login`` (first value wins per name)
* a URL-escaped flat JSON object stored in the ``.auth`` cookie

Unknown fields are dropped at the boundary.  A ticket missing any of
``id``, ``username``, ``auth_date`` or ``hash`` is treated as absent.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qs, quote_plus, unquote_plus

FIELDS = ("id", "first_name", "last_name", "username", "photo_url", "auth_date", "hash")
REQUIRED_FIELDS = ("id", "username", "auth_date", "hash")


def normalize(params: Mapping[str, Any]) -> Dict[str, str]:
    """Keep only recognized fields, string-valued."""
    return {k: str(v) for k, v in params.items() if k in FIELDS and v is not None}


_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1
_DECIMAL = re.compile(r"[+-]?[0-9]+")
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def parse_int(raw: Optional[str]) -> Optional[int]:
    """Strict signed 64-bit decimal, None on anything else."""
    if raw is None or not _DECIMAL.fullmatch(raw):
        return None
    val = int(raw, 10)
    if not _INT64_MIN <= val <= _INT64_MAX:
        return None
    return val


@dataclass(frozen=True, slots=True)
class Ticket:
    id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    photo_url: Optional[str] = None
    auth_date: Optional[str] = None
    hash: Optional[str] = None

    # ------------------------------------------------------------------ #
    # construction
    # ------------------------------------------------------------------ #

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any]) -> Optional["Ticket"]:
        clean = normalize(params)
        if any(name not in clean for name in REQUIRED_FIELDS):
            return None
        return cls(**clean)

    @classmethod
    def from_query(cls, query: str) -> Optional["Ticket"]:
        """Build a ticket from a raw query string (``a=1&b=2``)."""
        parsed = parse_qs(query, keep_blank_values=True)
        return cls.from_mapping({k: v[0] for k, v in parsed.items() if v})

    @classmethod
    def from_cookie(cls, value: Optional[str]) -> Optional["Ticket"]:
        """Build a ticket from the cookie value; any decode failure -> None."""
        if not value or _BAD_ESCAPE.search(value):
            return None
        try:
            payload = json.loads(unquote_plus(value))
        except (ValueError, RecursionError):
            return None
        if not isinstance(payload, dict):
            return None
        if not all(isinstance(v, str) for v in payload.values()):
            return None
        return cls.from_mapping(payload)

    # ------------------------------------------------------------------ #
    # serialization
    # ------------------------------------------------------------------ #

    def as_dict(self) -> Dict[str, str]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    def to_cookie_value(self) -> str:
        return quote_plus(json.dumps(self.as_dict(), separators=(",", ":")))

    def data_check_string(self) -> str:
        """Sorted ``name=value`` lines of every field except ``hash``."""
        parts = sorted(f"{k}={v}" for k, v in self.as_dict().items() if k != "hash")
        return "\n".join(parts)

    # ------------------------------------------------------------------ #
    # decoded views
    # ------------------------------------------------------------------ #

    @property
    def user_id(self) -> Optional[int]:
        return parse_int(self.id)

    @property
    def user_name(self) -> str:
        return self.username or ""

    @property
    def signature(self) -> str:
        return self.hash or ""

    @property
    def authenticated_at(self) -> Optional[datetime]:
        """``auth_date`` as an aware UTC datetime, None if unparsable."""
        ts = parse_int(self.auth_date)
        if ts is None:
            return None
        try:
            return datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
