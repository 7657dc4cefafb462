"""
gate.signature
~~~~~~~~~~~~~~
Telegram login-widget signature check.

    secret   = SHA256(bot_token)
    expected = hex(HMAC_SHA256(secret, data_check_string))
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any, Dict, Mapping

from .config import ConfigError
from .ticket import Ticket, normalize


def derive_secret(bot_token: str) -> bytes:
    """Derive the HMAC key from the bot token. Done once, at startup."""
    if not bot_token or not bot_token.strip():
        raise ConfigError("bot token is empty, cannot derive signing secret")
    return hashlib.sha256(bot_token.encode()).digest()


def expected_hash(ticket: Ticket, secret: bytes) -> str:
    msg = ticket.data_check_string().encode()
    return hmac.new(secret, msg, hashlib.sha256).hexdigest()


def check_signature(ticket: Ticket, secret: bytes) -> bool:
    # bytes, not str: compare_digest rejects non-ASCII str input
    return hmac.compare_digest(
        expected_hash(ticket, secret).encode(), ticket.signature.encode()
    )


def sign(params: Mapping[str, Any], secret: bytes) -> Dict[str, str]:
    """Return *params* normalized, with a valid ``hash`` attached.

    Mirrors what Telegram does on its side; handy for tests and for
    minting a ticket against a local gate.
    """
    clean = normalize(params)
    clean.pop("hash", None)
    unsigned = Ticket(**clean)
    clean["hash"] = expected_hash(unsigned, secret)
    return clean
