"""
gate.telegram
~~~~~~~~~~~~~
Bot identity lookup.  The login widget needs the bot's @username; we ask
the Bot API once at startup unless TG_BOT_NAME is set.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .config import ConfigError

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org"


async def fetch_bot_name(
    bot_token: str,
    *,
    api_url: str = API_URL,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(f"{api_url}/bot{bot_token}/getMe")
            data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ConfigError(f"unable to reach telegram: {type(e).__name__}") from None

    if not isinstance(data, dict) or not data.get("ok"):
        desc = data.get("description", "unknown error") if isinstance(data, dict) else "bad reply"
        raise ConfigError(f"telegram rejected the bot token: {desc}")

    result = data.get("result")
    name = result.get("username", "") if isinstance(result, dict) else ""
    if not name:
        raise ConfigError("telegram getMe returned no username")

    logger.info("connected to telegram as %s", name)
    return name
