"""
gate.pages
~~~~~~~~~~
Error pages (401 / 403 / 500) rendered from the ``www`` directory.

The 401 and 403 pages embed the Telegram login widget, so they need the
bot's username.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlencode

from jinja2 import Environment, FileSystemLoader, TemplateError

logger = logging.getLogger(__name__)

LOGIN_URL = "/_/login"


class PageError(Exception):
    """Raised when not even the 500 page can be rendered."""


class PageRenderer:
    def __init__(self, www_dir: str | Path, bot_name: str = "") -> None:
        self.www_dir = Path(www_dir)
        self.bot_name = bot_name
        self.env = Environment(
            loader=FileSystemLoader(str(self.www_dir)),
            autoescape=True,
        )

    def render(self, name: str, **context) -> str:
        context.setdefault("bot_name", self.bot_name)
        context.setdefault("auth_url", LOGIN_URL)
        return self.env.get_template(name).render(**context)

    def render_safe(self, status: int, name: str, **context) -> Tuple[int, str]:
        """Render *name*; fall back to 500.html when that fails."""
        try:
            return status, self.render(name, **context)
        except (TemplateError, OSError) as e:
            logger.error('unable to render template "%s": %s', name, e)
        try:
            return 500, self.render("500.html")
        except (TemplateError, OSError) as e:
            logger.error('unable to render template "%s": %s', "500.html", e)
            raise PageError("500.html") from e


def login_page_context(return_url: Optional[str]) -> dict:
    """Widget ``data-auth-url`` that brings the user back where they were."""
    if not return_url or return_url == "/":
        return {"auth_url": LOGIN_URL}
    return {"auth_url": f"{LOGIN_URL}?{urlencode({'return_url': return_url})}"}
