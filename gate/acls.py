"""
gate.acls
~~~~~~~~~
Static allow-list of Telegram users, from TG_ALLOWED_USERS:

    TG_ALLOWED_USERS="123456, @alice; https://t.me/bob"

Numeric tokens are user IDs, anything else is a handle.  Built once at
startup and only ever read afterwards.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import FrozenSet, List

from .ticket import Ticket, parse_int

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[,; ]")
_HANDLE_PREFIXES = ("@", "t.me/", "http://t.me/", "https://t.me/")


def _strip_handle(token: str) -> str:
    # applied in order, each at most once
    for prefix in _HANDLE_PREFIXES:
        if token.startswith(prefix):
            token = token[len(prefix):]
    return token


@dataclass(frozen=True, slots=True)
class AllowList:
    user_ids: FrozenSet[int] = field(default_factory=frozenset)
    user_names: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def parse(cls, raw: str) -> "AllowList":
        ids: set[int] = set()
        names: set[str] = set()
        for token in _SEPARATORS.split(raw or ""):
            token = token.strip()
            if not token:
                continue
            uid = parse_int(token)
            if uid is not None:
                ids.add(uid)
                continue
            names.add(_strip_handle(token))
        return cls(user_ids=frozenset(ids), user_names=frozenset(names))

    def __bool__(self) -> bool:
        return bool(self.user_ids or self.user_names)

    def is_allowed(self, ticket: Ticket) -> bool:
        """True if the ticket's ID or raw username is listed."""
        if ticket.user_id in self.user_ids:
            return True
        return ticket.user_name in self.user_names

    def describe(self) -> List[str]:
        lines = [f"- {uid}" for uid in sorted(self.user_ids)]
        lines.extend(f"- @{name}" for name in sorted(self.user_names))
        return lines

    def log(self) -> None:
        if not self:
            logger.warning("allow-list is empty, every login will be refused")
            return
        logger.info("access is configured for user(s):")
        for line in self.describe():
            logger.info(line)
