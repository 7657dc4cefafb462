"""
gate.logger
~~~~~~~~~~~
Human-readable console lines *and* JSON-lines file with daily rotation.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_ISO = "%Y-%m-%dT%H:%M:%SZ"

def _now() -> str:  # RFC-3339 without microseconds
    return datetime.now(tz=timezone.utc).strftime(_ISO)


class _PlainFormatter(logging.Formatter):
    """ e.g. 2025-06-19T15:07:02Z forward 42 @alice 127.0.0.1 GET /app 200 327B 89 ms """

    def format(self, record):  # type: ignore[override]
        if not isinstance(record.msg, dict):
            return super().format(record)
        d: Dict[str, Any] = record.msg

        parts = [
            d.get("ts", _now()),
            d["event"],
            "-" if d.get("user_id") is None else str(d["user_id"]),
            f'@{d["user"]}' if d.get("user") else "-",
            d.get("ip", "-"),
        ]
        if d["event"] == "forward":
            parts.extend(
                [
                    d.get("method", "-"),
                    d.get("url", "-"),
                    str(d.get("status", "-")),
                    f'{d.get("bytes", 0):,}B',
                    f'{d.get("ms", 0)} ms',
                ]
            )
        elif d["event"] in ("deny", "login_denied"):
            parts.extend([d.get("url", "-"), d.get("outcome", "")])
        elif d["event"] == "startup":
            parts.extend([d.get("listen", "-"), d.get("backend", "-"), d.get("bot", "")])
        elif d["event"] == "error":
            parts.extend([str(d.get("status", "-")), d.get("reason", "")])
        return " ".join(parts)


class _JSONFormatter(logging.Formatter):
    def format(self, record):  # type: ignore[override]
        if isinstance(record.msg, dict):
            return json.dumps(record.msg, separators=(",", ":"))
        return json.dumps(
            {"event": "log", "ts": _now(), "level": record.levelname, "msg": record.getMessage()},
            separators=(",", ":"),
        )


def setup_logging(level: str = "INFO") -> None:
    """Console output for the ``gate`` logger tree."""
    root = logging.getLogger("gate")
    root.setLevel(level)
    root.propagate = False
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in root.handlers):
        h = logging.StreamHandler()
        h.setFormatter(_PlainFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(h)


class GateLogger:
    def __init__(self, basename: Optional[str | Path] = None):
        log = logging.getLogger("gate.access")
        log.setLevel(logging.INFO)

        if basename is not None:
            basename = Path(basename).with_suffix("")  # gate
            jsonl_file = basename.with_suffix(".jsonl")

            # json lines
            h = logging.handlers.TimedRotatingFileHandler(
                jsonl_file, when="midnight", backupCount=7, encoding="utf-8"
            )
            h.setFormatter(_JSONFormatter())
            log.addHandler(h)

        self.log = log

    def startup(self, listen: str, backend: str, bot_name: str):
        self.log.info(
            {
                "event": "startup",
                "ts": _now(),
                "listen": listen,
                "backend": backend,
                "bot": bot_name,
            }
        )

    def login(self, user_id: Optional[int], user: str, ip: str):
        self.log.info(
            {"event": "login", "ts": _now(), "user_id": user_id, "user": user, "ip": ip}
        )

    def login_denied(self, ip: str, outcome: str, user: str = ""):
        self.log.warning(
            {
                "event": "login_denied",
                "ts": _now(),
                "ip": ip,
                "user": user,
                "url": "/_/login",
                "outcome": outcome,
            }
        )

    def logout(self, ip: str):
        self.log.info({"event": "logout", "ts": _now(), "ip": ip})

    def deny(self, ip: str, url: str, outcome: str, user: str = ""):
        self.log.info(
            {
                "event": "deny",
                "ts": _now(),
                "ip": ip,
                "user": user,
                "url": url,
                "outcome": outcome,
            }
        )

    def forward(
        self,
        user_id: Optional[int],
        user: str,
        ip: str,
        method: str,
        url: str,
        status: int,
        total_bytes: int,
        duration_ms: int,
    ):
        self.log.info(
            {
                "event": "forward",
                "ts": _now(),
                "user_id": user_id,
                "user": user,
                "ip": ip,
                "method": method,
                "url": url,
                "status": status,
                "bytes": total_bytes,
                "ms": duration_ms,
            }
        )

    def error(self, ip: str, status: int, reason: str):
        self.log.error(
            {"event": "error", "ts": _now(), "ip": ip, "status": status, "reason": reason}
        )
