"""
gate.core
~~~~~~~~~
Non-blocking Telegram-login gate in front of a single HTTP backend.

    /_/login    check the widget ticket, set the session cookie, redirect
    /_/logout   drop the session cookie, redirect to /
    /*          check the session cookie, forward to the backend or
                answer with the 401 / 403 page
"""

from __future__ import annotations

import asyncio
import logging
import signal
import ssl
import time
from http import HTTPStatus
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, quote, urlsplit

from .acls import AllowList
from .auth import AUTH_COOKIE_NAME, AccessResult, AuthService, CookieInstruction
from .config import Config
from .logger import GateLogger, setup_logging
from .pages import PageError, PageRenderer, login_page_context
from .telegram import fetch_bot_name
from .ticket import Ticket

logger = logging.getLogger(__name__)

CRLF = b"\r\n"
BUFFER = 65_536
MAX_HEAD = 64 * 1024
SHUTDOWN_TIMEOUT = 5.0
_URL_SAFE = ":/?#[]@!$&'()*+,;=%~"

LOGIN_PATH = "/_/login"
LOGOUT_PATH = "/_/logout"


def run_gate(config: Config) -> None:
    setup_logging(config.log_level)
    try:
        asyncio.run(_main(config))
    except KeyboardInterrupt:
        logger.info("gate shut down")


async def _main(config: Config) -> None:
    allowed = AllowList.parse(config.allowed_users)
    allowed.log()
    bot_name = config.bot_name or await fetch_bot_name(config.bot_token)
    auth = AuthService(config.bot_token, config.max_auth_age, allowed, bot_name=bot_name)
    gate = GateServer(
        config,
        auth,
        PageRenderer(config.www_dir, bot_name),
        GateLogger(config.log_path),
    )
    await gate.serve_forever()


def outcome_response(result: AccessResult) -> Optional[Tuple[int, str, bool]]:
    """(status, page, clear_cookie) for a rejected content request.

    None means the request may go through.
    """
    if result is AccessResult.HAS_ACCESS:
        return None
    if result is AccessResult.NO_ACCESS:
        return 403, "403.html", True
    return 401, "401.html", False


class GateServer:
    def __init__(
        self,
        cfg: Config,
        auth: AuthService,
        pages: PageRenderer,
        access_log: GateLogger,
    ) -> None:
        self.cfg = cfg
        self.auth = auth
        self.pages = pages
        self.logger = access_log
        self._server: Optional[asyncio.AbstractServer] = None

    async def start(self) -> asyncio.AbstractServer:
        self._server = await asyncio.start_server(
            self._handle_client,
            host=self.cfg.listen_host,
            port=self.cfg.listen_port,
        )
        bind_str = ", ".join(str(s.getsockname()) for s in self._server.sockets)
        backend = self.cfg.backend
        logger.info("listening on %s, backend %s", bind_str, backend.url)
        self.logger.startup(bind_str, backend.url, self.auth.bot_name)
        return self._server

    async def serve_forever(self) -> None:
        server = await self.start()
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:  # windows
                pass

        async with server:
            await stop.wait()
            server.close()
            try:
                await asyncio.wait_for(server.wait_closed(), SHUTDOWN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("unable to shut down gracefully, open connections dropped")
        logger.info("gate shut down")

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peer = writer.get_extra_info("peername")
        peer_ip = peer[0] if peer else "-"

        try:
            req_line, headers = await _read_request_head(reader)
            method, target, version = _parse_request_line(req_line)
            path, query = _split_target(target)

            if path == LOGIN_PATH:
                await self._login(writer, peer_ip, query)
            elif path == LOGOUT_PATH:
                await self._logout(writer, peer_ip)
            else:
                await self._content(
                    reader, writer, peer_ip, method, target, version, headers
                )

        except GateError as e:
            self.logger.error(peer_ip, e.status, e.msg)
            try:
                await _send_simple_response(writer, e.status, e.msg.encode())
            except ConnectionError:
                pass
        except ConnectionError:
            pass
        except Exception:
            logger.exception("unhandled error while serving %s", peer_ip)
            try:
                await self._send_page(writer, 500, "500.html")
            except (ConnectionError, PageError):
                pass
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    # ------------------------------------------------------------------ #
    # routes
    # ------------------------------------------------------------------ #

    async def _login(self, writer: asyncio.StreamWriter, peer_ip: str, query: str) -> None:
        ticket = Ticket.from_query(query)
        result = self.auth.check_access(ticket)
        if result is not AccessResult.HAS_ACCESS:
            self.logger.login_denied(
                peer_ip, result.value, ticket.user_name if ticket else ""
            )
            await self._send_page(writer, 403, "403.html")
            return

        cookie = self.auth.login(ticket)
        self.logger.login(ticket.user_id, ticket.user_name, peer_ip)
        await _send_redirect(writer, _return_url(query), cookie)

    async def _logout(self, writer: asyncio.StreamWriter, peer_ip: str) -> None:
        self.logger.logout(peer_ip)
        await _send_redirect(writer, "/", self.auth.logout())

    async def _content(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        peer_ip: str,
        method: str,
        target: str,
        version: str,
        headers: Dict[str, str],
    ) -> None:
        start_ts = time.time()
        cookies = parse_cookie_header(headers.get("cookie", ""))
        ticket = Ticket.from_cookie(cookies.get(AUTH_COOKIE_NAME))
        result = self.auth.check_access(ticket)

        rejection = outcome_response(result)
        if rejection is not None:
            status, page, clear_cookie = rejection
            self.logger.deny(peer_ip, target, result.value, ticket.user_name if ticket else "")
            await self._send_page(
                writer,
                status,
                page,
                cookie=self.auth.logout() if clear_cookie else None,
                **login_page_context(target),
            )
            return

        status, total = await self._forward_http(
            reader, writer, peer_ip, method, target, version, headers
        )
        self.logger.forward(
            ticket.user_id,
            ticket.user_name,
            peer_ip,
            method,
            target,
            status,
            total,
            int((time.time() - start_ts) * 1000),
        )

    # ------------------------------------------------------------------ #
    # upstream
    # ------------------------------------------------------------------ #

    async def _forward_http(
        self,
        client_reader: asyncio.StreamReader,
        client_writer: asyncio.StreamWriter,
        peer_ip: str,
        method: str,
        target: str,
        version: str,
        headers: Dict[str, str],
    ) -> Tuple[int, int]:
        backend = self.cfg.backend
        try:
            remote_reader, remote_writer = await asyncio.open_connection(
                backend.host,
                backend.port,
                ssl=_client_ssl_context() if backend.tls else None,
            )
        except OSError as e:
            raise GateError(502, f"Upstream connect failed: {e}") from e

        remote_writer.write(
            _rebuild_request_head(
                f"{method} {backend.base_path}{_origin_form(target)} {version}",
                headers,
                backend.netloc,
                peer_ip,
            )
        )
        await remote_writer.drain()

        # the request body keeps flowing while we wait for the status line;
        # the client side stays open until the response is through
        upload = asyncio.create_task(
            _pipe_stream(client_reader, remote_writer, close=False)
        )
        try:
            status_line = await remote_reader.readline()
            if not status_line:
                raise GateError(502, "Upstream closed without a response")
            client_writer.write(status_line)
            total = await _pipe_stream(remote_reader, client_writer)
            await upload
        finally:
            if not upload.done():
                upload.cancel()
            remote_writer.close()
        return _status_code(status_line), total + len(status_line)

    # ------------------------------------------------------------------ #
    # responses
    # ------------------------------------------------------------------ #

    async def _send_page(
        self,
        writer: asyncio.StreamWriter,
        status: int,
        name: str,
        cookie: Optional[CookieInstruction] = None,
        **context,
    ) -> None:
        status, html = self.pages.render_safe(status, name, **context)
        extra = [("Set-Cookie", cookie.header())] if cookie else []
        await _send_simple_response(
            writer, status, html.encode(), "text/html; charset=utf-8", extra
        )


class GateError(Exception):
    def __init__(self, status: int, msg: str):
        self.status = status
        self.msg = msg
        super().__init__(f"{status} {msg}")


async def _read_request_head(reader: asyncio.StreamReader) -> Tuple[bytes, Dict[str, str]]:
    head = b""
    while True:
        try:
            line = await reader.readline()
        except ValueError:  # LimitOverrunError is re-raised as ValueError
            raise GateError(431, "Request Header Fields Too Large") from None
        if not line:
            raise GateError(400, "Bad Request: EOF before headers complete")
        head += line
        if len(head) > MAX_HEAD:
            raise GateError(431, "Request Header Fields Too Large")
        if line == CRLF:
            break

    lines = head.split(CRLF)[:-2]
    if not lines:
        raise GateError(400, "Bad Request: empty head")

    req_line = lines[0]
    hdrs: Dict[str, str] = {}
    for raw in lines[1:]:
        if b":" in raw:
            k, v = raw.split(b":", 1)
            name = k.decode("latin-1").strip().lower()
            value = v.decode("latin-1").strip()
            if name in hdrs:
                sep = "; " if name == "cookie" else ", "
                hdrs[name] = f"{hdrs[name]}{sep}{value}"
            else:
                hdrs[name] = value
    return req_line, hdrs


def _parse_request_line(line: bytes) -> Tuple[str, str, str]:
    try:
        method, target, version = line.decode("latin-1").strip().split()
    except ValueError:
        raise GateError(400, "Bad Request: malformed request-line") from None
    if not version.startswith("HTTP/"):
        raise GateError(400, "Bad Request: malformed request-line")
    return method, target, version


def _split_target(target: str) -> Tuple[str, str]:
    """Path and query; absolute URIs are reduced to origin form."""
    if not target.startswith("/"):
        parts = urlsplit(target)
        target = parts.path or "/"
        if parts.query:
            target += "?" + parts.query
    path, _, query = target.partition("?")
    return path or "/", query


def _origin_form(target: str) -> str:
    path, query = _split_target(target)
    return f"{path}?{query}" if query else path


def _return_url(query: str) -> str:
    values = parse_qs(query).get("return_url")
    location = values[0] if values else ""
    if not location or "\r" in location or "\n" in location:
        return "/"
    return quote(location, safe=_URL_SAFE)


def parse_cookie_header(raw: str) -> Dict[str, str]:
    """``a=1; b=2`` -> {"a": "1", "b": "2"}; first occurrence wins."""
    cookies: Dict[str, str] = {}
    for part in raw.split(";"):
        name, sep, value = part.strip().partition("=")
        if not sep or not name:
            continue
        value = value.strip()
        if len(value) > 1 and value[0] == value[-1] == '"':
            value = value[1:-1]
        cookies.setdefault(name, value)
    return cookies


def _strip_auth_cookie(raw: str) -> str:
    kept = [
        p.strip()
        for p in raw.split(";")
        if p.strip() and p.strip().partition("=")[0] != AUTH_COOKIE_NAME
    ]
    return "; ".join(kept)


_HOP_BY_HOP = {
    "proxy-authorization",
    "proxy-connection",
    "connection",
    "keep-alive",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}


def _rebuild_request_head(
    req_line: str, headers: Dict[str, str], backend_netloc: str, peer_ip: str
) -> bytes:
    hop = set(_HOP_BY_HOP)
    for token in headers.get("connection", "").split(","):
        if token.strip():
            hop.add(token.strip().lower())

    head = bytearray(req_line.encode("latin-1") + CRLF)
    out: List[Tuple[str, str]] = [("host", backend_netloc)]
    for k, v in headers.items():
        if k in hop or k in ("host", "x-forwarded-for", "x-forwarded-host", "x-forwarded-proto"):
            continue
        if k == "cookie":
            v = _strip_auth_cookie(v)
            if not v:
                continue
        out.append((k, v))

    prior = headers.get("x-forwarded-for")
    out.append(("x-forwarded-for", f"{prior}, {peer_ip}" if prior else peer_ip))
    if "host" in headers:
        out.append(("x-forwarded-host", headers["host"]))
    out.append(("x-forwarded-proto", headers.get("x-forwarded-proto", "http")))
    out.append(("connection", "close"))

    for k, v in out:
        head.extend(f"{k}: {v}".encode("latin-1") + CRLF)
    head.extend(CRLF)
    return bytes(head)


def _status_code(status_line: bytes) -> int:
    try:
        return int(status_line.split()[1])
    except (IndexError, ValueError):
        return 0


async def _send_redirect(
    writer: asyncio.StreamWriter, location: str, cookie: CookieInstruction
) -> None:
    await _send_simple_response(
        writer,
        302,
        extra_headers=[("Location", location), ("Set-Cookie", cookie.header())],
    )


async def _send_simple_response(
    writer: asyncio.StreamWriter,
    status: int,
    body: bytes = b"",
    content_type: str = "text/plain; charset=utf-8",
    extra_headers: Optional[List[Tuple[str, str]]] = None,
) -> None:
    try:
        reason = HTTPStatus(status).phrase
    except ValueError:
        reason = "Error"
    head = f"HTTP/1.1 {status} {reason}\r\n"
    for k, v in extra_headers or []:
        head += f"{k}: {v}\r\n"
    if body:
        head += f"Content-Type: {content_type}\r\n"
    head += f"Content-Length: {len(body)}\r\nConnection: close\r\n\r\n"
    writer.write(head.encode("latin-1") + body)
    await writer.drain()


async def _pipe_stream(
    src: asyncio.StreamReader, dst: asyncio.StreamWriter, close: bool = True
) -> int:
    total = 0
    try:
        while not src.at_eof():
            chunk = await src.read(BUFFER)
            if not chunk:
                break
            dst.write(chunk)
            await dst.drain()
            total += len(chunk)
    except ConnectionError:
        pass
    finally:
        if close:
            dst.close()
            try:
                await dst.wait_closed()
            except ConnectionError:
                pass
    return total


def _client_ssl_context() -> ssl.SSLContext:
    return ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
