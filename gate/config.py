from dataclasses import dataclass
from datetime import timedelta
import os
from urllib.parse import urlsplit
from dotenv import load_dotenv

DEFAULT_MAX_AUTH_AGE = 14 * 24 * 3600
_DEFAULT_PORTS = {"http": 80, "https": 443}


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class Backend:
    host: str
    port: int
    base_path: str
    scheme: str = "http"

    @property
    def tls(self) -> bool:
        return self.scheme == "https"

    @property
    def netloc(self) -> str:
        if self.port == _DEFAULT_PORTS[self.scheme]:
            return self.host
        return f"{self.host}:{self.port}"

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.netloc}{self.base_path}"


@dataclass
class Config:
    bot_token: str
    allowed_users: str
    backend: Backend
    listen_host: str
    listen_port: int
    bot_name: str
    max_auth_age: timedelta
    www_dir: str
    log_path: str
    log_level: str


def _require(key: str) -> str:
    val = os.getenv(key, "").strip()
    if not val:
        raise ConfigError(f"missing env variable {key}")
    return val


def parse_backend(raw: str) -> Backend:
    parts = urlsplit(raw)
    if parts.scheme not in _DEFAULT_PORTS or not parts.hostname:
        raise ConfigError(f"BACKEND_URL must be http[s]://host[:port][/path], got {raw!r}")
    try:
        port = parts.port or _DEFAULT_PORTS[parts.scheme]
    except ValueError as e:
        raise ConfigError(f"bad port in BACKEND_URL {raw!r}") from e
    return Backend(
        host=parts.hostname,
        port=port,
        base_path=parts.path.rstrip("/"),
        scheme=parts.scheme,
    )


def parse_listen_addr(raw: str) -> tuple[str, int]:
    host, sep, port = raw.rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigError(f"LISTEN_ADDR must be host:port, got {raw!r}")
    return host or "0.0.0.0", int(port)


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        val = int(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from e
    if val <= 0:
        raise ConfigError(f"{key} must be positive, got {val}")
    return val


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_config() -> Config:
    load_dotenv(override=True)
    log_level = os.getenv("GATE_LOG_LEVEL", "INFO").strip().upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigError(f"GATE_LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}")
    listen_host, listen_port = parse_listen_addr(os.getenv("LISTEN_ADDR", "0.0.0.0:8000"))
    return Config(
        bot_token=_require("TG_BOT_TOKEN"),
        allowed_users=_require("TG_ALLOWED_USERS"),
        backend=parse_backend(_require("BACKEND_URL")),
        listen_host=listen_host,
        listen_port=listen_port,
        bot_name=os.getenv("TG_BOT_NAME", "").strip().lstrip("@"),
        max_auth_age=timedelta(seconds=_int_env("GATE_MAX_AUTH_AGE", DEFAULT_MAX_AUTH_AGE)),
        www_dir=os.getenv("GATE_WWW_DIR", "www"),
        log_path=os.getenv("GATE_LOG_PATH", "gate.log"),
        log_level=log_level,
    )
