import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 12345
DEFAULT_PASSWORD = "PleaseGiveUsExtraCredit:)"
DEFAULT_BACKLOG = 16
DEFAULT_SHUTDOWN_GRACE = 2.0
MAX_PASSWORD_ATTEMPTS = 5


@dataclass
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    password: str = DEFAULT_PASSWORD
    log_level: str = "INFO"
    backlog: int = DEFAULT_BACKLOG
    shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE
    max_attempts: int = MAX_PASSWORD_ATTEMPTS


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def check_port(port: int) -> int:
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range: {port}")
    return port


def load_server_config(port: Optional[int] = None) -> ServerConfig:
    """
    Build the server settings from the environment (and .env, if present).

    An explicit `port` (from the command line) beats CHAT_PORT.
    """
    load_dotenv()

    cfg = ServerConfig(
        host=os.getenv("CHAT_HOST", DEFAULT_HOST),
        port=_env_int("CHAT_PORT", DEFAULT_PORT),
        password=os.getenv("CHAT_PASSWORD", DEFAULT_PASSWORD),
        log_level=os.getenv("CHAT_LOG_LEVEL", "INFO").upper(),
        backlog=_env_int("CHAT_BACKLOG", DEFAULT_BACKLOG),
        shutdown_grace=_env_float("CHAT_SHUTDOWN_GRACE", DEFAULT_SHUTDOWN_GRACE),
    )
    if port is not None:
        cfg.port = port
    check_port(cfg.port)
    return cfg


def default_client_port() -> int:
    load_dotenv()
    return check_port(_env_int("CHAT_PORT", DEFAULT_PORT))
