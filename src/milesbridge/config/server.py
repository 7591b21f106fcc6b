"""HTTP server configuration values."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from .env import optional_env_var
from .errors import ConfigurationError

DEFAULT_HOST: Final[str] = "127.0.0.1"
DEFAULT_PORT: Final[int] = 3000


@dataclass(frozen=True, slots=True)
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    # run the escrow poller inside the API process
    poll_in_process: bool = True
    admin_api_token: str | None = None


def get_server_config() -> ServerConfig:
    raw_port = optional_env_var("PORT")
    try:
        port = int(raw_port) if raw_port is not None else DEFAULT_PORT
    except ValueError as exc:
        raise ConfigurationError(f"PORT must be an integer, got {raw_port!r}") from exc
    poll = (optional_env_var("ESCROW_POLL_IN_PROCESS") or "true").lower()
    return ServerConfig(
        host=optional_env_var("HOST") or DEFAULT_HOST,
        port=port,
        poll_in_process=poll not in {"0", "false", "no", "off"},
        admin_api_token=optional_env_var("ADMIN_API_TOKEN"),
    )
