"""Process-wide logging setup for the API server and the operator CLI."""

from __future__ import annotations

import logging
from typing import Final

from .env import optional_env_var

LOG_FORMAT: Final[str] = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# chatty third-party loggers and the level they are capped at
QUIET_LOGGERS: Final[dict[str, int]] = {
    "httpx": logging.WARNING,
    "web3": logging.WARNING,
    "urllib3": logging.WARNING,
}


def configure_logging(*, level: int | None = None, force: bool = False) -> None:
    """Install a single stderr handler on the root logger.

    ``level`` defaults to ``LOG_LEVEL`` from the environment, then INFO. The call is
    a no-op when the root logger already has handlers, unless ``force`` is set.
    """

    if level is None:
        name = (optional_env_var("LOG_LEVEL") or "INFO").upper()
        level = logging.getLevelNamesMapping().get(name, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S", force=force)
    for logger_name, cap in QUIET_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(max(cap, level))
