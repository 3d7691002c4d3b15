"""Logging setup for the contextguard command-line tools.

Governance code logs with ``extra={"tool": ...}`` or ``extra={"server": ...}``;
:class:`GovernanceFormatter` renders that context as a trailing
``[tool=fetch]`` / ``[server=docs]`` tag so governor and audit lines can be
grepped per tool or per server.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..services.settings import Settings

__all__ = ["GovernanceFormatter", "configure_from_settings", "level_for", "setup_logging"]

LOG_DIR_ENV = "CONTEXTGUARD_LOG_DIR"
LOG_FILENAME = "contextguard.log"
CONTEXT_FIELDS: tuple[str, ...] = ("tool", "server")
_THIRD_PARTY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "mcp", "anyio", "asyncio")
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_MAX_BYTES = 1_000_000
_BACKUPS = 3


class GovernanceFormatter(logging.Formatter):
    """Appends the ``tool``/``server`` context attached through ``extra``."""

    def __init__(self, fmt: str = _FORMAT) -> None:
        super().__init__(fmt=fmt, datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        context = [
            f"{name}={getattr(record, name)}"
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        ]
        if not context:
            return text
        head, newline, tail = text.partition("\n")
        return f"{head} [{' '.join(context)}]{newline}{tail}"


def level_for(debug: bool) -> int:
    return logging.DEBUG if debug else logging.INFO


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
) -> Path | None:
    """Install contextguard handlers on the root logger, replacing earlier ones.

    Console output goes to stderr. A rotating ``contextguard.log`` is written
    only when ``log_dir`` (or ``CONTEXTGUARD_LOG_DIR``) is given; its path is
    returned, otherwise ``None``.
    """

    formatter = GovernanceFormatter()
    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler())

    log_path: Path | None = None
    target = log_dir or os.environ.get(LOG_DIR_ENV)
    if target:
        directory = Path(target).expanduser()
        directory.mkdir(parents=True, exist_ok=True)
        log_path = directory / LOG_FILENAME
        handlers.append(
            logging.handlers.RotatingFileHandler(
                log_path, maxBytes=_MAX_BYTES, backupCount=_BACKUPS, encoding="utf-8"
            )
        )

    for handler in handlers:
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers or [logging.NullHandler()], force=True)

    # Transport chatter only matters when something is wrong
    third_party_level = max(level, logging.WARNING)
    for name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)
    return log_path


def configure_from_settings(
    settings: "Settings",
    *,
    verbose: bool = False,
    log_dir: Path | str | None = None,
) -> Path | None:
    """Configure logging at DEBUG when ``verbose`` or ``settings.debug_logging`` is set."""

    return setup_logging(level_for(verbose or settings.debug_logging), log_dir=log_dir)
