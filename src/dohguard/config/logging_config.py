"""Root logger setup for the dohguard process.

Brief:
  Applies the ``logging`` section of the config: one level for the whole
  process, bracketed lowercase level tags, and stderr/file/syslog sinks.
  uvicorn and urllib3 loggers are folded into the same handlers so server
  access lines and upstream connection chatter share one format.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
import time
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .config_schema import LoggingConfig

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}

SYSLOG_ADDRESS = "/dev/log"

# Third-party loggers routed through the root handlers.
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")
_CHATTY_LOGGERS = ("urllib3",)


class TaggedFormatter(logging.Formatter):
    """
    Brief: "<utc time> [level] logger: message", or without the time.

    Inputs (constructor):
      - with_time: False for syslog, which stamps records itself
    """

    converter = time.gmtime

    def __init__(self, with_time: bool = True) -> None:
        fmt = "%(level_tag)s %(name)s: %(message)s"
        if with_time:
            fmt = "%(asctime)s " + fmt
        super().__init__(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")

    def format(self, record):
        record.level_tag = _TAGS.get(record.levelno, f"[lvl{record.levelno}]")
        return super().format(record)


def resolve_level(name: object) -> int:
    """Map a level name such as "warn" to its logging constant (default INFO)."""
    return LEVELS.get(str(name or "info").lower(), logging.INFO)


def uvicorn_level(name: object) -> str:
    """Level name in the spelling uvicorn.run() accepts ("warn" -> "warning")."""
    return logging.getLevelName(resolve_level(name)).lower()


def init_logging(cfg: Optional["LoggingConfig"] = None) -> None:
    """
    Brief: Replace the root handlers according to ``cfg``.

    Inputs:
      - cfg: LoggingConfig; None applies the defaults (info to stderr).

    Outputs:
      - None

    Notes:
      - Safe to call twice: existing root handlers are removed first.
      - urllib3 stays at WARNING unless the level is debug.
    """
    level = resolve_level(cfg.level if cfg is not None else "info")
    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    if cfg is None or cfg.stderr:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(TaggedFormatter())
        root.addHandler(handler)

    if cfg is not None and cfg.file:
        path = os.path.abspath(os.path.expanduser(cfg.file))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        handler.setFormatter(TaggedFormatter())
        root.addHandler(handler)

    if cfg is not None and cfg.syslog:
        try:
            handler = logging.handlers.SysLogHandler(address=SYSLOG_ADDRESS)
        except OSError as e:  # pragma: no cover - host without a syslog socket
            root.warning("Failed to configure syslog: %s", e)
        else:
            handler.setFormatter(TaggedFormatter(with_time=False))
            root.addHandler(handler)

    for name in _SERVER_LOGGERS:
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.propagate = True
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(
            logging.DEBUG if level <= logging.DEBUG else logging.WARNING
        )

    logging.captureWarnings(True)
