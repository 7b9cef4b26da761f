"""
Structured logging configuration for QCC wallet tooling.

Supports two output formats:
  - **human** – coloured, single-line, readable
  - **json**  – newline-delimited JSON for log aggregators

Every handler installed here carries a filter that masks anything shaped
like a private key or signature, so key material never reaches a log sink
even if a caller formats one into a message.

Usage:
    from qcc_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", log_file="qcc.log")
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from qcc_core.config import LoggingConfig

# 64+ hex chars: private keys, public keys, signatures.  Addresses are 44.
_SECRET_RE = re.compile(r"\b[0-9a-fA-F]{64,}\b")

_QCC_LOGGERS = ("qcc_signing", "qcc_client", "qcc_keyfile", "qcc_staking", "qcc_cli")


class _RedactKeysFilter(logging.Filter):
    """Replace long hex runs in the rendered message with a placeholder."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        redacted = _SECRET_RE.sub("<redacted>", msg)
        if redacted != msg:
            record.msg = redacted
            record.args = None
        return True


class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


class _HumanFormatter(logging.Formatter):
    """Coloured, concise single-line format."""

    COLOURS = {
        "DEBUG": "\033[36m",     # cyan
        "INFO": "\033[32m",      # green
        "WARNING": "\033[33m",   # yellow
        "ERROR": "\033[31m",     # red
        "CRITICAL": "\033[1;31m",  # bold red
    }
    RESET = "\033[0m"

    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        colour = self.COLOURS.get(record.levelname, "") if self.colour else ""
        reset = self.RESET if self.colour else ""
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = (
            f"{colour}{ts} [{record.levelname:<7}]{reset} "
            f"{record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the root logger for the wallet tools.

    Parameters
    ----------
    level : str
        One of DEBUG, INFO, WARNING, ERROR, CRITICAL.
    fmt : str
        ``"human"`` for coloured single-line output, ``"json"`` for
        newline-delimited JSON.
    log_file : str, optional
        If provided, logs are *also* written to this file (always in JSON
        format for machine parsing).
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove any existing handlers (avoid duplicates on reload)
    root.handlers.clear()
    redact = _RedactKeysFilter()

    # --- Console handler ---
    console = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        console.setFormatter(_JSONFormatter())
    else:
        console.setFormatter(_HumanFormatter(colour=sys.stderr.isatty()))
    console.addFilter(redact)
    root.addHandler(console)

    # --- Optional file handler ---
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path))
        fh.setFormatter(_JSONFormatter())  # always JSON for files
        fh.addFilter(redact)
        root.addHandler(fh)

    # aiohttp access/client chatter stays at WARNING unless debugging
    if root.level > logging.DEBUG:
        logging.getLogger("aiohttp").setLevel(logging.WARNING)
    for name in _QCC_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)


def setup_logging_from_config(cfg: LoggingConfig) -> None:
    """Apply a :class:`qcc_core.config.LoggingConfig` section."""
    setup_logging(level=cfg.level, fmt=cfg.format, log_file=cfg.file)
