"""
Logging for the BTPC wallet.

Only the ``btpc_wallet`` logger tree is configured; the host application's
root logger is left alone.  Two formats are available, selected by
``[logging] format``:

  - **human** – ``12:00:01 WARNING btpc_wallet.node: ...`` on stderr
  - **json**  – one JSON object per line

A ``[logging] file`` always receives JSON.  Every handler installed here
carries :class:`RedactingFilter`, which masks long hex / base64 runs so key
material or ciphertext never reaches a sink.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from pathlib import Path

from btpc_wallet.config import LoggingConfig

PACKAGE_LOGGER = "btpc_wallet"
HUMAN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
HUMAN_DATEFMT = "%H:%M:%S"

# 32+ bytes as hex, or base64 runs longer than any address
_SECRETISH = re.compile(r"\b[0-9a-fA-F]{64,}\b|[A-Za-z0-9+/]{100,}={0,2}")
REDACTED = "[redacted]"


def redact(text: str) -> str:
    return _SECRETISH.sub(REDACTED, text)


class RedactingFilter(logging.Filter):
    """Rewrite the rendered message with long encoded runs masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            entry["error"] = type(record.exc_info[1]).__name__
            entry["traceback"] = redact(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


def level_for_verbosity(count: int, base: str = "WARNING") -> str:
    """Map a ``-v`` count onto a level name: 1 → INFO, 2+ → DEBUG."""
    if count <= 0:
        return base.upper()
    return "INFO" if count == 1 else "DEBUG"


def _handler(handler: logging.Handler, formatter: logging.Formatter) -> logging.Handler:
    handler.setFormatter(formatter)
    handler.addFilter(RedactingFilter())
    return handler


def setup_logging(config: LoggingConfig | None = None, verbosity: int = 0) -> logging.Logger:
    """
    Install handlers on the ``btpc_wallet`` logger and return it.

    *verbosity* (the ``-v`` count) raises the configured level.  Calling
    this again replaces the handlers from the previous call.
    """
    config = config or LoggingConfig()
    if config.format not in ("human", "json"):
        raise ValueError(f"unknown log format: {config.format!r}")
    level_name = level_for_verbosity(verbosity, config.level)
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ValueError(f"unknown log level: {config.level!r}")

    log = logging.getLogger(PACKAGE_LOGGER)
    for old in list(log.handlers):
        log.removeHandler(old)
        old.close()
    log.setLevel(level)
    log.propagate = False

    if config.format == "json":
        log.addHandler(_handler(logging.StreamHandler(sys.stderr), JsonFormatter()))
    else:
        log.addHandler(_handler(
            logging.StreamHandler(sys.stderr),
            logging.Formatter(HUMAN_FORMAT, HUMAN_DATEFMT),
        ))

    if config.file:
        path = Path(config.file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        log.addHandler(_handler(logging.FileHandler(path, encoding="utf-8"), JsonFormatter()))
    return log
