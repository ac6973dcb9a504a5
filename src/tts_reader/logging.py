"""Structured logging for tts-reader.

Every component logs through the standard ``logging`` tree under the
``tts-reader.*`` names.  The file sink is a rotating JSON-lines log:

* **RotatingFileHandler** – 5 MB max, 3 backups.
* **Structured JSON** – each line is a JSON object with ``timestamp``,
  ``level``, ``logger``, ``message``, and optional ``context`` fields.
* **Log levels** – DEBUG for per-chunk progress, INFO for lifecycle
  events, WARNING for recoverable failures, ERROR for playback failures.

Logging is observability only.  Nothing reads a logger to decide what
to do next, so a missing or broken handler never changes behaviour.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from logging.handlers import RotatingFileHandler
from typing import Any


DEFAULT_LOG_FILE = os.path.join(tempfile.gettempdir(), "tts-reader.log")

MAX_BYTES = 5 * 1024 * 1024  # 5 MB
BACKUP_COUNT = 3


class _JsonFormatter(logging.Formatter):
    """Emit each log record as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S.") + f"{int(record.msecs):03d}",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        ctx = getattr(record, "context", None)
        if ctx:
            entry["context"] = ctx
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _PlainFormatter(logging.Formatter):
    """One-line formatter for console output from the CLI."""

    def format(self, record: logging.LogRecord) -> str:
        ts = self.formatTime(record, datefmt="%Y-%m-%d %H:%M:%S")
        return f"[{ts}] {record.levelname}: {record.getMessage()}"


def _make_handler(
    path: str,
    formatter: logging.Formatter,
    max_bytes: int = MAX_BYTES,
    backup_count: int = BACKUP_COUNT,
) -> RotatingFileHandler:
    """Create a RotatingFileHandler that writes to *path*."""
    os.makedirs(os.path.dirname(path) or tempfile.gettempdir(), exist_ok=True)
    handler = RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setFormatter(formatter)
    return handler


_configured: set[str] = set()


def get_logger(
    name: str,
    log_file: str = DEFAULT_LOG_FILE,
    level: int = logging.DEBUG,
    *,
    json_format: bool = True,
) -> logging.Logger:
    """Return a logger that writes structured JSON to *log_file*.

    Calling this multiple times with the same *name* and *log_file*
    returns the same logger with a single handler attached.  If the log
    file cannot be opened the logger is still returned, just without
    the file handler.
    """
    logger = logging.getLogger(name)
    key = f"{name}:{log_file}"
    if key not in _configured:
        fmt = _JsonFormatter() if json_format else _PlainFormatter()
        try:
            handler = _make_handler(log_file, fmt)
        except OSError:
            _configured.add(key)
            return logger
        handler.setLevel(level)
        logger.addHandler(handler)
        logger.setLevel(level)
        _configured.add(key)
    return logger


def enable_console(level: int = logging.INFO) -> None:
    """Mirror ``tts-reader.*`` records to stderr (used by ``--verbose``)."""
    root = logging.getLogger("tts-reader")
    handler = logging.StreamHandler()
    handler.setFormatter(_PlainFormatter())
    handler.setLevel(level)
    root.addHandler(handler)
    if root.level == logging.NOTSET or root.level > level:
        root.setLevel(level)


def log_context(
    *,
    text_preview: str = "",
    chunk_index: int | None = None,
    duration_ms: float | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a context dict for structured log entries.

    Usage::

        _log.warning("chunk failed", extra={"context": log_context(
            chunk_index=3, text_preview="Hello..."
        )})
    """
    ctx: dict[str, Any] = {}
    if text_preview:
        ctx["text_preview"] = text_preview[:80]
    if chunk_index is not None:
        ctx["chunk_index"] = chunk_index
    if duration_ms is not None:
        ctx["duration_ms"] = round(duration_ms, 1)
    ctx.update(extra)
    return ctx


def parse_log_line(line: str) -> dict[str, Any] | None:
    """Try to parse a structured JSON log line.

    Returns ``None`` for blank or non-JSON lines.
    """
    line = line.strip()
    if not line:
        return None
    try:
        return json.loads(line)
    except (json.JSONDecodeError, ValueError):
        return None


def read_log_tail(path: str = DEFAULT_LOG_FILE, lines: int = 50) -> list[str]:
    """Read the last *lines* lines from a log file.

    Returns an empty list if the file does not exist or is unreadable.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read().strip()
        if not content:
            return []
        return content.split("\n")[-lines:]
    except OSError:
        return []
