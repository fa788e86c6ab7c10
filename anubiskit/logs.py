"""Logging setup: JSON logs on stderr, per-request context, noise filtering."""

from __future__ import annotations

import json
import logging
import re
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TextIO

_SLOG_LEVELS = {"DEBUG": -4, "INFO": 0, "WARN": 4, "ERROR": 8}
_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}
_LEVEL_RE = re.compile(r"([A-Za-z]+)(?:([+-])(\d+))?")


def _parse_level(text: str) -> int:
    match = _LEVEL_RE.fullmatch(text.strip())
    base = _SLOG_LEVELS.get(match.group(1).upper()) if match else None
    if base is None:
        raise ValueError(f'slog: level string "{text}": unknown name')
    if match.group(2):
        offset = int(match.group(3))
        base += offset if match.group(2) == "+" else -offset
    # slog levels step by 4 between names; logging steps by 10.
    return max(1, 20 + (5 * base) // 2)


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname),
            "source": {
                "function": record.funcName,
                "file": record.pathname,
                "line": record.lineno,
            },
            "msg": record.getMessage(),
        }
        entry.update(getattr(record, "attrs", {}) or {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def init_logging(level: str) -> int:
    """Send JSON logs to stderr at the named level; return the level used."""
    try:
        program_level = _parse_level(level)
    except ValueError as exc:
        print(f"invalid log level {level}: {exc}, using info", file=sys.stderr)
        program_level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JSONFormatter())
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(program_level)
    return program_level


class _RequestLoggerAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        attrs = {**self.extra["attrs"], **extra.pop("attrs", {})}
        extra["attrs"] = attrs
        kwargs["extra"] = extra
        return msg, kwargs


def request_logger(environ: dict) -> logging.LoggerAdapter:
    """Return a logger that tags each record with the request's client headers."""
    attrs = {
        "user_agent": environ.get("HTTP_USER_AGENT", ""),
        "accept_language": environ.get("HTTP_ACCEPT_LANGUAGE", ""),
        "priority": environ.get("HTTP_PRIORITY", ""),
        "x-forwarded-for": environ.get("HTTP_X_FORWARDED_FOR", ""),
        "x-real-ip": environ.get("HTTP_X_REAL_IP", ""),
    }
    return _RequestLoggerAdapter(logging.getLogger("anubiskit"), {"attrs": attrs})


@dataclass
class ErrorLogFilter:
    """A writable stream that drops "context canceled" messages and passes the rest on."""

    unwrap: TextIO | None = None

    def write(self, message: str) -> int:
        if "context canceled" in message:
            return len(message)
        if self.unwrap is not None:
            return self.unwrap.write(message)
        return len(message)

    def flush(self) -> None:
        if self.unwrap is not None:
            self.unwrap.flush()


def filtered_http_logger() -> logging.Logger:
    """Return a logger writing to stderr that suppresses cancelled-request noise."""
    http_logger = logging.getLogger("anubiskit.http")
    for existing in list(http_logger.handlers):
        http_logger.removeHandler(existing)
    handler = logging.StreamHandler(ErrorLogFilter(sys.stderr))
    handler.setFormatter(logging.Formatter("%(message)s"))
    http_logger.addHandler(handler)
    http_logger.propagate = False
    return http_logger