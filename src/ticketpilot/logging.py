"""Logging setup shared by the scanners, workers and HTTP server.

Every record written by a ticketpilot handler passes through
``RedactingFilter`` first. Git push URLs, installation tokens, App JWTs and
the Jira basic-auth header all show up in error text sooner or later, so the
redaction happens at the handler rather than at each call site.
"""

from __future__ import annotations

import json
import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_FILE = "ticketpilot.log"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5
DEFAULT_LOG_LEVEL = "INFO"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# httpx logs every request line at INFO, including Jira search URLs
NOISY_LOGGERS = ("httpx", "httpcore")

_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # push remotes built by host.git.authenticated_url
    (re.compile(r"x-access-token:[^@\s]+@"), "x-access-token:[REDACTED]@"),
    (re.compile(r"\bgh[pousr]_[A-Za-z0-9]{36,}"), "[GITHUB_TOKEN]"),
    (re.compile(r"\bgithub_pat_[A-Za-z0-9_]{22,}"), "[GITHUB_TOKEN]"),
    # App JWTs and installation tokens in Authorization headers
    (re.compile(r"Bearer [A-Za-z0-9._-]+"), "Bearer [REDACTED]"),
    # Jira username:api_token
    (re.compile(r"Basic [A-Za-z0-9+/=]+"), "Basic [REDACTED]"),
    (re.compile(r"\b(api_token|token)=[^&\s]+"), r"\1=[REDACTED]"),
]


def sanitize_for_log(text: str) -> str:
    """Redact credentials from text headed for a log line or ticket comment."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class RedactingFilter(logging.Filter):
    """Replaces a record's message with its sanitized rendering."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = sanitize_for_log(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = sanitize_for_log(self.formatException(record.exc_info))
        return json.dumps(payload)


def _formatter(fmt: str) -> logging.Formatter:
    if fmt == "json":
        return JSONFormatter()
    return logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(
    log_dir: str | Path | None = None,
    log_file: str = DEFAULT_LOG_FILE,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    level: str | None = None,
    console: bool = True,
    fmt: str = "console",
) -> logging.Logger:
    """Configure the ``ticketpilot`` logger hierarchy.

    Args:
        log_dir: Directory for the rotating log file. Falls back to
            TICKETPILOT_LOG_DIR, then 'logs'.
        log_file: Log file name.
        max_bytes: Size at which the file rotates.
        backup_count: Rotated files kept.
        level: Level name. Falls back to TICKETPILOT_LOG_LEVEL, then INFO.
        console: Also write to stderr.
        fmt: 'console' for pipe-separated text, 'json' for JSON lines.

    Returns:
        The ``ticketpilot`` logger.
    """
    log_dir = Path(log_dir or os.environ.get("TICKETPILOT_LOG_DIR", DEFAULT_LOG_DIR))
    log_dir.mkdir(parents=True, exist_ok=True)
    level = level or os.environ.get("TICKETPILOT_LOG_LEVEL", DEFAULT_LOG_LEVEL)
    log_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger("ticketpilot")
    logger.setLevel(log_level)
    logger.handlers.clear()

    log_path = log_dir / log_file
    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())

    formatter = _formatter(fmt)
    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        handler.addFilter(RedactingFilter())
        logger.addHandler(handler)

    if log_level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("ticketpilot logging initialized (level=%s, file=%s)", level, log_path)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a component, e.g. 'scanner.tickets' or 'host.github'."""
    if not name.startswith("ticketpilot."):
        name = f"ticketpilot.{name}"
    return logging.getLogger(name)


def truncate_output(output: str, max_length: int = 5000) -> str:
    """Cut agent output or an HTTP error body down to ``max_length`` chars."""
    if len(output) <= max_length:
        return output
    return output[:max_length] + f"\n... [truncated, {len(output) - max_length} more chars]"
