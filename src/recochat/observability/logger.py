"""
observability/logger.py — RecoChat Structured Logger

Sets up structlog with:
  - JSON output to a rotating log file (stdout stays clean for the chat UI)
  - Optional human-readable console output (dev mode) or JSON (pipe mode)
  - Consistent fields on every log line: timestamp, level, event, session_id
  - httpx / httpcore request chatter held back to WARNING so a slow-starting
    backend does not flood the log with one INFO line per attempt

Usage:
    from recochat.observability.logger import get_logger, setup_logging
    setup_logging(level="INFO", log_dir="./data/logs", console_output=False)
    log = get_logger(__name__)
    log.info("turn.attempt.start", attempt=1, session_id="...")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

# ─────────────────────────────────────────────────────────────────────────────
# Third-party loggers that log every request at INFO.
# ─────────────────────────────────────────────────────────────────────────────
_QUIET_LOGGERS = [
    "httpx",
    "httpcore",
    "asyncio",
]


def _quiet_noisy_loggers() -> None:
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: Optional[bool] = None,  # None = auto-detect from tty
    console_output: bool = False,
    max_bytes: int = 100 * 1024 * 1024,   # 100 MB
    backup_count: int = 5,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    Args:
        level:          Log level string — DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:        Directory for rotating log files.
        json_format:    If True, console emits JSON (pipe mode).
                        If False, console uses coloured human-readable format.
                        If None (default), pretty on a TTY, JSON otherwise.
        console_output: Whether to emit logs to stderr at all. Off by default
                        because the REPL owns the terminal.
        max_bytes:      Max size of each log file before rotation.
        backup_count:   Number of rotated log files to keep.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        json_format = not sys.stderr.isatty()

    # ── Shared structlog processors ───────────────────────────────────────────
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    # ── File handler (always JSON) ────────────────────────────────────────────
    handlers: list[logging.Handler] = []

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_dir / "recochat.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(numeric_level)
    handlers.append(file_handler)

    # ── Console handler (JSON or pretty) ─────────────────────────────────────
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        handlers.append(console_handler)

    # ── Configure stdlib logging (structlog routes through it) ────────────────
    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=handlers,
        force=True,
    )
    _quiet_noisy_loggers()

    # ── Configure structlog ───────────────────────────────────────────────────
    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    # File always uses JSON regardless of console format
    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )

    for handler in handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            handler.setFormatter(file_formatter)
        else:
            handler.setFormatter(console_formatter)


def get_logger(name: str = "recochat", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a bound logger with optional initial context values.

    Args:
        name:           Logger name, typically __name__ of the calling module.
        **initial_values: Key-value pairs permanently bound to this logger instance.

    Example:
        log = get_logger(__name__, component="transport")
        log.info("transport.request", endpoint="/api/agent")
        # → {"event": "transport.request", "endpoint": "/api/agent",
        #    "component": "transport", "logger": "recochat.brain.transport", ...}
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_session(session_id: str) -> None:
    """
    Bind the conversation id to every log line emitted in this async context.

    Called by the orchestrator at the start of a turn; structlog's contextvars
    integration carries it into the transport and store without threading it
    through every call.
    """
    structlog.contextvars.bind_contextvars(session_id=session_id)


def clear_session() -> None:
    """Drop the bound conversation id at the end of a turn."""
    structlog.contextvars.unbind_contextvars("session_id")
