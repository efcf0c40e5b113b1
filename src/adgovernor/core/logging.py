"""
Logging for AdGovernor.

Records carry optional governor context (account, operation label, retry
attempt, wait, page number) as ``extra`` attributes. The console shows
them as a compact prefix; the JSON-lines file keeps them as fields.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson
from rich.console import Console
from rich.text import Text

ROOT_LOGGER = "adgovernor"

# Extra record attributes carried into structured output
CONTEXT_FIELDS = ("account_id", "context", "attempt", "retry_after_ms", "page")

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("httpx", "httpcore")

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def json_dumps(obj: Any) -> str:
    return orjson.dumps(obj, default=str).decode("utf-8")


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Governor context attached to a record, skipping unset fields."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record, context fields flattened in."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_context(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json_dumps(entry)


class RichConsoleHandler(logging.Handler):
    """Colour records by level and prefix them with their account."""

    STYLES = {
        logging.DEBUG: "dim",
        logging.INFO: "",
        logging.WARNING: "yellow",
        logging.ERROR: "red",
        logging.CRITICAL: "bold red",
    }

    def __init__(self, console: Console | None = None, level: int = logging.INFO):
        super().__init__(level)
        self.console = console or Console(stderr=True)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = Text()
            account_id = getattr(record, "account_id", None)
            if account_id:
                line.append(f"[{account_id}] ", style="cyan")
            line.append(self.format(record), style=self.STYLES.get(record.levelno, ""))
            self.console.print(line)
            if record.exc_info:
                self.console.print_exception()
        except Exception:
            self.handleError(record)


def _console_handler(level: int, rich_console: bool) -> logging.Handler:
    if rich_console:
        handler: logging.Handler = RichConsoleHandler(level=level)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
        handler.setLevel(level)
    return handler


def _file_handler(log_file: Path | str, json_format: bool) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FORMAT))
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    json_format: bool = True,
    rich_console: bool = True,
) -> logging.Logger:
    """Configure the ``adgovernor`` logger.

    Replaces any handlers from an earlier call, so it is safe to call once
    per CLI command.

    Args:
        level: Console log level name
        log_file: Also write every record (DEBUG and up) to this file
        json_format: Write the file as JSON lines rather than plain text
        rich_console: Use Rich on the console instead of a plain stream

    Returns:
        The configured ``adgovernor`` logger
    """
    numeric_level = logging.getLevelName(level.upper())
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if log_file else numeric_level)

    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    logger.addHandler(_console_handler(numeric_level, rich_console))
    if log_file:
        logger.addHandler(_file_handler(log_file, json_format))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Logger under the ``adgovernor`` namespace."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}" if name else ROOT_LOGGER)


class ContextualLogger(logging.LoggerAdapter):
    """Adapter that stamps bound governor context onto every record.

    Explicit ``extra`` passed at the call site wins over bound values.
    """

    def __init__(self, logger: logging.Logger, **context: Any):
        bound = {key: value for key, value in context.items() if value is not None}
        super().__init__(logger, bound)

    @property
    def context(self) -> dict[str, Any]:
        return dict(self.extra)

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **context: Any) -> "ContextualLogger":
        """New adapter with extra context layered over this one's."""
        return ContextualLogger(self.logger, **{**self.extra, **context})


def get_contextual_logger(
    name: str | None = None,
    account_id: str | None = None,
    context: str | None = None,
) -> ContextualLogger:
    """Logger bound to an account and an operation label."""
    return ContextualLogger(get_logger(name), account_id=account_id, context=context)
