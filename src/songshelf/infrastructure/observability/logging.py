"""Structured logging configuration with JSON formatting and correlation IDs."""

import contextvars
import logging
import sys
import time
import traceback
import uuid
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import Any

from pythonjsonlogger import jsonlogger

# Hey future me, every scan gets its own correlation id so you can grep one scan's whole story
# out of the logs (planner stages, store writes, retries). contextvars is asyncio-safe: each
# task sees its own value. Default "" covers startup logs that run outside any scan.
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


def get_correlation_id() -> str:
    """Get the current correlation ID from context.

    Returns:
        Current correlation ID or empty string if not set
    """
    return correlation_id_var.get()


# One id per scan (not per attempt) so retries share it; the caller gets its own id back after.
@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """Set a correlation ID for the duration of the block, then restore the previous one."""
    correlation_id = correlation_id or str(uuid.uuid4())
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Add correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation_id to record if available."""
        record.correlation_id = get_correlation_id()
        return True


class CompactExceptionFormatter(logging.Formatter):
    """Formatter that prints exception chains root-cause first, one block per exception.

    Only frames from the songshelf package are shown. Example:

    ERROR │ songshelf.application.workers.library_scan_worker:120 │ Scan failed
    ╰─► OperationalError: database is locked
        File "repositories.py", line 88, in add_batch
          await self.session.flush()
    ╰─► StoreWriteError: Store write failed at step 'insert_songs': database is locked
        File "store_writer.py", line 97, in _run_step
          raise StoreWriteError(step, str(e)) from e
    """

    def formatException(self, ei: Any) -> str:
        """Format exception chain in a compact, readable way."""
        _exc_type, exc_value, _exc_tb = ei
        if exc_value is None:
            return ""

        # Walk __cause__/__context__ back to the root, then print root first
        exceptions: list[BaseException] = []
        current: BaseException | None = exc_value
        while current is not None and current not in exceptions:
            exceptions.append(current)
            current = current.__cause__ or current.__context__
        exceptions.reverse()

        lines: list[str] = []
        for exc in exceptions:
            lines.append(f"╰─► {exc.__class__.__name__}: {exc}")
            if not exc.__traceback__:
                continue
            for frame in traceback.extract_tb(exc.__traceback__):
                filepath = frame.filename
                if "/site-packages/" in filepath or "/usr/lib/python" in filepath:
                    continue
                if "songshelf" not in filepath:
                    continue
                lines.append(
                    f'    File "{Path(filepath).name}", line {frame.lineno}, in {frame.name}'
                )
                if frame.line:
                    lines.append(f"      {frame.line.strip()}")

        return "\n".join(lines)


class CustomJsonFormatter(jsonlogger.JsonFormatter):  # type: ignore[name-defined,misc]
    """One JSON object per line, tagged with the scan's correlation id.

    Tracebacks go through the same root-cause-first rendering as the text output,
    so a failed scan reads the same in both formats.
    """

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        correlation_id = getattr(record, "correlation_id", "")
        if correlation_id:
            log_record["correlation_id"] = correlation_id

    def formatException(self, ei: Any) -> str:
        return CompactExceptionFormatter().formatException(ei)


# At DEBUG these log every statement and every sqlite call.
QUIET_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "asyncio")


# Listen future me, call this ONCE at startup. It replaces the root logger's handlers (so tests
# and repeated runs don't stack duplicates) with one stdout handler.
def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    app_name: str = "songshelf",
) -> None:
    """Configure root logging.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit JSON lines instead of compact text
        app_name: Added as the ``app`` field of every JSON record
    """
    formatter: logging.Formatter
    if json_format:
        formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            static_fields={"app": app_name},
        )
    else:
        formatter = CompactExceptionFormatter(
            fmt="%(asctime)s │ %(levelname)-7s │ %(name)s:%(lineno)d │ %(message)s",
            datefmt="%H:%M:%S",
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured", extra={"log_level": log_level, "json_format": json_format}
    )


# Yo, wrap any operation you want timed: logs "<operation>.started", then ".completed" with
# duration_ms, or ".failed" with the error and traceback before re-raising. **context lands
# in the extra fields of all three records.
@asynccontextmanager
async def log_operation(
    logger: logging.Logger,
    operation: str,
    **context: Any,
) -> AsyncIterator[None]:
    """Log start/end of an operation with automatic timing."""
    start = time.monotonic()
    logger.info(f"{operation}.started", extra=context)
    try:
        yield
    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(
            f"{operation}.failed",
            extra={
                **context,
                "duration_ms": duration_ms,
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        raise
    duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(f"{operation}.completed", extra={**context, "duration_ms": duration_ms})
