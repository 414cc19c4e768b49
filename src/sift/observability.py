"""Logging configuration, the persisted log ring buffer and CRITICAL alerts."""

from __future__ import annotations

import json
import logging
import sqlite3
import sys
import threading
from typing import Callable

from rich.console import Console
from rich.markup import escape

from sift.errors import ErrorReport

ALERT_LOGGER = "sift.alerts"


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging with ISO timestamps on stderr."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # LiteLLM and its HTTP stack are chatty at INFO
    for noisy in ("LiteLLM", "litellm", "httpx", "httpcore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class SqliteLogHandler(logging.Handler):
    """Mirror log records into the ``logs`` table, keeping at most *max_rows*.

    Uses its own connection so records emitted from worker threads never share
    a transaction with the caller.
    """

    def __init__(self, conn: sqlite3.Connection, max_rows: int = 1000, level: int = logging.WARNING) -> None:
        super().__init__(level=level)
        self._conn = conn
        self._max_rows = max_rows
        self._write_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            context = getattr(record, "context", None)
            severity = getattr(record, "severity", None) or record.levelname
            with self._write_lock:
                self._conn.execute(
                    "INSERT INTO logs (level, severity, logger, message, context) VALUES (?, ?, ?, ?, ?)",
                    (
                        record.levelname,
                        severity,
                        record.name,
                        record.getMessage(),
                        json.dumps(context, ensure_ascii=False, default=str) if context else "{}",
                    ),
                )
                # Ring buffer: drop the oldest rows beyond max_rows
                self._conn.execute(
                    "DELETE FROM logs WHERE id NOT IN (SELECT id FROM logs ORDER BY id DESC LIMIT ?)",
                    (self._max_rows,),
                )
                self._conn.commit()
        except Exception:
            self.handleError(record)


def alert_notifier(channel: str = "log") -> Callable[[ErrorReport], None] | None:
    """Build the ErrorHandler notifier for CRITICAL reports.

    Args:
        channel: "log" emits a CRITICAL record on the ``sift.alerts`` logger
            (persisted to the ``logs`` table when log persistence is on),
            "stderr" prints a rich alert line, "none" returns None.
    """
    if channel == "none":
        return None

    if channel == "stderr":
        console = Console(stderr=True)

        def notify_stderr(report: ErrorReport) -> None:
            console.print(
                f"[bold red]ALERT[/bold red] {escape(report.operation)} "
                f"({report.category.value}): {escape(report.message)}",
                markup=True,
                highlight=False,
            )

        return notify_stderr

    alerts = logging.getLogger(ALERT_LOGGER)

    def notify_log(report: ErrorReport) -> None:
        alerts.critical(
            "ALERT %s (%s): %s",
            report.operation,
            report.category.value,
            report.message,
            extra={"severity": report.severity.value, "operation": report.operation, "context": report.context},
        )

    return notify_log
