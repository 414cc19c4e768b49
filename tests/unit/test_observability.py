"""Tests for logging setup, the persisted log handler and alert notifiers."""

from __future__ import annotations

import logging

import pytest

from sift.errors import ErrorCategory, ErrorReport, Severity
from sift.observability import ALERT_LOGGER, SqliteLogHandler, alert_notifier, configure_logging


@pytest.fixture
def sift_logger():
    logger = logging.getLogger("sift.test_observability")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    yield logger
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)


def _rows(conn):
    return conn.execute("SELECT level, severity, logger, message, context FROM logs ORDER BY id").fetchall()


def test_warning_records_persisted(tmp_db, sift_logger):
    sift_logger.addHandler(SqliteLogHandler(tmp_db))
    sift_logger.info("ignored")
    sift_logger.warning("disk at %d%%", 91)

    rows = _rows(tmp_db)
    assert len(rows) == 1
    assert rows[0]["level"] == "WARNING"
    assert rows[0]["severity"] == "WARNING"
    assert rows[0]["logger"] == "sift.test_observability"
    assert rows[0]["message"] == "disk at 91%"
    assert rows[0]["context"] == "{}"


def test_severity_and_context_from_extra(tmp_db, sift_logger):
    sift_logger.addHandler(SqliteLogHandler(tmp_db))
    sift_logger.error("failed", extra={"severity": "HIGH", "context": {"file_id": "予算.md"}})
    row = _rows(tmp_db)[0]
    assert row["severity"] == "HIGH"
    assert row["context"] == '{"file_id": "予算.md"}'


def test_ring_buffer_keeps_newest(tmp_db, sift_logger):
    sift_logger.addHandler(SqliteLogHandler(tmp_db, max_rows=3))
    for i in range(5):
        sift_logger.warning("event %d", i)
    assert [r["message"] for r in _rows(tmp_db)] == ["event 2", "event 3", "event 4"]


def test_configure_logging_replaces_root_handlers():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(logging.DEBUG)
        configure_logging(logging.WARNING)
        assert len(root.handlers) == 1
        assert root.level == logging.WARNING
        assert logging.getLogger("litellm").level == logging.WARNING
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)


# ------------------------------------------------------------------
# Alerts
# ------------------------------------------------------------------


def _report(message="disk [full]"):
    return ErrorReport(
        operation="health_check",
        category=ErrorCategory.SYSTEM,
        severity=Severity.CRITICAL,
        message=message,
        context={"component": "database"},
    )


def test_log_alert_persisted_with_context(tmp_db):
    alerts = logging.getLogger(ALERT_LOGGER)
    handler = SqliteLogHandler(tmp_db)
    alerts.addHandler(handler)
    try:
        alert_notifier("log")(_report())
    finally:
        alerts.removeHandler(handler)

    level, severity, logger_name, message, context = _rows(tmp_db)[-1]
    assert (level, severity, logger_name) == ("CRITICAL", "CRITICAL", ALERT_LOGGER)
    assert message == "ALERT health_check (system): disk [full]"
    assert '"component": "database"' in context


def test_stderr_alert(capsys):
    alert_notifier("stderr")(_report())
    err = capsys.readouterr().err
    assert "ALERT" in err
    assert "health_check (system): disk [full]" in err


def test_alerts_disabled():
    assert alert_notifier("none") is None
