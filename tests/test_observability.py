"""Tests for the observability module.

Tests for pass metrics, error sanitization, logging configuration, and
operation timing.
"""
import logging
from logging.handlers import RotatingFileHandler

import pytest

from gitnote_sync import observability
from gitnote_sync.observability import (
    MetricsCollector,
    configure_logging,
    metrics,
    sanitize_error,
    timed_operation,
)


@pytest.fixture
def clean_logger():
    """Detach any handlers configure_logging adds to the package logger."""
    pkg_logger = logging.getLogger("gitnote_sync")
    before = list(pkg_logger.handlers)
    level = pkg_logger.level
    yield pkg_logger
    for handler in list(pkg_logger.handlers):
        if handler not in before:
            pkg_logger.removeHandler(handler)
            handler.close()
    pkg_logger.setLevel(level)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


class TestSanitizeError:
    """Tests for error text cleanup."""

    def test_none_passes_through(self):
        assert sanitize_error(None) is None

    def test_redacts_tokens(self):
        text = sanitize_error("401 for ghp_abcdefghijklmnop with header token s3cr3t-value")
        assert "ghp_abcdefghijklmnop" not in text
        assert "s3cr3t-value" not in text
        assert text.count("***") == 2

    def test_collapses_newlines(self):
        assert sanitize_error("line 1\nline 2\r\nline 3") == "line 1 line 2 line 3"

    def test_truncates(self):
        result = sanitize_error("a" * 300)
        assert len(result) == 200
        assert result.endswith("...")


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    def test_successful_pass(self):
        collector = MetricsCollector()
        collector.record_operation("sync", 100.0, success=True, files=4)

        result = collector.get_metrics()["sync"]
        assert result["runs"] == 1
        assert result["failures"] == 0
        assert result["files"] == 4
        assert result["avg_ms"] == 100.0
        assert result["last_success"] is not None

    def test_failed_pass(self):
        collector = MetricsCollector()
        collector.record_operation("pull", 50.0, success=False, error="boom\nagain", files=9)

        result = collector.get_metrics()["pull"]
        assert result["failures"] == 1
        assert result["files"] == 0
        assert result["last_error"] == "boom again"
        assert result["last_error_at"] is not None
        assert result["last_success"] is None

    def test_average_and_slowest(self):
        collector = MetricsCollector()
        for duration in (10.0, 20.0, 60.0):
            collector.record_operation("sync", duration, success=True)

        result = collector.get_metrics()["sync"]
        assert result["avg_ms"] == 30.0
        assert result["slowest_ms"] == 60.0

    def test_summary_and_reset(self):
        collector = MetricsCollector()
        collector.record_operation("sync", 1.0, success=True, files=2)
        collector.record_operation("pull", 1.0, success=False, error="x")

        summary = collector.get_summary()
        assert summary["passes"] == 2
        assert summary["failures"] == 1
        assert summary["files"] == 2
        assert summary["operations"] == ["pull", "sync"]

        collector.reset()
        assert collector.get_metrics() == {}


class TestTimedOperation:
    """Tests for the timed_operation context manager."""

    def test_records_success_and_files(self):
        with timed_operation("sync", repo="octo/notes") as op:
            op["synced_files"] = 3
        assert op["correlation_id"]
        result = metrics.get_metrics()["sync"]
        assert result["runs"] == 1
        assert result["files"] == 3

    def test_records_and_reraises_failure(self):
        with pytest.raises(ValueError):
            with timed_operation("pull"):
                raise ValueError("bad config")
        result = metrics.get_metrics()["pull"]
        assert result["failures"] == 1
        assert result["last_error"] == "bad config"

    def test_logs_end_line(self, caplog):
        with caplog.at_level(logging.INFO, logger="gitnote_sync.observability"):
            with timed_operation("sync") as op:
                op["written"] = 2
        assert any(
            "END sync" in r.getMessage() and "written=2" in r.getMessage()
            for r in caplog.records
        )


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_creates_log_file(self, tmp_path, clean_logger):
        log_dir = tmp_path / "logs"
        result = configure_logging(log_dir=log_dir, console=False)
        assert result == log_dir
        assert log_dir.is_dir()

        logging.getLogger("gitnote_sync.test").info("hello log")
        for handler in clean_logger.handlers:
            handler.flush()
        assert "hello log" in (log_dir / "gitnote-sync.log").read_text(encoding="utf-8")
        assert observability.is_logging_configured()

    def test_handlers_not_duplicated(self, tmp_path, clean_logger):
        configure_logging(log_dir=tmp_path, console=True)
        configure_logging(log_dir=tmp_path, console=True)
        file_handlers = [
            h for h in clean_logger.handlers if isinstance(h, RotatingFileHandler)
        ]
        stream_handlers = [
            h for h in clean_logger.handlers
            if isinstance(h, logging.StreamHandler)
            and not isinstance(h, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        assert len(stream_handlers) == 1

    def test_reconfigure_changes_level(self, tmp_path, clean_logger):
        configure_logging(log_dir=tmp_path, console=False)
        configure_logging(log_dir=tmp_path, level=logging.WARNING, console=False)
        assert clean_logger.level == logging.WARNING
        assert all(h.level == logging.WARNING for h in clean_logger.handlers
                   if h.get_name() == "gitnote-sync-file")
