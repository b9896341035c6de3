"""Observability utilities for gitnote-sync.

Rotating file logging for the ``gitnote_sync`` logger hierarchy, plus
per-pass timing and file-count metrics for sync, pull and config
publication.
"""
import logging
import re
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, Optional, Union

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "gitnote_sync"
LOG_FILE_NAME = "gitnote-sync.log"
DEFAULT_LOG_DIR = Path.home() / ".gitnote" / "logs"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_FILE_HANDLER_NAME = "gitnote-sync-file"
_CONSOLE_HANDLER_NAME = "gitnote-sync-console"

# Personal access tokens and Authorization header values
_TOKEN_PATTERN = re.compile(r"(gh[pousr]_[A-Za-z0-9]{8,}|(?<=token )[A-Za-z0-9_\-\.]{8,})")

_logging_configured = False


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """Attach a rotating log file (and optionally stderr) to the package logger.

    Calling it again only adjusts the level; handlers are attached once.

    Args:
        log_dir: Directory for ``gitnote-sync.log``. Defaults to ~/.gitnote/logs/
        level: Logging level (default: INFO)
        max_bytes: Size at which the log file is rotated (default: 5 MB)
        backup_count: Rotated files kept (default: 3)
        console: Also log to stderr (default: True)

    Returns:
        Path to the log directory
    """
    global _logging_configured

    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    pkg_logger.setLevel(level)
    attached = {h.get_name(): h for h in pkg_logger.handlers}
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handler = attached.get(_FILE_HANDLER_NAME)
    if handler is None:
        handler = RotatingFileHandler(
            log_path / LOG_FILE_NAME,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.set_name(_FILE_HANDLER_NAME)
        handler.setFormatter(formatter)
        pkg_logger.addHandler(handler)
    handler.setLevel(level)

    if console:
        stream = attached.get(_CONSOLE_HANDLER_NAME)
        if stream is None:
            stream = logging.StreamHandler()
            stream.set_name(_CONSOLE_HANDLER_NAME)
            stream.setFormatter(formatter)
            pkg_logger.addHandler(stream)
        stream.setLevel(level)

    _logging_configured = True
    pkg_logger.debug("Logging to %s", log_path / LOG_FILE_NAME)
    return log_path


def is_logging_configured() -> bool:
    return _logging_configured


def sanitize_error(message: Optional[str], max_length: int = 200) -> Optional[str]:
    """Single-line, token-free, bounded error text for logs and metrics."""
    if message is None:
        return None
    text = _TOKEN_PATTERN.sub("***", message)
    text = " ".join(text.split())
    if len(text) > max_length:
        text = text[: max_length - 3] + "..."
    return text


@dataclass
class PassMetrics:
    """Running totals for one kind of pass (``sync``, ``pull``, ...)."""
    runs: int = 0
    failures: int = 0
    files: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "runs": self.runs,
            "failures": self.failures,
            "files": self.files,
            "avg_ms": round(self.total_ms / self.runs, 2) if self.runs else 0,
            "slowest_ms": round(self.slowest_ms, 2),
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error": self.last_error,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
        }


class MetricsCollector:
    """Thread-safe per-pass metrics; timers record from their own threads."""

    def __init__(self):
        self._passes: Dict[str, PassMetrics] = defaultdict(PassMetrics)
        self._lock = Lock()
        self._since = datetime.now(timezone.utc)

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
        files: int = 0,
    ) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            entry = self._passes[operation]
            entry.runs += 1
            entry.total_ms += duration_ms
            entry.slowest_ms = max(entry.slowest_ms, duration_ms)
            if success:
                entry.files += files
                entry.last_success = now
            else:
                entry.failures += 1
                entry.last_error = sanitize_error(error)
                entry.last_error_at = now

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: entry.as_dict() for name, entry in self._passes.items()}

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "uptime_seconds": (datetime.now(timezone.utc) - self._since).total_seconds(),
                "passes": sum(e.runs for e in self._passes.values()),
                "failures": sum(e.failures for e in self._passes.values()),
                "files": sum(e.files for e in self._passes.values()),
                "operations": sorted(self._passes),
            }

    def reset(self) -> None:
        with self._lock:
            self._passes.clear()
            self._since = datetime.now(timezone.utc)


# Process-wide collector
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context) -> Iterator[Dict[str, Any]]:
    """Time one pass, log its start and end, and record it in ``metrics``.

    The yielded dict is echoed in the END line; an integer ``synced_files``
    or ``files`` entry is added to the pass's file count.

    Example:
        with timed_operation("sync", owner="octo", repo="ai-note-sync") as op:
            outcome = engine.push()
            op["synced_files"] = outcome.synced_files
    """
    correlation_id = uuid.uuid4().hex[:8]
    info: Dict[str, Any] = {"correlation_id": correlation_id}
    started = time.perf_counter()
    logger.debug(
        "[%s] START %s (%s)",
        correlation_id,
        operation,
        ", ".join(f"{k}={v}" for k, v in context.items()),
    )

    error: Optional[str] = None
    try:
        yield info
    except Exception as e:
        error = str(e)
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        files = info.get("synced_files", info.get("files", 0))
        metrics.record_operation(
            operation,
            elapsed_ms,
            error is None,
            error,
            files if isinstance(files, int) else 0,
        )
        details = ", ".join(f"{k}={v}" for k, v in info.items() if k != "correlation_id")
        logger.info(
            "[%s] END %s (%.2fms) [%s] %s",
            correlation_id,
            operation,
            elapsed_ms,
            "OK" if error is None else f"ERROR: {sanitize_error(error)}",
            details,
        )
