"""Logging setup and operation timing for the notd core.

Service calls run inside ``timed_operation``. The dict it yields collects
what the call did (batch operations run, operations that failed, property
rows written or relabelled) and the module-level ``metrics`` keeps running
totals per operation name for the ``notd_status`` tool.
"""
import functools
import inspect
import logging
import re
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

# Every module logger lives under this name
ROOT_LOGGER_NAME = "notd_core"
DEFAULT_LOG_DIR = Path.home() / ".notd" / "logs"
LOG_FILE_NAME = "notd.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"

# Integer entries of a timing context counted as items handled
ITEM_KEYS = ("operation_count", "rows_changed", "property_count")
ITEM_ERROR_KEY = "error_count"

# Arguments of traced methods copied into the log context
TRACED_ARGUMENTS = ("owner_type", "owner_id", "note_id", "page_id", "name")

_WHITESPACE_RE = re.compile(r"\s+")


def _sanitize_error_message(message: Optional[str], max_length: int = 200) -> Optional[str]:
    """Make an error message safe to keep in metrics and show to clients.

    Replaces the home directory with ``~``, flattens whitespace and
    truncates to ``max_length`` characters (ending in ``...``).
    """
    if message is None:
        return None
    home = str(Path.home())
    if home and home != "/":
        message = message.replace(home, "~")
    message = _WHITESPACE_RE.sub(" ", message).strip()
    if len(message) > max_length:
        message = message[: max_length - 3] + "..."
    return message


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    console: bool = True,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> Path:
    """Send the ``notd_core`` logger hierarchy to a rotating ``notd.log``.

    Calling it again moves the file handler to the new directory. A console
    handler is added once when ``console`` is set.

    Returns:
        The log directory, created if missing.
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    for handler in [h for h in root.handlers if isinstance(h, RotatingFileHandler)]:
        root.removeHandler(handler)
        handler.close()

    handlers = [
        RotatingFileHandler(
            log_path / LOG_FILE_NAME,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    ]
    if console and not any(type(h) is logging.StreamHandler for h in root.handlers):
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.info(f"Logging to {log_path / LOG_FILE_NAME}")
    return log_path


@dataclass
class OperationStats:
    """Running totals for one operation name."""
    calls: int = 0
    failures: int = 0
    items: int = 0
    item_errors: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "calls": self.calls,
            "failures": self.failures,
            "items": self.items,
            "item_errors": self.item_errors,
            "avg_ms": round(self.total_ms / self.calls, 2) if self.calls else 0.0,
            "slowest_ms": round(self.slowest_ms, 2),
            "last_error": self.last_error,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
        }


class MetricsCollector:
    """Per-operation totals shared by every service, guarded by a lock.

    Metrics live in memory for the life of the process.
    """

    def __init__(self):
        self._stats: Dict[str, OperationStats] = {}
        self._lock = Lock()
        self.started_at = datetime.now(timezone.utc)

    def record(
        self,
        operation: str,
        duration_ms: float,
        error: Optional[str] = None,
        items: int = 0,
        item_errors: int = 0,
    ) -> None:
        """Add one call of ``operation``; ``error`` marks it as failed."""
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats())
            stats.calls += 1
            stats.items += items
            stats.item_errors += item_errors
            stats.total_ms += duration_ms
            stats.slowest_ms = max(stats.slowest_ms, duration_ms)
            if error is not None:
                stats.failures += 1
                stats.last_error = _sanitize_error_message(error)
                stats.last_error_at = datetime.now(timezone.utc)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Totals per operation name, sorted by name."""
        with self._lock:
            return {name: stats.as_dict() for name, stats in sorted(self._stats.items())}

    def summary(self) -> Dict[str, Any]:
        """Process-wide totals, batch work broken out."""
        with self._lock:
            batches = self._stats.get("run_batch", OperationStats())
            return {
                "uptime_seconds": round(
                    (datetime.now(timezone.utc) - self.started_at).total_seconds(), 1
                ),
                "calls": sum(s.calls for s in self._stats.values()),
                "failures": sum(s.failures for s in self._stats.values()),
                "batches": batches.calls,
                "batch_operations": batches.items,
                "batch_operation_errors": batches.item_errors,
            }


metrics = MetricsCollector()


def _count(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block, log it at DEBUG and add it to ``metrics``.

    Yields a dict the block fills with what it did: integers under
    ``ITEM_KEYS`` count as items handled and ``error_count`` as items that
    failed. Everything in the dict is logged on the end line.

    Example:
        with timed_operation("run_batch") as op:
            op["operation_count"] = len(planned)
            op["error_count"] = failed
    """
    op: Dict[str, Any] = {"correlation_id": uuid.uuid4().hex[:8]}
    described = " ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{op['correlation_id']}] {operation} started {described}".rstrip())

    started = time.perf_counter()
    error = None
    try:
        yield op
    except Exception as e:
        error = str(e) or type(e).__name__
        raise
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record(
            operation,
            duration_ms,
            error=error,
            items=sum(_count(op.get(key)) for key in ITEM_KEYS),
            item_errors=_count(op.get(ITEM_ERROR_KEY)),
        )
        outcome = f"failed: {error}" if error is not None else "ok"
        details = " ".join(f"{k}={v}" for k, v in op.items() if k != "correlation_id")
        logger.debug(
            f"[{op['correlation_id']}] {operation} {outcome} "
            f"in {duration_ms:.1f}ms {details}".rstrip()
        )


def traced(operation_name: Optional[str] = None):
    """Run a service method inside ``timed_operation``.

    Owner, note and property name arguments, positional or keyword, go into
    the log context. An int result counts as rows changed and a property
    map counts its rows.
    """
    def decorator(func):
        name = operation_name or func.__name__
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            bound = signature.bind_partial(*args, **kwargs).arguments
            context = {key: bound[key] for key in TRACED_ARGUMENTS if key in bound}
            with timed_operation(name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, dict):
                    op["property_count"] = sum(
                        len(values) for values in result.values() if isinstance(values, list)
                    )
                elif _count(result):
                    op["rows_changed"] = result
                return result

        return wrapper
    return decorator
