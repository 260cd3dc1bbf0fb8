"""Logging and observability utilities for tasktrack.

This module provides structured logging, operation timing and event hooks
for the task lifecycle engine. Every status transition written to a task
document is announced as an observability event so that callers (for example
the MCP server) can react to it without polling the document.
"""

from __future__ import annotations

import json
import logging as std_logging
import os
import time
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Union

LOGGER_NAME = "tasktrack"
LOG_LEVEL_ENV = "TASKTRACK_LOG_LEVEL"
LOG_FILE_ENV = "TASKTRACK_LOG_FILE"
METRIC_HISTORY = 1000


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def setup_logging(log_level: Union[str, int, None] = None, log_file: Optional[Path] = None) -> std_logging.Logger:
    """Configure the ``tasktrack`` logger hierarchy.

    Falls back to TASKTRACK_LOG_LEVEL / TASKTRACK_LOG_FILE when arguments are
    omitted. Console output uses a detailed text format; the optional log file
    receives one JSON object per record.
    """
    if log_level is None:
        log_level = os.getenv(LOG_LEVEL_ENV, "INFO").upper()
    if log_file is None and os.getenv(LOG_FILE_ENV):
        log_file = Path(os.environ[LOG_FILE_ENV])

    logger = std_logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    detailed_formatter = std_logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # stderr only: stdout carries the MCP stdio transport
    console_handler = std_logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(detailed_formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = std_logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.info("tasktrack logging initialized")
    return logger


class JsonFormatter(std_logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: std_logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


class PerformanceMonitor:
    """Collect operation durations in memory.

    Only the most recent ``history`` entries are kept per metric name.
    """

    def __init__(self, history: int = METRIC_HISTORY):
        self.history = history
        self.metrics: Dict[str, Deque[Dict[str, Any]]] = {}

    def record_metric(self, name: str, value: Any, tags: Optional[Dict[str, str]] = None) -> None:
        """Record a performance metric."""
        metric = {
            "timestamp": _now(),
            "name": name,
            "value": value,
            "tags": tags or {},
        }
        self.metrics.setdefault(name, deque(maxlen=self.history)).append(metric)

        logger = std_logging.getLogger("tasktrack.performance")
        logger.debug(f"Metric recorded: {name}={value}", extra={"extra_fields": metric})

    def get_metrics(self, name: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Get recorded metrics."""
        if name:
            return {name: list(self.metrics.get(name, ()))}
        return {key: list(values) for key, values in self.metrics.items()}

    def clear(self) -> None:
        self.metrics.clear()


performance_monitor = PerformanceMonitor()


def log_performance(operation_name: str):
    """Decorator recording the duration and outcome of an operation."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            logger = std_logging.getLogger("tasktrack.performance")
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.perf_counter() - start_time
                performance_monitor.record_metric(
                    f"{operation_name}_duration",
                    duration,
                    {"status": "error", "error_type": type(e).__name__},
                )
                logger.debug(
                    f"Failed operation: {operation_name} after {duration:.3f}s - {e}",
                    extra={"extra_fields": {
                        "operation": operation_name,
                        "duration": duration,
                        "status": "error",
                        "error_type": type(e).__name__,
                    }},
                )
                raise

            duration = time.perf_counter() - start_time
            performance_monitor.record_metric(
                f"{operation_name}_duration",
                duration,
                {"status": "success"},
            )
            return result

        return wrapper
    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields):
    """Context manager logging the start, end and failure of an operation."""
    logger = std_logging.getLogger("tasktrack.operations")
    start_time = time.perf_counter()

    logger.debug(f"Starting operation: {operation_name}", extra={"extra_fields": {
        "operation": operation_name,
        "status": "started",
        **extra_fields,
    }})

    try:
        yield
    except Exception as e:
        duration = time.perf_counter() - start_time
        logger.error(f"Failed operation: {operation_name} after {duration:.3f}s - {e}", extra={"extra_fields": {
            "operation": operation_name,
            "status": "failed",
            "duration": duration,
            "error_type": type(e).__name__,
            "error_message": str(e),
            **extra_fields,
        }})
        raise

    duration = time.perf_counter() - start_time
    logger.info(f"Completed operation: {operation_name} in {duration:.3f}s", extra={"extra_fields": {
        "operation": operation_name,
        "status": "completed",
        "duration": duration,
        **extra_fields,
    }})


class ObservabilityHooks:
    """Callbacks fired on task lifecycle events."""

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., Any]]] = {}
        self.logger = std_logging.getLogger("tasktrack.observability")

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Register a callback for a specific event type."""
        self.hooks.setdefault(event_type, []).append(callback)
        self.logger.debug(f"Registered hook for event: {event_type}")

    def unregister_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        callbacks = self.hooks.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def trigger_hooks(self, event_type: str, **data) -> None:
        """Run every callback registered for ``event_type``.

        A failing hook is logged and never interrupts the operation that
        emitted the event.
        """
        for hook in list(self.hooks.get(event_type, [])):
            try:
                hook(**data)
            except Exception as e:
                self.logger.error(f"Hook failed for event {event_type}: {e}")

    def log_event(self, event_type: str, spec_name: Optional[str] = None, **data) -> None:
        """Log a lifecycle event and trigger hooks."""
        event_data = {
            "timestamp": _now(),
            "event_type": event_type,
            "spec_name": spec_name,
            **data,
        }
        self.logger.info(f"Task event: {event_type}", extra={"extra_fields": event_data})

        hook_data = {k: v for k, v in event_data.items() if k != "event_type"}
        self.trigger_hooks(event_type, **hook_data)


observability_hooks = ObservabilityHooks()


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields):
    """Log an error with rich context information."""
    logger = std_logging.getLogger("tasktrack.errors")

    error_data = {
        "timestamp": _now(),
        "error_type": type(error).__name__,
        "error_message": str(error),
        "error_code": getattr(error, "code", None),
        "context": context,
        **extra_fields,
    }

    logger.error(
        f"Error in {context.get('operation', 'unknown operation')}: {error}",
        extra={"extra_fields": error_data},
    )


def log_task_status_change(spec_name: Optional[str], task_id: str, previous_status: Optional[str],
                           new_status: str, **extra_fields):
    """Announce a single task status write."""
    observability_hooks.log_event(
        "task_status_updated",
        spec_name=spec_name,
        task_id=task_id,
        previous_status=previous_status,
        new_status=new_status,
        **extra_fields,
    )


def log_group_queued(spec_name: Optional[str], group_id: str, queued_ids: List[str], **extra_fields):
    observability_hooks.log_event(
        "group_queued",
        spec_name=spec_name,
        group_id=group_id,
        queued_tasks=list(queued_ids),
        **extra_fields,
    )


def log_failure_cascade(spec_name: Optional[str], group_id: str, failed_task_id: str,
                        reverted_ids: List[str], **extra_fields):
    observability_hooks.log_event(
        "task_failure_handled",
        spec_name=spec_name,
        group_id=group_id,
        failed_task_id=failed_task_id,
        reverted_tasks=list(reverted_ids),
        **extra_fields,
    )


def log_batch_completed(spec_name: Optional[str], total: int, failed: int, **extra_fields):
    observability_hooks.log_event(
        "task_batch_completed",
        spec_name=spec_name,
        total=total,
        failed=failed,
        **extra_fields,
    )
