"""Logging and observability for work hierarchy sessions.

Everything here logs under the ``workhierarchy`` logger tree. Store and
service writes carry the team (and, where known, the node) they touched as
structured fields, so a JSON log file can be filtered per team. Timing
samples are kept per operation in bounded buffers, and node events are
fanned out to subscribers such as tests or an audit trail.
"""

from __future__ import annotations

import inspect
import json
import logging
import time
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Union

LOGGER_NAME = "workhierarchy"
CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
DEFAULT_MAX_SAMPLES = 256


def setup_logging(log_level: Union[str, int] = logging.INFO, log_file: Optional[Path] = None) -> logging.Logger:
    """Configure the ``workhierarchy`` logger tree for the server process.

    Console output goes to stderr, which leaves stdout to the MCP stdio
    transport. With ``log_file`` every record down to DEBUG is also written
    as one JSON object per line.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if log_file else log_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(log_level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(console)

    if log_file:
        json_file = logging.FileHandler(log_file, encoding="utf-8")
        json_file.setLevel(logging.DEBUG)
        json_file.setFormatter(JsonFormatter())
        logger.addHandler(json_file)

    logger.info(f"Work hierarchy logging at {logging.getLevelName(console.level)}")
    return logger


class JsonFormatter(logging.Formatter):
    """Render a record and its hierarchy fields as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "source": f"{record.module}:{record.funcName}:{record.lineno}",
            "message": record.getMessage(),
        }
        entry.update(getattr(record, "extra_fields", None) or {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class PerformanceMonitor:
    """Rolling duration samples for store and service operations.

    Each operation keeps at most ``max_samples`` recent samples, so a
    long-running server does not grow without bound.
    """

    def __init__(self, max_samples: int = DEFAULT_MAX_SAMPLES):
        self.max_samples = max_samples
        self._samples: Dict[str, Deque[Dict[str, Any]]] = {}

    def record(self, operation: str, duration: float, **tags: Any) -> None:
        samples = self._samples.get(operation)
        if samples is None:
            samples = self._samples[operation] = deque(maxlen=self.max_samples)
        samples.append({"duration": duration, **tags})

    def samples(self, operation: str) -> List[Dict[str, Any]]:
        return list(self._samples.get(operation, ()))

    def stats(self) -> Dict[str, Dict[str, Any]]:
        """Count, mean, max and error count per operation."""
        report = {}
        for operation, samples in self._samples.items():
            durations = [sample["duration"] for sample in samples]
            report[operation] = {
                "count": len(durations),
                "mean": sum(durations) / len(durations) if durations else 0.0,
                "max": max(durations, default=0.0),
                "errors": sum(1 for sample in samples if sample.get("status") == "error"),
            }
        return report

    def reset(self) -> None:
        self._samples.clear()


performance_monitor = PerformanceMonitor()


def _team_of(signature: inspect.Signature, args: tuple, kwargs: dict) -> Optional[str]:
    """The ``team_id`` argument of a call, or the ``team_id`` of its owner."""
    try:
        bound = signature.bind_partial(*args, **kwargs).arguments
    except TypeError:
        return None
    if "team_id" in bound:
        return bound["team_id"]
    return getattr(bound.get("self"), "team_id", None)


def log_performance(operation: str):
    """Time a store or service call and sample it under ``operation``, tagged by team."""
    def decorator(func):
        signature = inspect.signature(func)

        @wraps(func)
        def wrapper(*args, **kwargs):
            team_id = _team_of(signature, args, kwargs)
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                performance_monitor.record(
                    operation, time.perf_counter() - start,
                    team_id=team_id, status="error", error_type=type(e).__name__,
                )
                raise
            performance_monitor.record(operation, time.perf_counter() - start, team_id=team_id, status="success")
            return result

        return wrapper
    return decorator


@contextmanager
def log_operation(operation: str, **fields: Any) -> Iterator[Dict[str, Any]]:
    """Log one store write with its outcome and duration.

    The yielded dict holds the structured fields; the block may add to it,
    e.g. the id of a node it just created.
    """
    logger = logging.getLogger(f"{LOGGER_NAME}.operations")
    fields = {"operation": operation, **fields}
    start = time.perf_counter()
    try:
        yield fields
    except Exception as e:
        fields.update(status="failed", duration=time.perf_counter() - start, error_type=type(e).__name__)
        logger.error(
            f"{operation} failed for team {fields.get('team_id')}: {e}",
            extra={"extra_fields": fields},
            exc_info=True,
        )
        raise
    fields.update(status="completed", duration=time.perf_counter() - start)
    logger.info(f"{operation} completed for team {fields.get('team_id')}", extra={"extra_fields": fields})


class ObservabilityHooks:
    """Fan hierarchy events out to subscribers.

    Subscribers are called with the event payload as keyword arguments
    (``timestamp``, ``team_id`` and the event's own fields). A failing
    subscriber is logged and does not stop the others.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable[..., Any]]] = {}
        self.logger = logging.getLogger(f"{LOGGER_NAME}.events")

    def subscribe(self, event: str, callback: Callable[..., Any]) -> None:
        self._subscribers.setdefault(event, []).append(callback)

    def unsubscribe(self, event: str, callback: Callable[..., Any]) -> None:
        callbacks = self._subscribers.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event: str, team_id: Optional[str] = None, **data: Any) -> None:
        """Log a hierarchy event and deliver it to its subscribers."""
        payload = {"timestamp": time.time(), "team_id": team_id, **data}
        self.logger.info(f"{event} ({team_id or 'no team'})", extra={"extra_fields": {"event": event, **payload}})

        for callback in list(self._subscribers.get(event, [])):
            try:
                callback(**payload)
            except Exception as e:
                self.logger.error(f"Subscriber {callback!r} failed on {event}: {e}")


observability_hooks = ObservabilityHooks()


def log_node_event(action: str, node_id: str, team_id: Optional[str] = None, **fields: Any) -> None:
    """Emit ``node_<action>`` for a single work item."""
    observability_hooks.emit(f"node_{action.lower()}", team_id=team_id, node_id=node_id, **fields)


def log_error_with_context(error: Exception, operation: str, **context: Any) -> None:
    """Log an unexpected failure of ``operation`` with the ids it was working on."""
    logging.getLogger(f"{LOGGER_NAME}.errors").error(
        f"{operation} failed: {error}",
        extra={"extra_fields": {"operation": operation, "error_type": type(error).__name__, **context}},
        exc_info=True,
    )
