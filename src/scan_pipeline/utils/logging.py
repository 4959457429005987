"""Logging setup and per-phase progress tracking."""
from __future__ import annotations

import json
import logging
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional


ROOT_LOGGER_NAME = "scan_pipeline"

# Structured-log key Cloud Logging turns into entry labels
CLOUD_LABELS_KEY = "logging.googleapis.com/labels"


class CloudLoggingFormatter(logging.Formatter):
    """One JSON object per line, as Cloud Run forwards it to Cloud Logging."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "time": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "component": _component(record.name),
        }
        labels = getattr(record, "context", None)
        if labels:
            entry[CLOUD_LABELS_KEY] = {k: str(v) for k, v in labels.items()}
        if record.exc_info:
            entry["stack_trace"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored ``[time] LEVEL component: message`` lines for terminals."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        color = self.COLORS.get(record.levelname, "")
        line = (
            f"{color}[{stamp}] {record.levelname:<8}{self.RESET} "
            f"{_component(record.name)}: {record.getMessage()}"
        )
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class _ContextFilter(logging.Filter):
    """Stamp job-level fields (job name, source object) onto each record."""

    def __init__(self, context: Dict[str, str]):
        super().__init__()
        self.context = context

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = {**self.context, **(getattr(record, "context", None) or {})}
        return True


def _component(logger_name: str) -> str:
    prefix = ROOT_LOGGER_NAME + "."
    if logger_name.startswith(prefix):
        return logger_name[len(prefix):]
    return "job" if logger_name == ROOT_LOGGER_NAME else logger_name


def setup_logging(
    level: int = logging.INFO,
    job_name: Optional[str] = None,
    source_uri: Optional[str] = None,
    cloud_logging: bool = False,
) -> logging.Logger:
    """Route every ``scan_pipeline.*`` logger to stdout.

    Calling it again replaces the previous handler, so a process can run
    more than one job (as the test suite does).

    Args:
        level: Logging level.
        job_name: Added to every record's context.
        source_uri: Object being processed, added to every record's context.
        cloud_logging: JSON lines for Cloud Logging instead of colored text.

    Returns:
        The package logger.
    """
    context: Dict[str, str] = {}
    if job_name:
        context["job_name"] = job_name
    if source_uri:
        context["source_uri"] = source_uri

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(CloudLoggingFormatter() if cloud_logging else ConsoleFormatter())
    handler.addFilter(_ContextFilter(context))

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Logger under the ``scan_pipeline`` namespace (``stages`` -> ``scan_pipeline.stages``)."""
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


@dataclass
class PhaseMetrics:
    """Timing, item counts and metrics of one job phase."""
    name: str
    started: float
    finished: Optional[float] = None
    items_total: int = 0
    items_done: int = 0
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        return (self.finished or time.time()) - self.started

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "duration_seconds": round(self.duration_seconds, 3),
            "items_total": self.items_total,
            "items_done": self.items_done,
            "error": self.error,
            "metadata": self.metadata,
        }


class ProgressTracker:
    """Record the phases of one job run and the metrics they produce.

    Metrics logged inside ``phase()`` belong to that phase; anything logged
    outside a phase is a job-level metric. ``report()`` is what ends up in
    ``job_report.json``.
    """

    def __init__(
        self,
        job_name: str,
        source_uri: str,
        logger: Optional[logging.Logger] = None,
    ):
        self.job_name = job_name
        self.source_uri = source_uri
        self.logger = logger or get_logger(job_name)
        self.started = time.time()
        self.phases: List[PhaseMetrics] = []
        self.job_metrics: Dict[str, Any] = {}
        self._active: Optional[PhaseMetrics] = None

    @contextmanager
    def phase(self, name: str, total_items: int = 0) -> Iterator[PhaseMetrics]:
        """Time a phase; an exception marks it failed and propagates."""
        current = PhaseMetrics(name=name, started=time.time(), items_total=total_items)
        self._active = current
        self.logger.info(f"Starting phase: {name}")
        try:
            yield current
        except Exception as e:
            current.error = str(e)
            self.logger.error(f"Phase {name} failed after {current.duration_seconds:.1f}s")
            raise
        else:
            self.logger.info(f"Completed phase: {name} in {current.duration_seconds:.1f}s")
        finally:
            current.finished = time.time()
            self.phases.append(current)
            self._active = None

    def advance(self, items: int = 1) -> None:
        """Count finished items in the active phase."""
        if self._active is None:
            return
        self._active.items_done += items
        if self._active.items_total:
            self.logger.info(f"  Progress: {self._active.items_done}/{self._active.items_total}")

    def log_metric(self, name: str, value: Any) -> None:
        target = self._active.metadata if self._active is not None else self.job_metrics
        target[name] = value
        self.logger.info(f"Metric: {name} = {value}")

    def metric(self, name: str, default: Any = None) -> Any:
        """Most recent value of a metric, job-level first."""
        if name in self.job_metrics:
            return self.job_metrics[name]
        candidates = self.phases + ([self._active] if self._active is not None else [])
        for phase in reversed(candidates):
            if name in phase.metadata:
                return phase.metadata[name]
        return default

    def report(self) -> Dict[str, Any]:
        failed = [p.name for p in self.phases if p.error]
        return {
            "job_name": self.job_name,
            "source_uri": self.source_uri,
            "total_duration_seconds": round(time.time() - self.started, 3),
            "phases": [p.to_dict() for p in self.phases],
            "metrics": self.job_metrics,
            "success": not failed,
            "failed_phases": failed,
        }
