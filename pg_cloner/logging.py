"""Loguru configuration for pg-cloner.

Records carry three bound fields: ``job_id`` (run id or ``-``), ``source``
(component) and ``tags``. Per-line tool output is tagged ``stdout`` or
``stderr`` and only reaches the sinks in TRACE mode.
"""

from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Protocol

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "PG_CLONER_LOG_DIR",
        Path.home() / ".local" / "state" / "pg-cloner" / "logs",
    )
)

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[source]: <15}</cyan> | "
    "<blue>{extra[job_id]: <15}</blue> | "
    "{message}"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[source]: <15} | {extra[job_id]: <15} | {message}"
)
DEBUG_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[source]: <15} | {extra[job_id]: <15} | {extra[tags]} | {message}"
)

TOOL_OUTPUT_TAGS = frozenset({"stdout", "stderr"})


class LogListener(Protocol):
    def add_log(self, message: str, **kwargs) -> None: ...


def _is_tool_output_visible(record) -> bool:
    """Tool output echoes pass only at TRACE; warnings and errors always pass."""
    level = record["level"].no
    if level >= logger.level("WARNING").no:
        return True
    if TOOL_OUTPUT_TAGS.intersection(record["extra"].get("tags", [])):
        return level <= logger.level("TRACE").no
    return True


def _combined_filter(record) -> bool:
    return _is_tool_output_visible(record)


def _console_level(debug: bool, trace: bool) -> str:
    if trace:
        return "TRACE"
    if debug:
        return "DEBUG"
    return "INFO"


def _add_file_sink(path: Path, level: str, rotation: str, retention: str, **options) -> None:
    logger.add(
        path,
        level=level,
        rotation=rotation,
        retention=retention,
        compression="zip",
        enqueue=True,
        diagnose=False,
        **options,
    )


def setup_logging(
    listener: LogListener | None = None,
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
    listener_min_level: str | None = None,
) -> Logger:
    """
    Replace loguru's default handler with the pg-cloner sinks.

    Sinks:
    - stderr console at INFO, DEBUG with ``debug`` or TRACE with ``trace``
    - operations.log: INFO+, 5 MB rotation, kept 7 days
    - debug.log: DEBUG+ (TRACE+ with ``trace``), only when debugging, kept 3 days
    - structured.jsonl: INFO+ serialized records, kept 7 days
    - listener: records forwarded to ``listener.add_log`` when given

    Args:
        listener: Object receiving records through ``add_log``
        debug: Enable DEBUG output
        trace: Enable TRACE output, including every line of tool output
        log_dir: Log file directory (defaults to ~/.local/state/pg-cloner/logs)
        listener_min_level: Minimum level forwarded to the listener
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    logger.add(
        sys.stderr,
        level=_console_level(debug, trace),
        enqueue=True,
        backtrace=False,
        diagnose=False,
        filter=_combined_filter,
        colorize=True,
        format=CONSOLE_FORMAT,
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    _add_file_sink(
        log_dir / "operations.log",
        "INFO",
        "5 MB",
        "7 days",
        backtrace=False,
        filter=_combined_filter,
        format=FILE_FORMAT,
    )
    if debug or trace:
        _add_file_sink(
            log_dir / "debug.log",
            "TRACE" if trace else "DEBUG",
            "10 MB",
            "3 days",
            backtrace=True,
            format=DEBUG_FILE_FORMAT,
        )
    _add_file_sink(
        log_dir / "structured.jsonl",
        "INFO",
        "10 MB",
        "7 days",
        serialize=True,
        format="{message}",
    )

    if listener is not None:
        forward_level = (listener_min_level or _console_level(debug, trace)).upper()

        def _forward(message) -> None:
            record = message.record
            if record["level"].no < logger.level(forward_level).no:
                return
            listener.add_log(
                record["message"],
                level=record["level"].name.lower(),
                tags=record["extra"].get("tags", []),
                timestamp=record["time"],
                source=record["extra"].get("source"),
            )

        logger.add(_forward, enqueue=True, filter=_combined_filter)

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """Logger with whichever of job_id, tags and source are given bound."""
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, job_id: str | None = None, **details):
    """
    Time an operation and log its start, completion or failure.

    Args:
        operation: Operation name, e.g. "clone" or "schema"
        job_id: Identifier to bind; generated from the operation name if omitted
        **details: Extra fields placed in the record context

    Yields:
        Logger bound to the operation

    Example:
        with operation_context("clone", source="prod", destination="staging") as log:
            log.debug("Dumping source")
    """
    job_id = job_id or f"{operation}-{uuid.uuid4().hex[:8]}"
    title = operation.capitalize()

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])
        started = time.time()
        log.info(f"{title} started")
        try:
            yield log
        except Exception as error:
            log.error(
                f"{title} failed",
                error=str(error),
                error_type=type(error).__name__,
                duration_seconds=round(time.time() - started, 2),
            )
            raise
        log.success(f"{title} completed", duration_seconds=round(time.time() - started, 2))


class LoggerFactory:
    """Loggers pre-bound with the source and tags of one component."""

    @staticmethod
    def for_clone(job_id: str | None = None, **details) -> Logger:
        return logger.bind(
            job_id=job_id or f"clone-{uuid.uuid4().hex[:8]}",
            source="clone",
            tags=["clone", "pipeline"],
            **details,
        )

    @staticmethod
    def for_schema(job_id: str | None = None) -> Logger:
        return logger.bind(
            job_id=job_id or f"schema-{uuid.uuid4().hex[:8]}",
            source="schema",
            tags=["schema", "export"],
        )

    @staticmethod
    def for_history() -> Logger:
        return logger.bind(source="history", tags=["history", "storage"])

    @staticmethod
    def for_tools() -> Logger:
        return logger.bind(source="tools", tags=["tools"])

    @staticmethod
    def for_system() -> Logger:
        """Startup, shutdown and configuration."""
        return logger.bind(source="system", tags=["system"])


class ThrottledLogger:
    """Emit at most one record per key every ``interval_seconds``.

    Verbose pg_restore prints a line per restored object; this keeps the
    debug log readable.
    """

    def __init__(self, log: Logger, interval_seconds: float = 5.0):
        self.log = log
        self.interval = interval_seconds
        self._last_emitted: dict[str, float] = {}

    def debug(self, key: str, message: str, **kwargs) -> None:
        self._emit("debug", key, message, **kwargs)

    def info(self, key: str, message: str, **kwargs) -> None:
        self._emit("info", key, message, **kwargs)

    def _emit(self, level: str, key: str, message: str, **kwargs) -> None:
        now = time.time()
        if now - self._last_emitted.get(key, 0) < self.interval:
            return
        getattr(self.log, level)(message, **kwargs)
        self._last_emitted[key] = now


class EventLogger:
    """Structured records with an ``event_type`` field for log analysis."""

    @staticmethod
    def log_clone_started(
        log: Logger, source: str, destination: str, clone_type: str, **extra
    ) -> None:
        log.info(
            "Clone run started",
            event_type="clone_started",
            source_profile=source,
            destination_profile=destination,
            clone_type=clone_type,
            **extra,
        )

    @staticmethod
    def log_stage(log: Logger, stage: str, percent: int, **extra) -> None:
        log.debug(
            f"Stage {stage} ({percent}%)",
            event_type="clone_stage",
            stage=stage,
            percent=percent,
            **extra,
        )

    @staticmethod
    def log_operation_metric(
        log: Logger, operation: str, metric_name: str, value: float, unit: str = "", **extra
    ) -> None:
        log.debug(
            f"{operation} metric: {metric_name}",
            event_type="operation_metric",
            operation=operation,
            metric=metric_name,
            value=round(value, 2),
            unit=unit,
            **extra,
        )
