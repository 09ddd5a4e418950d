"""Progress and run-log reporting for clone and schema export runs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from pg_cloner.domain import CloneHistoryEntry, CloneProgress
from pg_cloner.events import CLONE_LOG, CLONE_PROGRESS, EventBus
from pg_cloner.logging import EventLogger

from .models import STAGE_TABLE, Stage

if TYPE_CHECKING:
    from loguru import Logger

LEVEL_TAGS = {
    "info": "[INFO]",
    "success": "[SUCCESS]",
    "warning": "[WARNING]",
    "error": "[ERROR]",
}


def format_log_line(level: str, message: str) -> str:
    return f"{LEVEL_TAGS[level]} {message}"


def format_duration(seconds: float) -> str:
    return f"{seconds:.1f}s"


class ProgressReporter:
    """Pushes progress/log events and appends each log line to the run log."""

    def __init__(
        self,
        bus: EventBus,
        log: Logger,
        entry: Optional[CloneHistoryEntry] = None,
        progress_event: str = CLONE_PROGRESS,
        log_event: str = CLONE_LOG,
    ):
        self.bus = bus
        self.log = log
        self.entry = entry
        self.progress_event = progress_event
        self.log_event = log_event
        self.lines: list[str] = []

    def progress(self, progress: CloneProgress) -> None:
        self.log.debug(
            f"Progress {progress.stage} {progress.progress}%: {progress.message}"
        )
        self.bus.emit(self.progress_event, progress)

    def stage(self, stage: Stage, message: Optional[str] = None) -> None:
        info = STAGE_TABLE[stage]
        EventLogger.log_stage(self.log, info.stage.value, info.percent)
        self.bus.emit(
            self.progress_event,
            CloneProgress(info.stage.value, info.percent, message or info.message),
        )

    def completed(self, message: str) -> None:
        self.progress(CloneProgress.completed(message))

    def failed(self, message: str) -> None:
        self.progress(CloneProgress.error(message))

    def _line(self, level: str, message: str) -> None:
        line = format_log_line(level, message)
        self.lines.append(line)
        if self.entry is not None:
            self.entry.add_log(line)
        self.bus.emit(self.log_event, line)
        getattr(self.log, level)(message)

    def info(self, message: str) -> None:
        self._line("info", message)

    def success(self, message: str) -> None:
        self._line("success", message)

    def warning(self, message: str) -> None:
        self._line("warning", message)

    def error(self, message: str) -> None:
        self._line("error", message)
