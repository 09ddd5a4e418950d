"""Stage table, dump format selection and restore parallelism."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import psutil

from pg_cloner.config import settings
from pg_cloner.domain import CloneType

FALLBACK_CPU_COUNT = 4
MIN_RESTORE_JOBS = 2
MAX_RESTORE_JOBS = 8


class Stage(Enum):
    PREPARING = "preparing"
    BACKUP = "backup"
    CLEANING = "cleaning"
    DUMPING = "dumping"
    RESTORING = "restoring"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class StageInfo:
    stage: Stage
    percent: int
    message: str


# Emitted before each stage's work begins; percentages never decrease
# within a run except for the terminal error event.
STAGE_TABLE: dict[Stage, StageInfo] = {
    Stage.PREPARING: StageInfo(Stage.PREPARING, 5, "Preparing clone operation..."),
    Stage.BACKUP: StageInfo(Stage.BACKUP, 15, "Creating backup of destination..."),
    Stage.CLEANING: StageInfo(Stage.CLEANING, 25, "Cleaning destination database..."),
    Stage.DUMPING: StageInfo(Stage.DUMPING, 40, "Dumping source database..."),
    Stage.RESTORING: StageInfo(Stage.RESTORING, 70, "Restoring data..."),
    Stage.VERIFYING: StageInfo(Stage.VERIFYING, 90, "Verifying clone..."),
    Stage.COMPLETED: StageInfo(Stage.COMPLETED, 100, "Clone completed successfully!"),
    Stage.ERROR: StageInfo(Stage.ERROR, 0, "Clone failed"),
}


def stage_percent(stage: Stage) -> int:
    return STAGE_TABLE[stage].percent


class DumpFormat(Enum):
    CUSTOM = "custom"  # -Fc, compressed, restored by pg_restore in parallel
    PLAIN = "plain"  # -Fp, SQL text, restored by psql

    @property
    def extension(self) -> str:
        return "dump" if self is DumpFormat.CUSTOM else "sql"


def use_custom_format(clone_type: CloneType) -> bool:
    """Data-only clones restore into an existing schema, which a custom
    archive restored with --data-only does not handle reliably."""
    return clone_type is not CloneType.DATA


def select_dump_format(clone_type: CloneType) -> DumpFormat:
    return DumpFormat.CUSTOM if use_custom_format(clone_type) else DumpFormat.PLAIN


def available_parallelism() -> int:
    count = psutil.cpu_count(logical=True)
    return count if count else FALLBACK_CPU_COUNT


def _within_job_bounds(value: int) -> int:
    return max(MIN_RESTORE_JOBS, min(MAX_RESTORE_JOBS, value))


def parallel_jobs(
    cpu_count: Optional[int] = None,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
) -> int:
    """Restore parallelism, clamped to [minimum, maximum] (default 2..8).

    Configured or passed bounds narrow the range but never leave 2..8.
    """
    if cpu_count is None:
        cpu_count = available_parallelism()
    if minimum is None:
        minimum = settings.get_int("restore_jobs_min", settings.DEFAULT_RESTORE_JOBS_MIN)
    if maximum is None:
        maximum = settings.get_int("restore_jobs_max", settings.DEFAULT_RESTORE_JOBS_MAX)
    minimum = _within_job_bounds(minimum)
    maximum = _within_job_bounds(maximum)
    if maximum < minimum:
        maximum = minimum
    return max(minimum, min(maximum, int(cpu_count)))


def format_megabytes(size_bytes: int) -> str:
    return f"{size_bytes / 1024 / 1024:.2f} MB"


def format_kilobytes(size_bytes: int) -> str:
    return f"{size_bytes / 1024:.2f} KB"
