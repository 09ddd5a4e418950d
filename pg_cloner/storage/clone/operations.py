"""Clone pipeline: backup, clean, dump, restore and verify."""

from __future__ import annotations

import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from pg_cloner.config import settings
from pg_cloner.domain import (
    CloneHistoryEntry,
    CloneOptions,
    CloneProgress,
    CloneStatus,
    CloneType,
    ConnectionProfile,
    utc_now,
)
from pg_cloner.events import EventBus, default_bus
from pg_cloner.jobs import (
    CancellationToken,
    Job,
    JobRegistry,
    default_registry,
    destination_operation,
)
from pg_cloner.logging import EventLogger, LoggerFactory, ThrottledLogger, operation_context
from pg_cloner.storage.exceptions import (
    ClonerError,
    CloneCancelledError,
    HistoryError,
    TempFileError,
    ToolFailureError,
)
from pg_cloner.storage.store import (
    HistoryStore,
    JsonProfileStore,
    ProfileStore,
    default_history_store,
)
from pg_cloner.tools import locator

from .classifier import classify
from .command_runners import run_tool, run_tool_streaming
from .commands import (
    backup_args,
    clean_sql,
    dump_args,
    psql_command_args,
    psql_file_args,
    restore_args,
    write_restore_script,
)
from .models import (
    DumpFormat,
    Stage,
    format_megabytes,
    parallel_jobs,
    select_dump_format,
)
from .progress import ProgressReporter, format_duration
from .verification import verify_clone


@dataclass(frozen=True)
class CloneTools:
    pg_dump: str
    psql: str
    pg_restore: str

    @classmethod
    def locate(cls) -> CloneTools:
        """Raises ToolNotFoundError naming the first missing tool."""
        return cls(**locator.locate_all())


def create_temp_file(prefix: str, suffix: str, directory: Optional[Path] = None) -> Path:
    """Reserve a uniquely named, empty working file."""
    directory = directory or settings.get_temp_dir()
    try:
        fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=str(directory))
    except OSError as error:
        raise TempFileError("create", directory, str(error)) from error
    os.close(fd)
    return Path(name)


def backup_file_name(database: str, when=None) -> str:
    when = when or utc_now()
    return f"{database}_backup_{when:%Y%m%d_%H%M%S}.sql"


class ClonePipeline:
    """Runs one clone from Preparing to Completed/Error.

    Stages run strictly in order on the caller's thread; the first fatal
    failure ends the run. ``run()`` always finalizes and records the
    history entry before emitting the terminal progress event.
    """

    def __init__(
        self,
        options: CloneOptions,
        source: ConnectionProfile,
        destination: ConnectionProfile,
        tools: CloneTools,
        entry: CloneHistoryEntry,
        *,
        history: HistoryStore,
        bus: EventBus = default_bus,
        token: Optional[CancellationToken] = None,
        temp_dir: Optional[Path] = None,
        backup_dir: Optional[Path] = None,
        jobs: Optional[int] = None,
    ):
        self.options = options
        self.source = source
        self.destination = destination
        self.tools = tools
        self.entry = entry
        self.history = history
        self.token = token or CancellationToken()
        self.temp_dir = temp_dir
        self.backup_dir = backup_dir
        self.jobs = jobs
        self.log = LoggerFactory.for_clone(entry.id)
        self.reporter = ProgressReporter(bus, self.log, entry)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def run(self) -> CloneHistoryEntry:
        """Execute every stage, then finalize and persist the history entry.

        Re-raises the failure after recording it so job handles see it.
        """
        with destination_operation(self.destination.id), operation_context(
            "clone",
            job_id=self.entry.id,
            source=self.source.name,
            destination=self.destination.name,
        ):
            try:
                self.execute()
            except CloneCancelledError as error:
                self.reporter.warning(str(error))
                self._finish(CloneStatus.CANCELLED, str(error))
                raise
            except ClonerError as error:
                if not isinstance(error, ToolFailureError):
                    self.reporter.error(str(error))
                self._finish(CloneStatus.ERROR, str(error))
                raise
            except Exception as error:
                self.reporter.error(f"Unexpected error: {error}")
                self._finish(CloneStatus.ERROR, str(error))
                raise
            self._finish(CloneStatus.SUCCESS)
        return self.entry

    def _finish(self, status: CloneStatus, error_message: Optional[str] = None) -> None:
        self.entry.complete(status, error_message)
        try:
            self.history.record(self.entry)
        except HistoryError as error:
            self.log.error(f"Could not save history entry {self.entry.id}: {error}")
        if status is CloneStatus.SUCCESS:
            self.reporter.completed("Clone completed successfully!")
        elif status is CloneStatus.CANCELLED:
            self.reporter.progress(
                CloneProgress(
                    "cancelled", 0, error_message or "Clone cancelled",
                    is_complete=True, is_error=True,
                )
            )
        else:
            self.reporter.failed(error_message or "Clone failed")

    def _checkpoint(self, stage: Stage) -> None:
        self.token.raise_if_cancelled(stage.value)

    def execute(self) -> None:
        options = self.options
        self._prepare()
        if options.create_backup:
            self._checkpoint(Stage.BACKUP)
            self._backup()
        if options.clean_destination:
            self._checkpoint(Stage.CLEANING)
            self._clean()
        self._checkpoint(Stage.DUMPING)
        dump_format = select_dump_format(options.clone_type)
        dump_path = create_temp_file("pg_clone_", f".{dump_format.extension}", self.temp_dir)
        try:
            self._dump(dump_path, dump_format)
            self._checkpoint(Stage.RESTORING)
            self._restore(dump_path, dump_format)
        finally:
            self._remove_temp(dump_path)
        self._checkpoint(Stage.VERIFYING)
        self._verify()

    # ------------------------------------------------------------------
    # stages
    # ------------------------------------------------------------------

    def _prepare(self) -> None:
        report = self.reporter
        report.stage(Stage.PREPARING)
        EventLogger.log_clone_started(
            self.log,
            self.source.name,
            self.destination.name,
            self.options.clone_type.value,
        )
        report.info(
            f"Starting clone from '{self.source.name}' to '{self.destination.name}'"
        )
        report.info(f"Clone type: {self.options.clone_type.label}")

    def _backup(self) -> None:
        report = self.reporter
        report.stage(Stage.BACKUP)
        report.info("Creating backup of destination database...")

        backup_dir = self.backup_dir or settings.get_backup_dir()
        try:
            backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise TempFileError("create", backup_dir, str(error)) from error
        backup_path = backup_dir / backup_file_name(self.destination.database)

        result = run_tool(
            backup_args(self.tools.pg_dump, self.destination, backup_path),
            env=self.destination.env_vars(),
        )
        outcome = classify("pg_dump", Stage.BACKUP.value, result.returncode, result.stderr)
        if outcome.has_warnings:
            report.warning(f"Backup warning: {outcome.message}")
        else:
            report.success(f"Backup created: {backup_path}")

    def _clean(self) -> None:
        report = self.reporter
        data_only = self.options.clone_type is CloneType.DATA
        if data_only:
            report.stage(Stage.CLEANING, "Truncating destination tables...")
            report.info("Truncating destination tables (preserving structure)...")
        else:
            report.stage(Stage.CLEANING, "Cleaning destination database...")
            report.info("Dropping destination tables...")

        result = run_tool(
            psql_command_args(
                self.tools.psql, self.destination, clean_sql(self.options.clone_type)
            ),
            env=self.destination.env_vars(),
        )
        outcome = classify("psql", Stage.CLEANING.value, result.returncode, result.stderr)
        if outcome.has_warnings:
            label = "Truncate" if data_only else "Clean"
            report.warning(f"{label} warning: {outcome.message}")
        elif data_only:
            report.success("Destination tables truncated")
        else:
            report.success("Destination database cleaned")

    def _restore_jobs(self) -> int:
        if self.jobs is None:
            self.jobs = parallel_jobs()
        return self.jobs

    def _dump(self, dump_path: Path, dump_format: DumpFormat) -> None:
        report = self.reporter
        options = self.options
        report.stage(Stage.DUMPING)

        if dump_format is DumpFormat.CUSTOM:
            report.info("Using custom format with parallel restore...")
            report.info(f"Will use {self._restore_jobs()} parallel jobs for restore")
        else:
            report.info("Using plain SQL format for data-only clone...")

        if options.clone_type is CloneType.STRUCTURE:
            report.info("Dumping schema only")
        elif options.clone_type is CloneType.DATA:
            report.info("Dumping data only")
        else:
            report.info("Dumping schema and data")
        for table in options.exclude_tables:
            report.info(f"Excluding table: {table}")

        result = run_tool(
            dump_args(
                self.tools.pg_dump,
                self.source,
                options.clone_type,
                dump_format,
                dump_path,
                options.exclude_tables,
            ),
            env=self.source.env_vars(),
        )
        outcome = classify("pg_dump", Stage.DUMPING.value, result.returncode, result.stderr)
        if outcome.is_fatal:
            report.error(f"Dump failed: {outcome.message}")
            raise ToolFailureError(
                "pg_dump",
                Stage.DUMPING.value,
                result.stderr,
                message=f"Failed to dump source database: {outcome.message}",
            )

        report.success(
            f"Source database dumped in {format_duration(result.elapsed_seconds)}"
        )
        EventLogger.log_operation_metric(
            self.log, "dump", "duration", result.elapsed_seconds, "s"
        )
        try:
            size = dump_path.stat().st_size
        except OSError as error:
            self.log.debug(f"Could not stat dump file: {error}")
        else:
            report.info(f"Dump file size: {format_megabytes(size)}")
            EventLogger.log_operation_metric(self.log, "dump", "size", size, "bytes")

    def _restore(self, dump_path: Path, dump_format: DumpFormat) -> None:
        start = time.monotonic()
        if dump_format is DumpFormat.CUSTOM:
            self._restore_archive(dump_path)
        else:
            self._restore_plain(dump_path)
        self.reporter.success(
            f"Database restored in {format_duration(time.monotonic() - start)}"
        )

    def _restore_archive(self, dump_path: Path) -> None:
        report = self.reporter
        jobs = self._restore_jobs()
        report.stage(Stage.RESTORING, f"Restoring with {jobs} parallel jobs...")
        report.info(f"Restoring with pg_restore ({jobs} parallel jobs)...")

        throttled = ThrottledLogger(self.log)
        result = run_tool_streaming(
            restore_args(self.tools.pg_restore, self.destination, jobs, dump_path),
            env=self.destination.env_vars(),
            line_callback=lambda line: throttled.debug("restore", f"pg_restore: {line}"),
        )
        outcome = classify(
            "pg_restore", Stage.RESTORING.value, result.returncode, result.stderr
        )
        if outcome.is_fatal:
            self._restore_failed("pg_restore", result.stderr, outcome.message)
        if outcome.has_warnings:
            report.warning(f"Restore completed with {outcome.warning_count} warnings")

    def _restore_plain(self, dump_path: Path) -> None:
        report = self.reporter
        report.stage(Stage.RESTORING)
        report.info("Restoring with psql (optimized settings)...")

        script_path = create_temp_file("pg_clone_optimized_", ".sql", self.temp_dir)
        try:
            try:
                write_restore_script(dump_path, script_path)
            except (OSError, UnicodeError) as error:
                raise TempFileError("write", script_path, str(error)) from error
            result = run_tool(
                psql_file_args(self.tools.psql, self.destination, script_path),
                env=self.destination.env_vars(),
            )
        finally:
            self._remove_temp(script_path)

        outcome = classify("psql", Stage.RESTORING.value, result.returncode, result.stderr)
        if outcome.is_fatal:
            self._restore_failed("psql", result.stderr, outcome.message)
        if outcome.has_warnings:
            report.warning(
                f"Restore completed with {outcome.warning_count} warnings: {outcome.message}"
            )

    def _restore_failed(self, tool: str, stderr: str, message: str) -> None:
        self.reporter.error(f"Restore errors: {message}")
        raise ToolFailureError(
            tool,
            Stage.RESTORING.value,
            stderr,
            message=f"Failed to restore to destination: {message}",
        )

    def _verify(self) -> None:
        report = self.reporter
        report.stage(Stage.VERIFYING)
        report.info("Verifying clone...")
        verification = verify_clone(self.tools.psql, self.destination)
        if not verification.determinate:
            report.warning(
                f"Could not read destination table count, reporting 0: {verification.detail}"
            )
        report.success(
            f"Verification complete. Tables in destination: {verification.table_count}"
        )

    def _remove_temp(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as error:
            self.log.warning(str(TempFileError("delete", path, str(error))))


# ----------------------------------------------------------------------
# entry points
# ----------------------------------------------------------------------


def submit_clone(
    options: CloneOptions,
    *,
    profiles: Optional[ProfileStore] = None,
    history: Optional[HistoryStore] = None,
    bus: EventBus = default_bus,
    registry: JobRegistry = default_registry,
    tools: Optional[CloneTools] = None,
    pipeline_factory: Callable[..., ClonePipeline] = ClonePipeline,
) -> Job:
    """Validate a clone request and start it in the background.

    Nothing destructive happens before both profiles and all three tools
    have been resolved.

    Raises:
        ProfileNotFoundError: If the source or destination is unknown
        ToolNotFoundError: If pg_dump, psql or pg_restore is missing
    """
    profiles = profiles or JsonProfileStore()
    source = profiles.require(options.source_id, "source")
    destination = profiles.require(options.destination_id, "destination")
    tools = tools or CloneTools.locate()
    history = history or default_history_store()

    entry = CloneHistoryEntry.new(source, destination, options.clone_type)
    job = Job("clone", job_id=entry.id)
    pipeline = pipeline_factory(
        options,
        source,
        destination,
        tools,
        entry,
        history=history,
        bus=bus,
        token=job.token,
    )
    registry.add(job)
    job.start(lambda _job: pipeline.run())
    return job


def start_clone(options: CloneOptions, **kwargs) -> str:
    """Start a clone and return its history id without waiting for it."""
    return submit_clone(options, **kwargs).id
