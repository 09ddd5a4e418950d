"""Schema-only export with optional category filtering."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional, Union

from pg_cloner.domain import ConnectionProfile, SchemaExportOptions, SchemaProgress
from pg_cloner.events import SCHEMA_LOG, SCHEMA_PROGRESS, EventBus, default_bus
from pg_cloner.jobs import CancellationToken, Job, JobRegistry, default_registry
from pg_cloner.logging import LoggerFactory, operation_context
from pg_cloner.storage.clone.classifier import classify
from pg_cloner.storage.clone.command_runners import run_tool
from pg_cloner.storage.clone.commands import schema_dump_args
from pg_cloner.storage.clone.models import format_kilobytes
from pg_cloner.storage.clone.progress import ProgressReporter
from pg_cloner.storage.exceptions import (
    CloneCancelledError,
    ClonerError,
    TempFileError,
    ToolFailureError,
)
from pg_cloner.storage.store import JsonProfileStore, ProfileStore
from pg_cloner.tools import locator

from .statement_filter import filter_schema


class SchemaStage(Enum):
    PREPARING = ("preparing", 10, "Preparing schema export...")
    DUMPING = ("dumping", 30, "Dumping schema...")
    FILTERING = ("filtering", 60, "Filtering schema objects...")

    def __init__(self, key: str, percent: int, message: str):
        self.key = key
        self.percent = percent
        self.message = message


class SchemaExport:
    """One schema export run: Preparing, Dumping, Filtering, Completed."""

    def __init__(
        self,
        options: SchemaExportOptions,
        profile: ConnectionProfile,
        pg_dump: str,
        *,
        bus: EventBus = default_bus,
        token: Optional[CancellationToken] = None,
        output_path: Optional[Union[str, Path]] = None,
        job_id: Optional[str] = None,
    ):
        self.options = options
        self.profile = profile
        self.pg_dump = pg_dump
        self.token = token or CancellationToken()
        self.output_path = Path(output_path) if output_path else None
        self.log = LoggerFactory.for_schema(job_id)
        self.reporter = ProgressReporter(
            bus, self.log, progress_event=SCHEMA_PROGRESS, log_event=SCHEMA_LOG
        )

    def _stage(self, stage: SchemaStage) -> None:
        self.token.raise_if_cancelled(stage.key)
        self.reporter.progress(SchemaProgress(stage.key, stage.percent, stage.message))

    def run(self) -> str:
        """Return the (filtered) schema text; failures are reported then re-raised."""
        with operation_context("schema", profile=self.profile.name):
            try:
                return self._execute()
            except CloneCancelledError as error:
                self.reporter.warning(str(error))
                self.reporter.progress(
                    SchemaProgress(
                        "cancelled", 0, str(error), is_complete=True, is_error=True
                    )
                )
                raise
            except ClonerError as error:
                if not isinstance(error, ToolFailureError):
                    self.reporter.error(str(error))
                self.reporter.failed(str(error))
                raise
            except Exception as error:
                self.reporter.error(f"Unexpected error: {error}")
                self.reporter.failed(str(error))
                raise

    def _execute(self) -> str:
        report = self.reporter
        options = self.options

        self._stage(SchemaStage.PREPARING)
        report.info(f"Exporting schema from '{self.profile.name}'")
        for schema in sorted(options.schemas):
            report.info(f"Including schema: {schema}")
        for table in sorted(options.tables):
            report.info(f"Including table: {table}")

        self._stage(SchemaStage.DUMPING)
        result = run_tool(
            schema_dump_args(self.pg_dump, self.profile, options.schemas, options.tables),
            env=self.profile.env_vars(),
        )
        outcome = classify("pg_dump", "dumping", result.returncode, result.stderr)
        if outcome.is_fatal:
            report.error(f"Schema dump failed: {outcome.message}")
            raise ToolFailureError(
                "pg_dump",
                "dumping",
                result.stderr,
                message=f"Failed to export schema: {outcome.message}",
            )
        schema = result.stdout

        self._stage(SchemaStage.FILTERING)
        if options.includes_everything:
            report.info("All object categories included, no filtering needed")
        else:
            filtered = filter_schema(schema, options)
            schema = filtered.text
            for category, count in sorted(
                filtered.removed.items(), key=lambda item: item[0].value
            ):
                self.log.debug(f"Removed {count} {category.value} statements")
            report.info(f"Excluded {filtered.removed_count} statements")

        if self.output_path is not None:
            self._write(schema)

        size = len(schema.encode("utf-8"))
        report.success(f"Schema exported ({format_kilobytes(size)})")
        report.completed("Schema export completed successfully!")
        return schema

    def _write(self, schema: str) -> None:
        path = self.output_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(schema, encoding="utf-8")
        except OSError as error:
            raise TempFileError("write", path, str(error)) from error
        self.reporter.info(f"Schema written to {path}")


def export_schema(
    options: SchemaExportOptions,
    *,
    profiles: Optional[ProfileStore] = None,
    pg_dump: Optional[str] = None,
    bus: EventBus = default_bus,
    output_path: Optional[Union[str, Path]] = None,
) -> str:
    """Export a schema on the calling thread and return its text.

    Raises:
        ProfileNotFoundError: If the profile is unknown
        ToolNotFoundError: If pg_dump is missing
        ToolFailureError: If pg_dump fails
    """
    profiles = profiles or JsonProfileStore()
    profile = profiles.require(options.profile_id)
    pg_dump = pg_dump or locator.require("pg_dump")
    return SchemaExport(
        options, profile, pg_dump, bus=bus, output_path=output_path
    ).run()


def submit_schema_export(
    options: SchemaExportOptions,
    *,
    profiles: Optional[ProfileStore] = None,
    pg_dump: Optional[str] = None,
    bus: EventBus = default_bus,
    registry: JobRegistry = default_registry,
    output_path: Optional[Union[str, Path]] = None,
) -> Job:
    """Validate the request and run the export in the background.

    The job result is the schema text.
    """
    profiles = profiles or JsonProfileStore()
    profile = profiles.require(options.profile_id)
    pg_dump = pg_dump or locator.require("pg_dump")

    job = Job("schema")
    export = SchemaExport(
        options,
        profile,
        pg_dump,
        bus=bus,
        token=job.token,
        output_path=output_path,
        job_id=job.id,
    )
    registry.add(job)
    job.start(lambda _job: export.run())
    return job


def start_schema_export(options: SchemaExportOptions, **kwargs) -> str:
    """Start a schema export and return its job id without waiting for it."""
    return submit_schema_export(options, **kwargs).id


__all__ = [
    "SchemaExport",
    "SchemaStage",
    "export_schema",
    "start_schema_export",
    "submit_schema_export",
]
