"""Domain model for PostgreSQL clone and schema export runs.

Type-safe objects shared by the pipeline, the history store and the CLI.
Persisted shapes use the camelCase keys of the data file.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _format_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _conninfo_value(value: Any) -> str:
    text = str(value)
    if text and not any(char in text for char in " '\\\t\n="):
        return text
    escaped = text.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


# ==============================================================================
# Connection Profile Domain
# ==============================================================================


@dataclass(frozen=True)
class ConnectionProfile:
    """A saved PostgreSQL connection.

    Profiles are managed elsewhere; this package only reads them.
    """

    id: str
    name: str
    host: str
    port: int
    database: str
    user: str
    password: str = ""
    ssl: bool = False
    tag_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def ssl_mode(self) -> str:
        return "require" if self.ssl else "prefer"

    def conninfo(self) -> str:
        """libpq connection string without the password.

        Values needing it are single-quoted with backslash escapes.

        Returns: e.g., "host=db.local port=5432 dbname=app user=postgres"
        """
        return " ".join(
            f"{key}={_conninfo_value(value)}"
            for key, value in (
                ("host", self.host),
                ("port", self.port),
                ("dbname", self.database),
                ("user", self.user),
            )
        )

    def env_vars(self) -> dict[str, str]:
        """Environment passed to the client tools (credentials stay off argv)."""
        return {
            "PGPASSWORD": self.password,
            "PGSSLMODE": self.ssl_mode,
        }

    def format_label(self) -> str:
        return f"{self.name} ({self.host}:{self.port}/{self.database})"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConnectionProfile:
        """Build a profile from its persisted form.

        Raises:
            KeyError: If a required key is missing
            ValueError: If the port cannot be converted to int
        """
        return cls(
            id=data["id"],
            name=data["name"],
            host=data["host"],
            port=int(data.get("port", 5432)),
            database=data["database"],
            user=data["user"],
            password=data.get("password", ""),
            ssl=bool(data.get("ssl", False)),
            tag_id=data.get("tagId"),
            created_at=_parse_datetime(data.get("createdAt")),
            updated_at=_parse_datetime(data.get("updatedAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "ssl": self.ssl,
            "tagId": self.tag_id,
            "createdAt": _format_datetime(self.created_at),
            "updatedAt": _format_datetime(self.updated_at),
        }


# ==============================================================================
# Clone Request Domain
# ==============================================================================


class CloneType(Enum):
    """What a clone transfers."""

    STRUCTURE = "structure"  # schema only
    DATA = "data"  # rows only, destination schema must exist
    BOTH = "both"

    @classmethod
    def parse(cls, value: CloneType | str) -> CloneType:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown clone type: {value}") from None

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True)
class CloneOptions:
    """A clone request. Immutable for the duration of one run."""

    source_id: str
    destination_id: str
    clone_type: CloneType = CloneType.BOTH
    clean_destination: bool = False
    create_backup: bool = False
    exclude_tables: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "clone_type", CloneType.parse(self.clone_type))
        object.__setattr__(self, "exclude_tables", tuple(self.exclude_tables))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CloneOptions:
        return cls(
            source_id=data["sourceId"],
            destination_id=data["destinationId"],
            clone_type=CloneType.parse(data.get("cloneType", "both")),
            clean_destination=bool(data.get("cleanDestination", False)),
            create_backup=bool(data.get("createBackup", False)),
            exclude_tables=tuple(data.get("excludeTables") or ()),
        )


@dataclass(frozen=True)
class SchemaExportOptions:
    """A schema export request.

    Inclusion flags default to True; the statement filter only ever removes.
    """

    profile_id: str
    schemas: frozenset[str] = frozenset()
    tables: frozenset[str] = frozenset()
    include_comments: bool = True
    include_indexes: bool = True
    include_constraints: bool = True
    include_triggers: bool = True
    include_sequences: bool = True
    include_types: bool = True
    include_functions: bool = True
    include_views: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "schemas", frozenset(self.schemas))
        object.__setattr__(self, "tables", frozenset(self.tables))

    @property
    def includes_everything(self) -> bool:
        return all(
            (
                self.include_comments,
                self.include_indexes,
                self.include_constraints,
                self.include_triggers,
                self.include_sequences,
                self.include_types,
                self.include_functions,
                self.include_views,
            )
        )


# ==============================================================================
# Progress Domain
# ==============================================================================


@dataclass(frozen=True)
class CloneProgress:
    """One progress event of a run.

    Terminal events carry ``is_complete=True``; the error event resets the
    percentage to 0.
    """

    stage: str
    progress: int
    message: str
    is_complete: bool = False
    is_error: bool = False

    @classmethod
    def completed(cls, message: str) -> CloneProgress:
        return cls("completed", 100, message, is_complete=True)

    @classmethod
    def error(cls, message: str) -> CloneProgress:
        return cls("error", 0, message, is_complete=True, is_error=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "progress": self.progress,
            "message": self.message,
            "isComplete": self.is_complete,
            "isError": self.is_error,
        }


# Schema exports report with the same shape
SchemaProgress = CloneProgress


# ==============================================================================
# History Domain
# ==============================================================================


class CloneStatus(Enum):
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class CloneHistoryEntry:
    """Auditable record of one clone run.

    Created at run start with an optimistic SUCCESS status; ``complete()``
    sets the final status, completion time and whole-second duration.
    """

    source_id: str
    source_name: str
    destination_id: str
    destination_name: str
    clone_type: CloneType
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: CloneStatus = CloneStatus.SUCCESS
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    duration: int | None = None
    error_message: str | None = None
    logs: list[str] = field(default_factory=list)

    @classmethod
    def new(
        cls,
        source: ConnectionProfile,
        destination: ConnectionProfile,
        clone_type: CloneType,
    ) -> CloneHistoryEntry:
        return cls(
            source_id=source.id,
            source_name=source.name,
            destination_id=destination.id,
            destination_name=destination.name,
            clone_type=clone_type,
        )

    def add_log(self, line: str) -> None:
        self.logs.append(line)

    def complete(
        self,
        status: CloneStatus,
        error_message: str | None = None,
        now: datetime | None = None,
    ) -> None:
        completed_at = now or utc_now()
        if completed_at < self.started_at:
            completed_at = self.started_at
        self.completed_at = completed_at
        self.duration = int((completed_at - self.started_at).total_seconds())
        self.status = status
        self.error_message = error_message

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sourceId": self.source_id,
            "sourceName": self.source_name,
            "destinationId": self.destination_id,
            "destinationName": self.destination_name,
            "cloneType": self.clone_type.value,
            "status": self.status.value,
            "startedAt": _format_datetime(self.started_at),
            "completedAt": _format_datetime(self.completed_at),
            "duration": self.duration,
            "errorMessage": self.error_message,
            "logs": list(self.logs),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CloneHistoryEntry:
        return cls(
            id=data["id"],
            source_id=data["sourceId"],
            source_name=data.get("sourceName", ""),
            destination_id=data["destinationId"],
            destination_name=data.get("destinationName", ""),
            clone_type=CloneType.parse(data.get("cloneType", "both")),
            status=CloneStatus(data.get("status", "success")),
            started_at=_parse_datetime(data["startedAt"]) or utc_now(),
            completed_at=_parse_datetime(data.get("completedAt")),
            duration=data.get("duration"),
            error_message=data.get("errorMessage"),
            logs=list(data.get("logs") or []),
        )


# ==============================================================================
# Database Inspection Domain
# ==============================================================================


@dataclass(frozen=True)
class TableInfo:
    name: str
    schema: str
    row_count: int = 0  # planner estimate (n_live_tup)
    size: int = 0  # bytes, including indexes and TOAST

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "schema": self.schema,
            "rowCount": self.row_count,
            "size": self.size,
        }


@dataclass(frozen=True)
class SchemaInfo:
    name: str
    table_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "tableCount": self.table_count}


@dataclass(frozen=True)
class DatabaseInfo:
    """Result of a connection test."""

    version: str
    total_size: int = 0
    tables: tuple[TableInfo, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "totalSize": self.total_size,
            "tables": [table.to_dict() for table in self.tables],
        }


@dataclass(frozen=True)
class DatabaseStructure:
    schemas: tuple[SchemaInfo, ...] = ()
    tables: tuple[TableInfo, ...] = ()

    def tables_in(self, schema: str) -> list[TableInfo]:
        return [table for table in self.tables if table.schema == schema]

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemas": [schema.to_dict() for schema in self.schemas],
            "tables": [table.to_dict() for table in self.tables],
        }


# ==============================================================================
# Job State
# ==============================================================================


class JobState(Enum):
    """State of a background run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)
