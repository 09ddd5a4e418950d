"""Domain models for clone and schema export runs."""

from __future__ import annotations

from .models import (
    CloneHistoryEntry,
    CloneOptions,
    CloneProgress,
    CloneStatus,
    CloneType,
    ConnectionProfile,
    DatabaseInfo,
    DatabaseStructure,
    JobState,
    SchemaExportOptions,
    SchemaInfo,
    SchemaProgress,
    TableInfo,
    utc_now,
)


__all__ = [
    "CloneHistoryEntry",
    "CloneOptions",
    "CloneProgress",
    "CloneStatus",
    "CloneType",
    "ConnectionProfile",
    "DatabaseInfo",
    "DatabaseStructure",
    "JobState",
    "SchemaExportOptions",
    "SchemaInfo",
    "SchemaProgress",
    "TableInfo",
    "utc_now",
]
