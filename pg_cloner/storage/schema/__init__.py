"""Schema-only export and statement filtering."""

from .export import (
    SchemaExport,
    SchemaStage,
    export_schema,
    start_schema_export,
    submit_schema_export,
)
from .statement_filter import (
    Category,
    FilterResult,
    ScanState,
    StatementScanner,
    categorize,
    excluded_categories,
    filter_schema,
)

__all__ = [
    "Category",
    "FilterResult",
    "ScanState",
    "SchemaExport",
    "SchemaStage",
    "StatementScanner",
    "categorize",
    "excluded_categories",
    "export_schema",
    "filter_schema",
    "start_schema_export",
    "submit_schema_export",
]
