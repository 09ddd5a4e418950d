"""Connection checks and database structure listing through psql.

Used to confirm a profile works before cloning it and to pick the tables
to exclude from a clone or the schemas and tables to export.
"""

from __future__ import annotations

from typing import Optional

from pg_cloner.domain import (
    ConnectionProfile,
    DatabaseInfo,
    DatabaseStructure,
    SchemaInfo,
    TableInfo,
)
from pg_cloner.logging import get_logger
from pg_cloner.storage.clone.command_runners import run_tool
from pg_cloner.storage.clone.commands import ROW_SEPARATOR, psql_query_args, psql_rows_args
from pg_cloner.storage.exceptions import ToolFailureError
from pg_cloner.storage.store import JsonProfileStore, ProfileStore
from pg_cloner.tools import locator

log = get_logger(source=__name__, tags=["inspect"])

VERSION_SQL = "SELECT version();"

DATABASE_SIZE_SQL = "SELECT pg_database_size(current_database());"

TABLES_SQL = """
SELECT
    t.table_name,
    t.table_schema,
    COALESCE(s.n_live_tup, 0)::bigint AS row_count,
    COALESCE(pg_total_relation_size(
        quote_ident(t.table_schema) || '.' || quote_ident(t.table_name)
    ), 0)::bigint AS size
FROM information_schema.tables t
LEFT JOIN pg_stat_user_tables s
    ON t.table_name = s.relname AND t.table_schema = s.schemaname
WHERE t.table_schema NOT IN ('pg_catalog', 'information_schema')
AND t.table_type = 'BASE TABLE'
ORDER BY t.table_schema, t.table_name;
"""

SCHEMAS_SQL = """
SELECT
    n.nspname AS schema_name,
    COUNT(c.relname)::integer AS table_count
FROM pg_namespace n
LEFT JOIN pg_class c ON c.relnamespace = n.oid AND c.relkind = 'r'
WHERE n.nspname NOT IN ('pg_catalog', 'information_schema', 'pg_toast')
AND n.nspname NOT LIKE 'pg_temp_%'
AND n.nspname NOT LIKE 'pg_toast_temp_%'
GROUP BY n.nspname
ORDER BY n.nspname;
"""


def human_size(size_bytes):
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


def _to_int(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        return 0


def parse_rows(output: Optional[str], columns: int) -> list[list[str]]:
    """Split ``psql -t -A -F '|'`` output; short rows are dropped."""
    rows = []
    for line in (output or "").splitlines():
        parts = line.split(ROW_SEPARATOR)
        if len(parts) >= columns:
            rows.append(parts)
    return rows


def parse_tables(output: Optional[str]) -> tuple[TableInfo, ...]:
    return tuple(
        TableInfo(name=name, schema=schema, row_count=_to_int(rows), size=_to_int(size))
        for name, schema, rows, size, *_ in parse_rows(output, 4)
    )


def parse_schemas(output: Optional[str]) -> tuple[SchemaInfo, ...]:
    return tuple(
        SchemaInfo(name=name, table_count=_to_int(count))
        for name, count, *_ in parse_rows(output, 2)
    )


def _query(profile: ConnectionProfile, args: list[str], stage: str, failure: str) -> str:
    result = run_tool(args, env=profile.env_vars())
    if not result.ok:
        stderr = result.stderr.strip()
        log.debug(f"{profile.name}: {failure}: {stderr}")
        raise ToolFailureError(result.tool, stage, stderr, message=f"{failure}: {stderr}")
    return result.stdout


def test_connection(profile: ConnectionProfile, psql: Optional[str] = None) -> DatabaseInfo:
    """Connect to a profile's database and report its version, size and tables.

    Raises:
        ToolNotFoundError: If psql is missing
        ToolFailureError: If the connection or a query fails
    """
    psql = psql or locator.require("psql")
    version = _query(
        profile,
        psql_query_args(psql, profile, VERSION_SQL),
        "connecting",
        "Connection failed",
    ).strip()
    tables = parse_tables(
        _query(
            profile,
            psql_rows_args(psql, profile, TABLES_SQL),
            "inspecting",
            "Failed to get table info",
        )
    )
    total_size = _to_int(
        _query(
            profile,
            psql_query_args(psql, profile, DATABASE_SIZE_SQL),
            "inspecting",
            "Failed to get database size",
        )
    )
    log.info(
        f"Connected to {profile.format_label()}: {len(tables)} tables, "
        f"{human_size(total_size)}"
    )
    return DatabaseInfo(version=version, total_size=total_size, tables=tables)


def test_connection_by_id(
    profile_id: str,
    *,
    profiles: Optional[ProfileStore] = None,
    psql: Optional[str] = None,
) -> DatabaseInfo:
    """Raises ProfileNotFoundError for an unknown id, otherwise as test_connection."""
    profiles = profiles or JsonProfileStore()
    return test_connection(profiles.require(profile_id), psql=psql)


def get_database_structure(
    profile_id: str,
    *,
    profiles: Optional[ProfileStore] = None,
    psql: Optional[str] = None,
) -> DatabaseStructure:
    """List the user schemas with their table counts, and every base table.

    Raises:
        ProfileNotFoundError: If the profile is unknown
        ToolNotFoundError: If psql is missing
        ToolFailureError: If a query fails
    """
    profiles = profiles or JsonProfileStore()
    profile = profiles.require(profile_id)
    psql = psql or locator.require("psql")
    schemas = parse_schemas(
        _query(
            profile,
            psql_rows_args(psql, profile, SCHEMAS_SQL),
            "inspecting",
            "Failed to get schemas",
        )
    )
    tables = parse_tables(
        _query(
            profile,
            psql_rows_args(psql, profile, TABLES_SQL),
            "inspecting",
            "Failed to get tables",
        )
    )
    log.debug(f"{profile.name}: {len(schemas)} schemas, {len(tables)} tables")
    return DatabaseStructure(schemas=schemas, tables=tables)
