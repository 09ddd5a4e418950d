"""Argument vectors and SQL text for each pipeline stage."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Iterable, Union

from pg_cloner.domain import CloneType, ConnectionProfile

from .models import DumpFormat

PathLike = Union[str, Path]

ROW_SEPARATOR = "|"

TRUNCATE_ALL_SQL = """
DO $$ DECLARE
    r RECORD;
BEGIN
    SET session_replication_role = 'replica';
    FOR r IN (SELECT tablename FROM pg_tables WHERE schemaname = 'public') LOOP
        EXECUTE 'TRUNCATE TABLE public.' || quote_ident(r.tablename) || ' CASCADE';
    END LOOP;
    SET session_replication_role = 'origin';
END $$;
"""

DROP_ALL_SQL = """
DO $$ DECLARE
    r RECORD;
BEGIN
    FOR r IN (SELECT tablename FROM pg_tables WHERE schemaname = 'public') LOOP
        EXECUTE 'DROP TABLE IF EXISTS public.' || quote_ident(r.tablename) || ' CASCADE';
    END LOOP;
END $$;
"""

VERIFY_TABLE_COUNT_SQL = (
    "SELECT COUNT(*) FROM information_schema.tables "
    "WHERE table_schema = 'public' AND table_type = 'BASE TABLE';"
)

RESTORE_PREAMBLE = """-- Performance optimizations for faster restore
SET synchronous_commit = off;
SET work_mem = '256MB';
SET maintenance_work_mem = '512MB';
SET max_parallel_workers_per_gather = 0;
SET session_replication_role = 'replica';

"""

RESTORE_POSTAMBLE = """

-- Reset settings
SET session_replication_role = 'origin';
SET synchronous_commit = on;
"""


def clean_sql(clone_type: CloneType) -> str:
    """Data-only clones keep the destination schema: truncate, never drop."""
    if clone_type is CloneType.DATA:
        return TRUNCATE_ALL_SQL
    return DROP_ALL_SQL


def psql_command_args(psql: str, profile: ConnectionProfile, sql: str) -> list[str]:
    return [psql, "-d", profile.conninfo(), "-c", sql]


def psql_query_args(psql: str, profile: ConnectionProfile, sql: str) -> list[str]:
    """Tuples-only output, for single value queries."""
    return [psql, "-d", profile.conninfo(), "-t", "-c", sql]


def psql_rows_args(psql: str, profile: ConnectionProfile, sql: str) -> list[str]:
    """Unaligned tuples with "|" between columns, one row per line."""
    return [psql, "-d", profile.conninfo(), "-t", "-A", "-F", ROW_SEPARATOR, "-c", sql]


def psql_file_args(psql: str, profile: ConnectionProfile, script: PathLike) -> list[str]:
    return [psql, "-d", profile.conninfo(), "-f", str(script)]


def backup_args(pg_dump: str, profile: ConnectionProfile, output: PathLike) -> list[str]:
    return [pg_dump, "-d", profile.conninfo(), "-f", str(output)]


def dump_args(
    pg_dump: str,
    profile: ConnectionProfile,
    clone_type: CloneType,
    dump_format: DumpFormat,
    output: PathLike,
    exclude_tables: Iterable[str] = (),
) -> list[str]:
    args = [pg_dump, "-d", profile.conninfo()]
    if dump_format is DumpFormat.CUSTOM:
        # light compression, the archive usually crosses a network once
        args.extend(["-Fc", "-Z", "1"])
    else:
        args.append("-Fp")
    if clone_type is CloneType.STRUCTURE:
        args.append("--schema-only")
    elif clone_type is CloneType.DATA:
        args.extend(["--data-only", "--disable-triggers"])
    for table in exclude_tables:
        args.extend(["--exclude-table", table])
    args.extend(["-f", str(output)])
    return args


def restore_args(
    pg_restore: str, profile: ConnectionProfile, jobs: int, archive: PathLike
) -> list[str]:
    return [
        pg_restore,
        "-d",
        profile.conninfo(),
        "-j",
        str(jobs),
        "--no-owner",
        "--no-privileges",
        "-v",
        str(archive),
    ]


def schema_dump_args(
    pg_dump: str,
    profile: ConnectionProfile,
    schemas: Iterable[str] = (),
    tables: Iterable[str] = (),
) -> list[str]:
    """Plain schema-only dump written to stdout."""
    args = [pg_dump, "-d", profile.conninfo(), "--schema-only", "-Fp"]
    for schema in sorted(schemas):
        args.extend(["--schema", schema])
    for table in sorted(tables):
        args.extend(["--table", table])
    return args


def write_restore_script(dump_path: PathLike, script_path: PathLike) -> None:
    """Write the plain dump wrapped in session tuning.

    Streams the dump body instead of loading it.
    """
    with open(dump_path, encoding="utf-8") as source, open(
        script_path, "w", encoding="utf-8"
    ) as target:
        target.write(RESTORE_PREAMBLE)
        shutil.copyfileobj(source, target)
        target.write(RESTORE_POSTAMBLE)
