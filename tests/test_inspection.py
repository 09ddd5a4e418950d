"""Tests for connection checks and database structure listing."""

import pytest

from pg_cloner.domain import SchemaInfo, TableInfo
from pg_cloner.storage import inspection
from pg_cloner.storage.clone.command_runners import ToolResult
from pg_cloner.storage.exceptions import (
    ProfileNotFoundError,
    ToolFailureError,
    ToolNotFoundError,
)

VERSION_OUTPUT = " PostgreSQL 16.2 on x86_64-pc-linux-gnu, compiled by gcc\n"
TABLES_OUTPUT = (
    "orders|public|1200|491520\n"
    "audit_log|public|0|16384\n"
    "events|analytics|98000|12582912\n"
)
SCHEMAS_OUTPUT = "analytics|1\npublic|2\n"


@pytest.fixture
def psql_results(mocker):
    """Answer each query by the SQL it carries; records every call."""
    calls = []
    answers = {
        inspection.VERSION_SQL: ToolResult(("psql",), 0, VERSION_OUTPUT, ""),
        inspection.TABLES_SQL: ToolResult(("psql",), 0, TABLES_OUTPUT, ""),
        inspection.SCHEMAS_SQL: ToolResult(("psql",), 0, SCHEMAS_OUTPUT, ""),
        inspection.DATABASE_SIZE_SQL: ToolResult(("psql",), 0, " 20971520\n", ""),
    }

    def _run(command, env=None):
        calls.append((tuple(command), env))
        return answers[command[-1]]

    mocker.patch.object(inspection, "run_tool", side_effect=_run)
    return answers, calls


class TestParsing:
    def test_tables(self):
        tables = inspection.parse_tables(TABLES_OUTPUT)

        assert tables[0] == TableInfo("orders", "public", 1200, 491520)
        assert tables[2].qualified_name == "analytics.events"

    def test_short_and_blank_rows_dropped(self):
        assert inspection.parse_tables("\norders|public\n") == ()

    def test_unparsable_numbers_become_zero(self):
        (table,) = inspection.parse_tables("orders|public||n/a\n")
        assert table.row_count == 0
        assert table.size == 0

    def test_schemas(self):
        assert inspection.parse_schemas(SCHEMAS_OUTPUT) == (
            SchemaInfo("analytics", 1),
            SchemaInfo("public", 2),
        )

    @pytest.mark.parametrize(
        "size,expected",
        [(None, "0B"), (512, "512.0B"), (2048, "2.0KB"), (20971520, "20.0MB")],
    )
    def test_human_size(self, size, expected):
        assert inspection.human_size(size) == expected


class TestConnectionCheck:
    def test_reports_version_size_and_tables(self, psql_results, source_profile):
        info = inspection.test_connection(source_profile, psql="/usr/bin/psql")

        assert info.version.startswith("PostgreSQL 16.2")
        assert info.total_size == 20971520
        assert [table.name for table in info.tables] == ["orders", "audit_log", "events"]

    def test_queries_use_unaligned_rows(self, psql_results, source_profile):
        _, calls = psql_results

        inspection.test_connection(source_profile, psql="/usr/bin/psql")

        tables_call = next(command for command, _ in calls if command[-1] == inspection.TABLES_SQL)
        assert tables_call[:2] == ("/usr/bin/psql", "-d")
        assert ("-t", "-A", "-F", "|") == tables_call[3:7]

    def test_credentials_through_environment(self, psql_results, source_profile):
        _, calls = psql_results

        inspection.test_connection(source_profile, psql="psql")

        for command, env in calls:
            assert env == {"PGPASSWORD": "s3cret", "PGSSLMODE": "require"}
            assert "s3cret" not in " ".join(command)

    def test_connection_failure(self, psql_results, source_profile):
        answers, calls = psql_results
        answers[inspection.VERSION_SQL] = ToolResult(
            ("psql",),
            2,
            "",
            'psql: error: connection to server at "prod.db.local" failed: timeout\n',
        )

        with pytest.raises(ToolFailureError) as excinfo:
            inspection.test_connection(source_profile, psql="psql")

        assert excinfo.value.stage == "connecting"
        assert str(excinfo.value).startswith("Connection failed: psql: error:")
        assert len(calls) == 1

    def test_missing_psql(self, mocker, source_profile):
        mocker.patch.object(
            inspection.locator, "require", side_effect=ToolNotFoundError("psql")
        )
        with pytest.raises(ToolNotFoundError):
            inspection.test_connection(source_profile)

    def test_by_id(self, psql_results, profile_store):
        info = inspection.test_connection_by_id(
            "profile-b", profiles=profile_store, psql="psql"
        )
        assert info.total_size == 20971520

    def test_by_unknown_id(self, profile_store):
        with pytest.raises(ProfileNotFoundError):
            inspection.test_connection_by_id("nope", profiles=profile_store, psql="psql")


class TestDatabaseStructure:
    def test_schemas_and_tables(self, psql_results, profile_store):
        structure = inspection.get_database_structure(
            "profile-a", profiles=profile_store, psql="psql"
        )

        assert [schema.name for schema in structure.schemas] == ["analytics", "public"]
        assert [table.name for table in structure.tables_in("public")] == [
            "orders",
            "audit_log",
        ]
        assert structure.to_dict()["tables"][0] == {
            "name": "orders",
            "schema": "public",
            "rowCount": 1200,
            "size": 491520,
        }

    def test_schema_query_failure(self, psql_results, profile_store):
        answers, _ = psql_results
        answers[inspection.SCHEMAS_SQL] = ToolResult(
            ("psql",), 1, "", "ERROR:  permission denied for schema secret\n"
        )

        with pytest.raises(ToolFailureError, match="Failed to get schemas"):
            inspection.get_database_structure(
                "profile-a", profiles=profile_store, psql="psql"
            )

    def test_unknown_profile(self, profile_store):
        with pytest.raises(ProfileNotFoundError):
            inspection.get_database_structure("nope", profiles=profile_store, psql="psql")
