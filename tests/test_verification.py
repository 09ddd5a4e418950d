"""Tests for post-restore verification."""

from unittest.mock import patch

import pytest

from pg_cloner.storage.clone.command_runners import ToolResult
from pg_cloner.storage.clone.commands import VERIFY_TABLE_COUNT_SQL
from pg_cloner.storage.clone.verification import parse_table_count, verify_clone
from pg_cloner.storage.exceptions import SubprocessLaunchError


class TestParseTableCount:
    @pytest.mark.parametrize(
        "output,expected",
        [(" 12\n\n", 12), ("0", 0), ("", None), (None, None), ("   \n", None), ("abc", None)],
    )
    def test_parse(self, output, expected):
        assert parse_table_count(output) == expected


class TestVerifyClone:
    @patch("pg_cloner.storage.clone.verification.run_tool")
    def test_counts_tables(self, mock_run, destination_profile):
        mock_run.return_value = ToolResult(("psql",), 0, "     7\n", "")

        result = verify_clone("/usr/bin/psql", destination_profile)

        assert result.table_count == 7
        assert result.determinate is True
        command = mock_run.call_args.args[0]
        assert command[-1] == VERIFY_TABLE_COUNT_SQL
        assert "-t" in command
        assert mock_run.call_args.kwargs["env"]["PGPASSWORD"] == "hunter2"

    @patch("pg_cloner.storage.clone.verification.run_tool")
    def test_unparsable_is_zero_indeterminate(self, mock_run, destination_profile):
        mock_run.return_value = ToolResult(("psql",), 0, "", "")

        result = verify_clone("psql", destination_profile)

        assert result.table_count == 0
        assert result.determinate is False

    @patch("pg_cloner.storage.clone.verification.run_tool")
    def test_failed_query_is_zero_indeterminate(self, mock_run, destination_profile):
        mock_run.return_value = ToolResult(("psql",), 2, "", "connection refused")

        result = verify_clone("psql", destination_profile)

        assert result.table_count == 0
        assert result.determinate is False
        assert result.detail == "connection refused"

    @patch("pg_cloner.storage.clone.verification.run_tool")
    def test_launch_failure_never_raises(self, mock_run, destination_profile):
        mock_run.side_effect = SubprocessLaunchError("psql", "gone")

        result = verify_clone("psql", destination_profile)

        assert result.determinate is False
        assert result.table_count == 0
