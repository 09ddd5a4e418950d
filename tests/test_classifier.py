"""Tests for tool output classification."""

import pytest

from pg_cloner.storage.clone import classifier
from pg_cloner.storage.clone.classifier import (
    Outcome,
    OutcomeKind,
    classify,
    classify_best_effort,
    classify_pg_restore,
    classify_psql_script,
    classify_strict,
    get_classifier,
    register_classifier,
)


class TestStrict:
    def test_zero_exit_is_success(self):
        assert classify_strict(0, "pg_dump: notice").kind is OutcomeKind.SUCCESS

    def test_non_zero_exit_is_fatal_with_stderr(self):
        outcome = classify_strict(1, "pg_dump: error: connection refused\n")
        assert outcome.is_fatal
        assert outcome.message == "pg_dump: error: connection refused"

    def test_non_zero_exit_without_stderr(self):
        assert classify_strict(2, "").message == "exited with status 2"


class TestBestEffort:
    def test_failure_downgraded_to_warning(self):
        outcome = classify_best_effort(1, "permission denied")
        assert outcome.has_warnings
        assert not outcome.is_fatal
        assert outcome.warning_count == 1


class TestPgRestore:
    """pg_restore exits non-zero for ignorable problems too."""

    IGNORED_ERRORS = (
        'pg_restore: error: could not execute query: ERROR:  schema "public" already exists\n'
        "Command was: CREATE SCHEMA public;\n"
        'pg_restore: error: could not execute query: ERROR:  role "app" does not exist\n'
        "Command was: ALTER TABLE public.orders OWNER TO app;\n"
        "pg_restore: warning: errors ignored on restore: 2\n"
    )

    def test_ignored_errors_are_warnings(self):
        outcome = classify_pg_restore(1, self.IGNORED_ERRORS)

        assert outcome.has_warnings
        assert outcome.warning_count == 2

    def test_single_ignored_error(self):
        stderr = (
            'pg_restore: error: could not execute query: ERROR:  schema "public" already exists\n'
            "pg_restore: warning: errors ignored on restore: 1\n"
        )
        outcome = classify_pg_restore(1, stderr)

        assert not outcome.is_fatal
        assert outcome.warning_count == 1

    def test_warning_lines_counted_without_summary(self):
        stderr = (
            "pg_restore: warning: could not set default_table_access_method\n"
            "pg_restore: warning: archive was made on a machine with larger integers\n"
        )
        assert classify_pg_restore(1, stderr).warning_count == 2

    def test_error_line_is_fatal(self):
        stderr = "pg_restore: error: could not connect to database\n"
        assert classify_pg_restore(1, stderr).is_fatal

    def test_server_error_without_summary_is_fatal(self):
        stderr = (
            "pg_restore: connecting to database for restore\n"
            'FATAL:  database "staging" does not exist\n'
        )
        assert classify_pg_restore(1, stderr).is_fatal

    def test_object_named_error_is_not_an_error(self):
        stderr = (
            'pg_restore: creating TABLE "public.error"\n'
            'pg_restore: creating TABLE "public.error_log"\n'
        )
        outcome = classify_pg_restore(1, stderr)

        assert outcome.has_warnings
        assert outcome.warning_count == 1

    def test_object_named_error_with_summary(self):
        stderr = (
            'pg_restore: creating TABLE "public.error"\n'
            "pg_restore: warning: errors ignored on restore: 1\n"
        )
        assert classify_pg_restore(1, stderr).has_warnings

    def test_verbose_noise_without_indicators(self):
        outcome = classify_pg_restore(1, "pg_restore: creating TABLE public.orders\n")
        assert outcome.has_warnings
        assert outcome.warning_count == 1

    def test_zero_exit_is_success(self):
        stderr = "pg_restore: processing item 42\n"
        assert classify_pg_restore(0, stderr).kind is OutcomeKind.SUCCESS


class TestPsqlScript:
    def test_non_zero_with_error_is_fatal(self):
        assert classify_psql_script(3, 'ERROR:  relation "x" does not exist').is_fatal

    def test_non_zero_without_error_is_warning(self):
        outcome = classify_psql_script(1, "WARNING:  something\nWARNING:  else\n")
        assert outcome.has_warnings
        assert outcome.warning_count == 2

    def test_zero_exit_with_errors_counts_them(self):
        stderr = (
            'psql:/tmp/x.sql:10: ERROR:  duplicate key value\n'
            'psql:/tmp/x.sql:12: ERROR:  duplicate key value\n'
        )
        outcome = classify_psql_script(0, stderr)
        assert outcome.has_warnings
        assert outcome.warning_count == 2

    def test_clean_run(self):
        assert classify_psql_script(0, "").kind is OutcomeKind.SUCCESS


class TestRegistry:
    @pytest.mark.parametrize(
        "tool,stage,expected",
        [
            ("pg_dump", "backup", classify_best_effort),
            ("psql", "cleaning", classify_best_effort),
            ("pg_dump", "dumping", classify_strict),
            ("pg_restore", "restoring", classify_pg_restore),
            ("psql", "restoring", classify_psql_script),
            ("psql", "verifying", classify_best_effort),
        ],
    )
    def test_registered_pairs(self, tool, stage, expected):
        assert get_classifier(tool, stage) is expected

    def test_unknown_pair_is_strict(self):
        assert get_classifier("pg_dumpall", "anything") is classify_strict

    def test_dump_fatal_but_backup_soft(self):
        """The same pg_dump failure is fatal when dumping, a warning when backing up."""
        assert classify("pg_dump", "dumping", 1, "boom").is_fatal
        assert classify("pg_dump", "backup", 1, "boom").has_warnings

    def test_none_stderr(self):
        assert classify("pg_dump", "dumping", 0, None).kind is OutcomeKind.SUCCESS

    def test_register_replaces(self, mocker):
        mocker.patch.dict(classifier._REGISTRY)
        register_classifier("pg_dump", "dumping", lambda code, err: Outcome.warnings(7))

        outcome = classify("pg_dump", "dumping", 1, "")
        assert outcome.warning_count == 7
