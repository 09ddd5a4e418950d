"""Post-restore verification of the destination database."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pg_cloner.domain import ConnectionProfile
from pg_cloner.logging import get_logger
from pg_cloner.storage.exceptions import SubprocessLaunchError

from .classifier import classify
from .command_runners import run_tool
from .commands import VERIFY_TABLE_COUNT_SQL, psql_query_args

log = get_logger(source=__name__, tags=["verify"])


@dataclass(frozen=True)
class VerificationResult:
    table_count: int
    determinate: bool
    detail: str = ""


def parse_table_count(output: Optional[str]) -> Optional[int]:
    """Parse the single value printed by ``psql -t``; None when unparsable."""
    if not output:
        return None
    text = output.strip()
    if not text:
        return None
    try:
        return int(text.splitlines()[0].strip())
    except ValueError:
        return None


def verify_clone(psql: str, destination: ConnectionProfile) -> VerificationResult:
    """Count base tables in the destination's public schema.

    Verification is informational: a psql that fails to start, a failed
    query or unparsable output all yield a count of 0 flagged as
    indeterminate. Nothing is raised.
    """
    try:
        result = run_tool(
            psql_query_args(psql, destination, VERIFY_TABLE_COUNT_SQL),
            env=destination.env_vars(),
        )
    except SubprocessLaunchError as error:
        log.debug(f"Verification indeterminate: {error}")
        return VerificationResult(table_count=0, determinate=False, detail=str(error))
    outcome = classify("psql", "verifying", result.returncode, result.stderr)
    count = parse_table_count(result.stdout) if result.ok else None
    if count is None:
        detail = outcome.message or f"unparsable output: {result.stdout.strip()!r}"
        log.debug(f"Verification indeterminate: {detail}")
        return VerificationResult(table_count=0, determinate=False, detail=detail)
    return VerificationResult(table_count=count, determinate=True)
