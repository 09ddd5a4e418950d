"""Classification of client tool results into success, warnings or fatal.

The client tools mix progress, notices, warnings and errors on stderr and
use non-zero exit codes for both ignorable and fatal problems. Each
(tool, stage) pair has one classifier; the pipeline only ever looks at the
returned Outcome. Classifiers can be replaced with ``register_classifier``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from pg_cloner.logging import get_logger

log = get_logger(source=__name__, tags=["classifier"])


class OutcomeKind(Enum):
    SUCCESS = "success"
    WARNINGS = "warnings"
    FATAL = "fatal"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    warning_count: int = 0
    message: str = ""

    @classmethod
    def success(cls) -> Outcome:
        return cls(OutcomeKind.SUCCESS)

    @classmethod
    def warnings(cls, count: int, message: str = "") -> Outcome:
        return cls(OutcomeKind.WARNINGS, warning_count=count, message=message)

    @classmethod
    def fatal(cls, message: str) -> Outcome:
        return cls(OutcomeKind.FATAL, message=message)

    @property
    def is_fatal(self) -> bool:
        return self.kind is OutcomeKind.FATAL

    @property
    def has_warnings(self) -> bool:
        return self.kind is OutcomeKind.WARNINGS


Classifier = Callable[[int, str], Outcome]

RESTORE_WARNING_PREFIX = "pg_restore: warning"
RESTORE_IGNORED_PATTERN = re.compile(r"errors ignored on restore: (\d+)", re.IGNORECASE)
RESTORE_ERROR_PATTERN = re.compile(
    r"^pg_restore: (?:error|fatal)\b|^pg_restore: \[[^\]]+\]|\b(?:ERROR|FATAL):"
)
PSQL_ERROR_PATTERN = re.compile(r"\bERROR:")
PSQL_WARNING_PATTERN = re.compile(r"\bWARNING:")


def _failure_message(returncode: int, stderr: str) -> str:
    return stderr.strip() or f"exited with status {returncode}"


def classify_strict(returncode: int, stderr: str) -> Outcome:
    """Any non-zero exit is fatal (dumps)."""
    if returncode == 0:
        return Outcome.success()
    return Outcome.fatal(_failure_message(returncode, stderr))


def classify_best_effort(returncode: int, stderr: str) -> Outcome:
    """Non-zero exits are downgraded to a single warning (backup, clean)."""
    if returncode == 0:
        return Outcome.success()
    return Outcome.warnings(1, _failure_message(returncode, stderr))


def classify_pg_restore(returncode: int, stderr: str) -> Outcome:
    """pg_restore exits non-zero for ignorable errors too.

    Query failures it skipped over are summarized by a closing
    "pg_restore: warning: errors ignored on restore: N" line; whenever a
    pg_restore warning line is present the run is a warning outcome. Without
    one, an error line from pg_restore or the server is fatal. Verbose
    progress lines never count as errors, whatever object names they carry.
    """
    if returncode == 0:
        return Outcome.success()
    lines = [line.strip() for line in stderr.splitlines()]
    warning_lines = [line for line in lines if line.startswith(RESTORE_WARNING_PREFIX)]
    if warning_lines:
        ignored = RESTORE_IGNORED_PATTERN.search(stderr)
        count = int(ignored.group(1)) if ignored else len(warning_lines)
        return Outcome.warnings(max(count, 1), stderr.strip())
    if any(RESTORE_ERROR_PATTERN.search(line) for line in lines):
        return Outcome.fatal(stderr.strip())
    return Outcome.warnings(1, _failure_message(returncode, stderr))


def classify_psql_script(returncode: int, stderr: str) -> Outcome:
    """psql running a script file.

    psql keeps going after statement errors and still exits 0, so error
    lines on a successful exit are reported as warnings.
    """
    error_lines = [line for line in stderr.splitlines() if PSQL_ERROR_PATTERN.search(line)]
    if returncode != 0:
        if error_lines:
            return Outcome.fatal(stderr.strip())
        count = len(PSQL_WARNING_PATTERN.findall(stderr))
        return Outcome.warnings(max(count, 1), _failure_message(returncode, stderr))
    if error_lines:
        return Outcome.warnings(len(error_lines), stderr.strip())
    return Outcome.success()


_REGISTRY: dict[tuple[str, str], Classifier] = {
    ("pg_dump", "backup"): classify_best_effort,
    ("psql", "cleaning"): classify_best_effort,
    ("pg_dump", "dumping"): classify_strict,
    ("pg_restore", "restoring"): classify_pg_restore,
    ("psql", "restoring"): classify_psql_script,
    ("psql", "verifying"): classify_best_effort,
}


def register_classifier(tool: str, stage: str, classifier: Classifier) -> None:
    """Install or replace the classifier for one (tool, stage) pair."""
    _REGISTRY[(tool, stage)] = classifier


def get_classifier(tool: str, stage: str) -> Classifier:
    return _REGISTRY.get((tool, stage), classify_strict)


def classify(
    tool: str, stage: str, returncode: int, stderr: Optional[str]
) -> Outcome:
    """Classify one tool run. Unregistered pairs are treated strictly."""
    outcome = get_classifier(tool, stage)(returncode, stderr or "")
    log.debug(
        f"{tool}/{stage}: exit {returncode} -> {outcome.kind.value}"
        + (f" ({outcome.warning_count} warnings)" if outcome.has_warnings else "")
    )
    return outcome


__all__ = [
    "Classifier",
    "Outcome",
    "OutcomeKind",
    "classify",
    "classify_best_effort",
    "classify_pg_restore",
    "classify_psql_script",
    "classify_strict",
    "get_classifier",
    "register_classifier",
]
