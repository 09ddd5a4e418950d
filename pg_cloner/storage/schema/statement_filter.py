"""Remove categories of statements from a plain schema dump.

pg_dump has no switches to leave out comments, indexes, constraints,
sequences, types, functions, views or triggers, so a schema export drops
them from the dump text afterwards.

The filter groups lines into whole statements before deciding anything.
A statement starts on the first non-blank, non ``--`` line and ends on a
line whose trimmed text ends with ``;`` while no string literal or
dollar-quoted body is open. Dollar-quoted function bodies contain their
own ``;`` terminated lines, which is why they get a dedicated state::

    IDLE --first line--> IN_STATEMENT --';' at line end--> IDLE
                          |      ^
               '$tag$'/'  |      | closing '$tag$'/'
                          v      |
                  IN_FUNCTION_BODY / IN_STRING

Every statement is kept or dropped as a unit, and lines outside
statements pass through untouched. With every category included the
output is byte-for-byte the input, and filtering twice with the same
options gives the same result as filtering once.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from pg_cloner.domain import SchemaExportOptions


class Category(Enum):
    COMMENTS = "comments"
    INDEXES = "indexes"
    CONSTRAINTS = "constraints"
    SEQUENCES = "sequences"
    TYPES = "types"
    FUNCTIONS = "functions"
    VIEWS = "views"
    TRIGGERS = "triggers"


class ScanState(Enum):
    IDLE = "idle"
    IN_STATEMENT = "in_statement"
    IN_STRING = "in_string"
    IN_FUNCTION_BODY = "in_function_body"


_FUNCTION_START = re.compile(r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:FUNCTION|PROCEDURE)\b")
_VIEW_START = re.compile(r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:MATERIALIZED\s+)?VIEW\b")
_QUOTE_TOKEN = re.compile(r"'|\$(?:[A-Za-z_][A-Za-z_0-9]*)?\$")

# (prefix, category) checked against the first line of a statement
_PREFIXES = (
    ("COMMENT ON", Category.COMMENTS),
    ("CREATE INDEX", Category.INDEXES),
    ("CREATE UNIQUE INDEX", Category.INDEXES),
    ("CREATE SEQUENCE", Category.SEQUENCES),
    ("ALTER SEQUENCE", Category.SEQUENCES),
    ("CREATE TYPE", Category.TYPES),
    ("ALTER TYPE", Category.TYPES),
    ("ALTER FUNCTION", Category.FUNCTIONS),
    ("ALTER PROCEDURE", Category.FUNCTIONS),
    ("ALTER VIEW", Category.VIEWS),
    ("ALTER MATERIALIZED VIEW", Category.VIEWS),
    ("CREATE TRIGGER", Category.TRIGGERS),
    ("CREATE CONSTRAINT TRIGGER", Category.TRIGGERS),
)


def categorize(statement: str) -> Optional[Category]:
    """Return the removable category of one complete statement, if any."""
    head = statement.lstrip().upper()
    for prefix, category in _PREFIXES:
        if head.startswith(prefix):
            return category
    if _FUNCTION_START.match(head):
        return Category.FUNCTIONS
    if _VIEW_START.match(head):
        return Category.VIEWS
    if head.startswith("ALTER TABLE"):
        if "ADD CONSTRAINT" in head or "FOREIGN KEY" in head:
            return Category.CONSTRAINTS
        if "NEXTVAL(" in head:
            return Category.SEQUENCES
        return None
    if "SETVAL(" in head:
        return Category.SEQUENCES
    return None


def excluded_categories(options: SchemaExportOptions) -> frozenset[Category]:
    flags = {
        Category.COMMENTS: options.include_comments,
        Category.INDEXES: options.include_indexes,
        Category.CONSTRAINTS: options.include_constraints,
        Category.SEQUENCES: options.include_sequences,
        Category.TYPES: options.include_types,
        Category.FUNCTIONS: options.include_functions,
        Category.VIEWS: options.include_views,
        Category.TRIGGERS: options.include_triggers,
    }
    return frozenset(category for category, included in flags.items() if not included)


@dataclass
class FilterResult:
    text: str
    removed: Counter = field(default_factory=Counter)

    @property
    def removed_count(self) -> int:
        return sum(self.removed.values())


class StatementScanner:
    """Line-driven state machine that groups dump lines into statements."""

    def __init__(self) -> None:
        self.state = ScanState.IDLE
        self._dollar_tag: Optional[str] = None
        self._lines: list[str] = []

    def _scan_quotes(self, line: str) -> None:
        for match in _QUOTE_TOKEN.finditer(line):
            token = match.group(0)
            if self.state is ScanState.IN_FUNCTION_BODY:
                if token == self._dollar_tag:
                    self._dollar_tag = None
                    self.state = ScanState.IN_STATEMENT
            elif self.state is ScanState.IN_STRING:
                if token == "'":
                    self.state = ScanState.IN_STATEMENT
            elif token == "'":
                self.state = ScanState.IN_STRING
            else:
                self._dollar_tag = token
                self.state = ScanState.IN_FUNCTION_BODY

    def feed(self, line: str) -> Optional[list[str]]:
        """Consume one line (with its newline).

        Returns the lines of a statement once it is complete, ``[line]``
        for a line outside any statement, or None while a statement is
        still open.
        """
        if self.state is ScanState.IDLE:
            stripped = line.strip()
            if not stripped or stripped.startswith("--"):
                return [line]
            self.state = ScanState.IN_STATEMENT
        self._lines.append(line)
        self._scan_quotes(line)
        if self.state is ScanState.IN_STATEMENT and line.rstrip().endswith(";"):
            return self._take()
        return None

    def flush(self) -> Optional[list[str]]:
        """Lines of an unterminated trailing statement, if any."""
        if not self._lines:
            return None
        return self._take()

    def _take(self) -> list[str]:
        lines = self._lines
        self._lines = []
        self._dollar_tag = None
        self.state = ScanState.IDLE
        return lines


def filter_statements(lines: Iterable[str], excluded: frozenset[Category]) -> FilterResult:
    scanner = StatementScanner()
    kept: list[str] = []
    removed: Counter = Counter()

    def _handle(chunk: list[str]) -> None:
        if excluded:
            category = categorize("".join(chunk))
            if category in excluded:
                removed[category] += 1
                return
        kept.extend(chunk)

    for line in lines:
        chunk = scanner.feed(line)
        if chunk is not None:
            _handle(chunk)
    trailing = scanner.flush()
    if trailing is not None:
        _handle(trailing)
    return FilterResult(text="".join(kept), removed=removed)


def filter_schema(text: str, options: SchemaExportOptions) -> FilterResult:
    """Drop every statement whose category the options exclude."""
    excluded = excluded_categories(options)
    if not excluded:
        return FilterResult(text=text)
    return filter_statements(text.splitlines(keepends=True), excluded)
