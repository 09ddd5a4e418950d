"""Database cloning through pg_dump, pg_restore and psql.

This package implements the staged clone pipeline with live progress
events and a persisted history entry per run.

Main Functions:
    - start_clone(): Validate a request and run it in the background
    - submit_clone(): Same, returning the Job handle
    - ClonePipeline: The staged run itself

Stage Helpers:
    - select_dump_format(): Custom archive or plain SQL by clone type
    - parallel_jobs(): Restore parallelism clamped to the configured range
    - classify(): Tool exit status and stderr to an Outcome
    - verify_clone(): Count tables in the destination

Command Execution:
    - run_tool(): Run a tool and capture its output
    - run_tool_streaming(): Run a tool while forwarding stderr lines
"""

from .classifier import Outcome, OutcomeKind, classify, get_classifier, register_classifier
from .command_runners import ToolResult, run_tool, run_tool_streaming
from .models import (
    STAGE_TABLE,
    DumpFormat,
    Stage,
    parallel_jobs,
    select_dump_format,
    stage_percent,
    use_custom_format,
)
from .operations import (
    ClonePipeline,
    CloneTools,
    backup_file_name,
    create_temp_file,
    start_clone,
    submit_clone,
)
from .progress import ProgressReporter, format_duration, format_log_line
from .verification import VerificationResult, parse_table_count, verify_clone

__all__ = [
    "STAGE_TABLE",
    "ClonePipeline",
    "CloneTools",
    "DumpFormat",
    "Outcome",
    "OutcomeKind",
    "ProgressReporter",
    "Stage",
    "ToolResult",
    "VerificationResult",
    "backup_file_name",
    "classify",
    "create_temp_file",
    "format_duration",
    "format_log_line",
    "get_classifier",
    "parallel_jobs",
    "parse_table_count",
    "register_classifier",
    "run_tool",
    "run_tool_streaming",
    "select_dump_format",
    "stage_percent",
    "start_clone",
    "submit_clone",
    "use_custom_format",
    "verify_clone",
]
