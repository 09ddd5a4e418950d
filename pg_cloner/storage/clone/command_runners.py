"""Command execution for the PostgreSQL client tools."""

from __future__ import annotations

import os
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Sequence

from pg_cloner.logging import get_logger
from pg_cloner.storage.exceptions import SubprocessLaunchError

log = get_logger(source=__name__, tags=["tools"])
output_log = get_logger(source=__name__, tags=["tools", "stderr"])


@dataclass(frozen=True)
class ToolResult:
    """Exit status and captured output of one tool invocation."""

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def tool(self) -> str:
        return os.path.basename(self.command[0]) if self.command else ""


def build_env(extra: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Process environment with credentials layered on top."""
    env = dict(os.environ)
    if extra:
        env.update(extra)
    return env


def _tool_name(command: Sequence[str]) -> str:
    return os.path.basename(command[0]) if command else "<empty>"


def run_tool(
    command: Sequence[str],
    env: Optional[Mapping[str, str]] = None,
    input_text: Optional[str] = None,
) -> ToolResult:
    """Run a tool to completion and capture everything it printed.

    Raises:
        SubprocessLaunchError: If the executable could not be started
    """
    command = tuple(command)
    log.debug(f"Running command: {' '.join(command)}")
    start = time.monotonic()
    try:
        result = subprocess.run(
            command,
            input=input_text,
            env=build_env(env),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as error:
        raise SubprocessLaunchError(_tool_name(command), str(error)) from error
    elapsed = time.monotonic() - start
    log.debug(
        f"{_tool_name(command)} exited with {result.returncode} after {elapsed:.1f}s"
    )
    return ToolResult(
        command=command,
        returncode=result.returncode,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
        elapsed_seconds=elapsed,
    )


def run_tool_streaming(
    command: Sequence[str],
    env: Optional[Mapping[str, str]] = None,
    line_callback: Optional[Callable[[str], None]] = None,
) -> ToolResult:
    """Run a tool while forwarding each stderr line as it arrives.

    Used for verbose restores, where stderr carries per-object progress.
    Standard output is discarded.

    Raises:
        SubprocessLaunchError: If the executable could not be started
    """
    command = tuple(command)
    log.debug(f"Running command: {' '.join(command)}")
    start = time.monotonic()
    try:
        process = subprocess.Popen(
            command,
            env=build_env(env),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as error:
        raise SubprocessLaunchError(_tool_name(command), str(error)) from error
    stderr_lines = []
    try:
        for line in process.stderr:
            stderr_lines.append(line)
            output_log.trace(f"stderr: {line.rstrip()}")
            if line_callback:
                line_callback(line.rstrip("\n"))
    except BaseException:
        process.kill()
        raise
    finally:
        process.stderr.close()
        process.wait()
    elapsed = time.monotonic() - start
    log.debug(
        f"{_tool_name(command)} exited with {process.returncode} after {elapsed:.1f}s"
    )
    return ToolResult(
        command=command,
        returncode=process.returncode,
        stdout="",
        stderr="".join(stderr_lines),
        elapsed_seconds=elapsed,
    )


__all__ = [
    "ToolResult",
    "build_env",
    "run_tool",
    "run_tool_streaming",
]
