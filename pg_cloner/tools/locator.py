"""Locate the PostgreSQL client tools (pg_dump, psql, pg_restore)."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from pg_cloner.config import settings
from pg_cloner.logging import LoggerFactory
from pg_cloner.storage.exceptions import ToolNotFoundError

log = LoggerFactory.for_tools()

TOOL_NAMES = ("pg_dump", "psql", "pg_restore")

UNIX_BIN_DIRS = (
    Path("/usr/bin"),
    Path("/usr/local/bin"),
    Path("/opt/homebrew/bin"),
    Path("/usr/local/pgsql/bin"),
)

# Debian/Ubuntu install one bin directory per server version
VERSIONED_ROOT = Path("/usr/lib/postgresql")


def _versioned_bin_dirs(root: Path = VERSIONED_ROOT) -> list[Path]:
    """Return <root>/<version>/bin directories, newest version first."""
    if not root.is_dir():
        return []
    found = []
    for entry in root.iterdir():
        if not re.fullmatch(r"\d+(?:\.\d+)?", entry.name):
            continue
        bin_dir = entry / "bin"
        if bin_dir.is_dir():
            found.append((float(entry.name), bin_dir))
    found.sort(key=lambda item: item[0], reverse=True)
    return [bin_dir for _, bin_dir in found]


def candidate_dirs() -> list[Path]:
    return [
        *settings.get_tool_search_dirs(),
        *UNIX_BIN_DIRS,
        *_versioned_bin_dirs(),
    ]


def locate(name: str) -> Optional[str]:
    """Return the path of a client tool, or None if it is not installed."""
    path = shutil.which(name)
    if path:
        return path
    for directory in candidate_dirs():
        candidate = directory / name
        if candidate.is_file() and os.access(candidate, os.X_OK):
            log.debug(f"Found {name} outside PATH at {candidate}")
            return str(candidate)
    return None


def require(name: str) -> str:
    path = locate(name)
    if not path:
        raise ToolNotFoundError(name)
    return path


def locate_all() -> dict[str, str]:
    """Resolve every tool a clone needs.

    Raises:
        ToolNotFoundError: naming the first tool that is missing
    """
    return {name: require(name) for name in TOOL_NAMES}


def check_tools_available() -> bool:
    return all(locate(name) for name in ("psql", "pg_dump"))


def client_version() -> Optional[str]:
    """Version banner of the installed client, e.g. "psql (PostgreSQL) 16.1"."""
    psql = locate("psql")
    if not psql:
        return None
    try:
        result = subprocess.run(
            [psql, "--version"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.TimeoutExpired, OSError) as error:
        log.debug(f"psql --version failed: {error}")
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None
