"""Settings storage for application configuration."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "PG_CLONER_SETTINGS_PATH",
        Path.home() / ".config" / "pg-cloner" / "settings.json",
    )
)

DATA_FILE_NAME = "pg-cloner-data.json"

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "pg-cloner"
DEFAULT_HISTORY_LIMIT = 50
DEFAULT_RESTORE_JOBS_MIN = 2
DEFAULT_RESTORE_JOBS_MAX = 8

DEFAULT_SETTINGS: dict[str, Any] = {
    "data_dir": None,
    "backup_dir": None,
    "temp_dir": None,
    "history_limit": DEFAULT_HISTORY_LIMIT,
    "restore_jobs_min": DEFAULT_RESTORE_JOBS_MIN,
    "restore_jobs_max": DEFAULT_RESTORE_JOBS_MAX,
    "tool_search_dirs": [],
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    value = settings_store.values.get(key, default)
    return default if value is None else value


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_int(key: str, default: int = 0) -> int:
    try:
        return int(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_data_dir() -> Path:
    """Directory holding the profile/history data file."""
    return Path(get_setting("data_dir", DEFAULT_DATA_DIR)).expanduser()


def get_data_file() -> Path:
    return get_data_dir() / DATA_FILE_NAME


def get_backup_dir() -> Path:
    """Directory receiving pre-clean destination backups."""
    backup_dir = get_setting("backup_dir")
    if backup_dir:
        return Path(backup_dir).expanduser()
    return get_data_dir() / "backups"


def get_temp_dir() -> Path:
    return Path(get_setting("temp_dir", tempfile.gettempdir())).expanduser()


def get_history_limit() -> int:
    return get_int("history_limit", DEFAULT_HISTORY_LIMIT)


def get_tool_search_dirs() -> list[Path]:
    dirs = get_setting("tool_search_dirs", [])
    if not isinstance(dirs, list):
        return []
    return [Path(entry).expanduser() for entry in dirs if entry]


load_settings()
