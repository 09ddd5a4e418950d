"""Profile lookup and clone history persistence.

Profiles and history share one JSON data file::

    {"profiles": [...], "history": [...]}

Profiles are only read here. History is mutated exclusively through a
HistoryStore, which serializes every read-modify-write behind one lock and
replaces the file atomically, so two runs finishing together cannot lose
each other's entry.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Iterable, Optional

from pg_cloner.config import settings
from pg_cloner.domain import CloneHistoryEntry, ConnectionProfile
from pg_cloner.logging import LoggerFactory
from pg_cloner.storage.exceptions import HistoryStoreError, ProfileNotFoundError

log = LoggerFactory.for_history()

MAX_HISTORY_ENTRIES = 50


class DataFileCorruptError(ValueError):
    pass


def read_data_file(path: Path) -> dict[str, Any]:
    """Load the data file; a missing file is empty data.

    Raises:
        DataFileCorruptError: If the file exists but is not a JSON object
    """
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        raise DataFileCorruptError(f"{path}: {error}") from error
    if not isinstance(data, dict):
        raise DataFileCorruptError(f"{path}: expected a JSON object")
    return data


def write_data_file(path: Path, data: dict[str, Any]) -> None:
    """Write through a temp file in the same directory, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


# ==============================================================================
# Profiles (read-only)
# ==============================================================================


class ProfileStore:
    def get(self, profile_id: str) -> Optional[ConnectionProfile]:
        raise NotImplementedError

    def list(self) -> list[ConnectionProfile]:
        raise NotImplementedError

    def require(self, profile_id: str, role: str = "") -> ConnectionProfile:
        profile = self.get(profile_id)
        if profile is None:
            raise ProfileNotFoundError(profile_id, role)
        return profile


class MemoryProfileStore(ProfileStore):
    def __init__(self, profiles: Iterable[ConnectionProfile] = ()):
        self._profiles = {profile.id: profile for profile in profiles}

    def get(self, profile_id: str) -> Optional[ConnectionProfile]:
        return self._profiles.get(profile_id)

    def list(self) -> list[ConnectionProfile]:
        return list(self._profiles.values())


class JsonProfileStore(ProfileStore):
    def __init__(self, path: Optional[Path] = None):
        self.path = path or settings.get_data_file()

    def list(self) -> list[ConnectionProfile]:
        try:
            data = read_data_file(self.path)
        except DataFileCorruptError as error:
            log.warning(f"Ignoring unreadable data file: {error}")
            return []
        profiles = []
        for raw in data.get("profiles") or []:
            try:
                profiles.append(ConnectionProfile.from_dict(raw))
            except (KeyError, TypeError, ValueError) as error:
                log.warning(f"Skipping malformed profile: {error}")
        return profiles

    def get(self, profile_id: str) -> Optional[ConnectionProfile]:
        for profile in self.list():
            if profile.id == profile_id:
                return profile
        return None


# ==============================================================================
# History
# ==============================================================================


class HistoryStore:
    """Single owner of the history collection.

    Newest entries first, at most ``limit`` of them; the limit is kept
    within 1..50 whatever the configuration says.
    """

    def __init__(self, limit: Optional[int] = None):
        if limit is None:
            limit = settings.get_history_limit()
        self.limit = max(1, min(MAX_HISTORY_ENTRIES, limit))
        self._lock = threading.Lock()

    def _read(self) -> list[CloneHistoryEntry]:
        raise NotImplementedError

    def _write(self, entries: list[CloneHistoryEntry]) -> None:
        raise NotImplementedError

    def record(self, entry: CloneHistoryEntry) -> None:
        """Prepend a finalized entry and evict beyond the limit."""
        with self._lock:
            entries = [existing for existing in self._read() if existing.id != entry.id]
            entries.insert(0, entry)
            evicted = len(entries) - self.limit
            del entries[self.limit:]
            self._write(entries)
        if evicted > 0:
            log.debug(f"Evicted {evicted} old history entries")
        log.debug(f"Recorded history entry {entry.id} ({entry.status.value})")

    def list(self) -> list[CloneHistoryEntry]:
        with self._lock:
            return self._read()

    def get(self, entry_id: str) -> Optional[CloneHistoryEntry]:
        for entry in self.list():
            if entry.id == entry_id:
                return entry
        return None

    def clear(self) -> None:
        with self._lock:
            self._write([])
        log.info("History cleared")


class MemoryHistoryStore(HistoryStore):
    def __init__(self, limit: Optional[int] = None):
        super().__init__(limit)
        self._entries: list[CloneHistoryEntry] = []

    def _read(self) -> list[CloneHistoryEntry]:
        return list(self._entries)

    def _write(self, entries: list[CloneHistoryEntry]) -> None:
        self._entries = list(entries)


class JsonHistoryStore(HistoryStore):
    """History kept in the shared data file; other keys are preserved."""

    def __init__(self, path: Optional[Path] = None, limit: Optional[int] = None):
        super().__init__(limit)
        self.path = path or settings.get_data_file()

    def _read(self) -> list[CloneHistoryEntry]:
        try:
            data = read_data_file(self.path)
        except DataFileCorruptError as error:
            log.warning(f"Ignoring unreadable data file: {error}")
            return []
        entries = []
        for raw in data.get("history") or []:
            try:
                entries.append(CloneHistoryEntry.from_dict(raw))
            except (KeyError, TypeError, ValueError) as error:
                log.warning(f"Skipping malformed history entry: {error}")
        return entries

    def _write(self, entries: list[CloneHistoryEntry]) -> None:
        try:
            data = read_data_file(self.path)
        except DataFileCorruptError as error:
            # rewriting would drop the profiles stored alongside the history
            raise HistoryStoreError(str(error), self.path) from error
        data["history"] = [entry.to_dict() for entry in entries]
        try:
            write_data_file(self.path, data)
        except OSError as error:
            raise HistoryStoreError(str(error), self.path) from error


_default_lock = threading.Lock()
_default_history: Optional[HistoryStore] = None


def default_history_store() -> HistoryStore:
    """Process-wide history owner backed by the configured data file."""
    global _default_history
    with _default_lock:
        if _default_history is None:
            _default_history = JsonHistoryStore()
        return _default_history
