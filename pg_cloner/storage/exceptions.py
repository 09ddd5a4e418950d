"""Custom exceptions for clone, export and history operations.

Exception Hierarchy:
    ClonerError (base)
        ├── ProfileError
        │   └── ProfileNotFoundError
        ├── ToolError
        │   ├── ToolNotFoundError
        │   ├── SubprocessLaunchError
        │   └── ToolFailureError
        ├── TempFileError
        ├── HistoryError
        │   └── HistoryStoreError
        └── CloneCancelledError

Usage:
    from pg_cloner.storage.exceptions import ToolNotFoundError

    if path is None:
        raise ToolNotFoundError("pg_dump")
"""


class ClonerError(Exception):
    """Base exception for all pg-cloner operations."""



class ProfileError(ClonerError):
    """Base exception for connection profile errors."""



class ProfileNotFoundError(ProfileError):
    """A referenced connection profile does not exist."""

    def __init__(self, profile_id: str, role: str = ""):
        self.profile_id = profile_id
        self.role = role
        label = f"{role.capitalize()} profile" if role else "Profile"
        super().__init__(f"{label} not found: {profile_id}")


class ToolError(ClonerError):
    """Base exception for PostgreSQL client tool errors."""



class ToolNotFoundError(ToolError):
    """A client tool could not be located."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(
            f"{tool_name} not found. Please install PostgreSQL client tools."
        )


class SubprocessLaunchError(ToolError):
    """A client tool could not be started."""

    def __init__(self, tool: str, reason: str):
        self.tool = tool
        self.reason = reason
        super().__init__(f"Failed to start {tool}: {reason}")


class ToolFailureError(ToolError):
    """A client tool produced an unrecoverable error."""

    def __init__(self, tool: str, stage: str, stderr: str, message: str = None):
        self.tool = tool
        self.stage = stage
        self.stderr = stderr
        super().__init__(message or f"{tool} failed during {stage}: {stderr}")


class TempFileError(ClonerError):
    """Creating, reading, writing or deleting a working file failed."""

    def __init__(self, action: str, path, reason: str = ""):
        self.action = action
        self.path = path
        self.reason = reason
        msg = f"Failed to {action} {path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class HistoryError(ClonerError):
    """Base exception for history persistence errors."""



class HistoryStoreError(HistoryError):
    """The history data file could not be written."""

    def __init__(self, reason: str, path=None):
        self.reason = reason
        self.path = path
        msg = "Failed to save history"
        if path is not None:
            msg += f" to {path}"
        super().__init__(f"{msg}: {reason}")


class CloneCancelledError(ClonerError):
    """A run was cancelled between stages."""

    def __init__(self, stage: str = ""):
        self.stage = stage
        msg = "Clone cancelled"
        if stage:
            msg += f" before {stage}"
        super().__init__(msg)
