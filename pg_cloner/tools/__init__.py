"""PostgreSQL client tool discovery."""

from .locator import (
    TOOL_NAMES,
    check_tools_available,
    client_version,
    locate,
    locate_all,
    require,
)

__all__ = [
    "TOOL_NAMES",
    "check_tools_available",
    "client_version",
    "locate",
    "locate_all",
    "require",
]
