"""Clone, back up and export PostgreSQL databases with the PostgreSQL client tools."""

from .__version__ import __version__

__all__ = ["__version__"]
