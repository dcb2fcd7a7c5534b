"""
Application Interfaces - Execution Contract

The mapping engine defines what it needs from a database driver; the
infrastructure layer provides it.
"""

from .executor import SqlExecutor, resolve_dialect

__all__ = ["SqlExecutor", "resolve_dialect"]
