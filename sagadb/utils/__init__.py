"""
Utilities package for sagadb.

Exports shared helpers for logging and profiling. Keep this package
lightweight and free of database logic.
"""

from sagadb.utils.logging import configure_logging, get_logger
from sagadb.utils.profiler import ProfileStats, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
