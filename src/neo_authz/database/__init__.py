"""Database utilities for neo-authz."""

from .connection import CONNECTIVITY_ERRORS, DatabaseManager

__all__ = [
    "CONNECTIVITY_ERRORS",
    "DatabaseManager",
]
