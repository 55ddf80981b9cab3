"""SQLite repository for sessions, activities, content index and insights."""

from .db_manager import DatabaseManager, escape_like

__all__ = ["DatabaseManager", "escape_like"]
