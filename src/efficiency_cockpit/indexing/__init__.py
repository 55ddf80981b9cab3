"""Content indexing of project files with change detection."""

from .content_indexer import ContentIndexer, ContentIndexStats, IndexOutcome, ScanResult
from .filesystem import FileInfo, LocalFileSystem, discover_projects

__all__ = [
    "ContentIndexer",
    "ContentIndexStats",
    "FileInfo",
    "IndexOutcome",
    "LocalFileSystem",
    "ScanResult",
    "discover_projects",
]
