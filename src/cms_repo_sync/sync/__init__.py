"""Sync pipeline: file classification, content fetching and the orchestrator that drives them."""

from .fetch import (
    FileClassifier,
    FileList,
    FolderClassifier,
    SyncResult,
    SyncSinks,
    create_file_list,
    fetch_and_parse_files,
    is_index_file,
    parse_file,
)
from .orchestrator import SyncOrchestrator

__all__ = [
    "FileClassifier",
    "FileList",
    "FolderClassifier",
    "SyncOrchestrator",
    "SyncResult",
    "SyncSinks",
    "create_file_list",
    "fetch_and_parse_files",
    "is_index_file",
    "parse_file",
]
