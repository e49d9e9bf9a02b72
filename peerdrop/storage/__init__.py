"""
Storage Module - Content Store for Share Links

In-memory file records mirrored to a durable tier (SQLite + JSON index).
"""

from .database import (
    DurableStore, SQLiteDurableStore, MemoryDurableStore,
    FileRecord, FileSummary, init_durable_store,
)
from .content_store import ContentStore, BlobHandle, generate_file_id

__all__ = [
    'DurableStore',
    'SQLiteDurableStore',
    'MemoryDurableStore',
    'FileRecord',
    'FileSummary',
    'init_durable_store',
    'ContentStore',
    'BlobHandle',
    'generate_file_id',
]
