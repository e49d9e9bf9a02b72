"""
Durable Tier for the Content Store

Design Decision: Why SQLite + a JSON index?
===========================================

Options Considered:
1. SQLite only - Embedded, ACID, blobs fit fine at share-link sizes
2. One file per record - Simple, but listing means reading every file
3. JSON only - Human readable, but rewriting megabytes of base64 per put
4. SQLite for records + small JSON index for metadata

Decision: SQLite (aiosqlite) for full records, JSON index (aiofiles)
- Records (with bytes) live in one ACID table
- The index is metadata only: cheap to rewrite on every put/delete and
  cheap to ship to another device, which can then list entries whose
  bytes it does not hold yet
- Index writes go to a temp file and are renamed into place

Tables:
- records: id, name, size, type, data (BLOB), created_at, has_data

Every substrate failure (aiosqlite.Error, OSError, bad JSON) surfaces
as StoreIOError; callers never see driver exceptions.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles
import aiofiles.os
import aiosqlite

from ..errors import StoreIOError

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1


@dataclass(frozen=True)
class FileSummary:
    """Listing view of a record, no bytes."""
    id: str
    name: str
    size: int
    type: str


@dataclass(frozen=True)
class FileRecord:
    """
    A stored file.

    has_data is False for metadata-only placeholders: entries known from
    an index whose bytes never reached this store.
    """
    id: str
    name: str
    size: int
    type: str
    data: bytes = field(default=b'', repr=False)
    created_at: float = field(default_factory=time.time)
    has_data: bool = True

    def summary(self) -> FileSummary:
        return FileSummary(id=self.id, name=self.name, size=self.size, type=self.type)

    def index_entry(self) -> Dict:
        """Metadata-only projection written to the index."""
        return {
            'id': self.id,
            'name': self.name,
            'size': self.size,
            'type': self.type,
            'created_at': self.created_at,
        }

    def placeholder(self) -> 'FileRecord':
        """The same record with its bytes dropped."""
        return FileRecord(
            id=self.id, name=self.name, size=self.size, type=self.type,
            data=b'', created_at=self.created_at, has_data=False,
        )

    @classmethod
    def from_index_entry(cls, entry: Dict) -> 'FileRecord':
        return cls(
            id=str(entry['id']),
            name=str(entry['name']),
            size=int(entry['size']),
            type=str(entry.get('type') or ''),
            data=b'',
            created_at=float(entry.get('created_at', 0.0)),
            has_data=False,
        )


class DurableStore:
    """
    Interface of the durable tier.

    All methods are coroutines and raise StoreIOError when the substrate
    is unavailable.
    """

    async def connect(self):
        pass

    async def close(self):
        pass

    async def get_record(self, file_id: str) -> Optional[FileRecord]:
        raise NotImplementedError

    async def put_record(self, record: FileRecord):
        raise NotImplementedError

    async def delete_record(self, file_id: str) -> bool:
        raise NotImplementedError

    async def list_records(self) -> List[FileRecord]:
        raise NotImplementedError

    async def get_index(self) -> List[Dict]:
        raise NotImplementedError

    async def put_index(self, entries: List[Dict]):
        raise NotImplementedError


class SQLiteDurableStore(DurableStore):
    """
    SQLite records + JSON metadata index.

    Stores:
    - Full records, bytes included (or placeholders with has_data = 0)
    - The metadata index next to the database
    """

    def __init__(self, db_path: Path, index_path: Optional[Path] = None):
        self.db_path = Path(db_path)
        self.index_path = Path(index_path) if index_path else self.db_path.with_suffix('.index.json')
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """Open database connection."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row
            await self._init_schema()
        except (aiosqlite.Error, OSError) as e:
            raise StoreIOError(f"Cannot open {self.db_path}: {e}") from e

        logger.info(f"Durable store connected: {self.db_path}")

    async def close(self):
        """Close database connection."""
        if self._connection:
            try:
                await self._connection.close()
            except (aiosqlite.Error, OSError) as e:
                raise StoreIOError(f"Cannot close {self.db_path}: {e}") from e
            finally:
                self._connection = None

    async def _init_schema(self):
        """Initialize database schema."""
        await self._connection.executescript("""
            CREATE TABLE IF NOT EXISTS records (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                size INTEGER NOT NULL,
                type TEXT NOT NULL DEFAULT '',
                data BLOB,
                created_at REAL NOT NULL,
                has_data INTEGER NOT NULL DEFAULT 1
            );

            CREATE TABLE IF NOT EXISTS store_info (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_records_created ON records(created_at);
        """)
        await self._connection.execute(
            """INSERT INTO store_info (key, value) VALUES ('schema_version', ?)
               ON CONFLICT(key) DO NOTHING""",
            (str(SCHEMA_VERSION),)
        )
        await self._connection.commit()

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise StoreIOError(f"Durable store {self.db_path} is not connected")
        return self._connection

    @staticmethod
    def _row_to_record(row) -> FileRecord:
        return FileRecord(
            id=row['id'],
            name=row['name'],
            size=row['size'],
            type=row['type'],
            data=bytes(row['data'] or b''),
            created_at=row['created_at'],
            has_data=bool(row['has_data']),
        )

    # === Records ===

    async def get_record(self, file_id: str) -> Optional[FileRecord]:
        """Get one record by id."""
        connection = self._require_connection()
        try:
            async with connection.execute(
                "SELECT * FROM records WHERE id = ?", (file_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreIOError(f"Reading record {file_id} failed: {e}") from e
        return self._row_to_record(row) if row else None

    async def put_record(self, record: FileRecord):
        """Insert or replace a record."""
        connection = self._require_connection()
        try:
            await connection.execute(
                """INSERT INTO records (id, name, size, type, data, created_at, has_data)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       name = excluded.name, size = excluded.size, type = excluded.type,
                       data = excluded.data, created_at = excluded.created_at,
                       has_data = excluded.has_data""",
                (record.id, record.name, record.size, record.type,
                 record.data if record.has_data else None,
                 record.created_at, int(record.has_data))
            )
            await connection.commit()
        except aiosqlite.Error as e:
            raise StoreIOError(f"Writing record {record.id} failed: {e}") from e

    async def delete_record(self, file_id: str) -> bool:
        """Delete a record; True if it existed."""
        connection = self._require_connection()
        try:
            cursor = await connection.execute(
                "DELETE FROM records WHERE id = ?", (file_id,)
            )
            await connection.commit()
        except aiosqlite.Error as e:
            raise StoreIOError(f"Deleting record {file_id} failed: {e}") from e
        return cursor.rowcount > 0

    async def list_records(self) -> List[FileRecord]:
        """Get all records, oldest first."""
        connection = self._require_connection()
        try:
            async with connection.execute(
                "SELECT * FROM records ORDER BY created_at"
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreIOError(f"Listing records failed: {e}") from e
        return [self._row_to_record(row) for row in rows]

    # === Metadata index ===

    async def get_index(self) -> List[Dict]:
        """Read the metadata index; empty if it was never written."""
        if not self.index_path.exists():
            return []

        try:
            async with aiofiles.open(self.index_path, 'r') as f:
                data = await f.read()
            entries = json.loads(data)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreIOError(f"Reading index {self.index_path} failed: {e}") from e

        if not isinstance(entries, list):
            raise StoreIOError(f"Index {self.index_path} is not a list")
        return entries

    async def put_index(self, entries: List[Dict]):
        """Replace the metadata index (write to temp, then rename)."""
        temp_path = self.index_path.with_suffix('.tmp')
        try:
            await aiofiles.os.makedirs(self.index_path.parent, exist_ok=True)
            async with aiofiles.open(temp_path, 'w') as f:
                await f.write(json.dumps(entries, indent=2))
            await aiofiles.os.replace(temp_path, self.index_path)
        except OSError as e:
            raise StoreIOError(f"Writing index {self.index_path} failed: {e}") from e


class MemoryDurableStore(DurableStore):
    """
    Dict-backed durable tier.

    Outlives the ContentStore using it, so opening a fresh ContentStore on
    the same instance behaves like a process restart. Setting `available`
    to False makes every call fail with StoreIOError.
    """

    def __init__(self):
        self.records: Dict[str, FileRecord] = {}
        self.index: List[Dict] = []
        self.available = True

        # Statistics
        self.writes = 0
        self.failures = 0

    def _check(self, operation: str):
        if not self.available:
            self.failures += 1
            raise StoreIOError(f"Durable store unavailable ({operation})")

    async def get_record(self, file_id: str) -> Optional[FileRecord]:
        self._check('get_record')
        return self.records.get(file_id)

    async def put_record(self, record: FileRecord):
        self._check('put_record')
        self.writes += 1
        self.records[record.id] = record

    async def delete_record(self, file_id: str) -> bool:
        self._check('delete_record')
        self.writes += 1
        return self.records.pop(file_id, None) is not None

    async def list_records(self) -> List[FileRecord]:
        self._check('list_records')
        return list(self.records.values())

    async def get_index(self) -> List[Dict]:
        self._check('get_index')
        return [dict(entry) for entry in self.index]

    async def put_index(self, entries: List[Dict]):
        self._check('put_index')
        self.writes += 1
        self.index = [dict(entry) for entry in entries]


async def init_durable_store(data_dir: Path) -> SQLiteDurableStore:
    """Initialize and return a connected SQLite durable store."""
    store = SQLiteDurableStore(Path(data_dir) / "store.db", Path(data_dir) / "index.json")
    await store.connect()
    return store
