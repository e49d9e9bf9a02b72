"""
Content Store

Design Decision: Two Tiers
==========================

Options Considered:
1. Memory only - Fast, but a restart loses every shared file
2. Durable only - Survives restarts, but every listing hits disk
3. Memory map in front of a durable tier, mirrored asynchronously

Decision: In-memory map + async mirror to a DurableStore
- put() inserts into memory and returns the id at once; list/get see the
  record immediately
- The full record (or a metadata-only placeholder for records above
  durable_max_bytes) and the metadata index are written in the
  background; wait_durable(id) is the durability barrier
- get() never falls through to disk: the durable tier is read once, by
  open(), and merged into memory

Startup Reconciliation:
1. Index entries become placeholders (has_data=False)
2. Full durable records overlay them by id; bytes always win

Failure Model:
- A failed mirror is logged once, kept for wait_durable() and reported to
  on_store_error callbacks once; nothing retries
- The in-memory effect of put/delete stands even when the durable tier
  is down
"""

import asyncio
import io
import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from ..errors import StoreIOError
from .database import DurableStore, FileRecord, FileSummary

logger = logging.getLogger(__name__)

# Store error callback: (file_id, error)
StoreErrorCallback = Callable[[str, StoreIOError], None]


def generate_file_id() -> str:
    """Random URL-safe id, 22 characters (128 bits)."""
    return secrets.token_urlsafe(16)


@dataclass(frozen=True)
class BlobHandle:
    """Byte access to a stored file."""
    id: str
    name: str
    content_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    def open(self) -> io.BytesIO:
        """A fresh readable stream over the bytes."""
        return io.BytesIO(self.data)


class ContentStore:
    """
    Key-value store of file records for share links.

    Provides:
    - put/get/list/delete over an in-memory map
    - Background mirroring to a durable tier
    - Startup reconciliation from the durable tier
    - Blob handles for serving file bytes

    Safe to use from several sessions at once: the map is guarded by a
    lock, durable writes are serialised so the index never goes back in
    time.
    """

    def __init__(self, durable: DurableStore,
                 durable_max_bytes: Optional[int] = None):
        """
        Initialize the content store.

        Args:
            durable: The durable tier to mirror to and load from
            durable_max_bytes: Records larger than this are mirrored as
                metadata-only placeholders (None = no limit)
        """
        self.durable = durable
        self.durable_max_bytes = durable_max_bytes

        self._records: Dict[str, FileRecord] = {}
        self._lock = threading.Lock()
        self._write_lock = asyncio.Lock()

        self._pending: Dict[str, asyncio.Task] = {}
        self._failures: Dict[str, StoreIOError] = {}
        self._error_callbacks: List[StoreErrorCallback] = []
        self._opened = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, file_id: str) -> bool:
        with self._lock:
            return file_id in self._records

    def on_store_error(self, callback: StoreErrorCallback):
        """Register a callback for failed durable writes."""
        self._error_callbacks.append(callback)

    # === Lifecycle ===

    async def open(self):
        """
        Connect the durable tier and load it into memory.

        Raises:
            StoreIOError: If the durable tier cannot be read
        """
        await self.durable.connect()
        index = await self.durable.get_index()
        records = await self.durable.list_records()

        merged: Dict[str, FileRecord] = {}
        for entry in index:
            try:
                placeholder = FileRecord.from_index_entry(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed index entry {entry!r}: {e}")
                continue
            merged[placeholder.id] = placeholder

        for record in records:
            existing = merged.get(record.id)
            if existing is None or record.has_data or not existing.has_data:
                merged[record.id] = record

        with self._lock:
            for file_id, record in merged.items():
                current = self._records.get(file_id)
                if current is None or not current.has_data:
                    self._records[file_id] = record

        self._opened = True
        placeholders = sum(1 for r in merged.values() if not r.has_data)
        logger.info(f"Content store loaded {len(merged)} records "
                    f"({placeholders} metadata-only)")

    async def close(self):
        """Wait for outstanding mirrors, then close the durable tier."""
        pending = list(self._pending.values())
        if pending:
            await asyncio.gather(*pending)
        await self.durable.close()
        self._opened = False

    # === Records ===

    def put(self, name: str, mime_type: str, data: bytes) -> str:
        """
        Store a file and return its id.

        The record is visible to get()/list() on return. Mirroring to the
        durable tier runs in the background; await wait_durable(id) for
        crash durability. Must be called with an event loop running.
        """
        loop = asyncio.get_running_loop()

        record = FileRecord(
            id=generate_file_id(),
            name=name,
            size=len(data),
            type=mime_type or '',
            data=bytes(data),
            created_at=time.time(),
        )
        with self._lock:
            self._records[record.id] = record

        task = loop.create_task(self._mirror(record))
        self._pending[record.id] = task
        task.add_done_callback(lambda _t, file_id=record.id: self._pending.pop(file_id, None))

        logger.debug(f"Stored {record.name} as {record.id} ({record.size:,} bytes)")
        return record.id

    async def put_durable(self, name: str, mime_type: str, data: bytes) -> str:
        """put() and wait until the record is durable."""
        file_id = self.put(name, mime_type, data)
        await self.wait_durable(file_id)
        return file_id

    def get(self, file_id: str) -> Optional[FileRecord]:
        """In-memory lookup; None if unknown."""
        with self._lock:
            return self._records.get(file_id)

    def list(self) -> List[FileSummary]:
        """Snapshot of all records, without bytes."""
        with self._lock:
            return [record.summary() for record in self._records.values()]

    def blob_handle(self, file_id: str) -> Optional[BlobHandle]:
        """
        Byte access for serving a file.

        Returns:
            None if the record is unknown or is a placeholder whose bytes
            never reached this store
        """
        record = self.get(file_id)
        if record is None or not record.has_data or len(record.data) != record.size:
            return None
        return BlobHandle(
            id=record.id,
            name=record.name,
            content_type=record.type or 'application/octet-stream',
            data=record.data,
        )

    async def delete(self, file_id: str) -> bool:
        """
        Remove a record from memory and from the durable tier.

        Returns:
            True if the id was present

        Raises:
            StoreIOError: If the durable delete failed (the record is
                already gone from memory)
        """
        with self._lock:
            record = self._records.pop(file_id, None)
        if record is None:
            return False

        # Let an in-flight mirror land first so it cannot resurrect the row
        task = self._pending.get(file_id)
        if task is not None:
            await task
        self._failures.pop(file_id, None)

        async with self._write_lock:
            try:
                await self.durable.delete_record(file_id)
                await self.durable.put_index(self._index_entries())
            except StoreIOError as e:
                logger.error(f"Durable delete of {file_id} ({record.name}) failed: {e}")
                raise

        logger.debug(f"Deleted {record.name} ({file_id})")
        return True

    async def import_index(self, entries: Iterable[Dict]) -> int:
        """
        Add metadata-only placeholders from another device's index.

        Entries for ids already present are ignored. The updated index is
        written to the durable tier before returning.

        Returns:
            Number of placeholders added

        Raises:
            StoreIOError: If the index could not be written
        """
        added = 0
        with self._lock:
            for entry in entries:
                try:
                    placeholder = FileRecord.from_index_entry(entry)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed index entry {entry!r}: {e}")
                    continue
                if placeholder.id not in self._records:
                    self._records[placeholder.id] = placeholder
                    added += 1

        if added:
            async with self._write_lock:
                try:
                    await self.durable.put_index(self._index_entries())
                except StoreIOError as e:
                    logger.error(f"Writing index after import failed: {e}")
                    raise

        logger.info(f"Imported {added} index entries")
        return added

    # === Durability ===

    async def wait_durable(self, file_id: str):
        """
        Wait for a record's mirror to finish.

        Raises:
            StoreIOError: If mirroring that record failed
        """
        task = self._pending.get(file_id)
        if task is not None:
            await task
        error = self._failures.get(file_id)
        if error is not None:
            raise error

    async def flush(self):
        """
        Wait for every outstanding mirror.

        Raises:
            StoreIOError: If any record still in the store failed to mirror
        """
        pending = list(self._pending.values())
        if pending:
            await asyncio.gather(*pending)
        for file_id, error in list(self._failures.items()):
            if file_id in self:
                raise error

    def _retains_data(self, record: FileRecord) -> bool:
        return self.durable_max_bytes is None or record.size <= self.durable_max_bytes

    def _index_entries(self) -> List[Dict]:
        with self._lock:
            return [record.index_entry() for record in self._records.values()]

    async def _mirror(self, record: FileRecord):
        durable_record = record if self._retains_data(record) else record.placeholder()
        try:
            async with self._write_lock:
                with self._lock:
                    still_present = record.id in self._records
                if not still_present:
                    return
                await self.durable.put_record(durable_record)
                await self.durable.put_index(self._index_entries())
        except StoreIOError as e:
            # Reported once: logged here, raised by wait_durable(), passed to callbacks
            logger.error(f"Durable write of {record.id} ({record.name}) failed: {e}")
            self._failures[record.id] = e
            for callback in list(self._error_callbacks):
                callback(record.id, e)
            return

        if not durable_record.has_data:
            logger.info(f"{record.name} kept in memory only, "
                        f"{record.size:,} bytes exceeds durable limit")

    def get_stats(self) -> dict:
        """Get store statistics."""
        with self._lock:
            records = list(self._records.values())
        return {
            'records': len(records),
            'bytes': sum(len(r.data) for r in records),
            'placeholders': sum(1 for r in records if not r.has_data),
            'pending_writes': len(self._pending),
            'failed_writes': len(self._failures),
        }
