"""
File Descriptors

Design Decision: Descriptor Contents
====================================

The descriptor is everything the receiver learns about a file before the
first byte of it arrives:
- Name (display/save name, never a path on the receiving side)
- Size in bytes (sizes the reassembly buffer)
- MIME type (lets the receiver hand the file to the right application)
- Last-modified time (so a saved copy can keep it)

No content hash: integrity checking beyond the declared size is out of
scope, the channel is assumed reliable.

Descriptors are immutable once a transfer has started; the order in which
they are announced fixes each file's index for the rest of the session.
"""

import mimetypes
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, Optional, Tuple

from .chunker import ChunkCodec, get_chunk_count, CHUNK_SIZE

DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class FileDescriptor:
    """Metadata announced for one file at transfer start."""
    name: str
    size: int
    mime_type: str = DEFAULT_MIME_TYPE
    last_modified: float = field(default_factory=time.time)

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("descriptor name must be a non-empty string")
        if not isinstance(self.size, int) or isinstance(self.size, bool) or self.size < 0:
            raise ValueError(f"descriptor size must be a non-negative int, got {self.size!r}")

    def total_chunks(self, chunk_size: int = CHUNK_SIZE) -> int:
        """Number of chunks this file is split into."""
        return get_chunk_count(self.size, chunk_size)

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'size': self.size,
            'mime_type': self.mime_type,
            'last_modified': self.last_modified,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'FileDescriptor':
        return cls(
            name=data['name'],
            size=data['size'],
            mime_type=data.get('mime_type') or DEFAULT_MIME_TYPE,
            last_modified=float(data.get('last_modified', 0.0)),
        )


def guess_mime_type(name: str) -> str:
    """Guess MIME type from file extension."""
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or DEFAULT_MIME_TYPE


@dataclass
class OutgoingFile:
    """
    A file queued for sending.

    Either holds its bytes in memory (blobs handed over by a UI) or points
    at a file on disk, which is then streamed chunk by chunk.
    """
    descriptor: FileDescriptor
    data: Optional[bytes] = None
    path: Optional[Path] = None

    @classmethod
    def from_bytes(cls, name: str, data: bytes,
                   mime_type: Optional[str] = None,
                   last_modified: Optional[float] = None) -> 'OutgoingFile':
        descriptor = FileDescriptor(
            name=name,
            size=len(data),
            mime_type=mime_type or guess_mime_type(name),
            last_modified=time.time() if last_modified is None else last_modified,
        )
        return cls(descriptor=descriptor, data=bytes(data))

    @classmethod
    def from_path(cls, file_path: Path) -> 'OutgoingFile':
        """
        Describe a file on disk without reading it.

        Raises:
            FileNotFoundError: If the path does not exist or is not a file
        """
        file_path = Path(file_path)
        if not file_path.is_file():
            raise FileNotFoundError(f"File not found: {file_path}")

        stat = file_path.stat()
        descriptor = FileDescriptor(
            name=file_path.name,
            size=stat.st_size,
            mime_type=guess_mime_type(file_path.name),
            last_modified=stat.st_mtime,
        )
        return cls(descriptor=descriptor, path=file_path)

    async def iter_chunks(self, codec: ChunkCodec) -> AsyncIterator[Tuple[int, bytes]]:
        """Yield (chunk_index, payload) for this file in order."""
        if self.data is not None:
            for chunk in codec.split(self.data):
                yield chunk
        elif self.path is not None:
            async for chunk in codec.split_file(self.path, self.descriptor.size):
                yield chunk
        else:
            raise ValueError(f"{self.descriptor.name}: no data and no path")
