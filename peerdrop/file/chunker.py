"""
Chunk Codec

Design Decision: Chunk Size
===========================

Options Considered:
| Size    | Pros                              | Cons                          |
|---------|-----------------------------------|-------------------------------|
| 16KB    | Fits every data-channel message   | More envelopes per file       |
|         | limit, smooth progress reporting  |                               |
| 64KB    | Fewer envelopes                   | Exceeds some channel limits   |
| 256KB   | Low overhead                      | Coarse progress, big frames   |

Decision: 16KB (16,384 bytes)
- Safe upper bound for message-oriented peer channels
- One chunk per envelope keeps the receiver a plain slot array
- A 50,000 byte file is 4 chunks: 3 x 16,384 + 848

Chunking Strategy: Fixed-Size
- Chunk N always starts at N * chunk_size
- total_chunks = ceil(size / chunk_size), a zero-byte file has no chunks
- Reassembly is plain concatenation in index order, no padding
"""

from pathlib import Path
from typing import AsyncIterator, Iterator, Optional, Sequence, Tuple

import aiofiles

from ..errors import IncompleteTransfer, TransferError

# Chunk size: 16KB
CHUNK_SIZE = 16 * 1024  # 16,384 bytes


def get_chunk_count(size: int, chunk_size: int = CHUNK_SIZE) -> int:
    """Calculate number of chunks for a file of given size."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return (size + chunk_size - 1) // chunk_size


def split(data: bytes, chunk_size: int = CHUNK_SIZE) -> Iterator[Tuple[int, bytes]]:
    """
    Split a byte sequence into chunks.

    Lazy: slices are produced one at a time, so a caller that stops early
    never copies the tail of the file.

    Yields:
        (chunk_index, payload) tuples in ascending index order
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    view = memoryview(data)
    for chunk_index in range(get_chunk_count(len(view), chunk_size)):
        start = chunk_index * chunk_size
        yield chunk_index, bytes(view[start:start + chunk_size])


def reassemble(slots: Sequence[Optional[bytes]], expected_total: int) -> bytes:
    """
    Concatenate chunk payloads in index order.

    Args:
        slots: Payload per chunk index, None where nothing arrived
        expected_total: Number of chunks the file must have

    Raises:
        IncompleteTransfer: If any slot in [0, expected_total) is empty
    """
    missing = [
        index for index in range(expected_total)
        if index >= len(slots) or slots[index] is None
    ]
    if missing:
        raise IncompleteTransfer(missing, expected_total)

    return b''.join(slots[index] for index in range(expected_total))


class ChunkCodec:
    """
    Splits files into fixed-size chunks and puts them back together.

    Features:
    - Configurable chunk size (16KB default)
    - Pure split/reassemble over in-memory bytes
    - Async chunked reading straight from disk for large files
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size

    def get_chunk_count(self, file_size: int) -> int:
        """Calculate number of chunks for a file of given size."""
        return get_chunk_count(file_size, self.chunk_size)

    def get_chunk_bounds(self, chunk_index: int, file_size: int) -> Tuple[int, int]:
        """
        Get byte range for a specific chunk.

        Returns:
            (start_offset, length) tuple
        """
        start = chunk_index * self.chunk_size
        length = min(self.chunk_size, file_size - start)
        return start, length

    def split(self, data: bytes) -> Iterator[Tuple[int, bytes]]:
        """Split in-memory bytes into (chunk_index, payload) tuples."""
        return split(data, self.chunk_size)

    def reassemble(self, slots: Sequence[Optional[bytes]], expected_total: int) -> bytes:
        """Concatenate payloads, failing loudly on gaps."""
        return reassemble(slots, expected_total)

    async def split_file(self, file_path: Path,
                         file_size: Optional[int] = None) -> AsyncIterator[Tuple[int, bytes]]:
        """
        Split a file on disk into chunks without loading it whole.

        Args:
            file_path: File to read
            file_size: Size already announced for the file; read from disk if None

        Yields:
            (chunk_index, payload) tuples covering exactly file_size bytes

        Raises:
            TransferError: If the file no longer has file_size bytes
        """
        if file_size is None:
            file_size = Path(file_path).stat().st_size

        chunk_count = self.get_chunk_count(file_size)
        async with aiofiles.open(file_path, 'rb') as f:
            for chunk_index in range(chunk_count):
                _, length = self.get_chunk_bounds(chunk_index, file_size)
                last = chunk_index == chunk_count - 1

                # One byte past the end on the last chunk detects growth
                payload = await f.read(length + 1 if last else length)
                if len(payload) > length:
                    raise TransferError(f"{file_path}: file grew past {file_size} bytes")
                if len(payload) < length:
                    raise TransferError(f"{file_path}: file shrank below {file_size} bytes")
                yield chunk_index, payload
