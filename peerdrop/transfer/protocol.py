"""
Transfer Envelopes and Framing

Design Decision: Wire Format
============================

Options Considered:
1. JSON only, payload as base64
   - Easy to debug
   - 33% size overhead, extra encode/decode per chunk
2. JSON only, payload as a list of ints / latin-1 string
   - Silently corrupts or bloats binary data
3. Length-prefixed JSON header + raw binary payload
   - Header stays readable, payload travels untouched
4. Fully binary struct header
   - Most compact, painful to extend

Decision: Length-Prefixed Frame with JSON Header
- 4-byte total length + 4-byte header length + JSON header + raw payload
- Chunk bytes never pass through JSON, so every byte value survives
- Same frame on TCP streams and on in-process loopback channels

Frame Format:
```
+----------------+----------------+----------------+----------------+
| Total (4B BE)  | Header len (4B)| Header (JSON)  | Payload (raw)  |
+----------------+----------------+----------------+----------------+

Header JSON:
{
    "type": "METADATA" | "CHUNK" | "COMPLETE",
    "data_length": 16384,
    ...variant fields...
}
```

Envelopes are a tagged union dispatched on EnvelopeType; receivers never
inspect fields to guess what a message is.
"""

import asyncio
import json
import logging
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

from ..errors import ChannelError, ProtocolViolation
from ..file.chunker import CHUNK_SIZE
from ..file.descriptor import FileDescriptor

logger = logging.getLogger(__name__)

# Sanity limit for a single frame
MAX_FRAME_SIZE = 100 * 1024 * 1024  # 100MB

_LENGTH = struct.Struct('>I')


class EnvelopeType(Enum):
    """Transfer protocol message types."""
    METADATA = "METADATA"
    CHUNK = "CHUNK"
    COMPLETE = "COMPLETE"


@dataclass(frozen=True)
class MetadataEnvelope:
    """Announces the file set; sent exactly once, before any chunk."""
    type: ClassVar[EnvelopeType] = EnvelopeType.METADATA
    files: Tuple[FileDescriptor, ...]
    chunk_size: int = CHUNK_SIZE

    def __post_init__(self):
        # Accept any sequence but store a tuple so the envelope stays immutable
        object.__setattr__(self, 'files', tuple(self.files))


@dataclass(frozen=True)
class ChunkEnvelope:
    """One slice of one file."""
    type: ClassVar[EnvelopeType] = EnvelopeType.CHUNK
    file_index: int
    chunk_index: int
    total_chunks: int
    payload: bytes = field(repr=False)


@dataclass(frozen=True)
class CompleteEnvelope:
    """Sent exactly once, after the last chunk of the last file."""
    type: ClassVar[EnvelopeType] = EnvelopeType.COMPLETE


TransferEnvelope = Union[MetadataEnvelope, ChunkEnvelope, CompleteEnvelope]


# === Encoding ===

def _header_for(envelope: TransferEnvelope) -> Tuple[Dict[str, Any], bytes]:
    """Split an envelope into its JSON header and raw payload."""
    if envelope.type is EnvelopeType.METADATA:
        return {
            'files': [d.to_dict() for d in envelope.files],
            'chunk_size': envelope.chunk_size,
        }, b''

    if envelope.type is EnvelopeType.CHUNK:
        return {
            'file_index': envelope.file_index,
            'chunk_index': envelope.chunk_index,
            'total_chunks': envelope.total_chunks,
        }, bytes(envelope.payload)

    if envelope.type is EnvelopeType.COMPLETE:
        return {}, b''

    raise TypeError(f"Not a transfer envelope: {envelope!r}")


def encode_envelope(envelope: TransferEnvelope) -> bytes:
    """Serialize an envelope to one length-prefixed frame."""
    headers, data = _header_for(envelope)
    header_dict = {
        'type': envelope.type.value,
        'data_length': len(data),
        **headers
    }
    header_bytes = json.dumps(header_dict, separators=(',', ':')).encode('utf-8')

    total_length = len(header_bytes) + len(data)
    if total_length > MAX_FRAME_SIZE:
        raise ValueError(f"Envelope too large: {total_length}")

    return (
        _LENGTH.pack(total_length) +
        _LENGTH.pack(len(header_bytes)) +
        header_bytes +
        data
    )


# === Decoding ===

def _non_negative_int(header: Dict[str, Any], key: str) -> int:
    value = header.get(key)
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ProtocolViolation(f"Bad '{key}' in envelope header: {value!r}")
    return value


def _build_envelope(header: Dict[str, Any], data: bytes) -> TransferEnvelope:
    try:
        msg_type = EnvelopeType(header.get('type'))
    except ValueError:
        raise ProtocolViolation(f"Unknown envelope type: {header.get('type')!r}")

    if msg_type is EnvelopeType.METADATA:
        files = header.get('files')
        if not isinstance(files, list):
            raise ProtocolViolation("Metadata envelope without a file list")
        try:
            descriptors = [FileDescriptor.from_dict(f) for f in files]
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolViolation(f"Bad file descriptor in metadata: {e}")
        chunk_size = header.get('chunk_size', CHUNK_SIZE)
        if not isinstance(chunk_size, int) or isinstance(chunk_size, bool) or chunk_size <= 0:
            raise ProtocolViolation(f"Bad chunk_size in metadata: {chunk_size!r}")
        return MetadataEnvelope(files=tuple(descriptors), chunk_size=chunk_size)

    if msg_type is EnvelopeType.CHUNK:
        return ChunkEnvelope(
            file_index=_non_negative_int(header, 'file_index'),
            chunk_index=_non_negative_int(header, 'chunk_index'),
            total_chunks=_non_negative_int(header, 'total_chunks'),
            payload=data,
        )

    return CompleteEnvelope()


def _decode_body(header_length: int, body: bytes) -> TransferEnvelope:
    if header_length > len(body):
        raise ProtocolViolation(
            f"Header length {header_length} exceeds frame body {len(body)}"
        )

    try:
        header = json.loads(body[:header_length].decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolViolation(f"Unreadable envelope header: {e}")
    if not isinstance(header, dict):
        raise ProtocolViolation("Envelope header is not an object")

    data = body[header_length:]
    declared = header.get('data_length', len(data))
    if declared != len(data):
        raise ProtocolViolation(
            f"Payload length mismatch: header says {declared}, got {len(data)}"
        )

    return _build_envelope(header, data)


def decode_envelope(frame: bytes) -> TransferEnvelope:
    """
    Deserialize one complete frame (length prefix included).

    Raises:
        ProtocolViolation: If the frame is truncated or malformed
    """
    frame = bytes(frame)
    if len(frame) < 8:
        raise ProtocolViolation(f"Frame too short: {len(frame)} bytes")

    total_length = _LENGTH.unpack_from(frame, 0)[0]
    header_length = _LENGTH.unpack_from(frame, 4)[0]
    if total_length != len(frame) - 8:
        raise ProtocolViolation(
            f"Frame length mismatch: prefix says {total_length}, got {len(frame) - 8}"
        )

    return _decode_body(header_length, frame[8:])


async def read_frame(reader: asyncio.StreamReader) -> Optional[bytes]:
    """
    Read one whole frame from a stream, length prefix included.

    The stream stays aligned on the next frame whatever the frame holds,
    so a caller can drop a frame that fails to decode and keep reading.

    Returns:
        The frame, or None on a clean end of stream between frames

    Raises:
        ChannelError: If the stream ends in the middle of a frame
        ProtocolViolation: If the length prefix exceeds MAX_FRAME_SIZE
    """
    try:
        length_bytes = await reader.readexactly(4)
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            return None
        raise ChannelError("Connection closed inside a frame length prefix")

    total_length = _LENGTH.unpack(length_bytes)[0]

    # Sanity check
    if total_length > MAX_FRAME_SIZE:
        raise ProtocolViolation(f"Message too large: {total_length}")

    try:
        rest = await reader.readexactly(4 + total_length)
    except asyncio.IncompleteReadError:
        raise ChannelError("Connection closed in the middle of a frame")

    return length_bytes + rest


async def read_envelope(reader: asyncio.StreamReader) -> Optional[TransferEnvelope]:
    """
    Read one envelope from a stream.

    Returns:
        The envelope, or None on a clean end of stream between frames

    Raises:
        ChannelError: If the stream ends in the middle of a frame
        ProtocolViolation: If the frame cannot be decoded
    """
    frame = await read_frame(reader)
    if frame is None:
        return None
    return decode_envelope(frame)
