"""
File Module - Chunking and Descriptors

This module handles the byte-level side of a transfer: fixed-size
chunking, reassembly and the per-file metadata announced to a peer.
"""

from .chunker import ChunkCodec, CHUNK_SIZE, get_chunk_count, split, reassemble
from .descriptor import FileDescriptor, OutgoingFile, guess_mime_type

__all__ = [
    'ChunkCodec',
    'CHUNK_SIZE',
    'get_chunk_count',
    'split',
    'reassemble',
    'FileDescriptor',
    'OutgoingFile',
    'guess_mime_type',
]
