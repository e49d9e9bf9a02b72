"""
Receive Session (receiver side)

Design Decision: Reassembly Strategy
====================================

Options Considered:
1. Append chunks to a growing buffer as they arrive
   - Cheapest, but silently wrong if anything ever arrives out of order
2. Write every chunk to a temp file at its offset
   - Bounded memory, but needs disk and cleanup on abort
3. Slot array per file, indexed by chunk index
   - Order-independent, gaps are detectable
   - Memory bounded by the files currently in flight

Decision: Slot array per file (ReassemblyBuffer)
- Allocated when the metadata announces the file
- Filled slot by slot, counted by received_count
- Drained into one byte string the moment the count hits total_chunks,
  emitted to on_file callbacks, then dropped
- Anything still buffered when the channel closes is discarded, never
  emitted half-done

Phases:
    AWAITING_METADATA --Metadata--> RECEIVING --Complete--> DONE
    DONE --Metadata--> RECEIVING   (next round on the same channel)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..errors import IncompleteTransfer, ProtocolViolation
from ..file.chunker import ChunkCodec, CHUNK_SIZE
from ..file.descriptor import FileDescriptor
from .channel import Channel
from .protocol import (
    ChunkEnvelope, EnvelopeType, MetadataEnvelope, TransferEnvelope
)
from .sender import ProgressCallback, progress_percent

logger = logging.getLogger(__name__)


class ReceivePhase(Enum):
    """Where the receiver is in the envelope stream."""
    AWAITING_METADATA = "awaiting_metadata"
    RECEIVING = "receiving"
    DONE = "done"


@dataclass
class ReassemblyBuffer:
    """Staging area for one file's chunks."""
    descriptor: FileDescriptor
    total_chunks: int
    chunks: List[Optional[bytes]] = field(default_factory=list)
    received_count: int = 0

    def __post_init__(self):
        if not self.chunks:
            self.chunks = [None] * self.total_chunks

    @property
    def is_complete(self) -> bool:
        return self.received_count >= self.total_chunks


@dataclass(frozen=True)
class ReceivedFile:
    """A fully reassembled file."""
    file_index: int
    descriptor: FileDescriptor
    data: bytes = field(repr=False)

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def size(self) -> int:
        return len(self.data)


# Callback types
FileCallback = Callable[[ReceivedFile], None]
CompleteCallback = Callable[[List[FileDescriptor]], None]
ErrorCallback = Callable[[Exception], None]


class ReceiveSession:
    """
    Consumes an envelope stream and emits reassembled files.

    Use handle() directly, or attach() the session to a channel. handle()
    raises ProtocolViolation for envelopes it drops; when attached, those
    are logged, kept in `violations` and passed to on_error callbacks
    instead, so one bad envelope never tears the session down.
    """

    def __init__(self):
        self.phase = ReceivePhase.AWAITING_METADATA
        self.chunk_size = CHUNK_SIZE
        self.codec = ChunkCodec(CHUNK_SIZE)

        self._descriptors: List[FileDescriptor] = []
        self._buffers: Dict[int, ReassemblyBuffer] = {}
        self._progress: Dict[int, int] = {}

        self._file_callbacks: List[FileCallback] = []
        self._complete_callbacks: List[CompleteCallback] = []
        self._progress_callbacks: List[ProgressCallback] = []
        self._error_callbacks: List[ErrorCallback] = []

        self.violations: List[ProtocolViolation] = []
        self.aborted = False

        # Statistics
        self.files_received = 0
        self.bytes_received = 0
        self.rounds_completed = 0

    # === Read-only views ===

    @property
    def progress(self) -> Dict[int, int]:
        """Snapshot of file_index -> percent for the current round."""
        return dict(self._progress)

    @property
    def descriptors(self) -> List[FileDescriptor]:
        return list(self._descriptors)

    @property
    def pending_files(self) -> List[int]:
        """File indices whose buffers are still open."""
        return sorted(self._buffers)

    # === Callback registration ===

    def on_file(self, callback: FileCallback):
        """Register a callback for each reassembled file."""
        self._file_callbacks.append(callback)

    def on_complete(self, callback: CompleteCallback):
        """Register a callback for the end of a transfer round."""
        self._complete_callbacks.append(callback)

    def on_progress(self, callback: ProgressCallback):
        """Register a callback for per-file progress updates."""
        self._progress_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback):
        """Register a callback for dropped envelopes and channel errors."""
        self._error_callbacks.append(callback)

    # === Channel binding ===

    def attach(self, channel: Channel):
        """Feed this session from a channel's events."""
        channel.on_data(self._on_channel_data)
        channel.on_close(self.close)
        channel.on_error(self._notify_error)

    def _on_channel_data(self, envelope: TransferEnvelope):
        try:
            self.handle(envelope)
        except ProtocolViolation as e:
            # Already logged and recorded by handle()
            self._notify_error(e)

    def _notify_error(self, error: Exception):
        for callback in list(self._error_callbacks):
            callback(error)

    # === Envelope handling ===

    def handle(self, envelope: TransferEnvelope):
        """
        Process one inbound envelope.

        Raises:
            ProtocolViolation: If the envelope was malformed or out of
                order; it has been dropped and the session is unchanged
        """
        try:
            if envelope.type is EnvelopeType.METADATA:
                self._handle_metadata(envelope)
            elif envelope.type is EnvelopeType.CHUNK:
                self._handle_chunk(envelope)
            elif envelope.type is EnvelopeType.COMPLETE:
                self._handle_complete()
            else:
                raise ProtocolViolation(f"Unknown envelope type: {envelope.type}")
        except ProtocolViolation as e:
            logger.warning(f"Protocol violation: {e}")
            self.violations.append(e)
            raise

    def _handle_metadata(self, envelope: MetadataEnvelope):
        if self.phase is ReceivePhase.RECEIVING:
            raise ProtocolViolation("Metadata received while a transfer is in progress")

        codec = ChunkCodec(envelope.chunk_size)
        self.chunk_size = envelope.chunk_size
        self.codec = codec
        self._descriptors = list(envelope.files)
        self._buffers = {}
        self._progress = {}
        self.aborted = False
        self.phase = ReceivePhase.RECEIVING

        logger.info(f"Receiving {len(self._descriptors)} files, "
                    f"{sum(d.size for d in self._descriptors):,} bytes")

        for file_index, descriptor in enumerate(self._descriptors):
            total_chunks = codec.get_chunk_count(descriptor.size)
            self._progress[file_index] = 0
            if total_chunks == 0:
                self._emit(file_index, descriptor, b'')
            else:
                self._buffers[file_index] = ReassemblyBuffer(
                    descriptor=descriptor,
                    total_chunks=total_chunks,
                )

    def _handle_chunk(self, envelope: ChunkEnvelope):
        if self.phase is not ReceivePhase.RECEIVING:
            raise ProtocolViolation(
                f"Chunk for file {envelope.file_index} outside a transfer "
                f"(phase: {self.phase.value})"
            )

        file_index = envelope.file_index
        if file_index >= len(self._descriptors):
            raise ProtocolViolation(f"Chunk for undeclared file index {file_index}")

        buffer = self._buffers.get(file_index)
        if buffer is None:
            raise ProtocolViolation(f"Chunk for already completed file index {file_index}")

        if envelope.total_chunks != buffer.total_chunks:
            raise ProtocolViolation(
                f"File {file_index}: chunk says {envelope.total_chunks} chunks, "
                f"metadata implies {buffer.total_chunks}"
            )
        if envelope.chunk_index >= buffer.total_chunks:
            raise ProtocolViolation(
                f"File {file_index}: chunk index {envelope.chunk_index} "
                f"out of range [0, {buffer.total_chunks})"
            )
        if len(envelope.payload) > self.chunk_size:
            raise ProtocolViolation(
                f"File {file_index}: {len(envelope.payload)} byte payload "
                f"exceeds chunk size {self.chunk_size}"
            )

        buffer.chunks[envelope.chunk_index] = envelope.payload
        buffer.received_count += 1

        if buffer.is_complete:
            self._assemble(file_index, buffer)
        else:
            self._set_progress(file_index, progress_percent(buffer.received_count, buffer.total_chunks))

    def _assemble(self, file_index: int, buffer: ReassemblyBuffer):
        # Released whatever happens below
        del self._buffers[file_index]

        try:
            data = self.codec.reassemble(buffer.chunks, buffer.total_chunks)
        except IncompleteTransfer as e:
            raise ProtocolViolation(f"File {file_index} ({buffer.descriptor.name}): {e}")

        if len(data) != buffer.descriptor.size:
            raise ProtocolViolation(
                f"File {file_index} ({buffer.descriptor.name}): assembled "
                f"{len(data):,} bytes, metadata declared {buffer.descriptor.size:,}"
            )

        self._emit(file_index, buffer.descriptor, data)

    def _emit(self, file_index: int, descriptor: FileDescriptor, data: bytes):
        self._set_progress(file_index, 100)
        self.files_received += 1
        self.bytes_received += len(data)
        logger.info(f"Received {descriptor.name} ({len(data):,} bytes)")

        received = ReceivedFile(file_index=file_index, descriptor=descriptor, data=data)
        for callback in list(self._file_callbacks):
            callback(received)

    def _handle_complete(self):
        if self.phase is not ReceivePhase.RECEIVING:
            raise ProtocolViolation(
                f"Completion marker outside a transfer (phase: {self.phase.value})"
            )

        self.phase = ReceivePhase.DONE
        if self._buffers:
            pending = sorted(self._buffers)
            self._buffers = {}
            raise ProtocolViolation(
                f"Completion marker with {len(pending)} files unfinished: {pending}"
            )

        self.rounds_completed += 1
        logger.info(f"Transfer complete: {len(self._descriptors)} files")
        for callback in list(self._complete_callbacks):
            callback(list(self._descriptors))

    def _set_progress(self, file_index: int, percent: int):
        if percent <= self._progress.get(file_index, 0):
            return
        self._progress[file_index] = percent
        for callback in list(self._progress_callbacks):
            callback(file_index, percent)

    # === Teardown ===

    def close(self):
        """
        Abrupt end of the stream (channel closed or transfer cancelled).

        Open buffers are discarded, nothing partial is emitted.
        """
        if self._buffers:
            pending = sorted(self._buffers)
            logger.warning(f"Channel closed with {len(pending)} files unfinished, "
                           f"discarding: {pending}")
            self._buffers = {}
            self.aborted = True
        if self.phase is ReceivePhase.RECEIVING:
            self.phase = ReceivePhase.DONE
            self.aborted = True

    def get_stats(self) -> dict:
        """Get session statistics."""
        return {
            'phase': self.phase.value,
            'files_received': self.files_received,
            'bytes_received': self.bytes_received,
            'rounds_completed': self.rounds_completed,
            'pending_files': self.pending_files,
            'violations': len(self.violations),
            'aborted': self.aborted,
        }
