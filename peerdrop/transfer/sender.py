"""
Transfer Session (sender side)

Drives one file-set transfer to one connected peer:

    IDLE --start()--> METADATA_SENT --send_all()--> TRANSFERRING --> COMPLETED

Design Decision: Pacing
=======================

Options Considered:
1. Fire chunks as fast as the loop allows
   - Fastest, but can flood a channel whose outbound buffer we cannot see
2. Wait for a per-chunk ACK from the receiver
   - Real flow control, but doubles the message count and needs a
     reverse message type
3. Fixed short delay between chunks
   - One knob, no protocol change

Decision: Fixed delay (default 10ms) between chunks
- Chunks are strictly sequential, the receiver never reorders
- Stream channels still await the transport's drain(), the delay only
  spaces out bursts
- The delay is the session's only suspension point besides the writes
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from ..errors import ChannelError, NoActiveChannel, NoFilesSelected, TransferError
from ..file.chunker import ChunkCodec, CHUNK_SIZE
from ..file.descriptor import OutgoingFile
from .channel import Channel
from .protocol import ChunkEnvelope, CompleteEnvelope, MetadataEnvelope

logger = logging.getLogger(__name__)

# Pause between two chunk envelopes (seconds)
DEFAULT_CHUNK_DELAY = 0.01

# Progress callback: (file_index, percent)
ProgressCallback = Callable[[int, int], None]


class SessionState(Enum):
    """Sender session states."""
    IDLE = "idle"
    METADATA_SENT = "metadata_sent"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"


def progress_percent(done: int, total: int) -> int:
    """
    Percentage of chunks handled, rounded half up.

    Held at 99 until the last chunk, so 100 is only ever reported once
    every chunk is through.
    """
    if total <= 0 or done >= total:
        return 100
    return min(99, int(100 * done / total + 0.5))


class TransferSession:
    """
    Sends a set of files over one channel.

    Progress is owned by the session: read it through the `progress`
    snapshot or subscribe with on_progress(); nothing outside the session
    mutates it.
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE,
                 chunk_delay: float = DEFAULT_CHUNK_DELAY):
        self.codec = ChunkCodec(chunk_size)
        self.chunk_delay = chunk_delay
        self.state = SessionState.IDLE

        self._files: List[OutgoingFile] = []
        self._channel: Optional[Channel] = None
        self._progress: Dict[int, int] = {}
        self._callbacks: List[ProgressCallback] = []

        # Statistics
        self.chunks_sent = 0
        self.bytes_sent = 0

    @property
    def progress(self) -> Dict[int, int]:
        """Snapshot of file_index -> percent."""
        return dict(self._progress)

    @property
    def files(self) -> List[OutgoingFile]:
        return list(self._files)

    def on_progress(self, callback: ProgressCallback):
        """Register a callback for progress updates."""
        self._callbacks.append(callback)

    def _set_progress(self, file_index: int, percent: int):
        # Never move backwards, never repeat
        if percent <= self._progress.get(file_index, 0):
            return
        self._progress[file_index] = percent
        for callback in list(self._callbacks):
            callback(file_index, percent)

    async def start(self, files: Sequence[OutgoingFile], channel: Channel):
        """
        Announce the file set to the peer.

        The order of `files` fixes each file's index for the session.

        Raises:
            NoActiveChannel: If the channel is not open
            NoFilesSelected: If `files` is empty
            TransferError: If the session was already started
            ChannelError: If the metadata could not be sent
        """
        if self.state is not SessionState.IDLE:
            raise TransferError(f"Session already started (state: {self.state.value})")
        if channel is None or not channel.is_open:
            raise NoActiveChannel("No open channel to send on")
        if not files:
            raise NoFilesSelected("No files selected")

        metadata = MetadataEnvelope(
            files=tuple(f.descriptor for f in files),
            chunk_size=self.codec.chunk_size,
        )
        await channel.send(metadata)

        self._files = list(files)
        self._channel = channel
        self._progress = {index: 0 for index in range(len(self._files))}
        self.state = SessionState.METADATA_SENT

        total_bytes = sum(f.descriptor.size for f in self._files)
        logger.info(f"Sent metadata to {channel.peer_id}: {len(self._files)} files, "
                    f"{total_bytes:,} bytes")

    async def send_all(self):
        """
        Stream every chunk of every file, then the completion marker.

        A channel failure propagates as ChannelError, and a source file that
        changed size since it was announced as TransferError; either way the
        session keeps its current state and progress so the caller can see
        how far it got.
        """
        if self.state is not SessionState.METADATA_SENT:
            raise TransferError(f"Cannot send in state {self.state.value}")

        channel = self._channel
        self.state = SessionState.TRANSFERRING

        for file_index, outgoing in enumerate(self._files):
            descriptor = outgoing.descriptor
            total_chunks = self.codec.get_chunk_count(descriptor.size)

            if total_chunks == 0:
                self._set_progress(file_index, 100)
                logger.debug(f"{descriptor.name}: empty file, nothing to send")
                continue

            async for chunk_index, payload in outgoing.iter_chunks(self.codec):
                if self.chunks_sent:
                    await asyncio.sleep(self.chunk_delay)

                await self._send(ChunkEnvelope(
                    file_index=file_index,
                    chunk_index=chunk_index,
                    total_chunks=total_chunks,
                    payload=payload,
                ))
                self.chunks_sent += 1
                self.bytes_sent += len(payload)
                self._set_progress(file_index, progress_percent(chunk_index + 1, total_chunks))

            logger.info(f"Sent {descriptor.name} ({descriptor.size:,} bytes, "
                        f"{total_chunks} chunks)")

        await self._send(CompleteEnvelope())
        self.state = SessionState.COMPLETED
        logger.info(f"Transfer to {channel.peer_id} complete: "
                    f"{self.chunks_sent} chunks, {self.bytes_sent:,} bytes")

    async def _send(self, envelope):
        try:
            await self._channel.send(envelope)
        except NoActiveChannel as e:
            # Open at start(), so the peer went away mid-transfer
            raise ChannelError(f"Channel to {self._channel.peer_id} closed during transfer") from e

    async def run(self, files: Sequence[OutgoingFile], channel: Channel):
        """start() followed by send_all()."""
        await self.start(files, channel)
        await self.send_all()

    def get_stats(self) -> dict:
        """Get session statistics."""
        return {
            'state': self.state.value,
            'files': len(self._files),
            'chunks_sent': self.chunks_sent,
            'bytes_sent': self.bytes_sent,
            'progress': self.progress,
        }
