"""
Peer Channels

A channel is a reliable, ordered, bidirectional pipe of whole envelopes
between two peers. Sessions only ever see this interface:

    channel.is_open / channel.peer_id
    await channel.send(envelope)
    channel.on_open(cb) / on_data(cb) / on_close(cb) / on_error(cb)
    await channel.close()

Two implementations:
- StreamChannel: asyncio TCP streams, one frame per envelope
- LoopbackChannel: two in-process ends; every envelope still goes through
  encode/decode so framing bugs show up in-process too
"""

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from ..errors import ChannelError, NoActiveChannel, PeerDropError, ProtocolViolation
from .protocol import TransferEnvelope, decode_envelope, encode_envelope, read_frame

logger = logging.getLogger(__name__)

# Callback types
DataCallback = Callable[[TransferEnvelope], None]
StateCallback = Callable[[], None]
ErrorCallback = Callable[[Exception], None]


class Channel:
    """
    Base class for peer channels.

    Subclasses implement _write() and close(); state transitions go through
    _mark_open() / _mark_closed() so callbacks fire exactly once each.
    """

    def __init__(self, peer_id: str = ""):
        self.peer_id = peer_id
        self._open = False
        self._closed = asyncio.Event()
        self._open_callbacks: List[StateCallback] = []
        self._data_callbacks: List[DataCallback] = []
        self._close_callbacks: List[StateCallback] = []
        self._error_callbacks: List[ErrorCallback] = []

        # Statistics
        self.envelopes_sent = 0
        self.envelopes_received = 0

    @property
    def is_open(self) -> bool:
        return self._open

    # === Callback registration ===

    def on_open(self, callback: StateCallback):
        """Register a callback for the channel opening."""
        self._open_callbacks.append(callback)

    def on_data(self, callback: DataCallback):
        """Register a callback for every inbound envelope."""
        self._data_callbacks.append(callback)

    def on_close(self, callback: StateCallback):
        """Register a callback for the channel closing (either side)."""
        self._close_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback):
        """Register a callback for transport or decoding errors."""
        self._error_callbacks.append(callback)

    # === Sending ===

    async def send(self, envelope: TransferEnvelope):
        """
        Send one envelope.

        Raises:
            NoActiveChannel: If the channel is not open
            ChannelError: If the transport fails
        """
        if not self._open:
            raise NoActiveChannel(f"Channel to {self.peer_id or 'peer'} is not open")
        await self._write(envelope)
        self.envelopes_sent += 1

    async def _write(self, envelope: TransferEnvelope):
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError

    async def wait_closed(self):
        """Wait until the channel has closed, from either side."""
        await self._closed.wait()

    # === State transitions ===

    def _mark_open(self):
        if self._open or self._closed.is_set():
            return
        self._open = True
        for callback in list(self._open_callbacks):
            callback()

    def _mark_closed(self):
        if self._closed.is_set():
            return
        self._open = False
        self._closed.set()
        for callback in list(self._close_callbacks):
            callback()

    def _dispatch(self, envelope: TransferEnvelope):
        self.envelopes_received += 1
        for callback in list(self._data_callbacks):
            callback(envelope)

    def _report_error(self, error: Exception):
        for callback in list(self._error_callbacks):
            callback(error)


class StreamChannel(Channel):
    """
    Channel over an asyncio TCP connection.

    A background task reads frames and dispatches them to on_data
    callbacks. A whole frame that fails to decode is reported and skipped;
    the channel closes when the peer hangs up, on a transport error, or on
    an oversized length prefix (the stream cannot be resynchronised after
    that).
    """

    def __init__(self, reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter, peer_id: Optional[str] = None):
        if peer_id is None:
            peer_id = _format_address(writer.get_extra_info('peername'))
        super().__init__(peer_id)
        self.reader = reader
        self.writer = writer
        self._read_task: Optional[asyncio.Task] = None
        # Keep frames from concurrent senders whole and drains ordered
        self._lock = asyncio.Lock()

    def start(self):
        """Mark the channel open and start reading."""
        if self._read_task is None:
            self._mark_open()
            self._read_task = asyncio.create_task(self._read_loop())

    async def _write(self, envelope: TransferEnvelope):
        frame = encode_envelope(envelope)
        async with self._lock:
            try:
                self.writer.write(frame)
                await self.writer.drain()
            except (ConnectionError, OSError) as e:
                error = ChannelError(f"Send to {self.peer_id} failed: {e}")
                logger.error(str(error))
                self._report_error(error)
                await self.close()
                raise error from e

    async def _read_loop(self):
        try:
            while True:
                frame = await read_frame(self.reader)
                if frame is None:
                    logger.debug(f"Peer {self.peer_id} closed the connection")
                    break
                self._handle_frame(frame)
        except asyncio.CancelledError:
            raise
        except PeerDropError as e:
            logger.error(f"Dropping connection to {self.peer_id}: {e}")
            self._report_error(e)
        except (ConnectionError, OSError) as e:
            error = ChannelError(f"Read from {self.peer_id} failed: {e}")
            logger.error(str(error))
            self._report_error(error)
        finally:
            self._mark_closed()
            self._close_writer()

    def _handle_frame(self, frame: bytes):
        # The stream is still aligned on the next frame
        try:
            envelope = decode_envelope(frame)
        except ProtocolViolation as e:
            logger.warning(f"Dropping bad frame from {self.peer_id}: {e}")
            self._report_error(e)
            return
        try:
            self._dispatch(envelope)
        except Exception as e:
            logger.error(f"Error handling data from {self.peer_id}: {e}", exc_info=True)
            self._report_error(e)

    def _close_writer(self):
        if not self.writer.is_closing():
            self.writer.close()

    async def close(self):
        """Close the connection."""
        self._mark_closed()
        task = self._read_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._close_writer()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Ignoring error while closing {self.peer_id}: {e}")


class LoopbackChannel(Channel):
    """
    One end of an in-process channel pair.

    Sending encodes the envelope to a frame, decodes it again and hands it
    to the other end, so the binary framing is exercised exactly as on a
    socket. fail_after simulates a transport failure after that many
    successful sends; the failing send raises ChannelError and both ends
    close abruptly.
    """

    def __init__(self, peer_id: str = "loopback", fail_after: Optional[int] = None):
        super().__init__(peer_id)
        self._peer: Optional['LoopbackChannel'] = None
        self.fail_after = fail_after
        self.bytes_sent = 0

    @classmethod
    def pair(cls, fail_after: Optional[int] = None) -> Tuple['LoopbackChannel', 'LoopbackChannel']:
        """
        Create two connected, open ends.

        Args:
            fail_after: Applied to the first end only

        Returns:
            (sender_end, receiver_end)
        """
        first = cls(peer_id="loopback-b", fail_after=fail_after)
        second = cls(peer_id="loopback-a")
        first._peer = second
        second._peer = first
        first._mark_open()
        second._mark_open()
        return first, second

    async def _write(self, envelope: TransferEnvelope):
        if self.fail_after is not None and self.envelopes_sent >= self.fail_after:
            error = ChannelError(f"Simulated transport failure towards {self.peer_id}")
            logger.error(str(error))
            self._report_error(error)
            await self.close()
            raise error

        peer = self._peer
        if peer is None or not peer.is_open:
            raise ChannelError(f"Peer end {self.peer_id} is closed")

        frame = encode_envelope(envelope)
        self.bytes_sent += len(frame)

        # Yield like a real transport would between writes
        await asyncio.sleep(0)
        peer._deliver(frame)

    def _deliver(self, frame: bytes):
        if not self.is_open:
            return
        try:
            envelope = decode_envelope(frame)
            self._dispatch(envelope)
        except Exception as e:
            logger.error(f"Error handling data on {self.peer_id}: {e}", exc_info=True)
            self._report_error(e)

    async def close(self):
        """Close both ends."""
        self._mark_closed()
        peer = self._peer
        if peer is not None:
            peer._mark_closed()


def _format_address(address) -> str:
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address or "")


async def connect_to_peer(peer_id: str, timeout: float = 10.0) -> StreamChannel:
    """
    Open a channel to a peer's listener.

    Args:
        peer_id: "host:port" of the peer

    Raises:
        ChannelError: If the peer cannot be reached
    """
    host, port = parse_peer_id(peer_id)
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout
        )
    except (asyncio.TimeoutError, ConnectionError, OSError) as e:
        logger.error(f"Failed to connect to {peer_id}: {e}")
        raise ChannelError(f"Failed to connect to {peer_id}: {e}") from e

    channel = StreamChannel(reader, writer, peer_id=peer_id)
    channel.start()
    return channel


def parse_peer_id(peer_id: str) -> Tuple[str, int]:
    """
    Split a "host:port" peer id.

    Raises:
        ValueError: If the id is not host:port
    """
    host, sep, port = peer_id.rpartition(':')
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Invalid peer id (use host:port): {peer_id}")
    return host.strip('[]'), int(port)
