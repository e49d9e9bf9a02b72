"""
Peer Node - Connection Lifecycle

Owns this device's identity and its channels:
- Listens for inbound channels (TCP) and hands them to receive sessions
- Opens outbound channels to "host:port" peer ids for sending
- Saves reassembled files into the download directory

How peers find each other is left to the host application; a peer id is
simply the address its listener is reachable at.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set

import aiofiles
import aiofiles.os

from .config import Config
from .errors import NoFilesSelected
from .file.descriptor import OutgoingFile
from .transfer.channel import Channel, StreamChannel, connect_to_peer
from .transfer.receiver import ReceivedFile, ReceiveSession
from .transfer.sender import ProgressCallback, TransferSession

logger = logging.getLogger(__name__)

# Callback types
FileSavedCallback = Callable[[str, ReceivedFile, Path], None]
TransferCompleteCallback = Callable[[str, list], None]
PeerErrorCallback = Callable[[str, Exception], None]


def generate_node_id() -> str:
    """Random 64-bit node id as hex."""
    return os.urandom(8).hex()


def safe_file_name(name: str) -> str:
    """Strip any directory part a peer put into a file name."""
    base = Path(name.replace('\\', '/')).name
    if base in ('', '.', '..'):
        return 'received_file'
    return base


def unique_path(directory: Path, name: str, taken: Iterable[Path] = ()) -> Path:
    """First free path for `name` in `directory`: name, name (1), name (2)..."""
    taken = set(taken)
    candidate = directory / name
    if not candidate.exists() and candidate not in taken:
        return candidate

    stem, suffix = candidate.stem, candidate.suffix
    counter = 1
    while True:
        candidate = directory / f"{stem} ({counter}){suffix}"
        if not candidate.exists() and candidate not in taken:
            return candidate
        counter += 1


class PeerNode:
    """
    A peerdrop endpoint.

    Combines listening, connecting and session wiring:
    - start()/stop(): run the inbound listener
    - accept(): next inbound channel
    - open(peer_id): outbound channel
    - send_files(peer_id, paths): push files to a peer
    """

    def __init__(self, config: Config = None, auto_receive: bool = True):
        """
        Initialize a peer node.

        Args:
            config: Node configuration (uses defaults if not provided)
            auto_receive: Attach a ReceiveSession to every inbound channel
                and save what it assembles; when off, inbound channels
                are handed out by accept() instead
        """
        self.config = config or Config()
        self.node_id = generate_node_id()
        self.auto_receive = auto_receive

        self.server: Optional[asyncio.AbstractServer] = None
        self.port: Optional[int] = None
        self._incoming: asyncio.Queue = asyncio.Queue()
        self._channels: Set[Channel] = set()
        self._save_tasks: Set[asyncio.Task] = set()
        # Paths chosen by saves that have not been written yet
        self._reserved: Set[Path] = set()

        self._saved_callbacks: List[FileSavedCallback] = []
        self._complete_callbacks: List[TransferCompleteCallback] = []
        self._error_callbacks: List[PeerErrorCallback] = []

        # State
        self._running = False

        # Statistics
        self.files_saved = 0
        self.transfers_sent = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def download_dir(self) -> Path:
        return self.config.downloads

    @property
    def peer_id(self) -> str:
        """The id other peers use to reach this node."""
        host = self.config.host
        if host in ('0.0.0.0', '::', ''):
            host = '127.0.0.1'
        return f"{host}:{self.port or self.config.port}"

    # === Callback registration ===

    def on_file_saved(self, callback: FileSavedCallback):
        """Register a callback (peer_id, received_file, path) for saved files."""
        self._saved_callbacks.append(callback)

    def on_transfer_complete(self, callback: TransferCompleteCallback):
        """Register a callback (peer_id, descriptors) for completed transfers."""
        self._complete_callbacks.append(callback)

    def on_peer_error(self, callback: PeerErrorCallback):
        """Register a callback (peer_id, error) for inbound errors."""
        self._error_callbacks.append(callback)

    # === Lifecycle ===

    async def start(self):
        """Start listening for inbound channels."""
        if self._running:
            return

        self.download_dir.mkdir(parents=True, exist_ok=True)
        self.server = await asyncio.start_server(
            self._handle_connection,
            self.config.host,
            self.config.port
        )
        self.port = self.server.sockets[0].getsockname()[1]
        self._running = True

        logger.info(f"Node {self.node_id} listening on {self.config.host}:{self.port}")
        logger.info(f"  Downloads: {self.download_dir}")

    async def stop(self):
        """Stop listening, close channels and finish pending saves."""
        if not self._running:
            return

        logger.info("Stopping node...")
        self._running = False

        if self.server:
            self.server.close()

        for channel in list(self._channels):
            await channel.close()
        self._channels.clear()

        if self.server:
            await self.server.wait_closed()

        await self.wait_saved()
        logger.info(f"Node stopped. Saved {self.files_saved} files")

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        """Wrap an inbound connection in a channel."""
        channel = StreamChannel(reader, writer)
        logger.info(f"Inbound channel from {channel.peer_id}")

        self._track(channel)
        if self.auto_receive:
            self.receive_on(channel)
            channel.start()
        else:
            channel.start()
            self._incoming.put_nowait(channel)

    def _track(self, channel: Channel):
        self._channels.add(channel)
        channel.on_close(lambda: self._channels.discard(channel))

    # === Channels ===

    async def accept(self) -> Channel:
        """Wait for the next inbound channel (nodes without auto_receive)."""
        return await self._incoming.get()

    async def open(self, peer_id: str) -> StreamChannel:
        """
        Open a channel to a peer.

        Raises:
            ChannelError: If the peer cannot be reached
        """
        channel = await connect_to_peer(peer_id, timeout=self.config.connect_timeout)
        self._track(channel)
        logger.info(f"Opened channel to {peer_id}")
        return channel

    # === Receiving ===

    def receive_on(self, channel: Channel) -> ReceiveSession:
        """Attach a receive session that saves files into the download dir."""
        session = ReceiveSession()
        peer_id = channel.peer_id
        session.attach(channel)

        session.on_file(lambda received: self._schedule_save(peer_id, received))
        session.on_complete(lambda descriptors: self._notify_complete(peer_id, descriptors))
        session.on_error(lambda error: self._notify_error(peer_id, error))
        return session

    def _schedule_save(self, peer_id: str, received: ReceivedFile):
        path = unique_path(self.download_dir, safe_file_name(received.name), self._reserved)
        self._reserved.add(path)

        task = asyncio.get_running_loop().create_task(self._save_file(peer_id, received, path))
        self._save_tasks.add(task)
        task.add_done_callback(self._save_tasks.discard)

    async def _save_file(self, peer_id: str, received: ReceivedFile, path: Path) -> Optional[Path]:
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, 'wb') as f:
                await f.write(received.data)
        except OSError as e:
            logger.error(f"Saving {received.name} from {peer_id} to {path} failed: {e}")
            self._notify_error(peer_id, e)
            return None
        finally:
            self._reserved.discard(path)

        last_modified = received.descriptor.last_modified
        if last_modified > 0:
            os.utime(path, (last_modified, last_modified))

        self.files_saved += 1
        logger.info(f"Saved {received.name} from {peer_id} to {path}")
        for callback in list(self._saved_callbacks):
            callback(peer_id, received, path)
        return path

    async def wait_saved(self):
        """Wait until every received file has been written."""
        while self._save_tasks:
            await asyncio.gather(*list(self._save_tasks))

    def _notify_complete(self, peer_id: str, descriptors: list):
        for callback in list(self._complete_callbacks):
            callback(peer_id, descriptors)

    def _notify_error(self, peer_id: str, error: Exception):
        for callback in list(self._error_callbacks):
            callback(peer_id, error)

    # === Sending ===

    async def send_files(self, peer_id: str, paths: Iterable[Path],
                         progress_callback: ProgressCallback = None) -> TransferSession:
        """
        Push files to a peer over a fresh channel.

        Args:
            peer_id: "host:port" of the receiving node
            paths: Files to send, in order
            progress_callback: Optional (file_index, percent) callback

        Returns:
            The finished session (for its stats)

        Raises:
            NoFilesSelected: If `paths` is empty
            FileNotFoundError: If a path is not a file
            ChannelError: If connecting or sending fails
        """
        files = [OutgoingFile.from_path(Path(p)) for p in paths]
        if not files:
            raise NoFilesSelected("No files selected")

        return await self.send_outgoing(peer_id, files, progress_callback)

    async def send_outgoing(self, peer_id: str, files: List[OutgoingFile],
                            progress_callback: ProgressCallback = None) -> TransferSession:
        """Push already-described files (paths or in-memory blobs) to a peer."""
        session = TransferSession(
            chunk_size=self.config.chunk_size,
            chunk_delay=self.config.chunk_delay,
        )
        if progress_callback:
            session.on_progress(progress_callback)

        channel = await self.open(peer_id)
        try:
            await session.run(files, channel)
        finally:
            await channel.close()

        self.transfers_sent += 1
        return session

    def get_stats(self) -> dict:
        """Get node statistics."""
        return {
            'node_id': self.node_id,
            'running': self._running,
            'peer_id': self.peer_id,
            'open_channels': len(self._channels),
            'files_saved': self.files_saved,
            'transfers_sent': self.transfers_sent,
            'pending_saves': len(self._save_tasks),
            'pending_accepts': self._incoming.qsize(),
        }
