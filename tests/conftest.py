"""Shared pytest fixtures for all tests."""

import pytest

from peerdrop.config import Config
from peerdrop.storage import ContentStore, MemoryDurableStore
from peerdrop.transfer.channel import Channel


class RecordingChannel(Channel):
    """Open channel that keeps every envelope sent on it."""

    def __init__(self):
        super().__init__("recorder")
        self.sent = []
        self._mark_open()

    async def _write(self, envelope):
        self.sent.append(envelope)

    async def close(self):
        self._mark_closed()


@pytest.fixture
def recording_channel():
    """
    Channel stub that records envelopes instead of transmitting them.

    Returns:
        Open RecordingChannel
    """
    return RecordingChannel()


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a sample file for testing transfers.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to sample text file
    """
    file_path = tmp_path / 'test.txt'
    file_path.write_text('Sample content for testing')
    return file_path


@pytest.fixture
def multiple_sample_files(tmp_path):
    """
    Create files spanning zero, one and several chunks.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        List of Paths: empty.bin, small.txt, large.bin (50,000 bytes)
    """
    empty = tmp_path / 'empty.bin'
    empty.write_bytes(b'')

    small = tmp_path / 'small.txt'
    small.write_text('x')

    large = tmp_path / 'large.bin'
    large.write_bytes(bytes(i % 256 for i in range(50_000)))

    return [empty, small, large]


@pytest.fixture
def memory_durable():
    """In-memory durable tier that survives ContentStore restarts."""
    return MemoryDurableStore()


@pytest.fixture
def content_store(memory_durable):
    """ContentStore over the in-memory durable tier (not yet opened)."""
    return ContentStore(memory_durable)


@pytest.fixture
def node_config(tmp_path):
    """
    Node configuration bound to loopback on an ephemeral port.

    Returns:
        Config factory taking a sub-directory name
    """
    def make(name: str) -> Config:
        return Config(
            host='127.0.0.1',
            port=0,
            data_dir=tmp_path / name,
            chunk_delay=0,
            connect_timeout=2.0,
        )
    return make
