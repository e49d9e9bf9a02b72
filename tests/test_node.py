"""Tests for peer nodes sending to each other over TCP."""

import asyncio

import pytest

from peerdrop.errors import ChannelError, NoFilesSelected
from peerdrop.node import PeerNode, safe_file_name, unique_path


class TestFileNames:
    """Test how received names are turned into paths."""

    @pytest.mark.parametrize("name,expected", [
        ("photo.jpg", "photo.jpg"),
        ("../../etc/passwd", "passwd"),
        ("C:\\Users\\me\\notes.txt", "notes.txt"),
        ("..", "received_file"),
        ("dir/", "dir"),
    ])
    def test_safe_file_name(self, name, expected):
        assert safe_file_name(name) == expected

    def test_unique_path(self, tmp_path):
        assert unique_path(tmp_path, 'a.txt') == tmp_path / 'a.txt'

        (tmp_path / 'a.txt').write_text('1')
        (tmp_path / 'a (1).txt').write_text('2')

        assert unique_path(tmp_path, 'a.txt') == tmp_path / 'a (2).txt'


class TestPeerNode:
    """Test sending files between two nodes."""

    @pytest.mark.asyncio
    async def test_send_files(self, node_config, multiple_sample_files):
        receiver = PeerNode(node_config('receiver'))
        sender = PeerNode(node_config('sender'), auto_receive=False)
        done = asyncio.Event()
        saved = []
        receiver.on_transfer_complete(lambda peer_id, descriptors: done.set())
        receiver.on_file_saved(lambda peer_id, received, path: saved.append(path))

        await receiver.start()
        try:
            progress = {}
            await sender.send_files(
                receiver.peer_id,
                multiple_sample_files,
                lambda index, percent: progress.__setitem__(index, percent),
            )
            await asyncio.wait_for(done.wait(), timeout=5)
            await receiver.wait_saved()
        finally:
            await receiver.stop()

        for original in multiple_sample_files:
            copy = receiver.download_dir / original.name
            assert copy.read_bytes() == original.read_bytes()
        assert len(saved) == 3
        assert progress == {0: 100, 1: 100, 2: 100}
        assert receiver.files_saved == 3
        assert sender.transfers_sent == 1

    @pytest.mark.asyncio
    async def test_same_name_twice(self, node_config, sample_file):
        receiver = PeerNode(node_config('receiver'))
        sender = PeerNode(node_config('sender'), auto_receive=False)
        rounds = []
        receiver.on_transfer_complete(lambda peer_id, descriptors: rounds.append(peer_id))

        await receiver.start()
        try:
            for _ in range(2):
                await sender.send_files(receiver.peer_id, [sample_file])
            for _ in range(50):
                if len(rounds) == 2:
                    break
                await asyncio.sleep(0.05)
            await receiver.wait_saved()
        finally:
            await receiver.stop()

        names = sorted(p.name for p in receiver.download_dir.iterdir())
        assert names == ['test (1).txt', 'test.txt']

    @pytest.mark.asyncio
    async def test_auto_receive_does_not_queue_channels(self, node_config, sample_file):
        receiver = PeerNode(node_config('receiver'))
        sender = PeerNode(node_config('sender'), auto_receive=False)
        rounds = []
        receiver.on_transfer_complete(lambda peer_id, descriptors: rounds.append(peer_id))

        await receiver.start()
        try:
            for _ in range(3):
                await sender.send_files(receiver.peer_id, [sample_file])
            for _ in range(50):
                if len(rounds) == 3 and receiver.get_stats()['open_channels'] == 0:
                    break
                await asyncio.sleep(0.05)
            await receiver.wait_saved()

            stats = receiver.get_stats()
            assert stats['pending_accepts'] == 0
            assert stats['open_channels'] == 0
        finally:
            await receiver.stop()

    @pytest.mark.asyncio
    async def test_accept_without_auto_receive(self, node_config):
        listener = PeerNode(node_config('listener'), auto_receive=False)
        dialer = PeerNode(node_config('dialer'), auto_receive=False)

        await listener.start()
        try:
            outbound = await dialer.open(listener.peer_id)
            inbound = await asyncio.wait_for(listener.accept(), timeout=5)

            assert inbound.is_open
            assert listener.get_stats()['open_channels'] == 1
            assert listener.get_stats()['pending_accepts'] == 0
            await outbound.close()
        finally:
            await listener.stop()

        assert not listener.is_running

    @pytest.mark.asyncio
    async def test_no_files(self, node_config):
        sender = PeerNode(node_config('sender'), auto_receive=False)
        with pytest.raises(NoFilesSelected):
            await sender.send_files('127.0.0.1:1', [])

    @pytest.mark.asyncio
    async def test_unreachable_peer(self, node_config, sample_file):
        listener = PeerNode(node_config('gone'))
        await listener.start()
        peer_id = listener.peer_id
        await listener.stop()

        sender = PeerNode(node_config('sender'), auto_receive=False)
        with pytest.raises(ChannelError):
            await sender.send_files(peer_id, [sample_file])
