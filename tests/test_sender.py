"""Tests for the sending side of a transfer."""

import asyncio

import pytest

from peerdrop.errors import ChannelError, NoActiveChannel, NoFilesSelected, TransferError
from peerdrop.file.descriptor import OutgoingFile
from peerdrop.transfer.channel import LoopbackChannel
from peerdrop.transfer.protocol import EnvelopeType
from peerdrop.transfer.sender import SessionState, TransferSession, progress_percent


class TestProgressPercent:
    """Test progress rounding."""

    @pytest.mark.parametrize("done,total,expected", [
        (0, 4, 0),
        (1, 4, 25),
        (3, 4, 75),
        (4, 4, 100),
        (1, 3, 33),
        (2, 3, 67),
        (199, 200, 99),
        (0, 0, 100),
    ])
    def test_progress_percent(self, done, total, expected):
        assert progress_percent(done, total) == expected


class TestSessionStart:
    """Test preconditions of starting a transfer."""

    @pytest.mark.asyncio
    async def test_no_channel(self):
        session = TransferSession(chunk_delay=0)
        with pytest.raises(NoActiveChannel):
            await session.start([OutgoingFile.from_bytes('a.txt', b'a')], None)

    @pytest.mark.asyncio
    async def test_closed_channel(self, recording_channel):
        await recording_channel.close()
        session = TransferSession(chunk_delay=0)

        with pytest.raises(NoActiveChannel):
            await session.start([OutgoingFile.from_bytes('a.txt', b'a')], recording_channel)
        assert recording_channel.sent == []

    @pytest.mark.asyncio
    async def test_no_files(self, recording_channel):
        session = TransferSession(chunk_delay=0)

        with pytest.raises(NoFilesSelected):
            await session.start([], recording_channel)
        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_start_twice(self, recording_channel):
        session = TransferSession(chunk_delay=0)
        files = [OutgoingFile.from_bytes('a.txt', b'a')]
        await session.start(files, recording_channel)

        with pytest.raises(TransferError):
            await session.start(files, recording_channel)

    @pytest.mark.asyncio
    async def test_send_before_start(self):
        with pytest.raises(TransferError):
            await TransferSession(chunk_delay=0).send_all()


class TestSendAll:
    """Test the envelope stream a session produces."""

    @pytest.mark.asyncio
    async def test_envelope_order(self, recording_channel):
        files = [
            OutgoingFile.from_bytes('one.txt', b'x'),
            OutgoingFile.from_bytes('two.bin', bytes(50_000)),
        ]
        session = TransferSession(chunk_delay=0)

        await session.run(files, recording_channel)

        sent = recording_channel.sent
        assert sent[0].type is EnvelopeType.METADATA
        assert [d.name for d in sent[0].files] == ['one.txt', 'two.bin']
        assert sent[-1].type is EnvelopeType.COMPLETE

        chunks = sent[1:-1]
        assert [(c.file_index, c.chunk_index) for c in chunks] == [
            (0, 0), (1, 0), (1, 1), (1, 2), (1, 3)
        ]
        assert [c.total_chunks for c in chunks] == [1, 4, 4, 4, 4]
        assert len(chunks[-1].payload) == 848
        assert session.state is SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_progress_reaches_100_once(self, recording_channel):
        updates = []
        session = TransferSession(chunk_delay=0)
        session.on_progress(lambda index, percent: updates.append((index, percent)))

        await session.run([OutgoingFile.from_bytes('big.bin', bytes(50_000))], recording_channel)

        assert updates == [(0, 25), (0, 50), (0, 75), (0, 100)]
        assert session.progress == {0: 100}

    @pytest.mark.asyncio
    async def test_empty_file_sends_no_chunks(self, recording_channel):
        session = TransferSession(chunk_delay=0)

        await session.run([OutgoingFile.from_bytes('empty.txt', b'')], recording_channel)

        assert [e.type for e in recording_channel.sent] == [
            EnvelopeType.METADATA, EnvelopeType.COMPLETE
        ]
        assert session.progress == {0: 100}

    @pytest.mark.asyncio
    async def test_files_from_disk(self, recording_channel, multiple_sample_files):
        session = TransferSession(chunk_delay=0)
        files = [OutgoingFile.from_path(p) for p in multiple_sample_files]

        await session.run(files, recording_channel)

        payload = b''.join(
            e.payload for e in recording_channel.sent
            if e.type is EnvelopeType.CHUNK and e.file_index == 2
        )
        assert payload == multiple_sample_files[2].read_bytes()
        assert session.get_stats()['bytes_sent'] == 50_001

    @pytest.mark.asyncio
    async def test_channel_failure_propagates(self):
        sender, _receiver = LoopbackChannel.pair(fail_after=3)
        session = TransferSession(chunk_delay=0)

        with pytest.raises(ChannelError):
            await session.run([OutgoingFile.from_bytes('big.bin', bytes(50_000))], sender)

        assert session.state is SessionState.TRANSFERRING
        assert session.chunks_sent == 2
        assert session.progress == {0: 50}

    @pytest.mark.asyncio
    async def test_peer_closing_mid_transfer_is_channel_error(self):
        sender, receiver = LoopbackChannel.pair()
        seen = []

        def hang_up_after_first_chunk(envelope):
            seen.append(envelope)
            if envelope.type is EnvelopeType.CHUNK:
                asyncio.get_running_loop().create_task(receiver.close())

        receiver.on_data(hang_up_after_first_chunk)
        session = TransferSession(chunk_delay=0)

        with pytest.raises(ChannelError):
            await session.run([OutgoingFile.from_bytes('big.bin', bytes(50_000))], sender)

        assert session.chunks_sent == 1
        assert session.state is SessionState.TRANSFERRING

    @pytest.mark.asyncio
    async def test_file_grown_since_announced(self, recording_channel, tmp_path):
        path = tmp_path / 'growing.log'
        path.write_bytes(b'x' * 100)
        outgoing = OutgoingFile.from_path(path)
        path.write_bytes(b'x' * 40_000)

        session = TransferSession(chunk_delay=0)
        with pytest.raises(TransferError):
            await session.run([outgoing], recording_channel)

        assert session.state is SessionState.TRANSFERRING
        assert session.bytes_sent == 0
        assert [e.type for e in recording_channel.sent] == [EnvelopeType.METADATA]

    def test_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            OutgoingFile.from_path(tmp_path / 'nope.txt')
