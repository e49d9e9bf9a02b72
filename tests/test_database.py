"""Tests for the SQLite durable tier."""

import pytest

from peerdrop.errors import StoreIOError
from peerdrop.storage import ContentStore, FileRecord, SQLiteDurableStore, init_durable_store


@pytest.fixture
def db_paths(tmp_path):
    return tmp_path / 'data' / 'store.db', tmp_path / 'data' / 'index.json'


class TestSQLiteDurableStore:
    """Test record and index persistence."""

    @pytest.mark.asyncio
    async def test_put_get_record(self, db_paths):
        store = SQLiteDurableStore(*db_paths)
        await store.connect()

        record = FileRecord(id='abc', name='a.bin', size=256, type='', data=bytes(range(256)), created_at=1.0)
        await store.put_record(record)

        assert await store.get_record('abc') == record
        assert await store.get_record('missing') is None
        await store.close()

    @pytest.mark.asyncio
    async def test_put_replaces(self, db_paths):
        store = SQLiteDurableStore(*db_paths)
        await store.connect()

        await store.put_record(FileRecord(id='abc', name='old.txt', size=1, type='', data=b'o', created_at=1.0))
        await store.put_record(FileRecord(id='abc', name='new.txt', size=1, type='', data=b'n', created_at=1.0))

        records = await store.list_records()
        assert [(r.name, r.data) for r in records] == [('new.txt', b'n')]
        await store.close()

    @pytest.mark.asyncio
    async def test_list_oldest_first(self, db_paths):
        store = SQLiteDurableStore(*db_paths)
        await store.connect()

        await store.put_record(FileRecord(id='b', name='b', size=0, type='', created_at=2.0))
        await store.put_record(FileRecord(id='a', name='a', size=0, type='', created_at=1.0))

        assert [r.id for r in await store.list_records()] == ['a', 'b']
        await store.close()

    @pytest.mark.asyncio
    async def test_placeholder_keeps_no_bytes(self, db_paths):
        store = SQLiteDurableStore(*db_paths)
        await store.connect()

        full = FileRecord(id='big', name='big.bin', size=3, type='', data=b'abc', created_at=1.0)
        await store.put_record(full.placeholder())

        loaded = await store.get_record('big')
        assert loaded.has_data is False
        assert loaded.data == b''
        assert loaded.size == 3
        await store.close()

    @pytest.mark.asyncio
    async def test_delete_record(self, db_paths):
        store = SQLiteDurableStore(*db_paths)
        await store.connect()
        await store.put_record(FileRecord(id='abc', name='a', size=0, type=''))

        assert await store.delete_record('abc') is True
        assert await store.delete_record('abc') is False
        await store.close()

    @pytest.mark.asyncio
    async def test_index_round_trip(self, db_paths):
        store = SQLiteDurableStore(*db_paths)
        entries = [{'id': 'abc', 'name': 'a.txt', 'size': 1, 'type': 'text/plain', 'created_at': 1.0}]

        assert await store.get_index() == []
        await store.put_index(entries)

        assert await store.get_index() == entries
        assert not db_paths[1].with_suffix('.tmp').exists()

    @pytest.mark.asyncio
    async def test_corrupt_index(self, db_paths):
        db_paths[1].parent.mkdir(parents=True)
        db_paths[1].write_text('{not json')

        with pytest.raises(StoreIOError):
            await SQLiteDurableStore(*db_paths).get_index()

    @pytest.mark.asyncio
    async def test_not_connected(self, db_paths):
        with pytest.raises(StoreIOError):
            await SQLiteDurableStore(*db_paths).list_records()

    @pytest.mark.asyncio
    async def test_unwritable_location(self, tmp_path):
        blocker = tmp_path / 'blocker'
        blocker.write_text('a file, not a directory')

        with pytest.raises(StoreIOError):
            await SQLiteDurableStore(blocker / 'store.db').connect()

    @pytest.mark.asyncio
    async def test_init_durable_store(self, tmp_path):
        store = await init_durable_store(tmp_path)

        assert store.db_path == tmp_path / 'store.db'
        assert store.index_path == tmp_path / 'index.json'
        assert await store.list_records() == []
        await store.close()


class TestContentStoreOnSQLite:
    """Test the content store over a real database."""

    @pytest.mark.asyncio
    async def test_restart(self, db_paths):
        store = ContentStore(SQLiteDurableStore(*db_paths))
        await store.open()
        file_id = await store.put_durable('hello.txt', 'text/plain', b'hello')
        await store.close()

        restarted = ContentStore(SQLiteDurableStore(*db_paths))
        await restarted.open()

        assert restarted.blob_handle(file_id).open().read() == b'hello'
        assert [s.name for s in restarted.list()] == ['hello.txt']
        await restarted.close()
