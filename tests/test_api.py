"""Tests for the REST share API."""

import pytest
from fastapi.testclient import TestClient

from peerdrop.api import create_app
from peerdrop.storage import ContentStore, MemoryDurableStore


@pytest.fixture
def durable():
    return MemoryDurableStore()


@pytest.fixture
def client(durable):
    """Test client whose app opens and closes its own store."""
    app = create_app(ContentStore(durable), owns_store=True)
    with TestClient(app) as test_client:
        yield test_client


def upload(client, name='hello.txt', data=b'hello', content_type='text/plain'):
    response = client.post('/files', files={'file': (name, data, content_type)})
    assert response.status_code == 200
    return response.json()


class TestRoot:
    """Test the API root."""

    def test_root(self, client):
        response = client.get('/')

        assert response.status_code == 200
        assert response.json()['name'] == 'peerdrop'
        assert response.json()['files'] == 0


class TestUploadAndDownload:
    """Test storing and serving files."""

    def test_upload(self, client, durable):
        result = upload(client)

        assert result['name'] == 'hello.txt'
        assert result['size'] == 5
        assert result['durable'] is True
        assert durable.records[result['id']].data == b'hello'

    def test_list_and_info(self, client):
        result = upload(client)

        listing = client.get('/files').json()
        assert listing == [{'id': result['id'], 'name': 'hello.txt', 'size': 5, 'type': 'text/plain'}]

        info = client.get(f"/files/{result['id']}").json()
        assert info['has_data'] is True
        assert info['size'] == 5

    def test_download_returns_every_byte(self, client):
        data = bytes(range(256))
        result = upload(client, name='bytes.bin', data=data, content_type='application/octet-stream')

        response = client.get(f"/files/{result['id']}/download")

        assert response.status_code == 200
        assert response.content == data
        assert response.headers['content-type'].startswith('application/octet-stream')
        assert 'bytes.bin' in response.headers['content-disposition']

    def test_unknown_file(self, client):
        assert client.get('/files/missing').status_code == 404
        assert client.get('/files/missing/download').status_code == 404
        assert client.delete('/files/missing').status_code == 404

    def test_upload_during_outage_is_not_durable(self, client, durable):
        durable.available = False

        result = upload(client)

        assert result['durable'] is False
        download = client.get(f"/files/{result['id']}/download")
        assert download.content == b'hello'


class TestPlaceholders:
    """Test files known only from an index."""

    def test_placeholder_is_listed_but_not_served(self, durable):
        durable.index = [{'id': 'remote1', 'name': 'remote.txt', 'size': 12, 'type': 'text/plain'}]
        app = create_app(ContentStore(durable), owns_store=True)

        with TestClient(app) as client:
            info = client.get('/files/remote1').json()
            download = client.get('/files/remote1/download')

        assert info['has_data'] is False
        assert download.status_code == 404


class TestDelete:
    """Test removing files."""

    def test_delete(self, client, durable):
        result = upload(client)

        response = client.delete(f"/files/{result['id']}")

        assert response.json() == {'success': True, 'durable': True}
        assert client.get(f"/files/{result['id']}").status_code == 404
        assert result['id'] not in durable.records

    def test_delete_during_outage(self, client, durable):
        result = upload(client)
        durable.available = False

        response = client.delete(f"/files/{result['id']}")

        assert response.json() == {'success': True, 'durable': False}
        assert client.get(f"/files/{result['id']}").status_code == 404
