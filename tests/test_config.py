"""Tests for configuration loading."""

import json
from pathlib import Path

import pytest

from peerdrop.config import Config, load_config
from peerdrop.file.chunker import CHUNK_SIZE


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Keep the developer's environment and .env out of these tests."""
    for key in ('PEERDROP_PORT', 'PEERDROP_DATA_DIR', 'PEERDROP_CHUNK_DELAY',
                'PEERDROP_DURABLE_MAX_BYTES', 'PEERDROP_LOG_LEVEL'):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


class TestConfig:
    """Test Config defaults and derived paths."""

    def test_defaults(self):
        config = Config()

        assert config.port == 8469
        assert config.api_port == 8080
        assert config.chunk_size == CHUNK_SIZE
        assert config.chunk_delay == 0.01
        assert config.durable_max_bytes is None

    def test_derived_paths(self):
        config = Config(data_dir=Path('/data'))

        assert config.downloads == Path('/data/downloads')
        assert config.store_db_path == Path('/data/store.db')
        assert config.store_index_path == Path('/data/index.json')

    def test_download_dir_override(self):
        config = Config(data_dir=Path('/data'), download_dir=Path('/incoming'))
        assert config.downloads == Path('/incoming')

    def test_save_and_load(self, tmp_path):
        path = tmp_path / 'config.json'
        Config(port=9000, durable_max_bytes=1024, data_dir=tmp_path / 'd').save(path)

        loaded = Config.from_file(path)

        assert loaded.port == 9000
        assert loaded.durable_max_bytes == 1024
        assert loaded.data_dir == tmp_path / 'd'

    def test_missing_file_gives_defaults(self, tmp_path):
        assert Config.from_file(tmp_path / 'nope.json') == Config()


class TestLoadConfig:
    """Test file and environment precedence."""

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({'port': 9000, 'api_port': 9001}))
        monkeypatch.setenv('PEERDROP_PORT', '9100')

        config = load_config(path)

        assert config.port == 9100
        assert config.api_port == 9001

    def test_env_only(self, monkeypatch):
        monkeypatch.setenv('PEERDROP_DATA_DIR', '/srv/peerdrop')
        monkeypatch.setenv('PEERDROP_DURABLE_MAX_BYTES', '2048')
        monkeypatch.setenv('PEERDROP_CHUNK_DELAY', '0')

        config = load_config()

        assert config.data_dir == Path('/srv/peerdrop')
        assert config.durable_max_bytes == 2048
        assert config.chunk_delay == 0.0
