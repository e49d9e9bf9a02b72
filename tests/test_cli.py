"""Tests for the store-facing CLI commands."""

import json

import pytest
from click.testing import CliRunner

from peerdrop.cli import cli, format_size
from peerdrop.config import Config


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / 'data'


def test_format_size():
    assert format_size(512) == "512.0 B"
    assert format_size(50_000) == "48.8 KB"
    assert format_size(3 * 1024 * 1024) == "3.0 MB"


def test_list_empty_store(runner, data_dir):
    result = runner.invoke(cli, ['--data-dir', str(data_dir), 'list'])

    assert result.exit_code == 0
    assert 'No stored files' in result.output


def test_share_then_list(runner, data_dir, sample_file):
    shared = runner.invoke(cli, ['--data-dir', str(data_dir), 'share', '--no-serve', str(sample_file)])
    assert shared.exit_code == 0
    assert '/download' in shared.output

    listed = runner.invoke(cli, ['--data-dir', str(data_dir), 'list'])
    assert listed.exit_code == 0
    assert 'test.txt' in listed.output


def test_delete_unknown(runner, data_dir):
    result = runner.invoke(cli, ['--data-dir', str(data_dir), 'delete', 'missing'])

    assert result.exit_code == 1
    assert 'No stored file' in result.output


def test_send_requires_files(runner):
    result = runner.invoke(cli, ['send', '127.0.0.1:8469'])
    assert result.exit_code != 0


def test_config_example_is_loadable(runner, tmp_path):
    result = runner.invoke(cli, ['config', '--example'])
    assert result.exit_code == 0

    example = json.loads(result.output)
    assert set(example) == set(Config().to_dict())

    path = tmp_path / 'config.json'
    path.write_text(result.output)
    assert Config.from_file(path).api_port == example['api_port']


def test_config_shows_overrides(runner, data_dir):
    result = runner.invoke(cli, ['--data-dir', str(data_dir), '--port', '9100', 'config'])

    assert result.exit_code == 0
    shown = json.loads(result.output)
    assert shown['port'] == 9100
    assert shown['data_dir'] == str(data_dir)
