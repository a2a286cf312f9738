"""Tests for store configuration."""

import pytest

from src.chatdb import ChatDBConfig


def test_defaults():
    config = ChatDBConfig()

    assert config.message_prefix == 'TDB:'
    assert config.batch_delay == 0.1
    assert config.max_retries == 3
    assert config.retry_delay == 1.0
    assert config.max_payload_size is None
    assert config.tombstones is False


def test_from_env(monkeypatch):
    monkeypatch.setenv('CHATDB_PREFIX', 'APP:')
    monkeypatch.setenv('CHATDB_BATCH_DELAY', '0.5')
    monkeypatch.setenv('CHATDB_MAX_RETRIES', '5')
    monkeypatch.setenv('CHATDB_RETRY_DELAY', '2')
    monkeypatch.setenv('CHATDB_MAX_PAYLOAD_SIZE', '1900')
    monkeypatch.setenv('CHATDB_HISTORY_LIMIT', '500')
    monkeypatch.setenv('CHATDB_INDEX_FILE', 'data/index.json')
    monkeypatch.setenv('CHATDB_TOMBSTONES', 'yes')

    config = ChatDBConfig.from_env()

    assert config.message_prefix == 'APP:'
    assert config.batch_delay == 0.5
    assert config.max_retries == 5
    assert config.retry_delay == 2.0
    assert config.max_payload_size == 1900
    assert config.history_limit == 500
    assert config.index_file_path == 'data/index.json'
    assert config.tombstones is True


def test_from_env_without_variables(monkeypatch):
    for name in ('CHATDB_PREFIX', 'CHATDB_MAX_PAYLOAD_SIZE', 'CHATDB_INDEX_FILE', 'CHATDB_TOMBSTONES'):
        monkeypatch.delenv(name, raising=False)

    config = ChatDBConfig.from_env()

    assert config.message_prefix == 'TDB:'
    assert config.max_payload_size is None
    assert config.index_file_path is None
    assert config.tombstones is False


@pytest.mark.parametrize(
    "kwargs",
    [
        {'message_prefix': ''},
        {'max_retries': 0},
        {'batch_delay': -1},
        {'retry_delay': -0.5},
    ],
)
def test_invalid_values_are_rejected(kwargs):
    with pytest.raises(ValueError):
        ChatDBConfig(**kwargs)
