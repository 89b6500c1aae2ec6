"""
Unit tests for environment configuration.

Tests cover:
- Defaults
- Loading every section from environment variables
- Validation failures
"""

import tempfile

import pytest

from provider.inventory_server.config import (
    HttpConfig,
    ServerConfig,
    StorageConfig,
    WatchConfig,
)


class TestServerConfig:
    """Tests for ServerConfig."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    def test_defaults(self):
        config = ServerConfig()

        assert config.http.port == 8080
        assert config.http.watch_header == "X-Watch"
        assert config.watch.queue_size == 1000
        assert config.observability.log_format == "json"
        assert "Host" in config.watch.resolved_kinds()

    def test_from_env(self, monkeypatch, data_dir):
        monkeypatch.setenv("HTTP_PORT", "9000")
        monkeypatch.setenv("HTTP_LINK_PREFIX", "/providers/p1/")
        monkeypatch.setenv("HTTP_CORS_ORIGINS", "https://a.example, https://b.example")
        monkeypatch.setenv("WATCH_QUEUE_SIZE", "50")
        monkeypatch.setenv("WATCH_KINDS", "host,vm")
        monkeypatch.setenv("DATA_DIR", data_dir)
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("LOG_FORMAT", "text")

        config = ServerConfig.from_env()

        assert config.http.port == 9000
        assert config.http.link_prefix == "/providers/p1"
        assert config.http.cors_origins == ("https://a.example", "https://b.example")
        assert config.watch.queue_size == 50
        assert config.watch.resolved_kinds() == ("Host", "VM")
        assert config.storage.data_dir == data_dir
        assert config.storage.wal_mode is False
        assert config.storage.seed_file is None
        assert config.observability.log_format == "text"

    @pytest.mark.parametrize(
        "config",
        [
            ServerConfig(http=HttpConfig(port=0)),
            ServerConfig(http=HttpConfig(watch_header="")),
            ServerConfig(watch=WatchConfig(queue_size=0)),
            ServerConfig(watch=WatchConfig(journal_retention=0)),
            ServerConfig(watch=WatchConfig(heartbeat_seconds=-1)),
            ServerConfig(watch=WatchConfig(kinds=("Switch",))),
            ServerConfig(storage=StorageConfig(seed_file="/nonexistent/seed.json")),
        ],
    )
    def test_validate_rejects(self, config):
        with pytest.raises(ValueError):
            config.validate()

    def test_invalid_log_format_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "xml")

        with pytest.raises(ValueError):
            ServerConfig.from_env()
