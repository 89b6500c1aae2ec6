"""
Integration tests for the server orchestrator.

Tests cover:
- Startup order with a seed file
- Graceful shutdown
- Logging setup
"""

import asyncio
import json
import logging
import tempfile
from pathlib import Path

import json_log_formatter
import pytest

from provider.inventory_server.config import (
    HttpConfig,
    ObservabilityConfig,
    ServerConfig,
    StorageConfig,
)
from provider.inventory_server.main import Server, setup_logging


@pytest.fixture
def data_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def seed_file(data_dir):
    path = Path(data_dir) / "seed.json"
    path.write_text(
        json.dumps(
            {
                "DataCenter": [{"id": "dc1", "name": "Main"}],
                "Cluster": [{"id": "c1", "name": "prod", "datacenter": "dc1"}],
            }
        )
    )
    return str(path)


async def wait_running(server, task, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not server._running:
        if task.done():
            task.result()
        assert asyncio.get_running_loop().time() < deadline
        await asyncio.sleep(0.01)


class TestServer:
    """Tests for Server start/stop."""

    @pytest.mark.asyncio
    async def test_start_seeded_and_stop(self, data_dir, seed_file):
        config = ServerConfig(
            http=HttpConfig(host="127.0.0.1", port=0),
            storage=StorageConfig(data_dir=f"{data_dir}/db", wal_mode=False, seed_file=seed_file),
        )
        server = Server(config)
        task = asyncio.create_task(server.start())
        await wait_running(server, task)

        assert await server.store.count() == 2
        assert server.manager.running
        assert server.manager.position == server.store.revision
        subscription = await server.manager.subscribe("Cluster")

        server.request_shutdown()
        await asyncio.wait_for(task, timeout=2)
        await server.stop()

        assert subscription.closed
        assert subscription.reason is None
        assert not server.manager.running

    @pytest.mark.asyncio
    async def test_startup_failure_cleans_up(self, data_dir):
        config = ServerConfig(
            http=HttpConfig(host="127.0.0.1", port=0),
            storage=StorageConfig(
                data_dir=data_dir,
                wal_mode=False,
                seed_file=f"{data_dir}/missing.json",
            ),
        )
        server = Server(config)

        with pytest.raises(Exception):
            await server.start()

        assert not server._running


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        setup_logging(ServerConfig())

        root = logging.getLogger()
        assert root.level == logging.INFO
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("aiohttp.access").level == logging.WARNING

    def test_text_format(self):
        setup_logging(
            ServerConfig(observability=ObservabilityConfig(log_level="debug", log_format="text"))
        )

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
