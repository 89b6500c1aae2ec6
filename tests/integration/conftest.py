"""
Integration test fixtures for the inventory server.

Each test gets a fresh SQLite store, a started watch manager and an
aiohttp test client bound to the full application.
"""

import tempfile

import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from provider.inventory_server.api import InventoryService, create_http_app
from provider.inventory_server.config import HttpConfig, WatchConfig
from provider.inventory_server.store import InventoryStore
from provider.inventory_server.watch import WatchManager

LINK_PREFIX = "/providers/p1"


@pytest_asyncio.fixture
async def store():
    """Initialized store in a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = InventoryStore(tmpdir, wal_mode=False)
        await store.initialize()
        yield store
        await store.close()


@pytest_asyncio.fixture
async def manager(store):
    """Started watch manager; VMs cannot be watched."""
    manager = WatchManager(store, kinds=["DataCenter", "Cluster", "Host"], queue_size=1)
    await manager.start()
    yield manager
    await manager.stop()


@pytest_asyncio.fixture
async def service(store, manager):
    return InventoryService(store, manager, link_prefix=LINK_PREFIX)


@pytest_asyncio.fixture
async def client(service):
    """HTTP client for the full application."""
    app = create_http_app(
        service,
        HttpConfig(link_prefix=LINK_PREFIX, cors_origins=("*",)),
        WatchConfig(heartbeat_seconds=0),
    )
    async with TestClient(TestServer(app)) as client:
        yield client


@pytest_asyncio.fixture
async def inventory(store):
    """dc1 -> c1 -> {h1, h2, v1}, plus c2 -> h3 and a folder tree."""
    await store.create("DataCenter", "dc1", name="Main")
    await store.create("Cluster", "c1", name="prod", fields={"datacenter": "dc1"})
    await store.create("Cluster", "c2", name="dev", fields={"datacenter": "dc1"})
    await store.create("Host", "h1", name="esx-01", fields={"cluster": "c1", "cpuCores": 16})
    await store.create("Host", "h2", name="esx-02", fields={"cluster": "c1", "cpuCores": 8})
    await store.create("Host", "h3", name="esx-03", fields={"cluster": "c2", "cpuCores": 8})
    await store.create("Folder", "vmroot", fields={"datacenter": "dc1", "folder": ""})
    await store.create(
        "VM",
        "v1",
        name="web",
        fields={"cluster": "c1", "host": "h1", "folder": "vmroot", "powerState": "up"},
    )
    return store
