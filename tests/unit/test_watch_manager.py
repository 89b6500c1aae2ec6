"""
Unit tests for the watch manager.

Tests cover:
- Snapshot then stream with no gap and no duplicate
- Filtered fan-out across kinds and subscribers
- Slow consumer isolation
- Registration, teardown and shutdown
- Journal compaction at dispatch and at subscribe
"""

import asyncio
import tempfile

import pytest
import pytest_asyncio

from provider.inventory_server.errors import (
    JournalCompactedError,
    SlowConsumer,
    StoreError,
    UnsupportedKind,
)
from provider.inventory_server.model import ListFilter
from provider.inventory_server.store import InventoryStore
from provider.inventory_server.watch import (
    EventType,
    StoreEventSource,
    SubscriptionState,
    WatchManager,
)


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
    """Started watch manager over the store."""
    manager = WatchManager(store, queue_size=100)
    await manager.start()
    yield manager
    await manager.stop()


class DelayedSource(StoreEventSource):
    """Source whose snapshot is overtaken by dispatched changes before it returns."""

    def __init__(self, store, kind, manager, late_ids):
        super().__init__(store, kind)
        self.manager = manager
        self.late_ids = late_ids

    async def snapshot(self, flt):
        result = await super().snapshot(flt)
        for record_id in self.late_ids:
            change = await self.store.create(self.kind, record_id)
        assert await self.manager.wait_dispatched(change.revision)
        return result


async def take(subscription, count, timeout=2.0):
    """Collect ``count`` events from a subscription."""
    events = []

    async def collect():
        async for event in subscription.events():
            events.append(event)
            if len(events) == count:
                return

    await asyncio.wait_for(collect(), timeout=timeout)
    return events


class TestSnapshotThenStream:
    """Tests for snapshot/stream consistency."""

    @pytest.mark.asyncio
    async def test_created_after_snapshot(self, store, manager):
        """h1 in the snapshot; h3 arrives as Created after Parity."""
        await store.create("Host", "h1", fields={"cluster": "c1"})

        sub = await manager.subscribe("Host", ListFilter.where(cluster="c1"))
        change = await store.create("Host", "h3", fields={"cluster": "c1"})

        events = await take(sub, 3)

        assert [(e.type, e.id) for e in events] == [
            (EventType.CREATED, "h1"),
            (EventType.PARITY, None),
            (EventType.CREATED, "h3"),
        ]
        assert events[0].sequence == events[1].sequence == sub.revision == 1
        assert events[2].sequence == change.revision > sub.revision

    @pytest.mark.asyncio
    async def test_no_gap_for_undispatched_changes(self, store, manager):
        """Changes in the snapshot but not yet dispatched are not delivered again."""
        for i in range(1, 5):
            await store.create("Host", f"h{i}")
        sub = await manager.subscribe("Host")
        late = await store.create("Host", "h5")

        events = await take(sub, 6)

        assert sub.revision == 4
        assert [(e.type, e.id) for e in events] == [
            (EventType.CREATED, "h1"),
            (EventType.CREATED, "h2"),
            (EventType.CREATED, "h3"),
            (EventType.CREATED, "h4"),
            (EventType.PARITY, None),
            (EventType.CREATED, "h5"),
        ]
        assert events[-1].sequence == late.revision

    @pytest.mark.asyncio
    async def test_backfill_dispatched_changes(self, store, manager):
        """Changes dispatched between snapshot read and registration are backfilled."""
        await store.create("Host", "h1")
        manager.add_source(DelayedSource(store, "Host", manager, ["h2"]))

        sub = await manager.subscribe("Host")
        await store.create("Host", "h3")

        events = await take(sub, 4)

        assert [(e.type, e.id, e.sequence) for e in events] == [
            (EventType.CREATED, "h1", 1),
            (EventType.PARITY, None, 1),
            (EventType.CREATED, "h2", 2),
            (EventType.CREATED, "h3", 3),
        ]

    @pytest.mark.asyncio
    async def test_sequences_strictly_increase(self, store, manager):
        sub = await manager.subscribe("Host")
        for i in range(10):
            await store.create("Host", f"h{i}")
        await store.update("Host", "h3", name="renamed")
        await store.delete("Host", "h4")

        events = await take(sub, 13)
        sequences = [e.sequence for e in events[1:]]

        assert events[0].type is EventType.PARITY
        assert sequences == sorted(set(sequences))
        assert events[-2].type is EventType.UPDATED
        assert events[-1].type is EventType.DELETED


class TestFanOut:
    """Tests for dispatch across subscriptions."""

    @pytest.mark.asyncio
    async def test_filter_transitions(self, store, manager):
        """Moving a host between clusters is Created/Deleted for filtered watchers."""
        await store.create("Host", "h1", fields={"cluster": "c2"})
        sub = await manager.subscribe("Host", ListFilter.where(cluster="c1"))

        await store.update("Host", "h1", fields={"cluster": "c1"})
        await store.update("Host", "h1", fields={"cpuCores": 4})
        await store.update("Host", "h1", fields={"cluster": "c2"})
        await store.update("Host", "h1", fields={"cpuCores": 8})
        await store.create("Host", "h2", fields={"cluster": "c1"})

        events = await take(sub, 5)

        assert [(e.type, e.id) for e in events] == [
            (EventType.PARITY, None),
            (EventType.CREATED, "h1"),
            (EventType.UPDATED, "h1"),
            (EventType.DELETED, "h1"),
            (EventType.CREATED, "h2"),
        ]

    @pytest.mark.asyncio
    async def test_kinds_are_isolated(self, store, manager):
        hosts = await manager.subscribe("Host")
        vms = await manager.subscribe("VM")

        await store.create("VM", "v1")
        await store.create("Host", "h1")

        host_events = await take(hosts, 2)
        vm_events = await take(vms, 2)

        assert host_events[1].id == "h1"
        assert vm_events[1].id == "v1"

    @pytest.mark.asyncio
    async def test_many_subscribers_same_kind(self, store, manager):
        subs = [await manager.subscribe("Host") for _ in range(3)]
        await store.create("Host", "h1")

        for sub in subs:
            events = await take(sub, 2)
            assert events[1].id == "h1"
        assert len(manager.subscriptions("Host")) == 3


class TestBackpressure:
    """Tests for slow consumer handling."""

    @pytest.mark.asyncio
    async def test_slow_consumer_isolated(self, store, manager):
        """A full queue closes only that subscription; others keep streaming."""
        slow = await manager.subscribe("Host", queue_size=2)
        fast = await manager.subscribe("Host")

        changes = [await store.create("Host", f"h{i}") for i in range(5)]
        assert await manager.wait_dispatched(changes[-1].revision)

        assert slow.closed
        assert isinstance(slow.reason, SlowConsumer)
        assert slow not in manager.subscriptions()

        events = await take(fast, 6)
        assert [e.id for e in events[1:]] == [c.id for c in changes]
        assert fast.state is SubscriptionState.STREAMING

    @pytest.mark.asyncio
    async def test_backlog_overflow(self, store, manager):
        """A backlog larger than the queue closes the subscription before registration."""
        manager.add_source(DelayedSource(store, "Host", manager, ["h1", "h2", "h3"]))

        sub = await manager.subscribe("Host", queue_size=2)

        assert sub.closed
        assert isinstance(sub.reason, SlowConsumer)
        assert manager.subscriptions() == []


class TestLifecycle:
    """Tests for registration and teardown."""

    @pytest.mark.asyncio
    async def test_unsupported_kind(self, manager):
        with pytest.raises(UnsupportedKind):
            await manager.subscribe("Switch")

    @pytest.mark.asyncio
    async def test_configured_kinds_only(self, store):
        manager = WatchManager(store, kinds=["Host"])
        await manager.start()
        try:
            await manager.subscribe("Host")
            with pytest.raises(UnsupportedKind):
                await manager.subscribe("VM")
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_subscribe_requires_running(self, store):
        manager = WatchManager(store)

        with pytest.raises(StoreError):
            await manager.subscribe("Host")

    @pytest.mark.asyncio
    async def test_snapshot_failure(self, store, manager):
        """A failed snapshot read raises and registers nothing."""

        async def broken(flt):
            raise StoreError("disk gone")

        manager._sources["Host"].snapshot = broken

        with pytest.raises(StoreError):
            await manager.subscribe("Host")
        assert manager.subscriptions() == []

    @pytest.mark.asyncio
    async def test_unsubscribe_idempotent(self, store, manager):
        sub = await manager.subscribe("Host")
        assert manager.stats()["subscriptions"] == 1

        manager.unsubscribe(sub)
        manager.unsubscribe(sub)
        sub.close()

        assert sub.closed
        assert sub.reason is None
        assert manager.subscriptions() == []
        assert manager.stats()["by_kind"] == {}

        # Dispatch to a closed subscription is a no-op
        change = await store.create("Host", "h1")
        assert await manager.wait_dispatched(change.revision)

    @pytest.mark.asyncio
    async def test_stop_closes_everything(self, store, manager):
        subs = [await manager.subscribe("Host"), await manager.subscribe("VM")]

        await manager.stop()

        assert all(sub.closed for sub in subs)
        assert all(sub.reason is None for sub in subs)
        assert not manager.running
        with pytest.raises(StoreError):
            await manager.subscribe("Host")

    @pytest.mark.asyncio
    async def test_wait_dispatched_timeout(self, manager):
        assert await manager.wait_dispatched(100, timeout=0.1) is False


class TestCompaction:
    """Tests for a journal that no longer retains what the manager needs."""

    @pytest_asyncio.fixture
    async def small_store(self):
        """Store whose journal keeps only the last two changes."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = InventoryStore(tmpdir, wal_mode=False, journal_retention=2)
            await store.initialize()
            yield store
            await store.close()

    @pytest_asyncio.fixture
    async def small_manager(self, small_store):
        manager = WatchManager(small_store, queue_size=100)
        await manager.start()
        yield manager
        await manager.stop()

    @pytest.mark.asyncio
    async def test_dispatch_falls_behind(self, small_store, small_manager):
        """Every subscription closes; dispatch resumes from the journal head."""
        sub = await small_manager.subscribe("Host")

        # No yield between commits, so the dispatcher misses three of five
        for i in range(5):
            await small_store.create("Host", f"h{i}")
        assert await small_manager.wait_dispatched(5)

        assert sub.closed
        assert isinstance(sub.reason, JournalCompactedError)
        assert small_manager.subscriptions() == []
        assert small_manager.position == small_store.journal.revision
        assert small_manager.running

        fresh = await small_manager.subscribe("Host")
        late = await small_store.create("Host", "late")
        events = await take(fresh, 7)

        assert [e.id for e in events[:5]] == [f"h{i}" for i in range(5)]
        assert events[5].type is EventType.PARITY
        assert (events[6].type, events[6].id) == (EventType.CREATED, "late")
        assert events[6].sequence == late.revision

    @pytest.mark.asyncio
    async def test_backlog_compacted_at_subscribe(self, small_store, small_manager):
        """subscribe raises and registers nothing when since(R) is gone."""
        await small_store.create("Host", "h0")
        assert await small_manager.wait_dispatched(1)
        small_manager.add_source(
            DelayedSource(small_store, "Host", small_manager, ["h1", "h2", "h3"])
        )

        with pytest.raises(JournalCompactedError):
            await small_manager.subscribe("Host")

        assert small_manager.subscriptions() == []
        assert small_manager.stats()["by_kind"] == {}
