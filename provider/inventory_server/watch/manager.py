"""
Watch manager - subscription registry and change fan-out.

The manager owns one background task that follows the store journal and
offers each change to every subscription registered for the change's kind.

No-gap handoff:
    The distribution task records, under the registry lock, the revision it
    is dispatching together with the member set it dispatches to. When a
    subscription commits its snapshot (same lock), every change between the
    snapshot revision and that dispatched revision is backfilled from the
    journal before the subscription joins the registry. Later changes reach
    it through dispatch. The subscription's horizon drops anything already
    covered, so nothing is lost and nothing repeats.

Invariants:
    - The registry lock guards membership only; offers happen outside it
    - offer() never blocks, so one slow watcher cannot stall the others
    - Closing a subscription always removes it from the registry

How to change safely:
    - Never await while holding the registry lock
    - Keep backfill and registration in one critical section
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
import time
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Set

from ..errors import JournalCompactedError, StoreError, UnsupportedKind
from ..model import Kind, ListFilter
from ..store import InventoryStore
from .source import EventSource, StoreEventSource
from .subscription import Subscription

logger = logging.getLogger(__name__)


class WatchManager:
    """Registers subscriptions and fans out store changes.

    Thread safety:
        Runs on one event loop. The registry is guarded by a reentrant
        lock, so a subscription closed while committing can deregister
        itself without deadlocking.

    Example:
        >>> manager = WatchManager(store)
        >>> await manager.start()
        >>> sub = await manager.subscribe("Host", ListFilter.where(cluster="c1"))
        >>> async for event in sub.events():
        ...     print(event.type, event.id)
    """

    def __init__(
        self,
        store: InventoryStore,
        kinds: Optional[Iterable[str]] = None,
        queue_size: int = 1000,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Inventory store to watch
            kinds: Kinds that get an event source (all known kinds if None)
            queue_size: Default per-subscription queue size
        """
        self.store = store
        self.queue_size = queue_size
        self._sources: Dict[str, EventSource] = {
            str(kind): StoreEventSource(store, kind) for kind in (kinds or list(Kind))
        }
        self._subscriptions: Dict[str, Set[Subscription]] = defaultdict(set)
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._position = 0
        self._dispatched = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def position(self) -> int:
        """Revision of the last change handed to subscribers."""
        return self._position

    def kinds(self) -> List[str]:
        return sorted(self._sources)

    def add_source(self, source: EventSource) -> None:
        """Register (or replace) the event source of a kind."""
        self._sources[str(source.kind)] = source

    async def start(self) -> None:
        """Start the distribution task."""
        if self._running:
            logger.warning("Watch manager already running")
            return
        self._position = self.store.revision
        self._running = True
        self._task = asyncio.create_task(self._distribute())
        logger.info(
            "Watch manager started",
            extra={"revision": self._position, "kinds": self.kinds()},
        )

    async def stop(self) -> None:
        """Stop distributing and close every subscription."""
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        for subscription in self.subscriptions():
            subscription.close()
        logger.info("Watch manager stopped")

    async def subscribe(
        self,
        kind: str,
        flt: ListFilter | None = None,
        queue_size: int | None = None,
    ) -> Subscription:
        """Create a subscription: snapshot now, deltas after.

        Args:
            kind: Kind to watch
            flt: Filter for snapshot and deltas
            queue_size: Override of the default queue size

        Returns:
            A STREAMING (or, if the backlog alone overflowed, CLOSED)
            subscription

        Raises:
            UnsupportedKind: If no event source exists for ``kind``
            StoreError: If the snapshot read fails or the manager is stopped
        """
        source = self._sources.get(str(kind))
        if source is None:
            raise UnsupportedKind(str(kind))
        if not self._running:
            raise StoreError("Watch manager is not running")

        subscription = Subscription(
            next(self._ids),
            source.kind,
            flt,
            queue_size=queue_size or self.queue_size,
            on_close=self._unregister,
        )
        subscription.begin_snapshot()
        try:
            records, revision = await source.snapshot(subscription.filter)
        except StoreError as e:
            subscription.close(e)
            raise

        with self._lock:
            if not self._running:
                subscription.close()
                raise StoreError("Watch manager is not running")
            try:
                backlog = [
                    change for change in source.since(revision) if change.revision <= self._position
                ]
            except JournalCompactedError as e:
                subscription.close(e)
                raise
            subscription.commit(records, revision, backlog)
            if not subscription.closed:
                self._subscriptions[subscription.kind].add(subscription)

        logger.info(
            "Subscription opened",
            extra={
                "subscription_id": subscription.id,
                "kind": subscription.kind,
                "filter": str(subscription.filter),
                "revision": revision,
                "snapshot": len(records),
                "backlog": len(backlog),
            },
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Close a subscription (idempotent)."""
        subscription.close()

    def _unregister(self, subscription: Subscription) -> None:
        with self._lock:
            members = self._subscriptions.get(subscription.kind)
            if members is not None:
                members.discard(subscription)
                if not members:
                    del self._subscriptions[subscription.kind]

    def subscriptions(self, kind: str | None = None) -> List[Subscription]:
        """Registered subscriptions, optionally of one kind."""
        with self._lock:
            if kind is not None:
                return list(self._subscriptions.get(str(kind), ()))
            return [sub for members in self._subscriptions.values() for sub in members]

    async def _distribute(self) -> None:
        """Follow the journal and offer every change to its subscribers."""
        while self._running:
            try:
                async for change in self.store.journal.follow(self._position):
                    with self._lock:
                        self._position = change.revision
                        targets = tuple(self._subscriptions.get(change.kind, ()))
                    for subscription in targets:
                        subscription.offer(change)
                    self._dispatched.set()
                return
            except JournalCompactedError as e:
                logger.error(
                    f"Watch distribution fell behind the journal: {e}",
                    extra={"position": self._position},
                )
                with self._lock:
                    self._position = self.store.journal.revision
                for subscription in self.subscriptions():
                    subscription.close(e)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Watch distribution error: {e}", exc_info=True)
                for subscription in self.subscriptions():
                    subscription.close(StoreError(f"Watch distribution failed: {e}"))
                raise

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            counts = {kind: len(members) for kind, members in self._subscriptions.items()}
        return {
            "running": self._running,
            "position": self._position,
            "subscriptions": sum(counts.values()),
            "by_kind": counts,
        }

    # Testing helpers

    async def wait_dispatched(self, revision: int, timeout: float = 5.0) -> bool:
        """Wait until the change at ``revision`` has been dispatched.

        Returns:
            True if dispatched, False on timeout
        """
        deadline = time.monotonic() + timeout
        while self._position < revision:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self._dispatched.clear()
            try:
                await asyncio.wait_for(self._dispatched.wait(), timeout=min(remaining, 0.1))
            except asyncio.TimeoutError:
                pass
        return True
