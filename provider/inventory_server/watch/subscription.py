"""
Subscriptions - one client's live view of a filtered collection.

A Subscription moves through an explicit state machine:

    NEGOTIATING ──▶ SNAPSHOTTING ──commit(revision)──▶ STREAMING
         │                │                               │
         └────────────────┴───────────────┬───────────────┘
                                          ▼
                                        CLOSED

commit() is the single transition into STREAMING and fixes the snapshot
revision; from then on only changes above it are considered.

Delivery order seen by the consumer of events():
    1. One Created event per snapshot record (sequence = snapshot revision)
    2. One Parity event (sequence = snapshot revision)
    3. Deltas matching the filter, strictly increasing sequence

Invariants:
    - offer() never blocks; a full queue closes the subscription with
      SlowConsumer
    - A change at or below the horizon is never delivered twice
    - close() is idempotent and always wakes the consumer
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional

from ..errors import SlowConsumer
from ..model import MATCH_ALL, ListFilter, ModelRecord
from ..store import Change

logger = logging.getLogger(__name__)


class SubscriptionState(str, Enum):
    NEGOTIATING = "Negotiating"
    SNAPSHOTTING = "Snapshotting"
    STREAMING = "Streaming"
    CLOSED = "Closed"


class EventType(str, Enum):
    """Type of a delivered watch event."""

    CREATED = "Created"
    UPDATED = "Updated"
    DELETED = "Deleted"
    # Marks the end of the snapshot.
    PARITY = "Parity"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class WatchEvent:
    """A message delivered to a watcher.

    Attributes:
        sequence: Store revision of the change (snapshot revision for
            snapshot and parity events)
        type: Event type
        kind: Record kind
        id: Record ID (None for parity)
        resource: Post-event record; None for Deleted and Parity
        synthetic: The type reflects a filter transition rather than the
            store action (e.g. an update that left the filter is Deleted)
    """

    sequence: int
    type: EventType
    kind: str
    id: Optional[str] = None
    resource: Optional[ModelRecord] = None
    synthetic: bool = False

    def to_dict(self, shape: Optional[Callable[[ModelRecord], Any]] = None) -> Dict[str, Any]:
        """Wire form ``{sequence, type, kind, id, resource}``.

        Args:
            shape: Renders the resource; plain dict form if None
        """
        if self.resource is not None:
            resource = shape(self.resource) if shape else self.resource.to_dict()
        elif self.id is not None:
            resource = {"kind": self.kind, "id": self.id}
        else:
            resource = None
        return {
            "sequence": self.sequence,
            "type": self.type.value,
            "kind": self.kind,
            "id": self.id,
            "resource": resource,
        }


_CLOSED = object()


class Subscription:
    """A watcher's snapshot plus bounded delta queue.

    Attributes:
        id: Subscription ID (unique per manager)
        kind: Watched kind
        filter: Filter applied to snapshot and deltas
        queue_size: Maximum queued deltas before SlowConsumer
        snapshot: Records valid at the snapshot revision; released once
            the Parity event is handed out
        revision: Snapshot revision (set by commit)
        cursor: Sequence of the last event handed to the consumer
        reason: Why the subscription closed (None for a normal close)
    """

    def __init__(
        self,
        subscription_id: int,
        kind: str,
        flt: ListFilter | None = None,
        queue_size: int = 1000,
        on_close: Callable[[Subscription], None] | None = None,
    ) -> None:
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")
        self.id = subscription_id
        self.kind = str(kind)
        self.filter = flt or MATCH_ALL
        self.queue_size = queue_size
        self.snapshot: List[ModelRecord] = []
        self.revision: Optional[int] = None
        self.cursor: Optional[int] = None
        self.reason: Optional[Exception] = None
        self.created_at = time.time()
        self.delivered = 0
        self._horizon = 0
        self._state = SubscriptionState.NEGOTIATING
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._on_close = on_close
        self._consumed = False

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is SubscriptionState.CLOSED

    @property
    def pending(self) -> int:
        """Deltas queued but not yet consumed."""
        if self.closed:
            return 0
        return self._queue.qsize()

    def begin_snapshot(self) -> None:
        """Move from NEGOTIATING to SNAPSHOTTING."""
        self._transition(SubscriptionState.NEGOTIATING, SubscriptionState.SNAPSHOTTING)

    def commit(
        self,
        records: Iterable[ModelRecord],
        revision: int,
        backlog: Iterable[Change] = (),
    ) -> None:
        """Fix the snapshot and start streaming.

        Args:
            records: Snapshot records
            revision: Store revision the snapshot reflects
            backlog: Changes after ``revision`` already dispatched to other
                subscribers; queued before anything else

        Raises:
            RuntimeError: If not SNAPSHOTTING
        """
        self._transition(SubscriptionState.SNAPSHOTTING, SubscriptionState.STREAMING)
        self.snapshot = list(records)
        self.revision = revision
        self._horizon = revision
        for change in backlog:
            self.offer(change)
            if self.closed:
                break

    def _transition(self, expected: SubscriptionState, target: SubscriptionState) -> None:
        if self._state is not expected:
            raise RuntimeError(
                f"Subscription {self.id}: cannot move to {target.value} from {self._state.value}"
            )
        self._state = target

    def translate(self, change: Change) -> Optional[WatchEvent]:
        """Turn a store change into the event this watcher should see.

        Returns:
            The event, or None if neither side of the change matches
        """
        was = change.previous is not None and self.filter.matches(change.previous)
        now = change.record is not None and self.filter.matches(change.record)
        if now:
            event_type = EventType.UPDATED if was else EventType.CREATED
            resource = change.record
        elif was:
            event_type = EventType.DELETED
            resource = None
        else:
            return None
        return WatchEvent(
            sequence=change.revision,
            type=event_type,
            kind=change.kind,
            id=change.id,
            resource=resource,
            synthetic=event_type.value != change.action.value,
        )

    def offer(self, change: Change) -> bool:
        """Queue a change without blocking.

        Returns:
            True if an event was queued
        """
        if self._state is not SubscriptionState.STREAMING:
            return False
        if change.revision <= self._horizon:
            return False
        self._horizon = change.revision
        event = self.translate(change)
        if event is None:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Watch consumer too slow, closing subscription",
                extra={"subscription_id": self.id, "kind": self.kind, "queue_size": self.queue_size},
            )
            self.close(SlowConsumer(self.id, self.queue_size))
            return False
        return True

    async def events(self) -> AsyncIterator[WatchEvent]:
        """Yield snapshot, parity and deltas until the subscription closes.

        Raises:
            RuntimeError: If not yet committed, or consumed twice
        """
        if self._consumed:
            raise RuntimeError(f"Subscription {self.id} events already consumed")
        if self.revision is None:
            raise RuntimeError(f"Subscription {self.id} has no committed snapshot")
        self._consumed = True

        revision = self.revision
        for record in self.snapshot:
            if self.closed:
                return
            yield WatchEvent(
                sequence=revision,
                type=EventType.CREATED,
                kind=record.kind,
                id=record.id,
                resource=record,
            )
        if self.closed:
            return
        self.snapshot = []
        self.cursor = revision
        yield WatchEvent(sequence=revision, type=EventType.PARITY, kind=self.kind)

        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            self.cursor = item.sequence
            self.delivered += 1
            yield item

    def close(self, reason: Exception | None = None) -> None:
        """Close, release queued events and deregister.

        Idempotent; only the first reason is kept.
        """
        if self._state is SubscriptionState.CLOSED:
            return
        self._state = SubscriptionState.CLOSED
        self.reason = reason
        self.snapshot = []
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
        self._queue.put_nowait(_CLOSED)

        logger.info(
            "Subscription closed",
            extra={
                "subscription_id": self.id,
                "kind": self.kind,
                "delivered": self.delivered,
                "reason": reason.__class__.__name__ if reason else None,
            },
        )
        if self._on_close is not None:
            self._on_close(self)

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "filter": str(self.filter),
            "state": self._state.value,
            "revision": self.revision,
            "cursor": self.cursor,
            "pending": self.pending,
            "delivered": self.delivered,
        }

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, kind={self.kind!r}, state={self._state.value})"
