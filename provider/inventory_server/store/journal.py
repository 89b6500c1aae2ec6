"""
In-memory change journal for the inventory store.

Every store mutation appends exactly one Change, stamped with the store
revision it produced. The journal is the feed that watches are built on:
- since(revision) returns the retained changes after a revision
- follow(after) yields changes forever, waiting for new ones

Invariants:
    - Revisions are strictly increasing in append order
    - Only the most recent ``retention`` changes are kept
    - Asking for changes older than the retention window is an error,
      never a silent gap

How to change safely:
    - Keep append() synchronous so it can run inside the store lock
    - Do not await between since() and clearing the wake-up event
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Deque, List, Optional

from ..errors import JournalCompactedError
from ..model import ModelRecord

logger = logging.getLogger(__name__)


class ChangeAction(str, Enum):
    """What a mutation did to a record."""

    CREATED = "Created"
    UPDATED = "Updated"
    DELETED = "Deleted"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Change:
    """One committed store mutation.

    Attributes:
        revision: Store revision produced by the mutation
        kind: Record kind
        id: Record ID
        action: Created, Updated or Deleted
        record: Post-mutation record (None for Deleted)
        previous: Pre-mutation record (None for Created)
        timestamp_ms: When the mutation committed (Unix ms)
    """

    revision: int
    kind: str
    id: str
    action: ChangeAction
    record: Optional[ModelRecord] = None
    previous: Optional[ModelRecord] = None
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def __str__(self) -> str:
        return f"Change(rev={self.revision}, {self.action} {self.kind}/{self.id})"


class ChangeJournal:
    """Bounded, ordered log of store changes.

    Thread safety:
        Meant for a single event loop. append() and since() are
        synchronous; follow() is an async generator that any number of
        coroutines may run concurrently.

    Example:
        >>> journal = ChangeJournal(retention=100)
        >>> journal.append(change)
        >>> async for change in journal.follow(after=0):
        ...     print(change.revision)
    """

    def __init__(self, retention: int = 10000, revision: int = 0) -> None:
        """Initialize the journal.

        Args:
            retention: Maximum number of changes kept in memory
            revision: Revision the journal starts at (nothing retained
                at or before it)
        """
        if retention < 1:
            raise ValueError("retention must be at least 1")
        self.retention = retention
        self._changes: Deque[Change] = deque(maxlen=retention)
        self._revision = revision
        self._base = revision
        self._new_change = asyncio.Event()
        self._closed = False

    @property
    def revision(self) -> int:
        """Revision of the last appended change."""
        return self._revision

    @property
    def oldest(self) -> int:
        """Lowest revision still retained (or the next one if empty)."""
        if self._changes:
            return self._changes[0].revision
        return self._revision + 1

    @property
    def closed(self) -> bool:
        return self._closed

    def append(self, change: Change) -> None:
        """Append a change and wake followers.

        Raises:
            ValueError: If the revision does not advance
        """
        if change.revision <= self._revision:
            raise ValueError(
                f"Journal revision must advance: {change.revision} <= {self._revision}"
            )
        if len(self._changes) == self.retention:
            self._base = self._changes[0].revision
        self._changes.append(change)
        self._revision = change.revision
        self._new_change.set()

    def since(self, revision: int) -> List[Change]:
        """Get retained changes with revision greater than ``revision``.

        Args:
            revision: Exclusive lower bound

        Returns:
            Changes in revision order

        Raises:
            JournalCompactedError: If changes after ``revision`` were dropped
        """
        if revision >= self._revision:
            return []
        if revision < self._base:
            raise JournalCompactedError(revision, self.oldest)
        pending: List[Change] = []
        for change in reversed(self._changes):
            if change.revision <= revision:
                break
            pending.append(change)
        pending.reverse()
        return pending

    async def follow(self, after: int) -> AsyncIterator[Change]:
        """Yield every change after ``after``, waiting for new ones.

        Ends when the journal is closed.

        Raises:
            JournalCompactedError: If the follower falls out of the
                retention window
        """
        position = after
        while not self._closed:
            pending = self.since(position)
            if not pending:
                self._new_change.clear()
                await self._new_change.wait()
                continue
            for change in pending:
                position = change.revision
                yield change

    def close(self) -> None:
        """Stop all followers."""
        self._closed = True
        self._new_change.set()
        logger.debug("Change journal closed", extra={"revision": self._revision})

    # Testing helpers

    def __len__(self) -> int:
        return len(self._changes)

    def changes(self) -> List[Change]:
        """All retained changes (testing helper)."""
        return list(self._changes)
