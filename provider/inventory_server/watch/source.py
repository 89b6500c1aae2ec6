"""
Event sources - the per-kind store contract watches are built on.

An EventSource offers two reads that compose without a gap:
- snapshot(filter): matching records plus the revision they reflect
- since(revision): retained changes of the kind after that revision
"""

from __future__ import annotations

from typing import List, Protocol, Tuple, runtime_checkable

from ..model import ListFilter, ModelRecord
from ..store import Change, InventoryStore


@runtime_checkable
class EventSource(Protocol):
    """Per-kind snapshot and change feed."""

    kind: str

    async def snapshot(self, flt: ListFilter) -> Tuple[List[ModelRecord], int]:
        """Consistent filtered listing and its revision.

        Raises:
            StoreError: If the read fails
        """
        ...

    def since(self, revision: int) -> List[Change]:
        """Changes of this kind after ``revision``.

        Raises:
            JournalCompactedError: If they are no longer retained
        """
        ...


class StoreEventSource:
    """EventSource backed by the inventory store and its journal."""

    def __init__(self, store: InventoryStore, kind: str) -> None:
        self.store = store
        self.kind = str(kind)

    async def snapshot(self, flt: ListFilter) -> Tuple[List[ModelRecord], int]:
        return await self.store.snapshot(self.kind, flt)

    def since(self, revision: int) -> List[Change]:
        return [change for change in self.store.journal.since(revision) if change.kind == self.kind]

    def __repr__(self) -> str:
        return f"StoreEventSource(kind={self.kind!r})"
