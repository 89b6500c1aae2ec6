"""
Inventory paths.

Folders and datastores are addressed by the names on their chain of
parent folders up to the owning DataCenter, e.g. ``/dc1/datastore/ds1``.
A path is resolved upward from the record: follow ``folder`` while it is
set, then ``datacenter`` of the last record reached.

Invariants:
    - Paths reflect the store as it is now, not at any revision
    - A repeated folder on the way up is a cycle, never an endless walk
"""

from __future__ import annotations

import logging
from typing import List, Protocol, Set

from ..errors import CyclicRelationError, NotFound, StoreError
from ..model import Kind, ModelRecord

logger = logging.getLogger(__name__)


class RecordSource(Protocol):
    async def get(self, kind: str, record_id: str) -> ModelRecord: ...


class PathResolver:
    """Resolves inventory paths through store lookups.

    Attributes:
        store: Source of parent records
    """

    def __init__(self, store: RecordSource) -> None:
        self.store = store

    async def path(self, record: ModelRecord, strict: bool = True) -> str:
        """Build the inventory path of ``record``.

        Args:
            record: Folder, Datastore or any record with folder/datacenter refs
            strict: Raise on a missing ancestor; otherwise the path starts
                at the highest ancestor found

        Raises:
            StoreError: If a lookup fails, or a referenced ancestor is
                missing and ``strict`` is set
            CyclicRelationError: If the folder chain loops
        """
        names: List[str] = [segment(record)]
        seen: Set[str] = set()
        current = record
        while True:
            folder_id = current.get("folder")
            if folder_id:
                if folder_id in seen:
                    raise CyclicRelationError(Kind.FOLDER.value, folder_id)
                seen.add(folder_id)
                parent = await self._parent(record, Kind.FOLDER.value, folder_id, strict)
            elif current.get("datacenter"):
                parent = await self._parent(
                    record, Kind.DATACENTER.value, current.get("datacenter"), strict
                )
                if parent is not None:
                    names.append(segment(parent))
                break
            else:
                break
            if parent is None:
                break
            names.append(segment(parent))
            current = parent
        return "/" + "/".join(reversed(names))

    async def _parent(
        self,
        record: ModelRecord,
        kind: str,
        record_id: str,
        strict: bool,
    ) -> ModelRecord | None:
        try:
            return await self.store.get(kind, record_id)
        except NotFound:
            if strict:
                raise StoreError(
                    f"Broken {kind} reference '{record_id}' on {record}",
                    details={"kind": kind, "id": record_id},
                )
            logger.debug(
                "Path truncated at missing ancestor",
                extra={"record": str(record), "kind": kind, "id": record_id},
            )
            return None


def segment(record: ModelRecord) -> str:
    return record.name or record.id


def path_match_root(path: str, name: str) -> bool:
    """Whether a ``root/.../leaf`` pattern addresses ``path``.

    The first element of ``name`` must be the path's root (the DataCenter);
    the remaining elements must equal the path's trailing elements.

    Example:
        >>> path_match_root("/dc1/datastore/nfs/ds1", "dc1/ds1")
        True
        >>> path_match_root("/dc1/datastore/nfs/ds1", "dc1/nfs/ds1")
        True
        >>> path_match_root("/dc2/datastore/ds1", "dc1/ds1")
        False
    """
    have = [part for part in path.split("/") if part]
    want = [part for part in name.split("/") if part]
    if len(want) < 2 or not have or want[0] != have[0]:
        return False
    tail = want[1:]
    return len(tail) < len(have) and have[-len(tail):] == tail
