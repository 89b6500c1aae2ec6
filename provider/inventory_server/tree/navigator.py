"""
Tree navigators.

A Navigator answers "what are the children of this record" for one tree.
Each tree declares its Relations per parent kind; a kind with no relation
is a leaf. Adding a kind to a tree is adding a Relation to its table.

Invariants:
    - Navigators only read from the store
    - Children come back in relation declaration order, then store order
    - A store failure raises StoreError; it is never turned into a leaf
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Protocol, Tuple

from ..model import Kind, ListFilter, ModelRecord
from ..store import InventoryStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Relation:
    """Directed one-to-many edge between kinds.

    Attributes:
        name: Relation name
        parent_kind: Kind of the parent record
        child_kind: Kind of the child records
        field: Child field holding the parent's ID
        where: Extra (field, value) equalities the children must satisfy
    """

    name: str
    parent_kind: str
    child_kind: str
    field: str
    where: Tuple[Tuple[str, str], ...] = ()

    def filter_for(self, parent: ModelRecord) -> ListFilter:
        return ListFilter().and_where(((self.field, parent.id), *self.where))


class ChildSource(Protocol):
    """What a navigator needs from the store."""

    async def list(self, kind: str, flt: ListFilter | None = None) -> List[ModelRecord]: ...


class Navigator:
    """Relation-driven navigator for one tree.

    Example:
        >>> navigator = Navigator(store, CLUSTER_TREE)
        >>> clusters = await navigator.next(datacenter)
    """

    def __init__(self, store: ChildSource, relations: Iterable[Relation]) -> None:
        self.store = store
        self._relations: Dict[str, List[Relation]] = {}
        for relation in relations:
            self._relations.setdefault(str(relation.parent_kind), []).append(relation)

    def relations_for(self, kind: str) -> List[Relation]:
        """Relations declared for a parent kind (empty for leaves)."""
        return list(self._relations.get(str(kind), ()))

    async def next(self, parent: ModelRecord) -> List[ModelRecord]:
        """List the direct children of ``parent``.

        Raises:
            StoreError: If a store read fails
        """
        children: List[ModelRecord] = []
        for relation in self._relations.get(parent.kind, ()):
            found = await self.store.list(relation.child_kind, relation.filter_for(parent))
            children.extend(found)
        return children


# DataCenter -> Cluster -> {Host, VM}
CLUSTER_TREE: Tuple[Relation, ...] = (
    Relation("clusters", Kind.DATACENTER.value, Kind.CLUSTER.value, "datacenter"),
    Relation("hosts", Kind.CLUSTER.value, Kind.HOST.value, "cluster"),
    Relation("vms", Kind.CLUSTER.value, Kind.VM.value, "cluster"),
)

# DataCenter -> root Folder -> {Folder, VM, Datastore, Network}
FOLDER_TREE: Tuple[Relation, ...] = (
    Relation(
        "folders",
        Kind.DATACENTER.value,
        Kind.FOLDER.value,
        "datacenter",
        where=(("folder", ""),),
    ),
    Relation("subfolders", Kind.FOLDER.value, Kind.FOLDER.value, "folder"),
    Relation("vms", Kind.FOLDER.value, Kind.VM.value, "folder"),
    Relation("datastores", Kind.FOLDER.value, Kind.DATASTORE.value, "folder"),
    Relation("networks", Kind.FOLDER.value, Kind.NETWORK.value, "folder"),
)

TREES: Dict[str, Tuple[Relation, ...]] = {
    "cluster": CLUSTER_TREE,
    "folder": FOLDER_TREE,
}


def navigator_for(tree: str, store: InventoryStore) -> Navigator:
    """Create the navigator for a named tree.

    Raises:
        KeyError: If no such tree is defined
    """
    return Navigator(store, TREES[tree])
