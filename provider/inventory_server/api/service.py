"""
Inventory service - the operations behind the REST routes.

The HTTP layer parses a request into a RequestContext (or TreeRequest) and
calls the service; the service talks to the store, the tree builder and
the watch manager and returns plain JSON-ready values.

Invariants:
    - Per-request state lives in the context objects; the service itself
      holds only long-lived collaborators
    - Errors are raised as InventoryError subclasses, never as HTTP errors
    - One-shot lists and watches use the same ListFilter semantics

How to change safely:
    - Add query options to RequestContext, not as service attributes
    - Keep get() at full detail; trees and lists decide their own depth
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from ..errors import BadRequest, NotFound
from ..model import MATCH_ALL, Kind, ListFilter, ModelRecord
from ..resources import has_path, kind_for_collection, render
from ..store import InventoryStore
from ..tree import (
    TREES,
    DetailPolicy,
    NodeBuilder,
    PathResolver,
    Tree,
    TreeBuilder,
    navigator_for,
    path_match_root,
)
from ..watch import Subscription, WatchEvent, WatchManager

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Parsed collection request.

    Attributes:
        kind: Kind behind the requested collection
        flt: Filter built from the query parameters
        detail: Full payloads instead of reference stubs
        watch: The request negotiates a watch
    """

    kind: str
    flt: ListFilter = MATCH_ALL
    detail: bool = False
    watch: bool = False

    @classmethod
    def parse(cls, kind: str, query: Mapping[str, str], watch: bool = False) -> RequestContext:
        """Build a context from query parameters.

        Raises:
            BadRequest: If a parameter cannot be a filter, or a path
                filter is used on a watch
        """
        detail = DetailPolicy.from_param(query.get("detail"), default_kinds=(kind,))
        flt = ListFilter.from_query(query, paths=has_path(kind))
        if watch and flt.path is not None:
            raise BadRequest(
                "Path filters cannot be watched", details={"kind": kind, "name": flt.path}
            )
        return cls(
            kind=kind,
            flt=flt,
            detail=detail.wants(kind),
            watch=watch,
        )


@dataclass
class TreeRequest:
    """Parsed tree request; owns the builders of one build.

    Attributes:
        tree: Tree name (``cluster`` or ``folder``)
        detail: Kinds rendered with full payload
        link_prefix: Prefix of selfLink values
        node_builder: Record shaper for this build
        builder: Forest builder for this build
    """

    tree: str
    detail: DetailPolicy = field(default_factory=DetailPolicy)
    link_prefix: str = ""
    node_builder: NodeBuilder = field(init=False)
    builder: TreeBuilder = field(default_factory=TreeBuilder)

    def __post_init__(self) -> None:
        self.node_builder = NodeBuilder(self.detail, self.link_prefix)

    @classmethod
    def parse(
        cls,
        tree: str,
        query: Mapping[str, str],
        watch: bool = False,
        link_prefix: str = "",
    ) -> TreeRequest:
        """Build a tree request.

        Raises:
            BadRequest: If a watch was requested
            NotFound: If the tree is not defined
        """
        if watch:
            raise BadRequest("Watch is not supported on trees", details={"tree": tree})
        if tree not in TREES:
            raise NotFound("Tree", tree)
        return cls(
            tree=tree,
            detail=DetailPolicy.from_param(query.get("detail")),
            link_prefix=link_prefix,
        )


class InventoryService:
    """Inventory read, tree and watch operations.

    Attributes:
        store: Inventory store
        manager: Watch manager
        link_prefix: Prefix of selfLink values
    """

    def __init__(
        self,
        store: InventoryStore,
        manager: WatchManager,
        link_prefix: str = "",
    ) -> None:
        self.store = store
        self.manager = manager
        self.link_prefix = link_prefix
        self.paths = PathResolver(store)

    def resolve(self, collection: str) -> str:
        """Map a collection name to its kind.

        Raises:
            NotFound: If no such collection exists
        """
        kind = kind_for_collection(collection)
        if kind is None:
            raise NotFound("Collection", collection)
        return kind

    async def render(
        self,
        record: ModelRecord,
        detail: bool,
        strict: bool = True,
    ) -> Dict[str, Any]:
        """Shape a record; full payloads of path kinds get their path.

        Raises:
            StoreError: If the path cannot be resolved (see PathResolver.path)
        """
        path = None
        if detail and has_path(record.kind):
            path = await self.paths.path(record, strict=strict)
        return render(record, detail, self.link_prefix, path)

    async def payload(self, event: WatchEvent, detail: bool) -> Dict[str, Any]:
        """Wire form of a watch event.

        A missing ancestor truncates the path instead of ending the watch.
        """
        if event.resource is None:
            return event.to_dict()
        content = await self.render(event.resource, detail, strict=False)
        return event.to_dict(lambda record: content)

    async def list(self, ctx: RequestContext) -> List[Dict[str, Any]]:
        """One-shot filtered list.

        Raises:
            StoreError: If the read or a path lookup fails
        """
        records = await self.store.list(ctx.kind, ctx.flt)
        if ctx.flt.path is not None:
            kept = []
            for record in records:
                if path_match_root(await self.paths.path(record), ctx.flt.path):
                    kept.append(record)
            records = kept
        return [await self.render(record, ctx.detail) for record in records]

    async def get(self, kind: str, record_id: str) -> Dict[str, Any]:
        """One-shot fetch at full detail.

        Raises:
            NotFound: If the record does not exist
            StoreError: If the read or the path lookup fails
        """
        return await self.render(await self.store.get(kind, record_id), True)

    async def build_tree(self, request: TreeRequest) -> Tree:
        """Build the forest of a tree rooted at every DataCenter.

        Raises:
            StoreError: If any read fails or the relations form a cycle
        """
        roots = await self.store.list(Kind.DATACENTER.value)
        navigator = navigator_for(request.tree, self.store)
        return await request.builder.build(roots, navigator, request.node_builder)

    async def tree(self, request: TreeRequest) -> List[Dict[str, Any]]:
        """Serialized forest of a tree."""
        return (await self.build_tree(request)).to_list()

    async def watch(self, ctx: RequestContext) -> Subscription:
        """Negotiate a watch.

        Raises:
            UnsupportedKind: If the kind cannot be watched
            StoreError: If the snapshot read fails
        """
        return await self.manager.subscribe(ctx.kind, ctx.flt)

    async def health(self) -> Dict[str, Any]:
        return {
            "healthy": self.manager.running,
            "revision": self.store.revision,
            "subscriptions": len(self.manager.subscriptions()),
        }
