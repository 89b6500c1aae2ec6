"""
Tree materialization.

TreeBuilder expands root records into a forest: build the root's node, ask
the Navigator for its children, build each child's node linked to its
parent, recurse. NodeBuilder does the per-record shaping.

Invariants:
    - Navigator order is preserved, nothing is re-sorted
    - A failure anywhere aborts the build; no partial forest escapes
    - A record repeated on its own ancestor path aborts the build with
      CyclicRelationError instead of recursing forever
    - Detail changes node payloads only, never tree shape
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Protocol, Set, Tuple

from ..errors import CyclicRelationError
from ..model import ModelRecord
from ..resources import render
from .node import DetailPolicy, Tree, TreeNode

logger = logging.getLogger(__name__)


class ChildNavigator(Protocol):
    async def next(self, parent: ModelRecord) -> List[ModelRecord]: ...


class NodeBuilder:
    """Shapes records into tree nodes.

    Attributes:
        detail: Kinds rendered with full payload
        link_prefix: Prefix of self links in shaped payloads
    """

    def __init__(self, detail: DetailPolicy | None = None, link_prefix: str = "") -> None:
        self.detail = detail or DetailPolicy()
        self.link_prefix = link_prefix

    def node(self, tree: Tree, parent: TreeNode | None, record: ModelRecord) -> TreeNode:
        """Build a node for the record in ``tree``'s arena.

        Unknown kinds pass through unshaped.
        """
        obj = render(record, self.detail.wants(record.kind), self.link_prefix)
        return tree.allocate(record.kind, obj, parent)


class TreeBuilder:
    """Recursive forest builder.

    Example:
        >>> builder = TreeBuilder()
        >>> tree = await builder.build(datacenters, navigator, NodeBuilder())
        >>> tree.to_list()
    """

    async def build(
        self,
        roots: Iterable[ModelRecord],
        navigator: ChildNavigator,
        node_builder: NodeBuilder,
    ) -> Tree:
        """Build a forest rooted at ``roots``.

        Args:
            roots: Root records, in output order
            navigator: Child lookup for the tree being built
            node_builder: Record shaper

        Returns:
            The populated Tree

        Raises:
            StoreError: If any navigation fails (including relation cycles)
        """
        tree = Tree()
        for root in roots:
            node = node_builder.node(tree, None, root)
            tree.roots.append(node)
            await self._expand(tree, node, root, navigator, node_builder, {root.key})
        logger.debug("Built tree", extra={"roots": len(tree.roots), "nodes": len(tree)})
        return tree

    async def _expand(
        self,
        tree: Tree,
        node: TreeNode,
        record: ModelRecord,
        navigator: ChildNavigator,
        node_builder: NodeBuilder,
        path: Set[Tuple[str, str]],
    ) -> None:
        for child in await navigator.next(record):
            if child.key in path:
                raise CyclicRelationError(child.kind, child.id)
            child_node = node_builder.node(tree, node, child)
            node.children.append(child_node)
            path.add(child.key)
            await self._expand(tree, child_node, child, navigator, node_builder, path)
            path.discard(child.key)


async def build(
    roots: Iterable[ModelRecord],
    navigator: ChildNavigator,
    node_builder: NodeBuilder,
) -> Tree:
    """Build a forest with a fresh TreeBuilder."""
    return await TreeBuilder().build(roots, navigator, node_builder)
