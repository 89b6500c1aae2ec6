"""
Tree nodes and the per-build node arena.

Every node built during one traversal lives in that traversal's Tree
arena. A node points to its parent by arena index rather than by object
reference, so a finished tree holds no reference cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional

from ..model import Kind


@dataclass
class TreeNode:
    """A node in a materialized tree.

    Attributes:
        kind: Kind of the record the node renders
        object: Shaped payload
        index: Position in the owning Tree's arena
        parent: Arena index of the parent node, None for roots
        children: Child nodes in navigator order
    """

    kind: str
    object: Any
    index: int
    parent: Optional[int] = None
    children: List[TreeNode] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "object": self.object,
            "children": [child.to_dict() for child in self.children],
        }


class Tree:
    """Arena of the nodes built by one traversal.

    Example:
        >>> tree = Tree()
        >>> dc = tree.allocate("DataCenter", {"id": "dc1"}, None)
        >>> tree.roots.append(dc)
        >>> tree.to_list()
        [{'kind': 'DataCenter', 'object': {'id': 'dc1'}, 'children': []}]
    """

    def __init__(self) -> None:
        self.nodes: List[TreeNode] = []
        self.roots: List[TreeNode] = []

    def allocate(self, kind: str, obj: Any, parent: Optional[TreeNode]) -> TreeNode:
        """Create a node in the arena, linked to ``parent`` by index.

        The node is not attached to the parent's children; the builder
        decides that.
        """
        node = TreeNode(
            kind=str(kind),
            object=obj,
            index=len(self.nodes),
            parent=parent.index if parent is not None else None,
        )
        self.nodes.append(node)
        return node

    def parent_of(self, node: TreeNode) -> Optional[TreeNode]:
        if node.parent is None:
            return None
        return self.nodes[node.parent]

    def ancestors(self, node: TreeNode) -> Iterator[TreeNode]:
        """Yield the parent, grandparent, ... of a node."""
        parent = self.parent_of(node)
        while parent is not None:
            yield parent
            parent = self.parent_of(parent)

    def path(self, node: TreeNode) -> List[TreeNode]:
        """Nodes from the root down to ``node``."""
        path = [node, *self.ancestors(node)]
        path.reverse()
        return path

    def walk(self) -> Iterator[TreeNode]:
        """Depth-first, pre-order walk of the forest."""
        stack = list(reversed(self.roots))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def to_list(self) -> List[Dict[str, Any]]:
        """Serialize the forest."""
        return [root.to_dict() for root in self.roots]

    def __len__(self) -> int:
        return len(self.nodes)


@dataclass(frozen=True)
class DetailPolicy:
    """Which kinds render with a full payload.

    Every kind not listed renders as a reference stub.
    """

    kinds: frozenset = frozenset()

    @classmethod
    def of(cls, kinds: Iterable[str]) -> DetailPolicy:
        return cls(kinds=frozenset(str(kind) for kind in kinds))

    @classmethod
    def from_param(
        cls,
        value: Optional[str],
        default_kinds: Iterable[str] = (Kind.VM,),
    ) -> DetailPolicy:
        """Build a policy from a ``detail`` query parameter.

        A boolean-ish value elevates ``default_kinds``; a comma-separated
        list of kind names elevates exactly those kinds.
        """
        if value is None or value.strip().lower() in ("", "0", "false", "no"):
            return cls()
        if value.strip().lower() in ("1", "true", "yes"):
            return cls.of(default_kinds)
        kinds = []
        for name in value.split(","):
            kind = Kind.parse(name.strip())
            kinds.append(kind.value if kind is not None else name.strip())
        return cls.of(kinds)

    def wants(self, kind: str) -> bool:
        """Whether ``kind`` renders a full payload."""
        return str(kind) in self.kinds
