"""
Tree module - hierarchical views materialized from flat records.

This module provides:
- Navigator and the Relation tables of each tree
- NodeBuilder shaping records under a DetailPolicy
- TreeBuilder assembling the forest in a per-build node arena
- PathResolver walking folder and datacenter references upward

Invariants:
    - Builds are all-or-nothing
    - Node parents are arena indexes, not object references
"""

from .builder import NodeBuilder, TreeBuilder, build
from .navigator import CLUSTER_TREE, FOLDER_TREE, TREES, Navigator, Relation, navigator_for
from .node import DetailPolicy, Tree, TreeNode
from .paths import PathResolver, path_match_root

__all__ = [
    "Navigator",
    "Relation",
    "CLUSTER_TREE",
    "FOLDER_TREE",
    "TREES",
    "navigator_for",
    "NodeBuilder",
    "TreeBuilder",
    "build",
    "DetailPolicy",
    "Tree",
    "TreeNode",
    "PathResolver",
    "path_match_root",
]
