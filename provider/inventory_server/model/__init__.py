"""
Inventory model types.

This module provides:
- Kind: the known entity kinds
- ModelRecord: immutable stored entity
- ListFilter: the predicate shared by lists and watches
"""

from .filters import MATCH_ALL, ListFilter, normalize
from .types import Kind, ModelRecord

__all__ = [
    "Kind",
    "ModelRecord",
    "ListFilter",
    "MATCH_ALL",
    "normalize",
]
