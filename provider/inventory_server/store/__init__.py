"""
Store module for the inventory server.

This module handles:
- The SQLite inventory store (records + store revision)
- The in-memory change journal that feeds watches
- Seeding the store from a JSON file

Invariants:
    - Every mutation produces exactly one journal Change
    - Journal order is commit order
    - Snapshots report the revision they reflect
"""

from .inventory_store import InventoryStore
from .journal import Change, ChangeAction, ChangeJournal
from .seed import load_seed, parse_seed

__all__ = [
    "InventoryStore",
    "Change",
    "ChangeAction",
    "ChangeJournal",
    "load_seed",
    "parse_seed",
]
