"""
Provider Inventory Server - REST inventory with tree views and live watches.

This package serves a relational inventory model (datacenters, clusters,
hosts, VMs, networks, storage domains, datastores, folders) over HTTP with
two derived views beyond plain reads:
- Trees materialized on demand from flat records
- Watches: a consistent snapshot followed by every later mutation

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌──────────────────┐
    │   Client    │────▶│ aiohttp API  │────▶│  TreeBuilder     │
    │ (HTTP / WS) │     │  (handlers)  │     │ Navigator/Nodes  │
    └─────────────┘     └──────┬───────┘     └────────┬─────────┘
           ▲                   │                      │
           │ WebSocket         ▼                      ▼
    ┌──────┴──────┐     ┌──────────────┐     ┌──────────────────┐
    │Subscription │◀────│ WatchManager │◀────│ InventoryStore   │
    │ (queue)     │     │ (dispatch)   │     │ SQLite + journal │
    └─────────────┘     └──────────────┘     └──────────────────┘

Invariants:
    - Every store mutation gets the next store revision and one journal entry
    - A watch delivers snapshot, parity marker, then deltas in revision order
    - A slow watcher is disconnected, never allowed to stall dispatch
    - Tree builds are all-or-nothing

How to change safely:
    - New kinds: register a Resource shape and add Relations to a tree
    - Keep filter matching in ListFilter.matches so lists and watches agree
    - Never await inside the WatchManager registry lock
"""

from ._version import __version__

__all__ = ["__version__"]
