"""
API module - REST routes and the service behind them.

This module provides:
- InventoryService with per-request RequestContext/TreeRequest
- aiohttp application factory
"""

from .http_server import create_http_app
from .service import InventoryService, RequestContext, TreeRequest

__all__ = [
    "InventoryService",
    "RequestContext",
    "TreeRequest",
    "create_http_app",
]
