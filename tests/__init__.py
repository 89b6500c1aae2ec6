"""
Inventory Server Test Suite.

This package contains:
- unit/: Unit tests (model, store, trees, watch machinery, config)
- integration/: Integration tests (aiohttp test server, WebSocket watches)
"""
