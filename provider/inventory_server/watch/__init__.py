"""
Watch module - filtered, no-gap subscriptions over store changes.

This module provides:
- EventSource contract and the store-backed implementation
- Subscription state machine with bounded delta queue
- WatchManager registry and fan-out task
"""

from .manager import WatchManager
from .source import EventSource, StoreEventSource
from .subscription import EventType, Subscription, SubscriptionState, WatchEvent

__all__ = [
    "WatchManager",
    "EventSource",
    "StoreEventSource",
    "EventType",
    "Subscription",
    "SubscriptionState",
    "WatchEvent",
]
