"""
Error types for the inventory server.

This module defines every exception the server raises on purpose:
- InventoryError: Base exception
- NotFound: Requested record does not exist
- BadRequest: Unsupported request or parameter combination
- StoreError: Store read/write/snapshot failure
- UnsupportedKind: No event source for a watch target
- SlowConsumer: A watch delivery queue overflowed

Invariants:
    - All errors inherit from InventoryError
    - Errors carry a stable code for programmatic handling
    - The HTTP layer maps codes to status, never messages
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class InventoryError(Exception):
    """Base exception for all inventory server errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "INVENTORY_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON error body used by the HTTP layer."""
        body: Dict[str, Any] = {"error": self.message, "error_code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class NotFound(InventoryError):
    """Record (kind, id) does not exist."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(
            f"{kind} '{record_id}' not found",
            code="NOT_FOUND",
            details={"kind": kind, "id": record_id},
        )
        self.kind = kind
        self.record_id = record_id


class BadRequest(InventoryError):
    """Unsupported combination of request options.

    Raised when:
    - A watch is requested on the tree endpoint
    - A query parameter cannot be used as a filter
    - A watch request cannot be upgraded to a WebSocket
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="BAD_REQUEST", details=details)


class StoreError(InventoryError):
    """The store failed a list, get, navigation or snapshot read."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code or "STORE_ERROR", details=details)


class DuplicateRecordError(StoreError):
    """A record with the same (kind, id) already exists."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(
            f"{kind} '{record_id}' already exists",
            code="DUPLICATE_RECORD",
            details={"kind": kind, "id": record_id},
        )


class JournalCompactedError(StoreError):
    """Changes after a revision are no longer retained by the journal."""

    def __init__(self, revision: int, oldest: int) -> None:
        super().__init__(
            f"Changes after revision {revision} were compacted (oldest retained: {oldest})",
            code="JOURNAL_COMPACTED",
            details={"revision": revision, "oldest": oldest},
        )
        self.revision = revision
        self.oldest = oldest


class CyclicRelationError(StoreError):
    """A record was reached again below itself while building a tree."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(
            f"Relation cycle detected at {kind} '{record_id}'",
            code="CYCLIC_RELATION",
            details={"kind": kind, "id": record_id},
        )


class UnsupportedKind(InventoryError):
    """No event source is registered for the requested kind."""

    def __init__(self, kind: str) -> None:
        super().__init__(
            f"Watch not supported for kind '{kind}'",
            code="UNSUPPORTED_KIND",
            details={"kind": kind},
        )
        self.kind = kind


class SlowConsumer(InventoryError):
    """A subscription's bounded delivery queue overflowed.

    The subscription is closed; the client must re-subscribe and will
    receive a fresh snapshot.
    """

    def __init__(self, subscription_id: int, queue_size: int) -> None:
        super().__init__(
            f"Subscription {subscription_id} exceeded its queue of {queue_size} events",
            code="SLOW_CONSUMER",
            details={"subscription_id": subscription_id, "queue_size": queue_size},
        )
        self.subscription_id = subscription_id
        self.queue_size = queue_size
