"""
SQLite inventory store.

This module manages the SQLite database holding every inventory record and
the store-wide revision counter. Each mutation commits one SQLite
transaction, advances the revision and appends one Change to the journal.

Invariants:
    - (kind, id) is unique
    - The revision advances by exactly one per committed mutation
    - Journal append happens under the same lock as the commit, so the
      journal order is the commit order
    - snapshot() reads under that lock, so its revision is exactly the last
      mutation reflected in its records

How to change safely:
    - Schema migrations must be backward compatible
    - Keep filtering in ListFilter.matches, not in SQL, so watches agree
    - Never await while holding the SQLite connection open in a transaction

Table schema:
    records:
        - kind TEXT
        - id TEXT
        - name TEXT
        - revision INTEGER
        - fields_json TEXT
        - PRIMARY KEY (kind, id)

    store_revision:
        - id INTEGER (always 1)
        - revision INTEGER
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Mapping

from ..errors import DuplicateRecordError, NotFound, StoreError
from ..model import MATCH_ALL, ListFilter, ModelRecord
from .journal import Change, ChangeAction, ChangeJournal

logger = logging.getLogger(__name__)


class InventoryStore:
    """SQLite-backed record store with a change journal.

    Thread safety:
        A connection is opened per operation. Mutations and snapshots
        serialize on an asyncio lock; plain reads do not.

    Example:
        >>> store = InventoryStore("/var/lib/inventory")
        >>> await store.initialize()
        >>> await store.create("Host", "h1", name="esx-01", fields={"cluster": "c1"})
        >>> hosts = await store.list("Host", ListFilter.where(cluster="c1"))
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_name: str = "inventory.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        journal_retention: int = 10000,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for the SQLite database file
            db_name: Database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            journal_retention: Changes kept in memory for watches
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.journal = ChangeJournal(retention=journal_retention)
        self._revision = 0
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def revision(self) -> int:
        """Revision of the last committed mutation."""
        return self._revision

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Yields:
            SQLite connection

        Raises:
            StoreError: On any SQLite failure
        """
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Cannot open inventory database: {e}") from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        except sqlite3.Error as e:
            raise StoreError(f"Inventory database error: {e}") from e
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS records (
                kind TEXT NOT NULL,
                id TEXT NOT NULL,
                name TEXT NOT NULL DEFAULT '',
                revision INTEGER NOT NULL,
                fields_json TEXT NOT NULL DEFAULT '{}',
                PRIMARY KEY (kind, id)
            );

            CREATE INDEX IF NOT EXISTS idx_records_name ON records(kind, name);

            CREATE TABLE IF NOT EXISTS store_revision (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                revision INTEGER NOT NULL
            );

            INSERT OR IGNORE INTO store_revision (id, revision) VALUES (1, 0);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the schema and load the current revision.

        The journal restarts empty at the loaded revision.
        """
        async with self._lock:
            with self._get_connection() as conn:
                self._create_schema(conn)
                row = conn.execute("SELECT revision FROM store_revision WHERE id = 1").fetchone()
                self._revision = row["revision"]
            self.journal = ChangeJournal(
                retention=self.journal.retention,
                revision=self._revision,
            )
            self._initialized = True
        logger.info(
            "Inventory store initialized",
            extra={"db_path": str(self.db_path), "revision": self._revision},
        )

    async def close(self) -> None:
        """Stop journal followers."""
        self.journal.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ModelRecord:
        return ModelRecord(
            kind=row["kind"],
            id=row["id"],
            name=row["name"],
            revision=row["revision"],
            fields=json.loads(row["fields_json"]),
        )

    def _select(self, conn: sqlite3.Connection, kind: str, flt: ListFilter) -> list[ModelRecord]:
        if flt.name is not None:
            cursor = conn.execute(
                "SELECT * FROM records WHERE kind = ? AND name = ? ORDER BY id",
                (kind, flt.name),
            )
        else:
            cursor = conn.execute("SELECT * FROM records WHERE kind = ? ORDER BY id", (kind,))
        records = (self._row_to_record(row) for row in cursor)
        return [record for record in records if flt.matches(record)]

    def _fetch(self, conn: sqlite3.Connection, kind: str, record_id: str) -> ModelRecord | None:
        row = conn.execute(
            "SELECT * FROM records WHERE kind = ? AND id = ?",
            (kind, record_id),
        ).fetchone()
        return self._row_to_record(row) if row else None

    def _bump_revision(self, conn: sqlite3.Connection) -> int:
        revision = self._revision + 1
        conn.execute("UPDATE store_revision SET revision = ? WHERE id = 1", (revision,))
        return revision

    def _commit(self, change: Change) -> None:
        self._revision = change.revision
        self.journal.append(change)
        logger.debug(
            "Committed change",
            extra={
                "revision": change.revision,
                "kind": change.kind,
                "id": change.id,
                "action": change.action.value,
            },
        )

    # Reads

    async def get(self, kind: str, record_id: str) -> ModelRecord:
        """Get a record.

        Raises:
            NotFound: If the record does not exist
            StoreError: On database failure
        """
        with self._get_connection() as conn:
            record = self._fetch(conn, str(kind), record_id)
        if record is None:
            raise NotFound(str(kind), record_id)
        return record

    async def list(self, kind: str, flt: ListFilter | None = None) -> list[ModelRecord]:
        """List records of a kind, ordered by id.

        Args:
            kind: Record kind
            flt: Optional filter

        Returns:
            Matching records

        Raises:
            StoreError: On database failure
        """
        with self._get_connection() as conn:
            return self._select(conn, str(kind), flt or MATCH_ALL)

    async def snapshot(
        self,
        kind: str,
        flt: ListFilter | None = None,
    ) -> tuple[list[ModelRecord], int]:
        """List records together with the revision they reflect.

        Every change with a higher revision is, or will be, in the journal;
        no change at or below it is missing from the records.

        Returns:
            Tuple of (records, revision)
        """
        async with self._lock:
            with self._get_connection() as conn:
                records = self._select(conn, str(kind), flt or MATCH_ALL)
            return records, self._revision

    # Mutations

    async def create(
        self,
        kind: str,
        record_id: str,
        name: str = "",
        fields: Mapping[str, Any] | None = None,
    ) -> Change:
        """Create a record.

        Raises:
            DuplicateRecordError: If (kind, id) exists
            StoreError: On database failure
        """
        kind = str(kind)
        fields = dict(fields or {})
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    if self._fetch(conn, kind, record_id) is not None:
                        raise DuplicateRecordError(kind, record_id)
                    revision = self._bump_revision(conn)
                    conn.execute(
                        """
                        INSERT INTO records (kind, id, name, revision, fields_json)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (kind, record_id, name, revision, json.dumps(fields)),
                    )
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

            record = ModelRecord(kind=kind, id=record_id, name=name, revision=revision, fields=fields)
            change = Change(
                revision=revision,
                kind=kind,
                id=record_id,
                action=ChangeAction.CREATED,
                record=record,
            )
            self._commit(change)
        return change

    async def update(
        self,
        kind: str,
        record_id: str,
        name: str | None = None,
        fields: Mapping[str, Any] | None = None,
        replace: bool = False,
    ) -> Change:
        """Update a record.

        Uses PATCH semantics unless ``replace`` is set - given fields are
        merged into the existing ones.

        Args:
            kind: Record kind
            record_id: Record ID
            name: New name (unchanged if None)
            fields: Fields to merge (or the full field set if replace)
            replace: Replace the field set instead of merging

        Returns:
            The committed Change

        Raises:
            NotFound: If the record does not exist
            StoreError: On database failure
        """
        kind = str(kind)
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    previous = self._fetch(conn, kind, record_id)
                    if previous is None:
                        raise NotFound(kind, record_id)
                    merged = {} if replace else dict(previous.fields)
                    merged.update(fields or {})
                    new_name = previous.name if name is None else name
                    revision = self._bump_revision(conn)
                    conn.execute(
                        """
                        UPDATE records SET name = ?, revision = ?, fields_json = ?
                        WHERE kind = ? AND id = ?
                        """,
                        (new_name, revision, json.dumps(merged), kind, record_id),
                    )
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

            record = ModelRecord(
                kind=kind, id=record_id, name=new_name, revision=revision, fields=merged
            )
            change = Change(
                revision=revision,
                kind=kind,
                id=record_id,
                action=ChangeAction.UPDATED,
                record=record,
                previous=previous,
            )
            self._commit(change)
        return change

    async def delete(self, kind: str, record_id: str) -> Change:
        """Delete a record.

        Raises:
            NotFound: If the record does not exist
            StoreError: On database failure
        """
        kind = str(kind)
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    previous = self._fetch(conn, kind, record_id)
                    if previous is None:
                        raise NotFound(kind, record_id)
                    revision = self._bump_revision(conn)
                    conn.execute(
                        "DELETE FROM records WHERE kind = ? AND id = ?",
                        (kind, record_id),
                    )
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

            change = Change(
                revision=revision,
                kind=kind,
                id=record_id,
                action=ChangeAction.DELETED,
                previous=previous,
            )
            self._commit(change)
        return change

    async def count(self, kind: str | None = None) -> int:
        """Count records, optionally of one kind."""
        with self._get_connection() as conn:
            if kind is None:
                row = conn.execute("SELECT COUNT(*) AS n FROM records").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS n FROM records WHERE kind = ?", (str(kind),)
                ).fetchone()
        return row["n"]

    def stats(self) -> dict[str, Any]:
        return {
            "db_path": str(self.db_path),
            "revision": self._revision,
            "journal_size": len(self.journal),
            "initialized": self._initialized,
        }
