"""
Seed loader for the inventory store.

Loads a JSON inventory file at startup. Two layouts are accepted:

    {"records": [{"kind": "Host", "id": "h1", "name": "esx-01", "cluster": "c1"}]}

    {"Host": [{"id": "h1", "name": "esx-01", "cluster": "c1"}]}

Records that already exist are updated in place (fields replaced), so a
restart with the same file is a no-op apart from revisions.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from ..errors import DuplicateRecordError
from ..model import ModelRecord
from .inventory_store import InventoryStore

logger = logging.getLogger(__name__)


def parse_seed(data: Any) -> list[ModelRecord]:
    """Parse seed file content into records.

    Raises:
        ValueError: If the layout is not recognized
    """
    entries: Iterable[dict[str, Any]]
    if isinstance(data, dict) and "records" in data:
        entries = data["records"]
    elif isinstance(data, dict):
        entries = [
            {**entry, "kind": kind}
            for kind, items in data.items()
            for entry in items
        ]
    elif isinstance(data, list):
        entries = data
    else:
        raise ValueError(f"Unsupported seed layout: {type(data).__name__}")
    return [ModelRecord.from_dict(entry) for entry in entries]


async def load_seed(store: InventoryStore, path: str | Path) -> int:
    """Load a seed file into the store.

    Args:
        store: Initialized inventory store
        path: JSON seed file

    Returns:
        Number of records written

    Raises:
        ValueError: If the file is not a valid seed
        StoreError: On database failure
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid seed file {path}: {e}") from e

    records = parse_seed(data)
    for record in records:
        try:
            await store.create(record.kind, record.id, name=record.name, fields=record.fields)
        except DuplicateRecordError:
            await store.update(
                record.kind, record.id, name=record.name, fields=record.fields, replace=True
            )

    logger.info(f"Loaded {len(records)} seed records from {path}")
    return len(records)
