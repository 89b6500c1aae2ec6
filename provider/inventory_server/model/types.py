"""
Core record types for the inventory model.

A ModelRecord is an opaque entity identified by (kind, id). References
between records are plain IDs stored in the referencing record's fields,
e.g. a Host carries ``{"cluster": "c1"}``.

Invariants:
    - ModelRecord is immutable; fields are deep-copied in and out
    - revision is the store revision of the record's last mutation
    - Kind values compare equal to their plain string names
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping


class Kind(str, Enum):
    """Known entity kinds.

    Records of other kinds may still be stored; they have no shape and no
    relations and are treated as unknown kinds.
    """

    DATACENTER = "DataCenter"
    CLUSTER = "Cluster"
    HOST = "Host"
    VM = "VM"
    NETWORK = "Network"
    STORAGE_DOMAIN = "StorageDomain"
    DATASTORE = "Datastore"
    FOLDER = "Folder"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> Kind | None:
        """Look up a kind by name, case-insensitively."""
        for kind in cls:
            if kind.value.lower() == value.lower():
                return kind
        return None


@dataclass(frozen=True)
class ModelRecord:
    """A stored inventory entity.

    Attributes:
        kind: Entity kind (a Kind value or any other string)
        id: Identifier, unique within the kind
        name: Display name
        revision: Store revision of the last mutation
        fields: Kind-specific attributes, including parent references
    """

    kind: str
    id: str
    name: str = ""
    revision: int = 0
    fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", str(self.kind))
        object.__setattr__(self, "fields", MappingProxyType(copy.deepcopy(dict(self.fields))))

    @property
    def key(self) -> tuple[str, str]:
        """Identity of the record across kinds."""
        return (self.kind, self.id)

    def get(self, name: str, default: Any = None) -> Any:
        """Get a field value."""
        return self.fields.get(name, default)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dictionary (fields flattened in)."""
        data: Dict[str, Any] = copy.deepcopy(dict(self.fields))
        data.update(
            {
                "kind": self.kind,
                "id": self.id,
                "name": self.name,
                "revision": self.revision,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ModelRecord:
        """Create from a flat dictionary.

        Raises:
            ValueError: If kind or id is missing
        """
        missing = [name for name in ("kind", "id") if not data.get(name)]
        if missing:
            raise ValueError(f"Missing required fields: {missing}")
        fields = {
            key: value
            for key, value in data.items()
            if key not in ("kind", "id", "name", "revision")
        }
        return cls(
            kind=str(data["kind"]),
            id=str(data["id"]),
            name=str(data.get("name", "")),
            revision=int(data.get("revision", 0)),
            fields=fields,
        )

    def __str__(self) -> str:
        return f"{self.kind}/{self.id}"
