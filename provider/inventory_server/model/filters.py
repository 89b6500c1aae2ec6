"""
List filters.

A ListFilter is the predicate shared by one-shot lists, watch snapshots and
watch deltas. Matching happens only in ListFilter.matches so all three
always agree on which records are in the filtered set.

The one exception is an inventory path constraint (``name=dc1/ds1`` on a
kind with paths). It needs store lookups, so matches() ignores it and the
list operation applies it; watches reject it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from ..errors import BadRequest
from .types import ModelRecord

# Query parameters that shape the response instead of filtering it.
RESERVED_PARAMS = frozenset({"detail"})

_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")


def normalize(value: Any) -> str:
    """Render a field value the way query strings spell it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class ListFilter:
    """Equality predicate over record name and fields.

    Attributes:
        name: Required record name, or None for any
        fields: (field, value) pairs that must all match; a missing field
            matches the empty string
        path: Inventory path pattern (``root/.../leaf``), or None
    """

    name: str | None = None
    fields: tuple[tuple[str, str], ...] = ()
    path: str | None = None

    @classmethod
    def where(cls, name: str | None = None, **fields: Any) -> ListFilter:
        """Build a filter from keyword equalities."""
        return cls(
            name=name,
            fields=tuple(sorted((key, normalize(value)) for key, value in fields.items())),
        )

    @classmethod
    def from_query(
        cls,
        query: Mapping[str, str],
        reserved: Iterable[str] = RESERVED_PARAMS,
        paths: bool = False,
    ) -> ListFilter:
        """Build a filter from request query parameters.

        A repeated parameter keeps its first value.

        Args:
            query: Query parameters (a MultiDict may repeat keys)
            reserved: Parameter names that are not filters
            paths: The kind has inventory paths; a ``name`` containing
                ``/`` becomes a path constraint

        Returns:
            ListFilter

        Raises:
            BadRequest: If a parameter name cannot be a field name
        """
        skip = set(reserved)
        name = None
        path = None
        fields: dict[str, str] = {}
        for key, value in query.items():
            if key in skip:
                continue
            if key == "name":
                if name is None and path is None:
                    if paths and "/" in value:
                        path = value
                    else:
                        name = value
                continue
            if not _FIELD_NAME.match(key):
                raise BadRequest(f"Invalid filter parameter: {key!r}", details={"param": key})
            fields.setdefault(key, value)
        return cls(name=name, fields=tuple(sorted(fields.items())), path=path)

    def and_where(self, pairs: Iterable[tuple[str, Any]]) -> ListFilter:
        """Return a new filter with more field equalities."""
        merged = dict(self.fields)
        merged.update((key, normalize(value)) for key, value in pairs)
        return ListFilter(name=self.name, fields=tuple(sorted(merged.items())), path=self.path)

    @property
    def empty(self) -> bool:
        return self.name is None and not self.fields and self.path is None

    def matches(self, record: ModelRecord) -> bool:
        """Whether the record is in the filtered set.

        The path constraint is not checked here.
        """
        if self.name is not None and record.name != self.name:
            return False
        for key, expected in self.fields:
            if normalize(record.get(key)) != expected:
                return False
        return True

    def __str__(self) -> str:
        parts = []
        if self.name is not None:
            parts.append(f"name={self.name}")
        if self.path is not None:
            parts.append(f"path={self.path}")
        parts.extend(f"{key}={value}" for key, value in self.fields)
        return "&".join(parts) or "*"


MATCH_ALL = ListFilter()
