"""
REST resource shapes, one per known kind.

A shape turns a ModelRecord into the JSON the API returns:
- reference(): the minimal stub (kind, id, name, revision, selfLink)
- content(detail): the stub, or the stub plus the kind's fields (and, for
  Folder and Datastore, the inventory path the caller resolved)

Shapes are looked up by kind through a registry, so adding a kind means
adding one decorated class here.

How to change safely:
    - Only append to a shape's field list; clients rely on existing keys
    - Keep reference() small; it is what trees render by default
"""

from __future__ import annotations

import copy
from typing import Any, ClassVar, Dict, Optional, Tuple, Type

from .model import Kind, ModelRecord

_SHAPES: Dict[str, Type[Resource]] = {}
_COLLECTIONS: Dict[str, str] = {}


def register(cls: Type[Resource]) -> Type[Resource]:
    """Register a shape for its kind and collection.

    Raises:
        ValueError: If the kind or collection is already registered
    """
    if cls.kind in _SHAPES:
        raise ValueError(f"Shape already registered for kind {cls.kind}")
    if cls.collection in _COLLECTIONS:
        raise ValueError(f"Collection already registered: {cls.collection}")
    _SHAPES[cls.kind] = cls
    _COLLECTIONS[cls.collection] = cls.kind
    return cls


def shape_for(kind: str) -> Optional[Type[Resource]]:
    """Get the shape registered for a kind, or None for unknown kinds."""
    return _SHAPES.get(str(kind))


def kind_for_collection(collection: str) -> Optional[str]:
    """Map a REST collection name (e.g. ``hosts``) to its kind."""
    return _COLLECTIONS.get(collection)


def collections() -> Dict[str, str]:
    """All registered collection -> kind pairs."""
    return dict(_COLLECTIONS)


class Resource:
    """Base REST resource shape.

    Attributes:
        kind: Kind this shape renders
        collection: REST collection name
        fields: Record fields included in the full payload
        link_prefix: Prefix of self links
    """

    kind: ClassVar[str]
    collection: ClassVar[str]
    fields: ClassVar[Tuple[str, ...]] = ()
    # Full payloads carry the inventory path.
    paths: ClassVar[bool] = False

    def __init__(self, link_prefix: str = "") -> None:
        self.link_prefix = link_prefix.rstrip("/")

    def link(self, record: ModelRecord) -> str:
        """Build the self link (URI)."""
        return f"{self.link_prefix}/{self.collection}/{record.id}"

    def reference(self, record: ModelRecord) -> Dict[str, Any]:
        return {
            "kind": record.kind,
            "id": record.id,
            "name": record.name,
            "revision": record.revision,
            "selfLink": self.link(record),
        }

    def with_fields(self, record: ModelRecord) -> Dict[str, Any]:
        return {name: copy.deepcopy(record.get(name)) for name in self.fields}

    def content(
        self,
        record: ModelRecord,
        detail: bool,
        path: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Render the record.

        Args:
            record: Record to render (not modified)
            detail: Full payload when True, reference stub otherwise
            path: Inventory path added to a full payload
        """
        content = self.reference(record)
        if detail:
            content.update(self.with_fields(record))
            if path is not None:
                content["path"] = path
        return content


def has_path(kind: str) -> bool:
    """Whether full payloads of the kind carry an inventory path."""
    shape = shape_for(kind)
    return shape is not None and shape.paths


def render(
    record: ModelRecord,
    detail: bool,
    link_prefix: str = "",
    path: Optional[str] = None,
) -> Dict[str, Any]:
    """Render any record; unknown kinds pass through unshaped."""
    shape = shape_for(record.kind)
    if shape is None:
        return record.to_dict()
    return shape(link_prefix).content(record, detail, path)


@register
class DataCenter(Resource):
    kind = Kind.DATACENTER.value
    collection = "datacenters"
    fields = ("description",)


@register
class Cluster(Resource):
    kind = Kind.CLUSTER.value
    collection = "clusters"
    fields = ("datacenter", "haReservation", "ksmEnabled", "biosType")


@register
class Host(Resource):
    kind = Kind.HOST.value
    collection = "hosts"
    fields = (
        "cluster",
        "productName",
        "productVersion",
        "inMaintenance",
        "cpuSockets",
        "cpuCores",
        "networkAttachments",
        "nics",
    )


@register
class VM(Resource):
    kind = Kind.VM.value
    collection = "vms"
    fields = (
        "cluster",
        "host",
        "folder",
        "powerState",
        "cpuCount",
        "memoryMB",
        "guestName",
        "disks",
        "nics",
    )


@register
class Network(Resource):
    kind = Kind.NETWORK.value
    collection = "networks"
    fields = ("datacenter", "folder", "vlan", "usages")


@register
class StorageDomain(Resource):
    kind = Kind.STORAGE_DOMAIN.value
    collection = "storagedomains"
    fields = ("datacenter", "type", "capacity", "free", "storage")


@register
class Datastore(Resource):
    kind = Kind.DATASTORE.value
    collection = "datastores"
    fields = ("folder", "type", "capacity", "free", "maintenance")
    paths = True


@register
class Folder(Resource):
    kind = Kind.FOLDER.value
    collection = "folders"
    fields = ("folder", "datacenter", "children")
    paths = True
