"""In-memory instance tree.

A ``ResourceNode`` is one element of a resource instance. Nodes only point
down to their children; ancestors are tracked by the evaluator while it
walks the tree.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator


PRIMITIVE_TYPE_NAMES: dict[type, str] = {
    bool: "boolean",
    int: "integer",
    Decimal: "decimal",
    float: "decimal",
    str: "string",
}


class ResourceNode(BaseModel):
    """One element of a resource instance."""

    type_name: str
    value: Any = None
    children: dict[str, list[ResourceNode]] = Field(default_factory=dict)
    path: str = ""
    repeating: set[str] = Field(default_factory=set)
    """Child names declared as repeating; always indexed in paths."""

    @field_validator("value", mode="before")
    @classmethod
    def _normalise_float(cls, value: Any) -> Any:
        # Keep decimal comparisons exact
        if isinstance(value, float):
            return Decimal(str(value))
        return value

    def child_list(self, name: str) -> list[ResourceNode]:
        """Children stored under ``name`` (empty list if none)."""
        return self.children.get(name, [])

    def iter_children(self) -> Iterator[ResourceNode]:
        """Iterate children in declaration order, repeating elements in order."""
        for items in self.children.values():
            yield from items

    def add_child(
        self, name: str, node: ResourceNode, repeating: bool = False
    ) -> ResourceNode:
        """Append a child under ``name`` and return it."""
        self.children.setdefault(name, []).append(node)
        if repeating:
            self.repeating.add(name)
        return node

    def assign_paths(self, path: str | None = None) -> ResourceNode:
        """Recompute the path of this node and every descendant.

        A repeating element (declared repeating, or holding more than one
        item) is indexed, e.g. ``Patient.contact[0].name``; a single-valued
        element is not.
        """
        self.path = path if path is not None else self.type_name
        for name, items in self.children.items():
            repeating = name in self.repeating or len(items) > 1
            for index, child in enumerate(items):
                segment = f"{name}[{index}]" if repeating else name
                child.assign_paths(f"{self.path}.{segment}")
        return self


# Enable forward references
ResourceNode.model_rebuild()


def build_tree(type_name: str | None, data: Mapping[str, Any]) -> ResourceNode:
    """Build a ResourceNode tree from a plain mapping.

    Keys map to child elements. A child is either a primitive value, a
    mapping (a complex element), or a list of those; a list marks the element as repeating. Mappings may carry
    ``_type`` (declared type) and ``_value`` (primitive value). The root type
    defaults to ``data["resourceType"]``.

    This is a convenience for callers that already hold decoded data; it is
    not a document parser.
    """
    root_type = type_name or data.get("resourceType")
    if not root_type:
        raise ValueError("Root type name is required (pass it or set 'resourceType')")
    root = _build_node(root_type, data, skip_keys={"resourceType"})
    return root.assign_paths()


def _build_node(
    type_name: str, data: Mapping[str, Any], skip_keys: set[str] | None = None
) -> ResourceNode:
    node = ResourceNode(type_name=type_name, value=data.get("_value"))
    for name, raw in data.items():
        if name.startswith("_") or (skip_keys and name in skip_keys):
            continue
        items = raw if isinstance(raw, list) else [raw]
        for item in items:
            node.add_child(name, _build_child(item), repeating=isinstance(raw, list))
    return node


def _build_child(item: Any) -> ResourceNode:
    if isinstance(item, ResourceNode):
        return item
    if isinstance(item, Mapping):
        return _build_node(str(item.get("_type", "BackboneElement")), item)
    type_name = PRIMITIVE_TYPE_NAMES.get(type(item))
    if type_name is None:
        raise ValueError(f"Unsupported primitive value: {item!r}")
    return ResourceNode(type_name=type_name, value=item)
