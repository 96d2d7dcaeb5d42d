"""Random-access view over an ONNX node's attribute list."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

import onnx
from onnx import AttributeProto

from .errors import AttributeTypeError, MissingAttributeError, UnsupportedAttributeShape

_TYPE_NAMES: dict[int, str] = {
    AttributeProto.INT: "int",
    AttributeProto.FLOAT: "float",
    AttributeProto.STRING: "string",
    AttributeProto.INTS: "int-array",
    AttributeProto.FLOATS: "float-array",
    AttributeProto.TENSOR: "tensor",
    AttributeProto.GRAPH: "graph",
    AttributeProto.STRINGS: "string-array",
    AttributeProto.TENSORS: "tensor-array",
    AttributeProto.GRAPHS: "graph-array",
}


def _type_name(attr: AttributeProto) -> str:
    return _TYPE_NAMES.get(attr.type, f"<type {attr.type}>")


class AttributeDictionary:
    """Name-keyed attributes of one node with typed accessors.

    Duplicate names keep the last occurrence. Accessing an absent name raises
    MissingAttributeError and reading the wrong type raises AttributeTypeError,
    so callers check ``name in attrs`` (or use the ``get_*`` variants) for
    optional attributes.
    """

    def __init__(self, attributes: Iterable[AttributeProto] = ()) -> None:
        self._attrs: dict[str, AttributeProto] = {}
        for attr in attributes:
            self._attrs[attr.name] = attr

    @classmethod
    def build(cls, node: onnx.NodeProto | Any) -> AttributeDictionary:
        """Build from anything with an ``attribute`` list (NodeProto or NodeDescription)."""
        return cls(node.attribute)

    def __contains__(self, name: object) -> bool:
        return name in self._attrs

    def __len__(self) -> int:
        return len(self._attrs)

    def __iter__(self) -> Iterator[str]:
        return iter(self._attrs)

    def raw(self, name: str) -> AttributeProto:
        attr = self._attrs.get(name)
        if attr is None:
            raise MissingAttributeError(name)
        return attr

    def _typed(self, name: str, expected: int) -> AttributeProto:
        attr = self.raw(name)
        if attr.type != expected:
            raise AttributeTypeError(name, _TYPE_NAMES[expected], _type_name(attr))
        return attr

    def as_int(self, name: str) -> int:
        return int(self._typed(name, AttributeProto.INT).i)

    def as_float(self, name: str) -> float:
        return float(self._typed(name, AttributeProto.FLOAT).f)

    def as_string(self, name: str) -> str:
        raw = self._typed(name, AttributeProto.STRING).s
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise UnsupportedAttributeShape(f"attribute {name!r} is not valid UTF-8: {raw!r}") from e

    def as_ints(self, name: str) -> list[int]:
        return [int(v) for v in self._typed(name, AttributeProto.INTS).ints]

    def as_floats(self, name: str) -> list[float]:
        return [float(v) for v in self._typed(name, AttributeProto.FLOATS).floats]

    def as_tensor(self, name: str) -> onnx.TensorProto:
        return self._typed(name, AttributeProto.TENSOR).t

    def head_int(self, name: str) -> int:
        """First element of an int-array attribute, or the value of an int one.

        Used for ``strides`` and ``kernel_shape``, where only square windows
        are supported.
        """
        attr = self.raw(name)
        if attr.type == AttributeProto.INT:
            return int(attr.i)
        if attr.type == AttributeProto.INTS:
            if not attr.ints:
                raise AttributeTypeError(name, "non-empty int-array", "empty int-array")
            return int(attr.ints[0])
        raise AttributeTypeError(name, "int or int-array", _type_name(attr))

    def get_int(self, name: str, default: int) -> int:
        return self.as_int(name) if name in self._attrs else default

    def get_float(self, name: str, default: float) -> float:
        return self.as_float(name) if name in self._attrs else default

    def get_head_int(self, name: str, default: int) -> int:
        return self.head_int(name) if name in self._attrs else default

    def get_bool(self, name: str) -> bool:
        """True if an int attribute ``name`` is present and non-zero."""
        return name in self._attrs and self.as_int(name) != 0

    def to_python(self) -> dict[str, Any]:
        """Plain-Python values for logging and inspection."""
        out: dict[str, Any] = {}
        for name, attr in self._attrs.items():
            if attr.type == AttributeProto.TENSOR:
                out[name] = "<tensor>"
            elif attr.type in (AttributeProto.GRAPH, AttributeProto.GRAPHS):
                out[name] = "<subgraph>"
            else:
                out[name] = onnx.helper.get_attribute_value(attr)
        return out
