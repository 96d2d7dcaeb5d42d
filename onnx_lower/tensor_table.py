"""Name-keyed store of tensors known to a load.

Entries are either borrowed (pre-bound by the caller, never replaced and
copied before the IR takes them) or owned (materialized by the loader and
moved into the IR when they back a parameter).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

import numpy as np
import onnx

from .dtypes import DEFAULT_INDEX_DTYPE
from .errors import ShapeInvariantViolation
from .materialize import load_shape, load_tensor
from .tensor import Tensor

logger = logging.getLogger(__name__)


@dataclass
class TensorRef:
    """A table entry: the tensor plus who owns it."""

    tensor: Tensor
    borrowed: bool = False


class TensorTable:
    """Tensors of one load, keyed by ONNX value name."""

    def __init__(self, index_dtype: np.dtype = DEFAULT_INDEX_DTYPE) -> None:
        self._entries: dict[str, TensorRef] = {}
        self.index_dtype = index_dtype

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def is_borrowed(self, name: str) -> bool:
        entry = self._entries.get(name)
        return entry is not None and entry.borrowed

    def get(self, name: str) -> Tensor:
        """Return the tensor registered under ``name``.

        Raises:
            ShapeInvariantViolation: No tensor has that name.
        """
        entry = self._entries.get(name)
        if entry is None:
            raise ShapeInvariantViolation(f"no tensor registered with name {name!r}")
        return entry.tensor

    def bind(self, name: str, tensor: Tensor) -> None:
        """Register a caller-owned tensor. It takes precedence for the whole load."""
        if self.is_borrowed(name):
            raise ValueError(f"tensor {name!r} is already pre-bound")
        self._entries[name] = TensorRef(tensor, borrowed=True)

    def insert(self, name: str, tensor: Tensor) -> bool:
        """Insert or replace an owned tensor unless ``name`` is pre-bound.

        Returns:
            True if the tensor was stored.
        """
        if self.is_borrowed(name):
            logger.debug(f"Keeping pre-bound tensor {name!r}")
            return False
        self._entries[name] = TensorRef(tensor)
        return True

    def seed_inputs(self, inputs: Iterable[onnx.ValueInfoProto]) -> None:
        """Add shape-only tensors for declared inputs not already present."""
        for value_info in inputs:
            if value_info.name in self._entries:
                continue
            self._entries[value_info.name] = TensorRef(load_shape(value_info, self.index_dtype))

    def seed_initializers(self, initializers: Iterable[onnx.TensorProto]) -> None:
        """Materialize initializers, refreshing input slots of the same name."""
        for proto in initializers:
            if self.is_borrowed(proto.name):
                logger.debug(f"Initializer {proto.name!r} shadowed by pre-bound tensor")
                continue
            self._entries[proto.name] = TensorRef(load_tensor(proto, self.index_dtype))

    def add_constant(self, name: str, proto: onnx.TensorProto) -> bool:
        """Materialize a Constant node's value unless ``name`` is pre-bound."""
        if self.is_borrowed(name):
            return False
        return self.insert(name, load_tensor(proto, self.index_dtype))

    def take_for_parameter(self, name: str) -> Tensor:
        """Tensor to hand to an IR parameter: owned ones move, borrowed ones are copied."""
        entry = self._entries.get(name)
        if entry is None:
            raise ShapeInvariantViolation(f"no tensor registered with name {name!r}")
        if entry.borrowed:
            return entry.tensor.copy()
        return entry.tensor
