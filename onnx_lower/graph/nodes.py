"""IR node and type definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

from ..dtypes import ElemKind
from ..tensor import Tensor

# Layout permutations between channel-first (ONNX) and channel-last (IR)
NCHW2NHWC: tuple[int, ...] = (0, 2, 3, 1)
NHWC2NCHW: tuple[int, ...] = (0, 3, 1, 2)


class NodeKind(Enum):
    # Storage
    PARAMETER = auto()
    SAVE = auto()

    # Layout / shape
    TRANSPOSE = auto()
    RESHAPE = auto()
    SQUEEZE = auto()
    EXPAND_DIMS = auto()
    CONCAT = auto()
    BROADCAST = auto()

    # Spatial (channel-last)
    CONV = auto()
    POOL_MAX = auto()
    POOL_AVG = auto()
    BATCH_NORM = auto()

    # Contractions
    MATMUL = auto()

    # Elementwise
    ADD = auto()
    SUB = auto()
    MUL = auto()
    DIV = auto()
    RELU = auto()
    SIGMOID = auto()
    TANH = auto()
    SOFTMAX = auto()


@dataclass(frozen=True)
class TensorType:
    """Element kind plus dimensions. Instances are uniqued by the Module."""

    elem_kind: ElemKind
    dims: tuple[int, ...]

    @property
    def rank(self) -> int:
        return len(self.dims)

    def __str__(self) -> str:
        return f"{self.elem_kind.value}<{' x '.join(str(d) for d in self.dims)}>"


@dataclass(eq=False)
class Node:
    """A single IR operation or parameter.

    Attributes:
        kind: Operation kind.
        name: Name of the node, unique within its module.
        inputs: Operand nodes, in positional order.
        type: Result type.
        attrs: Kind-specific scalar attributes (kernel, stride, perm, ...).
        payload: Backing tensor, for PARAMETER nodes only.
    """

    kind: NodeKind
    name: str
    inputs: list[Node]
    type: TensorType
    attrs: dict[str, Any] = field(default_factory=dict)
    payload: Tensor | None = None

    @property
    def dims(self) -> tuple[int, ...]:
        return self.type.dims

    @property
    def elem_kind(self) -> ElemKind:
        return self.type.elem_kind

    def __repr__(self) -> str:
        return f"Node({self.kind.name}, {self.name!r}, {self.type})"
