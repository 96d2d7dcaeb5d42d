"""IR builder: Module (owning container) and Function (node list).

Every ``create_*`` method validates operand shapes, computes the result type
through the module's type table and appends the new node to the function.
Spatial operations expect channel-last (NHWC) operands.

Example:
    module = Module()
    fn = module.create_function("main")
    x = module.create_parameter("x", Tensor.zeros(ElemKind.FLOAT, (1, 3, 8, 8)))
    y = fn.create_transpose("t", x, NCHW2NHWC)
    fn.create_save("save_y", y)
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any

from ..dtypes import ElemKind
from ..errors import ShapeInvariantViolation
from ..tensor import Tensor
from .nodes import Node, NodeKind, TensorType


def conv_pool_output_dims(
    height: int, width: int, kernel: int, stride: int, pads: Sequence[int]
) -> tuple[int, int]:
    """Spatial output size of a convolution or pooling window.

    Pads are ``(top, left, bottom, right)``.
    """
    if kernel <= 0 or stride <= 0:
        raise ShapeInvariantViolation(f"kernel ({kernel}) and stride ({stride}) must be positive")
    out_h = (height + pads[0] + pads[2] - kernel) // stride + 1
    out_w = (width + pads[1] + pads[3] - kernel) // stride + 1
    if out_h <= 0 or out_w <= 0:
        raise ShapeInvariantViolation(
            f"kernel {kernel} with pads {list(pads)} does not fit input {height}x{width}"
        )
    return out_h, out_w


def _normalize_axis(axis: int, rank: int) -> int:
    if not -rank <= axis < rank:
        raise ShapeInvariantViolation(f"axis {axis} out of range for rank {rank}")
    return axis % rank


class Module:
    """Owns parameters, functions and the uniqued type table."""

    def __init__(self) -> None:
        self._types: dict[tuple[ElemKind, tuple[int, ...]], TensorType] = {}
        self._names: dict[str, int] = {}
        self.parameters: list[Node] = []
        self.functions: list[Function] = []

    def unique_type(self, kind: ElemKind, dims: Sequence[int]) -> TensorType:
        """Return the shared TensorType instance for ``(kind, dims)``."""
        key = (kind, tuple(int(d) for d in dims))
        ty = self._types.get(key)
        if ty is None:
            ty = TensorType(kind, key[1])
            self._types[key] = ty
        return ty

    def unique_name(self, base: str) -> str:
        """Return ``base``, suffixed with a counter if already taken."""
        base = base or "node"
        count = self._names.get(base, 0)
        self._names[base] = count + 1
        if count == 0:
            return base
        return f"{base}__{count}"

    def create_function(self, name: str) -> Function:
        fn = Function(self, name)
        self.functions.append(fn)
        return fn

    def create_parameter(self, name: str, tensor: Tensor) -> Node:
        """Create a parameter node that takes ownership of ``tensor``."""
        node = Node(
            kind=NodeKind.PARAMETER,
            name=self.unique_name(name),
            inputs=[],
            type=self.unique_type(tensor.elem_kind, tensor.dims),
            payload=tensor,
        )
        self.parameters.append(node)
        return node

    def get_parameter(self, name: str) -> Node | None:
        for node in self.parameters:
            if node.name == name:
                return node
        return None


class Function:
    """An ordered list of IR nodes belonging to a Module."""

    def __init__(self, module: Module, name: str) -> None:
        self.module = module
        self.name = name
        self.nodes: list[Node] = []

    def _add(
        self,
        kind: NodeKind,
        name: str,
        inputs: list[Node],
        elem_kind: ElemKind,
        dims: Sequence[int],
        **attrs: Any,
    ) -> Node:
        node = Node(
            kind=kind,
            name=self.module.unique_name(name),
            inputs=inputs,
            type=self.module.unique_type(elem_kind, dims),
            attrs=attrs,
        )
        self.nodes.append(node)
        return node

    # -------------------------------------------------------------------------
    # Layout / shape
    # -------------------------------------------------------------------------

    def create_transpose(self, name: str, input: Node, perm: Sequence[int]) -> Node:
        perm = tuple(int(p) for p in perm)
        if sorted(perm) != list(range(input.type.rank)):
            raise ShapeInvariantViolation(
                f"permutation {list(perm)} does not match rank {input.type.rank}"
            )
        dims = [input.dims[p] for p in perm]
        return self._add(NodeKind.TRANSPOSE, name, [input], input.elem_kind, dims, perm=perm)

    def create_reshape(self, name: str, input: Node, dims: Sequence[int]) -> Node:
        dims = tuple(int(d) for d in dims)
        if any(d < 0 for d in dims) or math.prod(dims) != math.prod(input.dims):
            raise ShapeInvariantViolation(
                f"cannot reshape {list(input.dims)} into {list(dims)}"
            )
        return self._add(NodeKind.RESHAPE, name, [input], input.elem_kind, dims)

    def create_squeeze(self, name: str, input: Node, axes: Sequence[int]) -> Node:
        rank = input.type.rank
        norm = sorted({_normalize_axis(int(a), rank) for a in axes})
        for axis in norm:
            if input.dims[axis] != 1:
                raise ShapeInvariantViolation(
                    f"cannot squeeze axis {axis} of size {input.dims[axis]}"
                )
        dims = [d for i, d in enumerate(input.dims) if i not in norm]
        return self._add(NodeKind.SQUEEZE, name, [input], input.elem_kind, dims, axes=tuple(norm))

    def create_expand_dims(self, name: str, input: Node, axes: Sequence[int]) -> Node:
        out_rank = input.type.rank + len(axes)
        norm = sorted({_normalize_axis(int(a), out_rank) for a in axes})
        if len(norm) != len(axes):
            raise ShapeInvariantViolation(f"repeated axes in {list(axes)}")
        dims = list(input.dims)
        for axis in norm:
            dims.insert(axis, 1)
        return self._add(
            NodeKind.EXPAND_DIMS, name, [input], input.elem_kind, dims, axes=tuple(norm)
        )

    def create_concat(self, name: str, inputs: Sequence[Node], axis: int) -> Node:
        if not inputs:
            raise ShapeInvariantViolation("concat needs at least one input")
        first = inputs[0]
        axis = _normalize_axis(axis, first.type.rank)
        total = 0
        for node in inputs:
            if node.elem_kind is not first.elem_kind or node.type.rank != first.type.rank:
                raise ShapeInvariantViolation(f"cannot concat {node.type} with {first.type}")
            for i, (a, b) in enumerate(zip(node.dims, first.dims)):
                if i != axis and a != b:
                    raise ShapeInvariantViolation(
                        f"concat inputs differ outside axis {axis}: "
                        f"{list(node.dims)} vs {list(first.dims)}"
                    )
            total += node.dims[axis]
        dims = list(first.dims)
        dims[axis] = total
        return self._add(NodeKind.CONCAT, name, list(inputs), first.elem_kind, dims, axis=axis)

    def create_broadcast(
        self, name: str, input: Node, target_dims: Sequence[int], axis: int
    ) -> Node:
        """Broadcast ``input`` to ``target_dims``, aligning its first dim at ``axis``."""
        target_dims = tuple(int(d) for d in target_dims)
        if axis < 0 or axis + input.type.rank > len(target_dims):
            raise ShapeInvariantViolation(
                f"cannot broadcast {list(input.dims)} into {list(target_dims)} at axis {axis}"
            )
        for i, d in enumerate(input.dims):
            if d != 1 and d != target_dims[axis + i]:
                raise ShapeInvariantViolation(
                    f"cannot broadcast {list(input.dims)} into {list(target_dims)} at axis {axis}"
                )
        return self._add(
            NodeKind.BROADCAST, name, [input], input.elem_kind, target_dims, axis=axis
        )

    # -------------------------------------------------------------------------
    # Spatial operations (NHWC)
    # -------------------------------------------------------------------------

    def create_conv(
        self,
        name: str,
        input: Node,
        filter: Node,
        bias: Node,
        out_type: TensorType,
        kernel: int,
        stride: int,
        pads: Sequence[int],
        group: int,
    ) -> Node:
        if input.type.rank != 4 or out_type.rank != 4:
            raise ShapeInvariantViolation(f"conv expects NHWC tensors, got {input.type}")
        channels = input.dims[3]
        depth = out_type.dims[3]
        if group <= 0 or channels % group or depth % group:
            raise ShapeInvariantViolation(
                f"group {group} does not divide channels {channels} and depth {depth}"
            )
        expected_filter = (depth, kernel, kernel, channels // group)
        if filter.dims != expected_filter:
            raise ShapeInvariantViolation(
                f"conv filter {list(filter.dims)} does not match {list(expected_filter)}"
            )
        if bias.dims != (depth,):
            raise ShapeInvariantViolation(f"conv bias {list(bias.dims)} expected [{depth}]")
        out_h, out_w = conv_pool_output_dims(input.dims[1], input.dims[2], kernel, stride, pads)
        if out_type.dims != (input.dims[0], out_h, out_w, depth):
            raise ShapeInvariantViolation(
                f"conv result type {out_type} does not match computed "
                f"[{input.dims[0]}, {out_h}, {out_w}, {depth}]"
            )
        node = Node(
            kind=NodeKind.CONV,
            name=self.module.unique_name(name),
            inputs=[input, filter, bias],
            type=out_type,
            attrs={"kernel": kernel, "stride": stride, "pads": tuple(pads), "group": group},
        )
        self.nodes.append(node)
        return node

    def _create_pool(
        self, kind: NodeKind, name: str, input: Node, kernel: int, stride: int, pads: Sequence[int]
    ) -> Node:
        if input.type.rank != 4:
            raise ShapeInvariantViolation(f"pooling expects an NHWC tensor, got {input.type}")
        n, h, w, c = input.dims
        out_h, out_w = conv_pool_output_dims(h, w, kernel, stride, pads)
        return self._add(
            kind,
            name,
            [input],
            input.elem_kind,
            (n, out_h, out_w, c),
            kernel=kernel,
            stride=stride,
            pads=tuple(pads),
        )

    def create_pool_max(
        self, name: str, input: Node, kernel: int, stride: int, pads: Sequence[int]
    ) -> Node:
        return self._create_pool(NodeKind.POOL_MAX, name, input, kernel, stride, pads)

    def create_pool_avg(
        self, name: str, input: Node, kernel: int, stride: int, pads: Sequence[int]
    ) -> Node:
        return self._create_pool(NodeKind.POOL_AVG, name, input, kernel, stride, pads)

    def create_batch_normalization(
        self,
        name: str,
        input: Node,
        channel_idx: int,
        epsilon: float,
        momentum: float = 0.9,
    ) -> Node:
        """Batch norm with fresh scale/bias/mean/var parameters.

        The four parameters are created with one element per channel
        (scale = 1, others = 0) and are the node's inputs 1-4.
        """
        channel_idx = _normalize_axis(channel_idx, input.type.rank)
        channels = input.dims[channel_idx]
        params = []
        for suffix in ("scale", "bias", "mean", "var"):
            tensor = Tensor.zeros(ElemKind.FLOAT, (channels,))
            if suffix == "scale":
                tensor.handle().fill(1.0)
            params.append(self.module.create_parameter(f"{name}.{suffix}", tensor))
        return self._add(
            NodeKind.BATCH_NORM,
            name,
            [input, *params],
            input.elem_kind,
            input.dims,
            channel_idx=channel_idx,
            epsilon=float(epsilon),
            momentum=float(momentum),
        )

    # -------------------------------------------------------------------------
    # Contractions and elementwise operations
    # -------------------------------------------------------------------------

    def create_matmul(self, name: str, lhs: Node, rhs: Node) -> Node:
        if lhs.type.rank != 2 or rhs.type.rank != 2 or lhs.dims[1] != rhs.dims[0]:
            raise ShapeInvariantViolation(
                f"cannot multiply {list(lhs.dims)} by {list(rhs.dims)}"
            )
        return self._add(
            NodeKind.MATMUL, name, [lhs, rhs], lhs.elem_kind, (lhs.dims[0], rhs.dims[1])
        )

    def _create_binary(self, kind: NodeKind, name: str, lhs: Node, rhs: Node) -> Node:
        if lhs.type != rhs.type:
            raise ShapeInvariantViolation(
                f"{kind.name.lower()} operands differ: {lhs.type} vs {rhs.type}"
            )
        return self._add(kind, name, [lhs, rhs], lhs.elem_kind, lhs.dims)

    def create_add(self, name: str, lhs: Node, rhs: Node) -> Node:
        return self._create_binary(NodeKind.ADD, name, lhs, rhs)

    def create_sub(self, name: str, lhs: Node, rhs: Node) -> Node:
        return self._create_binary(NodeKind.SUB, name, lhs, rhs)

    def create_mul(self, name: str, lhs: Node, rhs: Node) -> Node:
        return self._create_binary(NodeKind.MUL, name, lhs, rhs)

    def create_div(self, name: str, lhs: Node, rhs: Node) -> Node:
        return self._create_binary(NodeKind.DIV, name, lhs, rhs)

    def create_relu(self, name: str, input: Node) -> Node:
        return self._add(NodeKind.RELU, name, [input], input.elem_kind, input.dims)

    def create_sigmoid(self, name: str, input: Node) -> Node:
        return self._add(NodeKind.SIGMOID, name, [input], input.elem_kind, input.dims)

    def create_tanh(self, name: str, input: Node) -> Node:
        return self._add(NodeKind.TANH, name, [input], input.elem_kind, input.dims)

    def create_softmax(self, name: str, input: Node) -> Node:
        """Softmax over the second dimension of a 2-D input."""
        if input.type.rank != 2:
            raise ShapeInvariantViolation(f"softmax expects a 2-D input, got {input.type}")
        return self._add(NodeKind.SOFTMAX, name, [input], input.elem_kind, input.dims)

    def create_save(self, name: str, value: Node) -> Node:
        """Terminal node marking ``value`` as a function result."""
        return self._add(NodeKind.SAVE, name, [value], value.elem_kind, value.dims)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def saves(self) -> list[Node]:
        return [n for n in self.nodes if n.kind is NodeKind.SAVE]

    def summary(self) -> dict[str, Any]:
        """Summarize the function.

        Returns:
            Dictionary with:
            - op_counts: Count of each node kind
            - total_nodes: Number of nodes in the function
            - parameters: Number of module parameters
            - outputs: Save node name -> result dims
        """
        op_counts: dict[str, int] = {}
        for node in self.nodes:
            op_counts[node.kind.name] = op_counts.get(node.kind.name, 0) + 1
        return {
            "op_counts": op_counts,
            "total_nodes": len(self.nodes),
            "parameters": len(self.module.parameters),
            "outputs": {n.name: list(n.dims) for n in self.saves()},
        }

    def dump(self) -> str:
        lines = [f"function {self.name}:"]
        for node in self.nodes:
            operands = ", ".join(i.name for i in node.inputs)
            lines.append(f"  {node.name} = {node.kind.name}({operands}) : {node.type}")
        return "\n".join(lines)
