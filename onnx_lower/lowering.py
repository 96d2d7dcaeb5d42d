"""Per-operator lowering of ONNX nodes into IR nodes.

Each supported OpKind has one rule. Rules resolve operands through the
tensor table (raw tensors such as conv weights) or as IR values, build one
or more IR nodes with the Function builder, and bind the result to the
node's first output name.

Spatial operators receive NCHW tensors from ONNX; the IR is channel-last, so
every spatial rule transposes its input to NHWC and its result back.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence

from .attributes import AttributeDictionary
from .dtypes import ElemKind
from .errors import (
    MissingAttributeError,
    ShapeInvariantViolation,
    UnsupportedAttributeShape,
)
from .graph import NCHW2NHWC, NHWC2NCHW, Function, Node, conv_pool_output_dims
from .op_registry import OpKind
from .reader import NodeDescription
from .tensor import Tensor
from .tensor_table import TensorTable

logger = logging.getLogger(__name__)

# Pads: (top, left, bottom, right)
ZERO_PADS: tuple[int, int, int, int] = (0, 0, 0, 0)

# Opset versions above this broadcast implicitly (numpy semantics)
LEGACY_BROADCAST_OPSET = 6

DEFAULT_BN_EPSILON = 1e-5
DEFAULT_BN_MOMENTUM = 0.9

# Softmax normalizes a single axis (default -1) from this opset on
SINGLE_AXIS_SOFTMAX_OPSET = 13

Rule = Callable[[NodeDescription, AttributeDictionary], None]


def get_pads(attrs: AttributeDictionary) -> tuple[int, ...]:
    """Padding for a 2-D spatial op.

    Explicit ``pads`` win; ``auto_pad="VALID"`` means no padding; any other
    ``auto_pad`` mode is rejected. Without either attribute there is no padding.
    """
    if "pads" in attrs:
        pads = attrs.as_ints("pads")
        if len(pads) != 4:
            raise UnsupportedAttributeShape(
                f"pads must hold 4 values (top, left, bottom, right), got {pads}"
            )
        return tuple(pads)
    if "auto_pad" in attrs:
        mode = attrs.as_string("auto_pad")
        if mode == "VALID":
            return ZERO_PADS
        raise UnsupportedAttributeShape(f"only auto_pad=VALID is supported, got {mode!r}")
    return ZERO_PADS


def get_broadcast(attrs: AttributeDictionary, opset_version: int) -> bool:
    """Whether a binary op broadcasts its second operand.

    Opset 7 and later always broadcast. Older opsets only do so when the node
    sets ``broadcast=1``.
    """
    if opset_version > LEGACY_BROADCAST_OPSET:
        return True
    return "broadcast" in attrs and attrs.as_int("broadcast") == 1


def _resolve_reshape_dims(input_dims: Sequence[int], target: Sequence[int]) -> list[int]:
    """Apply ONNX Reshape conventions: 0 copies the input dim, one -1 is inferred."""
    dims: list[int] = []
    infer_at = None
    for i, d in enumerate(target):
        if d == 0:
            if i >= len(input_dims):
                raise ShapeInvariantViolation(f"reshape dim {i} copies a missing input dim")
            dims.append(int(input_dims[i]))
        elif d == -1:
            if infer_at is not None:
                raise ShapeInvariantViolation(f"reshape target {list(target)} has several -1 dims")
            infer_at = i
            dims.append(1)
        elif d < 0:
            raise ShapeInvariantViolation(f"invalid reshape dim {d}")
        else:
            dims.append(int(d))
    if infer_at is not None:
        known = math.prod(dims)
        total = math.prod(input_dims)
        if known == 0 or total % known:
            raise ShapeInvariantViolation(
                f"cannot infer reshape of {list(input_dims)} into {list(target)}"
            )
        dims[infer_at] = total // known
    return dims


class OperatorLoweringEngine:
    """Translate NodeDescriptions into IR nodes of one Function.

    Example:
        engine = OperatorLoweringEngine(fn, table, opset_version=7)
        for node in description.graph.nodes:
            if not engine.lower(node):
                raise UnsupportedOperator(node.op_type, node.display_name)
    """

    def __init__(self, function: Function, table: TensorTable, opset_version: int) -> None:
        self.function = function
        self.module = function.module
        self.table = table
        self.opset_version = opset_version
        # Node outputs by ONNX value name
        self.values: dict[str, Node] = {}
        # Parameters created for table tensors, by ONNX value name
        self._parameters: dict[str, Node] = {}
        self._rules = self._build_dispatch_table()

        missing = [k for k in OpKind if k is not OpKind.UNSUPPORTED and k not in self._rules]
        if missing:
            raise RuntimeError(f"no lowering rule for {[k.value for k in missing]}")

    def _build_dispatch_table(self) -> dict[OpKind, Rule]:
        """Build OpKind -> rule mapping."""
        return {
            # Tensors with values
            OpKind.CONSTANT: self._lower_constant,
            # Spatial operations
            OpKind.CONV: self._lower_conv,
            OpKind.MAX_POOL: self._lower_pool,
            OpKind.AVERAGE_POOL: self._lower_pool,
            OpKind.GLOBAL_AVERAGE_POOL: self._lower_global_average_pool,
            OpKind.BATCH_NORMALIZATION: self._lower_batch_normalization,
            # Shape operations
            OpKind.SQUEEZE: self._lower_squeeze,
            OpKind.UNSQUEEZE: self._lower_unsqueeze,
            OpKind.CONCAT: self._lower_concat,
            OpKind.TRANSPOSE: self._lower_transpose,
            OpKind.RESHAPE: self._lower_reshape,
            OpKind.FLATTEN: self._lower_flatten,
            # Passthrough
            OpKind.DROPOUT: self._lower_identity,
            OpKind.IDENTITY: self._lower_identity,
            # Matrix operations
            OpKind.GEMM: self._lower_gemm,
            OpKind.MATMUL: self._lower_matmul,
            # Element-wise operations
            OpKind.RELU: self._lower_unary,
            OpKind.SIGMOID: self._lower_unary,
            OpKind.TANH: self._lower_unary,
            OpKind.SOFTMAX: self._lower_softmax,
            OpKind.ADD: self._lower_arithmetic,
            OpKind.SUB: self._lower_arithmetic,
            OpKind.MUL: self._lower_arithmetic,
            OpKind.DIV: self._lower_arithmetic,
            OpKind.SUM: self._lower_sum,
        }

    def lower(self, node: NodeDescription) -> bool:
        """Lower one node.

        Returns:
            False if the operator is unsupported, True once it was translated.
        """
        rule = self._rules.get(node.kind)
        if rule is None:
            return False
        attrs = AttributeDictionary.build(node)
        logger.debug(f"Lowering {node.op_type} {node.display_name!r} {attrs.to_python()}")
        rule(node, attrs)
        return True

    # -------------------------------------------------------------------------
    # Value resolution
    # -------------------------------------------------------------------------

    def get_tensor(self, name: str) -> Tensor:
        """Raw tensor for a constant operand (weights, shapes, axes)."""
        return self.table.get(name)

    def get_or_create_value(self, name: str) -> Node:
        """IR value for ``name``.

        Table tensors become parameter nodes on first use; otherwise the
        output of an already lowered node is returned.

        Raises:
            ShapeInvariantViolation: ``name`` is neither a tensor nor a
                previously produced value.
        """
        param = self._parameters.get(name)
        if param is not None:
            return param
        if name in self.table:
            param = self.module.create_parameter(name, self.table.take_for_parameter(name))
            self._parameters[name] = param
            return param
        value = self.values.get(name)
        if value is not None:
            return value
        raise ShapeInvariantViolation(f"value {name!r} is used before it is defined")

    def has_value(self, name: str) -> bool:
        return name in self._parameters or name in self.table or name in self.values

    def _input(self, node: NodeDescription, idx: int) -> Node:
        if idx >= len(node.inputs) or not node.inputs[idx]:
            raise ShapeInvariantViolation(f"{node.op_type} node is missing input {idx}")
        return self.get_or_create_value(node.inputs[idx])

    def _require_inputs(self, node: NodeDescription, count: int) -> None:
        present = [n for n in node.inputs[:count] if n]
        if len(present) < count:
            raise ShapeInvariantViolation(
                f"{node.op_type} expects {count} inputs, got {len(present)}"
            )

    def _bind(self, node: NodeDescription, result: Node) -> None:
        if not node.outputs:
            raise ShapeInvariantViolation(f"{node.op_type} node declares no outputs")
        self.values[node.outputs[0]] = result
        extra = [o for o in node.outputs[1:] if o]
        if extra:
            logger.debug(f"Ignoring secondary outputs {extra} of {node.display_name!r}")

    # -------------------------------------------------------------------------
    # Tensors with values
    # -------------------------------------------------------------------------

    def _lower_constant(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        if not node.outputs or not node.outputs[0]:
            raise ShapeInvariantViolation("Constant node declares no outputs")
        name = node.outputs[0]
        # A tensor pre-bound by the caller replaces the serialized value
        if self.table.is_borrowed(name):
            return
        self.table.add_constant(name, attrs.as_tensor("value"))

    # -------------------------------------------------------------------------
    # Spatial operations
    # -------------------------------------------------------------------------

    def _lower_conv(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        self._require_inputs(node, 2)
        op_name = node.display_name
        stride = attrs.get_head_int("strides", 1)
        group = attrs.get_int("group", 1)
        pads = get_pads(attrs)

        input = self._input(node, 0)
        weights = self.get_tensor(node.inputs[1])
        if len(weights.dims) != 4:
            raise ShapeInvariantViolation(f"conv weights must be 4-D, got {list(weights.dims)}")

        # ONNX weights are OIHW (out, in, kH, kW); the IR reads OHWI
        filter_tensor = weights.transpose(NCHW2NHWC)
        depth = filter_tensor.dims[0]

        if "kernel_shape" in attrs:
            kernel = attrs.head_int("kernel_shape")
        else:
            if filter_tensor.dims[1] != filter_tensor.dims[2]:
                raise ShapeInvariantViolation(
                    f"only square kernels are supported, weights are {list(weights.dims)}"
                )
            kernel = filter_tensor.dims[1]

        bias_tensor = Tensor.zeros(ElemKind.FLOAT, (depth,))
        if len(node.inputs) > 2 and node.inputs[2] and node.inputs[2] in self.table:
            bias_tensor.copy_from(self.get_tensor(node.inputs[2]))

        filter = self.module.create_parameter(f"{op_name}.filter", filter_tensor)
        bias = self.module.create_parameter(f"{op_name}.bias", bias_tensor)

        tr = self.function.create_transpose(op_name, input, NCHW2NHWC)
        n, h, w, _ = tr.dims
        out_h, out_w = conv_pool_output_dims(h, w, kernel, stride, pads)
        out_type = self.module.unique_type(ElemKind.FLOAT, (n, out_h, out_w, depth))

        conv = self.function.create_conv(
            op_name, tr, filter, bias, out_type, kernel, stride, pads, group
        )
        self._bind(node, self.function.create_transpose(op_name, conv, NHWC2NCHW))

    def _lower_pool(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        op_name = node.display_name
        input = self._input(node, 0)
        stride = attrs.get_head_int("strides", 1)
        pads = get_pads(attrs)

        tr = self.function.create_transpose(op_name, input, NCHW2NHWC)

        # global_pooling pools over the whole input width, whatever kernel_shape says
        if "global_pooling" in attrs:
            kernel = tr.dims[2]
        elif "kernel_shape" in attrs:
            kernel = attrs.head_int("kernel_shape")
        else:
            raise MissingAttributeError("kernel_shape")

        if node.kind is OpKind.MAX_POOL:
            pool = self.function.create_pool_max(op_name, tr, kernel, stride, pads)
        else:
            pool = self.function.create_pool_avg(op_name, tr, kernel, stride, pads)
        self._bind(node, self.function.create_transpose(op_name, pool, NHWC2NCHW))

    def _lower_global_average_pool(
        self, node: NodeDescription, attrs: AttributeDictionary
    ) -> None:
        op_name = node.display_name
        input = self._input(node, 0)
        stride = attrs.get_head_int("strides", 1)
        if input.type.rank != 4 or input.dims[2] != input.dims[3]:
            raise ShapeInvariantViolation(
                f"global average pooling needs a square NCHW input, got {list(input.dims)}"
            )
        kernel = input.dims[2]
        pads = get_pads(attrs)

        tr = self.function.create_transpose(op_name, input, NCHW2NHWC)
        pool = self.function.create_pool_avg(op_name, tr, kernel, stride, pads)
        self._bind(node, self.function.create_transpose(op_name, pool, NHWC2NCHW))

    def _lower_batch_normalization(
        self, node: NodeDescription, attrs: AttributeDictionary
    ) -> None:
        self._require_inputs(node, 5)
        input = self._input(node, 0)
        scale, bias, mean, var = (self.get_tensor(name) for name in node.inputs[1:5])
        epsilon = attrs.get_float("epsilon", DEFAULT_BN_EPSILON)
        momentum = attrs.get_float("momentum", DEFAULT_BN_MOMENTUM)

        bn = self.function.create_batch_normalization(
            node.display_name, input, 1, epsilon, momentum
        )
        for param, tensor in zip(bn.inputs[1:], (scale, bias, mean, var)):
            param.payload.copy_from(tensor)
        self._bind(node, bn)

    # -------------------------------------------------------------------------
    # Shape operations
    # -------------------------------------------------------------------------

    def _axes(self, node: NodeDescription, attrs: AttributeDictionary) -> list[int]:
        """``axes`` attribute, or the constant second input used from opset 13."""
        if "axes" in attrs:
            return attrs.as_ints("axes")
        if len(node.inputs) > 1 and node.inputs[1]:
            return [int(a) for a in self.get_tensor(node.inputs[1]).handle().reshape(-1)]
        raise MissingAttributeError("axes")

    def _lower_squeeze(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        input = self._input(node, 0)
        axes = self._axes(node, attrs)
        self._bind(node, self.function.create_squeeze(node.display_name, input, axes))

    def _lower_unsqueeze(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        input = self._input(node, 0)
        axes = self._axes(node, attrs)
        self._bind(node, self.function.create_expand_dims(node.display_name, input, axes))

    def _lower_concat(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        axis = attrs.as_int("axis")
        inputs = [self.get_or_create_value(name) for name in node.inputs if name]
        self._bind(node, self.function.create_concat(node.display_name, inputs, axis))

    def _lower_transpose(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        input = self._input(node, 0)
        perm = attrs.as_ints("perm")
        self._bind(node, self.function.create_transpose(node.display_name, input, perm))

    def _lower_reshape(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        input = self._input(node, 0)
        if "shape" in attrs:
            target = attrs.as_ints("shape")
        elif len(node.inputs) > 1 and node.inputs[1]:
            shape = self.get_tensor(node.inputs[1])
            if shape.elem_kind is not ElemKind.INDEX:
                raise UnsupportedAttributeShape("reshape shape input must be an INT64 tensor")
            target = [int(d) for d in shape.handle().reshape(-1)]
        else:
            raise MissingAttributeError("shape")
        dims = _resolve_reshape_dims(input.dims, target)
        self._bind(node, self.function.create_reshape(node.display_name, input, dims))

    def _lower_flatten(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        input = self._input(node, 0)
        rank = input.type.rank
        axis = attrs.get_int("axis", 1)
        if not -rank <= axis <= rank:
            raise ShapeInvariantViolation(f"flatten axis {axis} out of range for rank {rank}")
        if axis < 0:
            axis += rank
        dims = (math.prod(input.dims[:axis]), math.prod(input.dims[axis:]))
        self._bind(node, self.function.create_reshape(node.display_name, input, dims))

    def _lower_identity(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        # Inference only: Dropout neither scales nor masks
        self._bind(node, self._input(node, 0))

    # -------------------------------------------------------------------------
    # Matrix operations
    # -------------------------------------------------------------------------

    def _lower_gemm(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        self._require_inputs(node, 2)
        op_name = node.display_name
        a = self._input(node, 0)
        b = self._input(node, 1)
        c = self._input(node, 2) if len(node.inputs) > 2 and node.inputs[2] else None

        broadcast_c = get_broadcast(attrs, self.opset_version)
        trans_a = attrs.get_bool("transA")
        trans_b = attrs.get_bool("transB")
        for scale_name in ("alpha", "beta"):
            if attrs.get_float(scale_name, 1.0) != 1.0:
                logger.warning(
                    f"Gemm {op_name!r}: {scale_name}={attrs.as_float(scale_name)} is not "
                    f"supported and is treated as 1"
                )

        if trans_a:
            a = self.function.create_transpose(op_name, a, (1, 0))
        if trans_b:
            b = self.function.create_transpose(op_name, b, (1, 0))

        result = self.function.create_matmul(op_name, a, b)
        if c is not None:
            if broadcast_c and c.dims != result.dims:
                axis = result.type.rank - c.type.rank
                c = self.function.create_broadcast(op_name, c, result.dims, axis)
            result = self.function.create_add(op_name, result, c)
        self._bind(node, result)

    def _lower_matmul(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        self._require_inputs(node, 2)
        lhs = self._input(node, 0)
        rhs = self._input(node, 1)
        self._bind(node, self.function.create_matmul(node.display_name, lhs, rhs))

    # -------------------------------------------------------------------------
    # Element-wise operations
    # -------------------------------------------------------------------------

    def _lower_unary(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        input = self._input(node, 0)
        create = {
            OpKind.RELU: self.function.create_relu,
            OpKind.SIGMOID: self.function.create_sigmoid,
            OpKind.TANH: self.function.create_tanh,
        }[node.kind]
        self._bind(node, create(node.display_name, input))

    def _lower_softmax(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        op_name = node.display_name
        input = self._input(node, 0)
        rank = input.type.rank
        single_axis = self.opset_version >= SINGLE_AXIS_SOFTMAX_OPSET
        axis = attrs.get_int("axis", -1 if single_axis else 1)
        if not -rank <= axis < rank:
            raise ShapeInvariantViolation(f"softmax axis {axis} out of range for rank {rank}")
        axis %= rank

        if single_axis:
            self._bind(node, self._softmax_over_axis(op_name, input, axis))
            return

        # Coerce to 2-D around axis (opset 1-12 definition)
        flat = (math.prod(input.dims[:axis]), math.prod(input.dims[axis:]))
        value = input
        if input.dims != flat:
            value = self.function.create_reshape(op_name, input, flat)
        value = self.function.create_softmax(op_name, value)
        if value.dims != input.dims:
            value = self.function.create_reshape(op_name, value, input.dims)
        self._bind(node, value)

    def _softmax_over_axis(self, op_name: str, input: Node, axis: int) -> Node:
        """Softmax over one axis: move it last, normalize rows, restore the layout."""
        rank = input.type.rank
        perm = [i for i in range(rank) if i != axis] + [axis]
        value = input
        if axis != rank - 1:
            value = self.function.create_transpose(op_name, value, perm)
        moved_dims = value.dims
        rows = (math.prod(moved_dims[:-1]), moved_dims[-1])
        if moved_dims != rows:
            value = self.function.create_reshape(op_name, value, rows)
        value = self.function.create_softmax(op_name, value)
        if value.dims != moved_dims:
            value = self.function.create_reshape(op_name, value, moved_dims)
        if axis != rank - 1:
            inverse = [perm.index(i) for i in range(rank)]
            value = self.function.create_transpose(op_name, value, inverse)
        return value

    def _lower_arithmetic(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        self._require_inputs(node, 2)
        op_name = node.display_name
        lhs = self._input(node, 0)
        rhs = self._input(node, 1)

        if lhs.dims != rhs.dims and get_broadcast(attrs, self.opset_version):
            axis = attrs.get_int("axis", -1)
            if axis == -1:
                axis = lhs.type.rank - rhs.type.rank
            rhs = self.function.create_broadcast(op_name, rhs, lhs.dims, axis)

        create = {
            OpKind.ADD: self.function.create_add,
            OpKind.SUB: self.function.create_sub,
            OpKind.MUL: self.function.create_mul,
            OpKind.DIV: self.function.create_div,
        }[node.kind]
        self._bind(node, create(op_name, lhs, rhs))

    def _lower_sum(self, node: NodeDescription, attrs: AttributeDictionary) -> None:
        names = [n for n in node.inputs if n]
        if not names:
            raise ShapeInvariantViolation("Sum needs at least one input")
        result = self.get_or_create_value(names[0])
        for name in names[1:]:
            result = self.function.create_add(
                node.display_name, result, self.get_or_create_value(name)
            )
        self._bind(node, result)
