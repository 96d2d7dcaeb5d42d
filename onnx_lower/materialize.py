"""Conversion of serialized ONNX tensors into typed buffers."""

from __future__ import annotations

import logging
import math

import numpy as np
import onnx
from onnx import TensorProto

from .dtypes import (
    DEFAULT_INDEX_DTYPE,
    ElemKind,
    elem_kind_for_onnx,
    get_numpy_dtype,
    onnx_type_name,
    raw_dtype_for_onnx,
)
from .errors import ShapeInvariantViolation, UnsupportedTensorKind
from .tensor import Tensor

logger = logging.getLogger(__name__)


def _typed_payload(proto: TensorProto, kind: ElemKind):
    if kind is ElemKind.FLOAT:
        return proto.float_data
    return proto.int64_data


def _store_index(values: np.ndarray, index_dtype: np.dtype, name: str) -> np.ndarray:
    """Convert int64 values to the index storage width, rejecting overflow."""
    if index_dtype == np.int64:
        return values.astype(np.int64, copy=False)
    info = np.iinfo(index_dtype)
    if values.size and (values.min() < info.min or values.max() > info.max):
        raise UnsupportedTensorKind(
            f"tensor {name!r} holds values outside the {index_dtype} index range"
        )
    return values.astype(index_dtype)


def load_tensor(proto: TensorProto, index_dtype: np.dtype = DEFAULT_INDEX_DTYPE) -> Tensor:
    """Materialize a TensorProto.

    The typed element array is used when non-empty, otherwise ``raw_data`` is
    decoded as little-endian row-major elements. Either payload must hold
    exactly ``prod(dims)`` elements.

    Args:
        proto: Serialized tensor (initializer or Constant value).
        index_dtype: Storage width for INT64 tensors.

    Returns:
        A newly allocated Tensor; repeated calls never share buffers.

    Raises:
        UnsupportedTensorKind: Unsupported data type, external data, no
            payload, a payload of the wrong length, or index overflow.
    """
    kind = elem_kind_for_onnx(proto.data_type)
    dims = tuple(int(d) for d in proto.dims)
    count = math.prod(dims)
    name = proto.name

    if proto.data_location == TensorProto.EXTERNAL:
        raise UnsupportedTensorKind(f"tensor {name!r} uses external data, which is not supported")

    typed = _typed_payload(proto, kind)
    if len(typed) > 0:
        values = np.array(typed, dtype=np.float32 if kind is ElemKind.FLOAT else np.int64)
    elif proto.HasField("raw_data"):
        wire = raw_dtype_for_onnx(proto.data_type)
        if len(proto.raw_data) != count * wire.itemsize:
            raise UnsupportedTensorKind(
                f"tensor {name!r}: raw_data has {len(proto.raw_data)} bytes, "
                f"expected {count * wire.itemsize} for dims {list(dims)}"
            )
        values = np.frombuffer(proto.raw_data, dtype=wire, count=count)
    else:
        raise UnsupportedTensorKind(
            f"tensor {name!r} ({onnx_type_name(proto.data_type)}) has no payload"
        )

    if values.size != count:
        raise UnsupportedTensorKind(
            f"tensor {name!r}: {values.size} elements do not fill dims {list(dims)}"
        )

    if kind is ElemKind.FLOAT:
        data = values.astype(np.float32)
    else:
        data = _store_index(values, get_numpy_dtype(kind, index_dtype), name)
    # astype on a read-only frombuffer view may return the view itself
    data = np.array(data.reshape(dims), copy=True)
    logger.debug(f"Materialized tensor {name!r}: {kind.value}{list(dims)}")
    return Tensor(data, kind)


def load_shape(
    value_info: onnx.ValueInfoProto, index_dtype: np.dtype = DEFAULT_INDEX_DTYPE
) -> Tensor:
    """Allocate an uninitialized-content tensor for a declared graph input.

    Only the element type and shape are taken from ``value_info``; the caller
    fills the buffer before execution.

    Raises:
        UnsupportedTensorKind: Element type other than FLOAT/INT64.
        ShapeInvariantViolation: Missing shape or symbolic dimensions.
    """
    tensor_type = value_info.type.tensor_type
    kind = elem_kind_for_onnx(tensor_type.elem_type)
    if not tensor_type.HasField("shape"):
        raise ShapeInvariantViolation(f"input {value_info.name!r} declares no shape")
    dims = []
    for dim in tensor_type.shape.dim:
        if not dim.HasField("dim_value"):
            label = dim.dim_param or "?"
            raise ShapeInvariantViolation(
                f"input {value_info.name!r} has symbolic dimension {label!r}"
            )
        dims.append(int(dim.dim_value))
    return Tensor.zeros(kind, dims, index_dtype)
