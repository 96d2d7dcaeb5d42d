"""Element kinds shared by tensors and IR types.

The IR knows two element kinds: 32-bit floats and indices. Indices are stored
as int64 by default so ONNX INT64 payloads are kept at full width. Loaders may
opt into int32 index storage, in which case out-of-range values are rejected
rather than silently narrowed.

Usage:
    from onnx_lower.dtypes import ElemKind, get_numpy_dtype, elem_kind_for_onnx

    kind = elem_kind_for_onnx(onnx.TensorProto.FLOAT)  # ElemKind.FLOAT
    dtype = get_numpy_dtype(kind)                      # np.float32
"""

from __future__ import annotations

from enum import Enum

import numpy as np
from onnx import TensorProto

from .errors import UnsupportedTensorKind


class ElemKind(Enum):
    FLOAT = "float"
    INDEX = "index"


# Index storage widths accepted by the loader
INDEX_DTYPES: tuple[np.dtype, ...] = (np.dtype(np.int64), np.dtype(np.int32))
DEFAULT_INDEX_DTYPE = np.dtype(np.int64)

# Mapping from ONNX TensorProto data types to element kinds
_ONNX_TO_KIND: dict[int, ElemKind] = {
    TensorProto.FLOAT: ElemKind.FLOAT,
    TensorProto.INT64: ElemKind.INDEX,
}

# Little-endian wire dtypes for raw_data payloads
_ONNX_RAW_DTYPE: dict[int, np.dtype] = {
    TensorProto.FLOAT: np.dtype("<f4"),
    TensorProto.INT64: np.dtype("<i8"),
}


def onnx_type_name(data_type: int) -> str:
    """Return the ONNX name of a TensorProto data type (e.g. ``"FLOAT16"``)."""
    try:
        return TensorProto.DataType.Name(data_type)
    except ValueError:
        return f"<unknown {data_type}>"


def elem_kind_for_onnx(data_type: int) -> ElemKind:
    """Map an ONNX data type to an element kind.

    Raises:
        UnsupportedTensorKind: For anything other than FLOAT and INT64.
    """
    kind = _ONNX_TO_KIND.get(data_type)
    if kind is None:
        raise UnsupportedTensorKind(
            f"only FLOAT and INT64 tensors are supported, got {onnx_type_name(data_type)}"
        )
    return kind


def raw_dtype_for_onnx(data_type: int) -> np.dtype:
    """Return the little-endian dtype used to decode ``raw_data``."""
    elem_kind_for_onnx(data_type)
    return _ONNX_RAW_DTYPE[data_type]


def get_numpy_dtype(kind: ElemKind, index_dtype: np.dtype | None = None) -> np.dtype:
    """Storage dtype for an element kind.

    Args:
        kind: Element kind.
        index_dtype: Storage width for ``ElemKind.INDEX``; int64 if omitted.

    Raises:
        ValueError: If ``index_dtype`` is not one of INDEX_DTYPES.
    """
    if kind is ElemKind.FLOAT:
        return np.dtype(np.float32)
    if index_dtype is None:
        return DEFAULT_INDEX_DTYPE
    index_dtype = np.dtype(index_dtype)
    if index_dtype not in INDEX_DTYPES:
        raise ValueError(
            f"Unknown index dtype: {index_dtype}. Valid options: {[str(d) for d in INDEX_DTYPES]}"
        )
    return index_dtype


def elem_kind_for_numpy(dtype: np.dtype) -> ElemKind:
    """Element kind for a numpy array dtype (float32 or a supported index width)."""
    dtype = np.dtype(dtype)
    if dtype == np.float32:
        return ElemKind.FLOAT
    if dtype in INDEX_DTYPES:
        return ElemKind.INDEX
    raise UnsupportedTensorKind(f"numpy dtype {dtype} has no element kind")
