"""Typed tensor buffers backed by numpy arrays.

A Tensor pairs a contiguous numpy array with its element kind. It is the
unit stored in the tensor table and attached to IR parameter nodes.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from .dtypes import ElemKind, elem_kind_for_numpy, get_numpy_dtype
from .errors import ShapeInvariantViolation, UnsupportedTensorKind


class Tensor:
    """Owned, row-major typed buffer.

    Example:
        t = Tensor.zeros(ElemKind.FLOAT, (16,))
        t.handle()[:] = 1.0
        w = t.transpose((0,))
    """

    __slots__ = ("_data", "_kind")

    def __init__(self, data: np.ndarray, kind: ElemKind | None = None) -> None:
        if kind is None:
            kind = elem_kind_for_numpy(data.dtype)
        elif elem_kind_for_numpy(data.dtype) is not kind:
            raise UnsupportedTensorKind(
                f"array dtype {data.dtype} does not store {kind.value} elements"
            )
        # 0-d arrays stay 0-d
        self._data = np.asarray(data, order="C")
        self._kind = kind

    @classmethod
    def zeros(
        cls,
        kind: ElemKind,
        dims: Sequence[int],
        index_dtype: np.dtype | None = None,
    ) -> Tensor:
        """Allocate a zero-filled tensor of the given kind and shape."""
        dtype = get_numpy_dtype(kind, index_dtype)
        return cls(np.zeros(tuple(int(d) for d in dims), dtype=dtype), kind)

    @classmethod
    def from_array(cls, array: np.ndarray | Sequence, kind: ElemKind | None = None) -> Tensor:
        """Copy an array-like into a new tensor.

        Float arrays of any width are stored as float32 and integer arrays
        as int64 unless they are already int32.
        """
        array = np.asarray(array)
        if kind is None:
            kind = ElemKind.FLOAT if array.dtype.kind == "f" else ElemKind.INDEX
        if kind is ElemKind.FLOAT:
            dtype = np.float32
        elif array.dtype == np.int32:
            dtype = np.int32
        else:
            dtype = np.int64
        return cls(np.array(array, dtype=dtype, copy=True), kind)

    @property
    def elem_kind(self) -> ElemKind:
        return self._kind

    @property
    def dims(self) -> tuple[int, ...]:
        return tuple(self._data.shape)

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    @property
    def size(self) -> int:
        return int(self._data.size)

    def handle(self) -> np.ndarray:
        """Writable view of the elements (no copy)."""
        return self._data

    def raw_bytes(self) -> bytes:
        """Row-major bytes of the buffer in native byte order."""
        return self._data.tobytes()

    def copy(self) -> Tensor:
        return Tensor(self._data.copy(), self._kind)

    def copy_from(self, other: Tensor) -> None:
        """Overwrite this tensor's elements with ``other``'s.

        Raises:
            ShapeInvariantViolation: If shape or element kind differ.
        """
        if other.elem_kind is not self._kind or other.dims != self.dims:
            raise ShapeInvariantViolation(
                f"cannot copy {other.elem_kind.value}{list(other.dims)} "
                f"into {self._kind.value}{list(self.dims)}"
            )
        np.copyto(self._data, other.handle(), casting="same_kind")

    def transpose(self, perm: Sequence[int]) -> Tensor:
        """Return a new tensor with dimensions permuted by ``perm``."""
        perm = tuple(int(p) for p in perm)
        if sorted(perm) != list(range(self._data.ndim)):
            raise ShapeInvariantViolation(
                f"permutation {list(perm)} does not match rank {self._data.ndim}"
            )
        return Tensor(np.asarray(self._data.transpose(perm), order="C"), self._kind)

    def zero(self) -> None:
        self._data.fill(0)

    def is_equal(self, other: Tensor) -> bool:
        return (
            self._kind is other.elem_kind
            and self.dims == other.dims
            and bool(np.array_equal(self._data, other.handle()))
        )

    def __repr__(self) -> str:
        return f"Tensor({self._kind.value}, dims={list(self.dims)})"
