"""Tests for operator kind resolution and element-kind tables."""

from __future__ import annotations

import numpy as np
import pytest
from onnx import TensorProto

from onnx_lower.dtypes import (
    ElemKind,
    elem_kind_for_numpy,
    elem_kind_for_onnx,
    get_numpy_dtype,
    onnx_type_name,
)
from onnx_lower.errors import UnsupportedTensorKind
from onnx_lower.op_registry import OpKind, is_supported, supported_op_types


class TestOpKind:
    def test_resolves_onnx_names(self):
        assert OpKind.from_onnx("GlobalAveragePool") is OpKind.GLOBAL_AVERAGE_POOL
        assert OpKind.from_onnx("BatchNormalization") is OpKind.BATCH_NORMALIZATION

    def test_case_sensitive(self):
        assert OpKind.from_onnx("conv") is OpKind.UNSUPPORTED

    def test_sentinel_not_resolvable(self):
        assert OpKind.from_onnx("<unsupported>") is OpKind.UNSUPPORTED

    def test_supported_op_types(self):
        ops = supported_op_types()
        assert ops == sorted(ops)
        assert len(ops) == len(OpKind) - 1
        assert {"Conv", "MaxPool", "Gemm", "Concat", "Dropout"} <= set(ops)

    def test_is_supported(self):
        assert is_supported("Relu")
        assert not is_supported("Relu", domain="com.microsoft")
        assert not is_supported("LSTM")


class TestDtypes:
    def test_onnx_kinds(self):
        assert elem_kind_for_onnx(TensorProto.FLOAT) is ElemKind.FLOAT
        assert elem_kind_for_onnx(TensorProto.INT64) is ElemKind.INDEX
        with pytest.raises(UnsupportedTensorKind):
            elem_kind_for_onnx(TensorProto.INT32)

    def test_type_names(self):
        assert onnx_type_name(TensorProto.FLOAT16) == "FLOAT16"
        assert onnx_type_name(9999).startswith("<unknown")

    def test_numpy_dtypes(self):
        assert get_numpy_dtype(ElemKind.FLOAT) == np.float32
        assert get_numpy_dtype(ElemKind.INDEX) == np.int64
        assert get_numpy_dtype(ElemKind.INDEX, np.dtype(np.int32)) == np.int32
        with pytest.raises(ValueError):
            get_numpy_dtype(ElemKind.INDEX, np.dtype(np.int16))

    def test_numpy_kinds(self):
        assert elem_kind_for_numpy(np.float32) is ElemKind.FLOAT
        assert elem_kind_for_numpy(np.int32) is ElemKind.INDEX
        with pytest.raises(UnsupportedTensorKind):
            elem_kind_for_numpy(np.float64)
