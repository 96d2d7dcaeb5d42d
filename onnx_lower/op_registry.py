"""Closed set of ONNX operators the loader can lower.

Operator names are resolved to an OpKind when the model is read. Anything
outside the default ONNX domain, and any name not listed here, becomes
``OpKind.UNSUPPORTED``.
"""

from __future__ import annotations

from enum import Enum


class OpKind(Enum):
    # ---- tensors with values ----
    CONSTANT = "Constant"

    # ---- spatial (NCHW in the model, NHWC in the IR) ----
    CONV = "Conv"
    MAX_POOL = "MaxPool"
    AVERAGE_POOL = "AveragePool"
    GLOBAL_AVERAGE_POOL = "GlobalAveragePool"
    BATCH_NORMALIZATION = "BatchNormalization"

    # ---- shape / view ----
    SQUEEZE = "Squeeze"
    UNSQUEEZE = "Unsqueeze"
    CONCAT = "Concat"
    TRANSPOSE = "Transpose"
    RESHAPE = "Reshape"
    FLATTEN = "Flatten"

    # ---- passthrough ----
    DROPOUT = "Dropout"
    IDENTITY = "Identity"

    # ---- GEMM / contractions ----
    GEMM = "Gemm"
    MATMUL = "MatMul"

    # ---- elementwise ----
    RELU = "Relu"
    SIGMOID = "Sigmoid"
    TANH = "Tanh"
    SOFTMAX = "Softmax"
    ADD = "Add"
    SUB = "Sub"
    MUL = "Mul"
    DIV = "Div"
    SUM = "Sum"

    UNSUPPORTED = "<unsupported>"

    @classmethod
    def from_onnx(cls, op_type: str, domain: str = "") -> OpKind:
        """Resolve an ONNX ``op_type`` in ``domain`` to its kind."""
        if domain not in ("", "ai.onnx"):
            return cls.UNSUPPORTED
        return _BY_NAME.get(op_type, cls.UNSUPPORTED)


_BY_NAME: dict[str, OpKind] = {
    kind.value: kind for kind in OpKind if kind is not OpKind.UNSUPPORTED
}


def supported_op_types() -> list[str]:
    """Sorted ONNX operator names with a lowering rule."""
    return sorted(_BY_NAME)


def is_supported(op_type: str, domain: str = "") -> bool:
    return OpKind.from_onnx(op_type, domain) is not OpKind.UNSUPPORTED
