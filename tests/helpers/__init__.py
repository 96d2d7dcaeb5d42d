"""Test helpers for onnx-lower tests."""

from __future__ import annotations

from .onnx_models import (
    float_initializer,
    int_initializer,
    make_model,
    save_model,
    tensor_info,
)

__all__ = [
    "float_initializer",
    "int_initializer",
    "make_model",
    "save_model",
    "tensor_info",
]
