"""Strongly-typed IR consumed by downstream compilers."""

from .function import Function, Module, conv_pool_output_dims
from .nodes import NCHW2NHWC, NHWC2NCHW, Node, NodeKind, TensorType

__all__ = [
    "Function",
    "Module",
    "NCHW2NHWC",
    "NHWC2NCHW",
    "Node",
    "NodeKind",
    "TensorType",
    "conv_pool_output_dims",
]
