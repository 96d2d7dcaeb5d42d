"""onnx-lower: load ONNX models into a channel-last graph IR.

Decodes ONNX ModelProto payloads, materializes initializer and constant
tensors, and lowers each supported operator into IR nodes, converting the
NCHW layout of spatial operators into the IR's NHWC layout.

Key exports:
- ONNXModelLoader / LoadConfig: configurable loading pipeline
- load_onnx_file / load_onnx_bytes: standalone and embedded entry points
- Module / Function: the IR the model is lowered into
- ModelLoadError: base class of every loading failure
"""

from .dtypes import ElemKind
from .errors import (
    AttributeTypeError,
    FormatError,
    MissingAttributeError,
    ModelFileError,
    ModelLoadError,
    ShapeInvariantViolation,
    UnsupportedAttributeShape,
    UnsupportedOperator,
    UnsupportedTensorKind,
    VersionError,
)
from .graph import Function, Module, Node, NodeKind, TensorType
from .op_registry import OpKind, supported_op_types
from .pipeline import LoadConfig, LoadResult, ONNXModelLoader, load_onnx_bytes, load_onnx_file
from .tensor import Tensor

__version__ = "0.1.0"

__all__ = [
    "AttributeTypeError",
    "ElemKind",
    "FormatError",
    "Function",
    "LoadConfig",
    "LoadResult",
    "MissingAttributeError",
    "ModelFileError",
    "ModelLoadError",
    "Module",
    "Node",
    "NodeKind",
    "ONNXModelLoader",
    "OpKind",
    "ShapeInvariantViolation",
    "Tensor",
    "TensorType",
    "UnsupportedAttributeShape",
    "UnsupportedOperator",
    "UnsupportedTensorKind",
    "VersionError",
    "load_onnx_bytes",
    "load_onnx_file",
    "supported_op_types",
]
