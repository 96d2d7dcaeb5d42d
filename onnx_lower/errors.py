"""Exceptions raised while loading an ONNX model into the IR."""

from __future__ import annotations


class ModelLoadError(Exception):
    """Base exception for model loading errors.

    ``node_context`` is filled in by the loader when the error was raised
    while lowering a specific node, as ``(op_type, node_name)``.
    """

    error_type: str = "model_load_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message
        self.node_context: tuple[str, str] | None = None

    def __str__(self) -> str:
        if self.node_context is None:
            return self.message
        op_type, name = self.node_context
        return f"{op_type} node {name!r}: {self.message}"


class FormatError(ModelLoadError):
    """Raised for undecodable or oversized model payloads."""

    error_type = "format_error"


class ModelFileError(FormatError):
    """Raised when the model file cannot be opened."""

    error_type = "model_file_error"


class VersionError(ModelLoadError):
    """Raised for an IR version or default opset the loader cannot handle."""

    error_type = "version_error"


class UnsupportedTensorKind(ModelLoadError):
    """Raised for tensors with an unsupported element type or no usable payload."""

    error_type = "unsupported_tensor_kind"


class UnsupportedAttributeShape(ModelLoadError):
    """Raised for attribute values the lowering rules cannot translate."""

    error_type = "unsupported_attribute"


class MissingAttributeError(UnsupportedAttributeShape):
    """Raised when a required attribute is absent from a node."""

    error_type = "missing_attribute"

    def __init__(self, name: str):
        super().__init__(f"missing required attribute {name!r}")
        self.attribute = name


class AttributeTypeError(UnsupportedAttributeShape):
    """Raised when an attribute holds a different type than requested."""

    error_type = "attribute_type_mismatch"

    def __init__(self, name: str, expected: str, actual: str):
        super().__init__(f"attribute {name!r} is {actual}, expected {expected}")
        self.attribute = name
        self.expected = expected
        self.actual = actual


class UnsupportedOperator(ModelLoadError):
    """Raised for an operator type that has no lowering rule."""

    error_type = "unsupported_operator"

    def __init__(self, op_type: str, node_name: str = ""):
        super().__init__(f"unsupported operator {op_type!r} (node {node_name!r})")
        self.op_type = op_type
        self.node_name = node_name


class ShapeInvariantViolation(ModelLoadError):
    """Raised when shapes or value names do not line up."""

    error_type = "shape_invariant"
