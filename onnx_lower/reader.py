"""ONNX protobuf reader.

Decodes a serialized ModelProto from bytes, a binary stream or a file path,
resolves the IR and default-opset versions, and exposes the graph as plain
description objects for the lowering engine.

Example:
    desc = read_model("model.onnx")
    print(desc.ir_version, desc.opset_version)
    for node in desc.graph.nodes:
        print(node.op_type, node.kind)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Union

import onnx
from google.protobuf.message import DecodeError

from .errors import FormatError, ModelFileError, VersionError
from .op_registry import OpKind

logger = logging.getLogger(__name__)

# Hard upper bound on the serialized model size (protobuf's 2 GiB limit)
MAX_PROTO_SIZE = 0x7FFFFFFF

# Oldest ONNX IR version the loader understands
MIN_IR_VERSION = 3

ModelSource = Union[bytes, bytearray, memoryview, str, os.PathLike, BinaryIO]


@dataclass
class NodeDescription:
    """One ONNX node, with its operator kind resolved.

    Attributes:
        op_type: ONNX operator name as written in the model.
        kind: Resolved operator kind (UNSUPPORTED when unknown).
        name: Instance name; may be empty.
        inputs: Input value names, in order. Empty strings mark omitted optionals.
        outputs: Output value names, in order.
        attribute: Raw attribute list (see AttributeDictionary).
        domain: Operator domain; empty for the default ONNX domain.
    """

    op_type: str
    kind: OpKind
    name: str
    inputs: list[str]
    outputs: list[str]
    attribute: list[onnx.AttributeProto] = field(default_factory=list)
    domain: str = ""

    @property
    def display_name(self) -> str:
        """Instance name, falling back to the first output name."""
        if self.name:
            return self.name
        return self.outputs[0] if self.outputs else self.op_type

    @classmethod
    def from_proto(cls, node: onnx.NodeProto) -> NodeDescription:
        return cls(
            op_type=node.op_type,
            kind=OpKind.from_onnx(node.op_type, node.domain),
            name=node.name,
            inputs=list(node.input),
            outputs=list(node.output),
            attribute=list(node.attribute),
            domain=node.domain,
        )


@dataclass
class GraphDescription:
    """Graph contents in declaration order."""

    nodes: list[NodeDescription]
    inputs: list[onnx.ValueInfoProto]
    initializers: list[onnx.TensorProto]
    outputs: list[str]
    name: str = ""


@dataclass
class ModelDescription:
    """Decoded model with resolved versions."""

    ir_version: int
    opset_version: int
    graph: GraphDescription
    producer_name: str = ""


def resolve_versions(model: onnx.ModelProto) -> tuple[int, int]:
    """Return ``(ir_version, opset_version)`` for a decoded model.

    The default opset is the first ``opset_import`` entry without a domain.

    Raises:
        VersionError: IR version below MIN_IR_VERSION or no default opset.
    """
    ir_version = int(model.ir_version)
    if ir_version < MIN_IR_VERSION:
        raise VersionError(
            f"ONNX IR version {ir_version} is too old; version {MIN_IR_VERSION} or newer is required"
        )

    opset_version = 0
    for opset in model.opset_import:
        if opset.domain == "":
            opset_version = int(opset.version)
            break

    if opset_version <= 0:
        declared = [f'{o.domain or "<default>"}:{o.version}' for o in model.opset_import]
        raise VersionError(f"no usable default-domain opset import (declared: {declared})")
    return ir_version, opset_version


def _read_source(source: ModelSource, max_size: int) -> bytes:
    if isinstance(source, (bytes, bytearray, memoryview)):
        data = bytes(source)
    elif isinstance(source, (str, os.PathLike)):
        path = Path(source)
        try:
            with open(path, "rb") as f:
                data = f.read(max_size + 1)
        except OSError as e:
            raise ModelFileError(f"cannot open model file {path}: {e}") from e
    else:
        data = source.read(max_size + 1)

    if len(data) > max_size:
        raise FormatError(f"model payload exceeds the {max_size}-byte limit")
    return data


def decode_model(data: bytes, check_model: bool = False) -> onnx.ModelProto:
    """Parse ModelProto bytes.

    Raises:
        FormatError: Undecodable payload, or checker failure when
            ``check_model`` is set.
    """
    try:
        model = onnx.load_model_from_string(data)
    except DecodeError as e:
        raise FormatError(f"cannot decode ONNX model: {e}") from e

    if check_model:
        try:
            onnx.checker.check_model(model)
        except onnx.checker.ValidationError as e:
            raise FormatError(f"Invalid ONNX model: {e}") from e
    return model


def describe_model(model: onnx.ModelProto) -> ModelDescription:
    """Resolve versions and convert a ModelProto into a ModelDescription."""
    ir_version, opset_version = resolve_versions(model)
    graph = model.graph
    description = ModelDescription(
        ir_version=ir_version,
        opset_version=opset_version,
        graph=GraphDescription(
            nodes=[NodeDescription.from_proto(node) for node in graph.node],
            inputs=list(graph.input),
            initializers=list(graph.initializer),
            outputs=[o.name for o in graph.output],
            name=graph.name,
        ),
        producer_name=model.producer_name,
    )
    opsets = [f'{o.domain or "ai.onnx"}:{o.version}' for o in model.opset_import]
    logger.info(
        f"Read ONNX model: IR version {ir_version}, opsets {opsets}, "
        f"{len(graph.node)} nodes, {len(graph.initializer)} initializers"
    )
    return description


def read_model(
    source: ModelSource,
    max_size: int = MAX_PROTO_SIZE,
    check_model: bool = False,
) -> ModelDescription:
    """Read and describe an ONNX model.

    Args:
        source: Serialized bytes, a readable binary stream, or a file path.
        max_size: Largest accepted payload, in bytes.
        check_model: Run ``onnx.checker.check_model`` before describing.

    Returns:
        ModelDescription with versions resolved.

    Raises:
        ModelFileError: The path cannot be opened.
        FormatError: Oversized or undecodable payload.
        VersionError: Unsupported IR version or no default opset.
    """
    data = _read_source(source, max_size)
    return describe_model(decode_model(data, check_model=check_model))
