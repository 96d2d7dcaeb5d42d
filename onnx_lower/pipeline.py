"""End-to-end ONNX loading into an IR function.

One ``ONNXModelLoader`` run decodes a model, checks its versions, fills the
tensor table, lowers every node in order and optionally binds the graph
outputs. ``LoadConfig`` selects between the two usual setups:

- embedded: the host supplies weights itself (pre-bound tensors); the model
  is only a graph description, so initializers and outputs are skipped.
- standalone: a self-contained model file with its initializers; outputs
  become save nodes.

Usage:
    from onnx_lower import Module, load_onnx_file

    module = Module()
    fn = module.create_function("main")
    result = load_onnx_file("model.onnx", fn, ["data"], [image])
    print(result.saves)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Union

import numpy as np

from .dtypes import DEFAULT_INDEX_DTYPE, INDEX_DTYPES
from .errors import ModelLoadError, UnsupportedOperator
from .graph import Function, Node
from .lowering import OperatorLoweringEngine
from .outputs import bind_outputs
from .reader import MAX_PROTO_SIZE, ModelDescription, ModelSource, read_model
from .tensor import Tensor
from .tensor_table import TensorTable

logger = logging.getLogger(__name__)

TensorLike = Union[Tensor, np.ndarray]


@dataclass(frozen=True)
class LoadConfig:
    """Options for one model load.

    Attributes:
        load_initializers: Materialize graph initializers into the table.
        bind_outputs: Create ``save_<name>`` nodes for graph outputs.
        prebound: Caller tensors by name; they override initializers and
            Constant nodes of the same name.
        max_proto_size: Largest accepted serialized model, in bytes.
        check_model: Run the ONNX checker before lowering.
        index_dtype: Storage for INT64 tensors (int64, or int32 with
            overflow checking).
    """

    load_initializers: bool = True
    bind_outputs: bool = True
    prebound: Mapping[str, TensorLike] = field(default_factory=dict)
    max_proto_size: int = MAX_PROTO_SIZE
    check_model: bool = False
    index_dtype: np.dtype = DEFAULT_INDEX_DTYPE

    def __post_init__(self) -> None:
        if self.max_proto_size <= 0:
            raise ValueError(f"max_proto_size must be positive, got {self.max_proto_size}")
        if np.dtype(self.index_dtype) not in INDEX_DTYPES:
            raise ValueError(f"unsupported index dtype {self.index_dtype}")

    @classmethod
    def embedded(cls, prebound: Mapping[str, TensorLike] | None = None) -> LoadConfig:
        """Graph only: weights come from ``prebound``, no save nodes."""
        return cls(load_initializers=False, bind_outputs=False, prebound=dict(prebound or {}))

    @classmethod
    def standalone(cls, prebound: Mapping[str, TensorLike] | None = None) -> LoadConfig:
        """Self-contained model: initializers loaded, outputs bound."""
        return cls(load_initializers=True, bind_outputs=True, prebound=dict(prebound or {}))


@dataclass
class LoadResult:
    """What a successful load produced."""

    ir_version: int
    opset_version: int
    table: TensorTable
    values: dict[str, Node]
    saves: dict[str, Node]
    description: ModelDescription | None = None


class ONNXModelLoader:
    """Load ONNX models into ``function``.

    A loader may be reused, but every ``load`` call starts with a fresh table
    and value map. After a failed load the function may hold partial nodes
    and should be discarded.
    """

    def __init__(self, function: Function, config: LoadConfig | None = None) -> None:
        self.function = function
        self.config = config or LoadConfig()

    def _bind_prebound(self, table: TensorTable) -> None:
        for name, value in self.config.prebound.items():
            tensor = value if isinstance(value, Tensor) else Tensor.from_array(value)
            table.bind(name, tensor)

    def load(self, source: ModelSource) -> LoadResult:
        """Decode ``source`` and lower it into the function.

        Raises:
            ModelLoadError: Any failure; lowering errors carry the failing
                node in ``node_context``.
        """
        config = self.config
        description = read_model(
            source, max_size=config.max_proto_size, check_model=config.check_model
        )
        graph = description.graph

        table = TensorTable(index_dtype=np.dtype(config.index_dtype))
        self._bind_prebound(table)
        table.seed_inputs(graph.inputs)
        if config.load_initializers:
            table.seed_initializers(graph.initializers)

        engine = OperatorLoweringEngine(self.function, table, description.opset_version)
        for node in graph.nodes:
            try:
                lowered = engine.lower(node)
            except ModelLoadError as e:
                e.node_context = (node.op_type, node.display_name)
                raise
            if not lowered:
                raise UnsupportedOperator(node.op_type, node.display_name)

        saves: dict[str, Node] = {}
        if config.bind_outputs:
            saves = bind_outputs(self.function, graph.outputs, engine.values)

        logger.info(
            f"Loaded {len(graph.nodes)} ONNX nodes into {self.function.name!r}: "
            f"{len(self.function.nodes)} IR nodes, {len(saves)} outputs"
        )
        return LoadResult(
            ir_version=description.ir_version,
            opset_version=description.opset_version,
            table=table,
            values=engine.values,
            saves=saves,
            description=description,
        )


def load_onnx_bytes(
    data: bytes, function: Function, config: LoadConfig | None = None
) -> LoadResult:
    """Load an in-memory model, embedded style by default."""
    return ONNXModelLoader(function, config or LoadConfig.embedded()).load(data)


def load_onnx_file(
    path: ModelSource,
    function: Function,
    tensor_names: Iterable[str] = (),
    tensors: Iterable[TensorLike] = (),
    config: LoadConfig | None = None,
) -> LoadResult:
    """Load a model file, pre-binding ``tensors`` under ``tensor_names``.

    Raises:
        ValueError: ``tensor_names`` and ``tensors`` differ in length, or a
            name is given twice.
    """
    names = list(tensor_names)
    values = list(tensors)
    if len(names) != len(values):
        raise ValueError(f"got {len(names)} tensor names but {len(values)} tensors")
    if len(set(names)) != len(names):
        raise ValueError(f"duplicate pre-bound tensor names in {names}")

    prebound = dict(zip(names, values))
    if config is None:
        config = LoadConfig.standalone(prebound)
    elif prebound:
        config = replace(config, prebound={**config.prebound, **prebound})
    return ONNXModelLoader(function, config).load(path)
