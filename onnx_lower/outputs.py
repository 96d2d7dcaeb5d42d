"""Bind graph outputs to terminal save nodes."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from .errors import FormatError, ShapeInvariantViolation
from .graph import Function, Node

logger = logging.getLogger(__name__)

SAVE_PREFIX = "save_"


def bind_outputs(
    function: Function, output_names: Sequence[str], values: Mapping[str, Node]
) -> dict[str, Node]:
    """Create a ``save_<name>`` node for every declared graph output.

    Args:
        function: Function receiving the save nodes.
        output_names: Graph output names in declaration order.
        values: Values produced while lowering, by ONNX name.

    Returns:
        Save node per output name.

    Raises:
        FormatError: The graph declares no outputs.
        ShapeInvariantViolation: An output was never produced.
    """
    if not output_names:
        raise FormatError("graph declares no outputs")

    saves: dict[str, Node] = {}
    for name in output_names:
        value = values.get(name)
        if value is None:
            raise ShapeInvariantViolation(f"graph output {name!r} is not produced by any node")
        saves[name] = function.create_save(f"{SAVE_PREFIX}{name}", value)
        logger.debug(f"Bound output {name!r} {value.type}")
    return saves
