"""End-to-end tests: serialized ONNX models through ONNXModelLoader.

All test models are created programmatically with onnx.helper (no external files).
"""

from __future__ import annotations

import logging

import numpy as np
import onnx
import pytest
from helpers import float_initializer, int_initializer, make_model, save_model, tensor_info
from onnx import helper

from onnx_lower.errors import (
    FormatError,
    MissingAttributeError,
    ShapeInvariantViolation,
    UnsupportedOperator,
)
from onnx_lower.graph import NodeKind
from onnx_lower.pipeline import (
    LoadConfig,
    ONNXModelLoader,
    load_onnx_bytes,
    load_onnx_file,
)
from onnx_lower.tensor import Tensor


def _make_cnn_model(seed: int = 7) -> onnx.ModelProto:
    """Conv -> Relu -> MaxPool -> Flatten -> Gemm -> Softmax on a 1x3x8x8 image."""
    rng = np.random.default_rng(seed)
    nodes = [
        helper.make_node("Conv", ["data", "conv_w", "conv_b"], ["conv_out"], name="conv1"),
        helper.make_node("Relu", ["conv_out"], ["relu_out"], name="relu1"),
        helper.make_node(
            "MaxPool", ["relu_out"], ["pool_out"], name="pool1",
            kernel_shape=[2, 2], strides=[2, 2],
        ),
        helper.make_node("Flatten", ["pool_out"], ["flat"], name="flatten"),
        helper.make_node("Gemm", ["flat", "fc_w", "fc_b"], ["logits"], name="fc"),
        helper.make_node("Softmax", ["logits"], ["prob"], name="softmax"),
    ]
    initializers = [
        float_initializer("conv_w", rng.standard_normal((4, 3, 3, 3))),
        float_initializer("conv_b", rng.standard_normal(4)),
        float_initializer("fc_w", rng.standard_normal((36, 10))),
        float_initializer("fc_b", rng.standard_normal(10)),
    ]
    return make_model(
        nodes,
        [tensor_info("data", [1, 3, 8, 8])],
        [tensor_info("prob", [1, 10])],
        initializers,
    )


def _make_identity_model(initial=(1.0, 2.0), output: str = "Y") -> onnx.ModelProto:
    node = helper.make_node("Identity", ["X"], ["Y"], name="id")
    return make_model(
        [node],
        [tensor_info("X", [2])],
        [tensor_info(output, [2])],
        [float_initializer("X", list(initial))],
    )


@pytest.mark.smoke
class TestStandaloneLoad:
    """Full sequence: initializers, lowering, output binding."""

    def test_minimum_versions(self, function):
        result = load_onnx_bytes(
            _make_identity_model().SerializeToString(), function, LoadConfig.standalone()
        )
        assert result.ir_version == 3
        assert result.opset_version == 7

    def test_cnn_from_file(self, function):
        path = save_model(_make_cnn_model())
        try:
            image = np.ones((1, 3, 8, 8), dtype=np.float32)
            result = load_onnx_file(path, function, ["data"], [image])
        finally:
            path.unlink()

        assert list(result.saves) == ["prob"]
        assert result.saves["prob"].name == "save_prob"
        assert result.saves["prob"].dims == (1, 10)
        assert result.values["conv_out"].dims == (1, 4, 6, 6)
        assert result.values["pool_out"].dims == (1, 4, 3, 3)
        assert result.values["flat"].dims == (1, 36)

        counts = function.summary()["op_counts"]
        assert counts["CONV"] == 1
        assert counts["POOL_MAX"] == 1
        assert counts["MATMUL"] == 1
        assert counts["SOFTMAX"] == 1
        assert counts["SAVE"] == 1

    def test_conv_weights_loaded_channel_last(self, module, function):
        model = _make_cnn_model()
        weights = onnx.numpy_helper.to_array(model.graph.initializer[0])
        load_onnx_bytes(model.SerializeToString(), function, LoadConfig.standalone())
        filter = module.get_parameter("conv1.filter")
        np.testing.assert_array_equal(filter.payload.handle(), weights.transpose(0, 2, 3, 1))

    def test_prebound_input_copied_into_ir(self, module, function):
        image = Tensor.from_array(np.full((1, 3, 8, 8), 2.0, dtype=np.float32))
        load_onnx_file(
            _make_cnn_model().SerializeToString(), function, ["data"], [image]
        )
        param = module.get_parameter("data")
        assert param.payload is not image
        assert param.payload.is_equal(image)

    def test_prebound_survives_initializer(self, module, function):
        caller = np.array([5.0, 6.0], dtype=np.float32)
        result = load_onnx_file(
            _make_identity_model().SerializeToString(), function, ["X"], [caller]
        )
        assert result.table.is_borrowed("X")
        assert module.get_parameter("X").payload.handle().tolist() == [5.0, 6.0]

    def test_initializer_used_without_prebound(self, module, function):
        load_onnx_file(_make_identity_model(initial=(3.0, 4.0)).SerializeToString(), function)
        assert module.get_parameter("X").payload.handle().tolist() == [3.0, 4.0]

    def test_constant_and_reshape_shape(self, function):
        nodes = [
            helper.make_node(
                "Constant", [], ["shape"],
                value=helper.make_tensor("shape", onnx.TensorProto.INT64, [2], [3, -1]),
            ),
            helper.make_node("Reshape", ["X", "shape"], ["Y"]),
        ]
        model = make_model(nodes, [tensor_info("X", [2, 3, 4])], [tensor_info("Y", None)])
        result = load_onnx_bytes(model.SerializeToString(), function, LoadConfig.standalone())
        assert result.saves["Y"].dims == (3, 8)

    def test_scalar_constant_operand(self, function):
        nodes = [
            helper.make_node(
                "Constant", [], ["C"],
                value=helper.make_tensor("c", onnx.TensorProto.FLOAT, [], [2.0]),
            ),
            helper.make_node("Mul", ["X", "C"], ["Y"]),
        ]
        model = make_model(nodes, [tensor_info("X", [])], [tensor_info("Y", [])])
        result = load_onnx_bytes(model.SerializeToString(), function, LoadConfig.standalone())
        assert result.table.get("C").dims == ()
        assert float(result.table.get("C").handle()) == 2.0
        assert result.saves["Y"].dims == ()

    def test_scalar_constant_broadcast(self, function):
        nodes = [
            helper.make_node(
                "Constant", [], ["C"],
                value=helper.make_tensor("c", onnx.TensorProto.FLOAT, [], [0.5]),
            ),
            helper.make_node("Add", ["X", "C"], ["Y"]),
        ]
        model = make_model(nodes, [tensor_info("X", [2, 3])], [tensor_info("Y", [2, 3])])
        result = load_onnx_bytes(model.SerializeToString(), function, LoadConfig.standalone())
        broadcast = [n for n in function.nodes if n.kind is NodeKind.BROADCAST]
        assert len(broadcast) == 1
        assert broadcast[0].inputs[0].dims == ()
        assert result.saves["Y"].dims == (2, 3)

    def test_int32_index_storage(self, function):
        node = helper.make_node("Reshape", ["X", "shape"], ["Y"])
        model = make_model(
            [node],
            [tensor_info("X", [4, 6])],
            [tensor_info("Y", None)],
            [int_initializer("shape", [6, 4])],
        )
        config = LoadConfig(index_dtype=np.dtype(np.int32))
        result = load_onnx_bytes(model.SerializeToString(), function, config)
        assert result.table.get("shape").dtype == np.int32
        assert result.saves["Y"].dims == (6, 4)

    def test_info_log_per_load(self, function, caplog):
        with caplog.at_level(logging.INFO, logger="onnx_lower"):
            load_onnx_bytes(
                _make_identity_model().SerializeToString(), function, LoadConfig.standalone()
            )
        assert any("Loaded 1 ONNX nodes" in r.getMessage() for r in caplog.records)


class TestEmbeddedLoad:
    """Caller-provided weights, no initializers, no output binding."""

    def test_initializers_and_outputs_skipped(self, module, function):
        node = helper.make_node("MatMul", ["X", "W"], ["Y"])
        model = make_model(
            [node],
            [tensor_info("X", [1, 2])],
            [tensor_info("Y", [1, 3])],
            [float_initializer("W", np.ones((2, 3)))],
        )
        weights = np.full((2, 3), 4.0, dtype=np.float32)
        result = load_onnx_bytes(
            model.SerializeToString(), function, LoadConfig.embedded({"W": weights})
        )
        assert result.saves == {}
        assert function.saves() == []
        assert result.values["Y"].dims == (1, 3)
        np.testing.assert_array_equal(module.get_parameter("W").payload.handle(), weights)

    def test_missing_weights(self, function):
        node = helper.make_node("MatMul", ["X", "W"], ["Y"])
        model = make_model(
            [node],
            [tensor_info("X", [1, 2])],
            [tensor_info("Y", [1, 3])],
            [float_initializer("W", np.ones((2, 3)))],
        )
        with pytest.raises(ShapeInvariantViolation, match="'W'"):
            load_onnx_bytes(model.SerializeToString(), function)


class TestLoadFailures:
    def test_unsupported_operator(self, function):
        nodes = [
            helper.make_node("Relu", ["X"], ["A"]),
            helper.make_node("FancyOp", ["A"], ["Y"], name="fancy"),
        ]
        model = make_model(nodes, [tensor_info("X", [2])], [tensor_info("Y", [2])])
        with pytest.raises(UnsupportedOperator) as excinfo:
            load_onnx_bytes(model.SerializeToString(), function, LoadConfig.standalone())
        assert excinfo.value.op_type == "FancyOp"
        assert excinfo.value.node_name == "fancy"
        assert "FancyOp" in str(excinfo.value)
        assert function.saves() == []

    def test_failing_node_in_error(self, function):
        node = helper.make_node("Transpose", ["X"], ["Y"], name="t0")
        model = make_model([node], [tensor_info("X", [2, 3])], [tensor_info("Y", [3, 2])])
        with pytest.raises(MissingAttributeError) as excinfo:
            load_onnx_bytes(model.SerializeToString(), function, LoadConfig.standalone())
        assert excinfo.value.node_context == ("Transpose", "t0")
        assert str(excinfo.value).startswith("Transpose node 't0':")

    def test_node_without_inputs(self, function):
        node = helper.make_node("Relu", [], ["Y"], name="r0")
        model = make_model([node], [tensor_info("X", [2])], [tensor_info("Y", [2])])
        with pytest.raises(ShapeInvariantViolation, match="missing input 0") as excinfo:
            load_onnx_bytes(model.SerializeToString(), function, LoadConfig.standalone())
        assert excinfo.value.node_context == ("Relu", "r0")

    def test_output_never_produced(self, function):
        with pytest.raises(ShapeInvariantViolation, match="'Z'"):
            load_onnx_file(_make_identity_model(output="Z").SerializeToString(), function)

    def test_no_outputs(self, function):
        node = helper.make_node("Identity", ["X"], ["Y"])
        model = make_model([node], [tensor_info("X", [2])], [])
        with pytest.raises(FormatError, match="no outputs"):
            load_onnx_file(model.SerializeToString(), function)

    def test_symbolic_input_needs_prebound(self, function):
        node = helper.make_node("Relu", ["X"], ["Y"])
        model = make_model([node], [tensor_info("X", ["N", 4])], [tensor_info("Y", None)])
        with pytest.raises(ShapeInvariantViolation, match="symbolic"):
            load_onnx_file(model.SerializeToString(), function)

    def test_symbolic_input_with_prebound(self, module, function):
        node = helper.make_node("Relu", ["X"], ["Y"])
        model = make_model([node], [tensor_info("X", ["N", 4])], [tensor_info("Y", None)])
        batch = np.zeros((3, 4), dtype=np.float32)
        result = load_onnx_file(model.SerializeToString(), function, ["X"], [batch])
        assert result.saves["Y"].dims == (3, 4)

    def test_name_tensor_length_mismatch(self, function):
        with pytest.raises(ValueError, match="2 tensor names but 1 tensors"):
            load_onnx_file(b"", function, ["a", "b"], [np.zeros(1, dtype=np.float32)])

    def test_payload_limit_from_config(self, function):
        data = _make_identity_model().SerializeToString()
        loader = ONNXModelLoader(function, LoadConfig(max_proto_size=8))
        with pytest.raises(FormatError, match="limit"):
            loader.load(data)

    def test_check_model_option(self, function):
        node = helper.make_node("Relu", ["undefined"], ["Y"])
        model = make_model(
            [node], [tensor_info("X", [2])], [tensor_info("Y", [2])], ir_version=8, opset=13
        )
        with pytest.raises(FormatError):
            ONNXModelLoader(function, LoadConfig(check_model=True)).load(
                model.SerializeToString()
            )


class TestLoadConfig:
    def test_presets(self):
        embedded = LoadConfig.embedded()
        standalone = LoadConfig.standalone({"x": np.zeros(1, dtype=np.float32)})
        assert not embedded.load_initializers and not embedded.bind_outputs
        assert standalone.load_initializers and standalone.bind_outputs
        assert list(standalone.prebound) == ["x"]

    def test_invalid_index_dtype(self):
        with pytest.raises(ValueError, match="index dtype"):
            LoadConfig(index_dtype=np.dtype(np.float32))

    def test_invalid_size_limit(self):
        with pytest.raises(ValueError):
            LoadConfig(max_proto_size=0)

    def test_frozen(self):
        with pytest.raises(AttributeError):
            LoadConfig().check_model = True

    def test_file_prebound_merges_with_config(self, module, function):
        config = LoadConfig(bind_outputs=False)
        load_onnx_file(
            _make_identity_model().SerializeToString(),
            function,
            ["X"],
            [np.array([8.0, 9.0], dtype=np.float32)],
            config=config,
        )
        assert function.saves() == []
        assert module.get_parameter("X").payload.handle().tolist() == [8.0, 9.0]
