"""Tests for the onnx-lower command-line interface."""

from __future__ import annotations

import numpy as np
import onnx
from click.testing import CliRunner
from helpers import float_initializer, make_model, tensor_info
from onnx import helper

from onnx_lower.cli import cli


def _write_model(path, nodes, outputs=("Y",)):
    model = make_model(
        nodes,
        [tensor_info("X", [1, 3, 8, 8])],
        [tensor_info(name, None) for name in outputs],
        [float_initializer("W", np.ones((4, 3, 1, 1)))],
    )
    onnx.save(model, str(path))
    return str(path)


class TestInspect:
    def test_summary(self, tmp_path):
        nodes = [
            helper.make_node("Conv", ["X", "W"], ["C"], name="conv"),
            helper.make_node("Relu", ["C"], ["Y"], name="relu"),
        ]
        model_path = _write_model(tmp_path / "model.onnx", nodes)
        result = CliRunner().invoke(cli, ["inspect", model_path])
        assert result.exit_code == 0, result.output
        assert "IR version: 3" in result.output
        assert "Opset version: 7" in result.output
        assert "CONV" in result.output
        assert "save_Y: [1, 4, 8, 8]" in result.output

    def test_no_bind_outputs(self, tmp_path):
        nodes = [helper.make_node("Relu", ["X"], ["Y"])]
        model_path = _write_model(tmp_path / "model.onnx", nodes)
        result = CliRunner().invoke(cli, ["inspect", model_path, "--no-bind-outputs"])
        assert result.exit_code == 0, result.output
        assert "Outputs:" not in result.output

    def test_unsupported_operator_exit_code(self, tmp_path):
        nodes = [helper.make_node("FancyOp", ["X"], ["Y"], name="fancy")]
        model_path = _write_model(tmp_path / "model.onnx", nodes)
        result = CliRunner().invoke(cli, ["inspect", model_path])
        assert result.exit_code == 1
        assert "unsupported_operator" in result.output

    def test_missing_file(self, tmp_path):
        result = CliRunner().invoke(cli, ["inspect", str(tmp_path / "nope.onnx")])
        assert result.exit_code == 1
        assert "model_file_error" in result.output


class TestOps:
    def test_lists_supported_operators(self):
        result = CliRunner().invoke(cli, ["ops"])
        assert result.exit_code == 0
        lines = result.output.split()
        assert "Conv" in lines
        assert "Gemm" in lines
        assert "<unsupported>" not in lines
        assert lines == sorted(lines)
