"""Command-line interface for inspecting ONNX model lowering."""

import logging
import sys

import click

from .errors import ModelLoadError
from .graph import Module
from .op_registry import supported_op_types
from .pipeline import LoadConfig, ONNXModelLoader


@click.group()
def cli():
    """onnx-lower: load ONNX models into a channel-last graph IR."""


@cli.command()
@click.argument("model_path", type=click.Path())
@click.option(
    "--bind-outputs/--no-bind-outputs",
    default=True,
    help="Create save nodes for the graph outputs",
)
@click.option("--check", is_flag=True, help="Run the ONNX checker before lowering")
@click.option("--verbose", "-v", count=True, help="-v for INFO, -vv for DEBUG logging")
def inspect(model_path: str, bind_outputs: bool, check: bool, verbose: int):
    """Load MODEL_PATH into a fresh IR and summarize the result.

    \b
    Example:
      onnx-lower inspect resnet18.onnx -v
    """
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    module = Module()
    fn = module.create_function("main")
    config = LoadConfig(bind_outputs=bind_outputs, check_model=check)
    try:
        result = ONNXModelLoader(fn, config).load(model_path)
    except ModelLoadError as e:
        click.echo(f"Error [{e.error_type}]: {e}", err=True)
        sys.exit(1)

    summary = fn.summary()
    click.echo(f"Model: {model_path}")
    click.echo(f"  IR version: {result.ir_version}")
    click.echo(f"  Opset version: {result.opset_version}")
    click.echo(f"  IR nodes: {summary['total_nodes']}")
    click.echo(f"  Parameters: {summary['parameters']}")
    click.echo("\nNode counts:")
    for kind, count in sorted(summary["op_counts"].items()):
        click.echo(f"  {kind:<16} {count}")
    if summary["outputs"]:
        click.echo("\nOutputs:")
        for name, dims in summary["outputs"].items():
            click.echo(f"  {name}: {dims}")


@cli.command()
def ops():
    """List ONNX operators with a lowering rule."""
    for op_type in supported_op_types():
        click.echo(op_type)
