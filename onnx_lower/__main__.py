"""Allow running as `python -m onnx_lower`."""

from .cli import cli

if __name__ == "__main__":
    cli()
