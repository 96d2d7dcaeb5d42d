"""
Build script for onnx-lower.

Pure Python package, no native extensions:
    pip install -e .[test]
"""

from setuptools import setup

setup(
    name="onnx-lower",
    version="0.1.0",
    description="Load ONNX models into a channel-last graph IR",
    packages=["onnx_lower", "onnx_lower.graph"],
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.24",
        "onnx>=1.14",
        "protobuf>=3.20",
        "click>=8.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "onnx-lower=onnx_lower.cli:cli",
        ],
    },
)
