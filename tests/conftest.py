"""Pytest configuration for onnx-lower tests.

All models are created programmatically with onnx.helper (see
``helpers.onnx_models``); no fixture files or network access are needed.

Usage:
    pytest tests/                # Full suite
    pytest tests/ -m smoke       # End-to-end loads only
"""

from __future__ import annotations

import numpy as np
import pytest

from onnx_lower.graph import Function, Module


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "smoke: end-to-end model load through the pipeline")


# ==============================================================================
# IR fixtures
# ==============================================================================


@pytest.fixture
def module() -> Module:
    """Empty IR module."""
    return Module()


@pytest.fixture
def function(module: Module) -> Function:
    """Empty function named 'main' inside ``module``."""
    return module.create_function("main")


# ==============================================================================
# Random state fixtures
# ==============================================================================


@pytest.fixture
def seed() -> int:
    """Fixed seed for reproducible tests."""
    return 42


@pytest.fixture
def rng(seed: int) -> np.random.Generator:
    """NumPy random generator with fixed seed."""
    return np.random.default_rng(seed)
