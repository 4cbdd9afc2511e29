"""Pytest configuration for qphase_ode tests."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add qphase_ode to path
# This file is in tests/qphase_ode/
# Root is ../../
packages_dir = Path(__file__).parents[2] / "packages"
sys.path.insert(0, str(packages_dir / "qphase_ode"))

from qphase_ode import ODEProblem  # noqa: E402


@pytest.fixture
def decay():
    """y' = -y, y(0) = 1 on [0, 1]."""
    return ODEProblem(lambda t, y: -y, [1.0], (0.0, 1.0), name="decay")


@pytest.fixture
def oscillator():
    """Harmonic oscillator over one period; returns to (1, 0)."""

    def f(t, y):
        return np.array([y[1], -y[0]])

    return ODEProblem(f, [1.0, 0.0], (0.0, 2.0 * np.pi), name="oscillator")


@pytest.fixture
def stiff_linear():
    """y' = -1000 (y - cos t) - sin t with exact solution cos t."""

    def f(t, y):
        return -1000.0 * (y - np.cos(t)) - np.sin(t)

    return ODEProblem(f, [1.0], (0.0, 1.0), name="stiff_linear")
