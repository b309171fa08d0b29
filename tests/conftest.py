"""
Pytest configuration for the spingap test suite.
"""

import pytest
import torch

from spingap.mps.mps import MPS


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


@pytest.fixture
def generator():
    """Seeded pseudo-random source."""
    return torch.Generator().manual_seed(1234)


@pytest.fixture
def random_state(generator):
    """Random, non-canonical 6-site MPS."""
    return MPS.random(L=6, d=2, chi=4, generator=generator)
