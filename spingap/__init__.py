"""
spingap: spectral gap and observables of 1D Heisenberg spin chains with
matrix product states.
"""

from spingap.config import SolverConfig, GapSettings
from spingap.errors import InvalidBond, InvalidSite, NonConvergent, SolverDivergence
from spingap.logging_config import setup_logging
from spingap.mps import MPS, MPO, ChainSpec, build_hamiltonian
from spingap.algorithms import (
    GapEstimator,
    GapResult,
    GapStatus,
    estimate_gap,
    gap_sweep,
    entanglement_entropy,
    correlation_profile,
    magnetization_profile,
)

__version__ = "0.3.0"

__all__ = [
    "SolverConfig",
    "GapSettings",
    "InvalidBond",
    "InvalidSite",
    "NonConvergent",
    "SolverDivergence",
    "setup_logging",
    "MPS",
    "MPO",
    "ChainSpec",
    "build_hamiltonian",
    "GapEstimator",
    "GapResult",
    "GapStatus",
    "estimate_gap",
    "gap_sweep",
    "entanglement_entropy",
    "correlation_profile",
    "magnetization_profile",
]
