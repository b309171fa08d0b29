"""MPS module."""

from spingap.mps.mps import MPS
from spingap.mps.mpo import MPO
from spingap.mps.hamiltonians import (
    ChainSpec,
    build_hamiltonian,
    heisenberg_mpo,
    spin_operators,
    sz_penalty_mpo,
)
from spingap.mps.states import (
    product_mps,
    neel_mps,
    sector_mps,
    singlet_mps,
    random_mps,
    random_two_site_gate,
)

__all__ = [
    "MPS",
    "MPO",
    "ChainSpec",
    "build_hamiltonian",
    "heisenberg_mpo",
    "spin_operators",
    "sz_penalty_mpo",
    "product_mps",
    "neel_mps",
    "sector_mps",
    "singlet_mps",
    "random_mps",
    "random_two_site_gate",
]
