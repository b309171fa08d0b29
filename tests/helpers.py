"""
Dense (exact) references for small chains, to check MPS results against
brute force.
"""

import torch

from spingap.mps.mps import MPS
from spingap.mps.hamiltonians import heisenberg_mpo


def dense_vector(mps: MPS) -> torch.Tensor:
    """Normalized state vector of a (small) MPS."""
    v = mps.to_tensor().reshape(-1)
    return v / torch.linalg.vector_norm(v)


def embed_operator(op: torch.Tensor, site: int, L: int) -> torch.Tensor:
    """Single-site operator acting on ``site`` (0-based) of an L-site chain."""
    d = op.shape[0]
    result = torch.ones(1, 1, dtype=op.dtype)
    for i in range(L):
        factor = op if i == site else torch.eye(d, dtype=op.dtype)
        result = torch.kron(result, factor)
    return result


def exact_spectrum(L: int, J: float = 1.0, spin: float = 0.5) -> torch.Tensor:
    """All eigenvalues of the open Heisenberg chain, ascending."""
    H = heisenberg_mpo(L=L, J=J, spin=spin).to_matrix()
    return torch.linalg.eigvalsh(H)
