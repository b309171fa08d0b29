"""
Matrix Product Operator (MPO) implementation.

An MPO represents an operator acting on the tensor product space of a
chain; here it carries the spin-chain Hamiltonian handed to the solver.
"""

from __future__ import annotations
from typing import List, Optional
import torch
from torch import Tensor

from spingap.config import DEFAULT_DTYPE


class MPO:
    """
    Matrix Product Operator.

    Each tensor has shape (D_left, d_out, d_in, D_right) where:
        - D_left: left bond dimension
        - d_out: output physical dimension (bra)
        - d_in: input physical dimension (ket)
        - D_right: right bond dimension

    For boundary tensors:
        - First tensor: shape (1, d, d, D)
        - Last tensor: shape (D, d, d, 1)

    Attributes:
        tensors: List of MPO tensors
        L: Number of sites
        d: Physical dimension
        D: Maximum bond dimension
    """

    def __init__(self, tensors: List[Tensor]):
        """
        Initialize MPO from list of tensors.

        Args:
            tensors: List of tensors with shapes (D_l, d_out, d_in, D_r)
        """
        if len(tensors) == 0:
            raise ValueError("MPO needs at least one tensor")
        if tensors[0].shape[0] != 1 or tensors[-1].shape[3] != 1:
            raise ValueError("MPO boundary tensors must have trivial outer bonds")

        self.tensors = tensors
        self.L = len(tensors)
        self.d = tensors[0].shape[1]
        self.D = max(t.shape[3] for t in tensors[:-1]) if len(tensors) > 1 else 1
        self.dtype = tensors[0].dtype
        self.device = tensors[0].device

    @classmethod
    def identity(
        cls,
        L: int,
        d: int = 2,
        dtype: torch.dtype = DEFAULT_DTYPE,
        device: Optional[torch.device] = None,
    ) -> MPO:
        """Create identity MPO."""
        if device is None:
            device = torch.device('cpu')

        I = torch.eye(d, dtype=dtype, device=device)
        return cls([I.reshape(1, d, d, 1).clone() for _ in range(L)])

    def __add__(self, other: MPO) -> MPO:
        """
        Sum of two MPOs on the same chain.

        Bulk tensors are stacked block-diagonally, the boundary tensors
        side by side, so the bond dimension is D_self + D_other.
        """
        if not isinstance(other, MPO):
            return NotImplemented
        if self.L != other.L or self.d != other.d:
            raise ValueError(
                f"Cannot add MPOs of shape (L={self.L}, d={self.d}) and (L={other.L}, d={other.d})"
            )

        dtype = torch.promote_types(self.dtype, other.dtype)
        if self.L == 1:
            return MPO([self.tensors[0].to(dtype) + other.tensors[0].to(dtype)])

        tensors = []
        for i, (A, B) in enumerate(zip(self.tensors, other.tensors)):
            A, B = A.to(dtype), B.to(dtype)
            if i == 0:
                tensors.append(torch.cat([A, B], dim=3))
            elif i == self.L - 1:
                tensors.append(torch.cat([A, B], dim=0))
            else:
                Da_l, d, _, Da_r = A.shape
                Db_l, _, _, Db_r = B.shape
                W = torch.zeros(Da_l + Db_l, d, d, Da_r + Db_r, dtype=dtype, device=A.device)
                W[:Da_l, :, :, :Da_r] = A
                W[Da_l:, :, :, Da_r:] = B
                tensors.append(W)

        return MPO(tensors)

    def expectation(self, mps) -> Tensor:
        """<psi|H|psi> / <psi|psi> by left-to-right environment contraction."""
        if self.L != mps.L:
            raise ValueError(f"Length mismatch: MPO has {self.L}, MPS has {mps.L}")

        env = torch.ones(1, 1, 1, dtype=mps.dtype, device=mps.device)
        for A, W in zip(mps.tensors, self.tensors):
            W = W.to(A.dtype)
            # env[a,w,b] A*[a,s,c] W[w,s,t,x] A[b,t,e] -> env'[c,x,e]
            env = torch.einsum('awb,asc,wstx,bte->cxe', env, A.conj(), W, A)

        return env.squeeze() / mps.inner(mps)

    def to_matrix(self) -> Tensor:
        """
        Contract MPO to dense matrix.

        Returns:
            Matrix of shape (d^L, d^L)

        Warning:
            Exponential in L - only use for small systems!
        """
        result = self.tensors[0]  # (1, d, d, D)

        for i in range(1, self.L):
            result = torch.einsum('...D,Dijd->...ijd', result, self.tensors[i])

        dim = self.d ** self.L

        # (d_out, d_in, d_out, d_in, ...) after dropping boundary bonds
        result = result.squeeze(0).squeeze(-1)

        # Group all output indices first, then all input indices
        perm = list(range(0, 2 * self.L, 2)) + list(range(1, 2 * self.L, 2))
        result = result.permute(perm)

        return result.reshape(dim, dim)

    def __repr__(self) -> str:
        return f"MPO(L={self.L}, d={self.d}, D={self.D})"
