"""
Matrix decompositions used by MPS canonicalization and DMRG.
"""

from typing import Optional, Tuple
import torch
from torch import Tensor


def svd_truncated(
    matrix: Tensor,
    max_rank: Optional[int] = None,
    cutoff: float = 0.0,
) -> Tuple[Tensor, Tensor, Tensor]:
    """
    Truncated singular value decomposition.

    Keeps at most ``max_rank`` singular values and discards the tail whose
    squared weight, relative to the total, is below ``cutoff``. At least
    one singular value is always kept.

    Args:
        matrix: 2D tensor of shape (m, n)
        max_rank: Maximum number of singular values to keep
        cutoff: Discarded-weight threshold (relative, on s^2)

    Returns:
        (U, S, Vh) with shapes (m, k), (k,), (k, n)

    Example:
        >>> M = torch.randn(8, 6, dtype=torch.float64)
        >>> U, S, Vh = svd_truncated(M, max_rank=3)
        >>> U.shape, S.shape, Vh.shape
        (torch.Size([8, 3]), torch.Size([3]), torch.Size([3, 6]))
    """
    if matrix.ndim != 2:
        raise ValueError(f"Expected 2D tensor, got {matrix.ndim}D")

    U, S, Vh = torch.linalg.svd(matrix, full_matrices=False)

    k = S.shape[0]

    if cutoff > 0.0 and k > 1:
        weights = S ** 2
        total = torch.sum(weights)
        if total > 0:
            # tail[i] = discarded weight when keeping the first i values
            tail = torch.flip(torch.cumsum(torch.flip(weights, [0]), 0), [0]) / total
            keep = int(torch.sum(tail > cutoff).item())
            k = max(1, keep)

    if max_rank is not None:
        k = max(1, min(k, max_rank))

    return U[:, :k], S[:k], Vh[:k, :]


def qr_stable(matrix: Tensor) -> Tuple[Tensor, Tensor]:
    """
    QR decomposition with a non-negative diagonal in R.

    Fixing the sign gauge makes repeated canonicalization of the same
    MPS reproducible.

    Args:
        matrix: 2D tensor of shape (m, n)

    Returns:
        (Q, R) with Q of shape (m, k), R of shape (k, n), k = min(m, n)
    """
    Q, R = torch.linalg.qr(matrix, mode='reduced')

    diag = torch.diagonal(R)
    signs = torch.sgn(diag)
    signs = torch.where(signs == 0, torch.ones_like(signs), signs)

    Q = Q * signs.unsqueeze(0)
    R = R * signs.conj().unsqueeze(1)

    return Q, R
