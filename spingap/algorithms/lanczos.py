"""
Lanczos algorithm for finding ground states.

Iterative eigensolver for the effective two-site Hamiltonian of DMRG.
"""

from typing import Tuple, Callable
import torch
from torch import Tensor


def lanczos_ground_state(
    matvec: Callable[[Tensor], Tensor],
    v0: Tensor,
    num_iterations: int = 100,
    tol: float = 1e-12,
) -> Tuple[Tensor, Tensor]:
    """
    Find the ground state using Lanczos iteration.

    The Krylov dimension never exceeds the vector size, so small
    effective Hamiltonians are diagonalized exactly.

    Args:
        matvec: Function computing H @ v for a vector v
        v0: Initial vector
        num_iterations: Maximum number of Lanczos iterations
        tol: Breakdown tolerance on beta, relative to the matrix scale

    Returns:
        (eigenvalue, eigenvector)
    """
    dtype = v0.dtype
    device = v0.device
    n = v0.numel()

    v = v0.flatten()
    norm0 = torch.linalg.vector_norm(v)
    if norm0 == 0:
        raise ValueError("Lanczos needs a non-zero starting vector")
    v = v / norm0

    max_iter = max(1, min(num_iterations, n))

    # Lanczos vectors and tridiagonal matrix elements
    V = torch.zeros(n, max_iter + 1, dtype=dtype, device=device)
    alpha = torch.zeros(max_iter, dtype=torch.float64, device=device)
    beta = torch.zeros(max_iter, dtype=torch.float64, device=device)

    V[:, 0] = v
    actual_iter = max_iter
    scale = 0.0

    for j in range(max_iter):
        # w = H @ v_j
        w = matvec(V[:, j].reshape(v0.shape)).flatten()
        if not torch.isfinite(w).all():
            raise FloatingPointError("Non-finite values in Lanczos matvec")

        # alpha_j = <v_j|w>
        alpha[j] = torch.vdot(V[:, j], w).real

        w = w - alpha[j] * V[:, j]
        if j > 0:
            w = w - beta[j - 1] * V[:, j - 1]

        # Full reorthogonalization for numerical stability
        for i in range(j + 1):
            w = w - torch.vdot(V[:, i], w) * V[:, i]

        beta[j] = torch.linalg.vector_norm(w)
        scale = max(scale, abs(alpha[j].item()), beta[j].item())

        if beta[j] <= tol * max(scale, 1.0):
            # Invariant subspace found
            actual_iter = j + 1
            break

        V[:, j + 1] = w / beta[j]

    # Build tridiagonal matrix
    T = torch.diag(alpha[:actual_iter])
    if actual_iter > 1:
        off = beta[:actual_iter - 1]
        T = T + torch.diag(off, 1) + torch.diag(off, -1)

    eigvals, eigvecs = torch.linalg.eigh(T)

    # Ground state is smallest eigenvalue
    E0 = eigvals[0]

    # Transform back to original space
    psi = V[:, :actual_iter] @ eigvecs[:, 0].to(dtype)
    psi = psi / torch.linalg.vector_norm(psi)

    return E0, psi.reshape(v0.shape)
