"""
Initial states and random gates for the spin-chain solver.

Local basis index k carries projection m = S - k, so index 0 is "Up"
and index d-1 is "Dn".
"""

from typing import List, Optional, Sequence
import math
import torch
from torch import Tensor

from spingap.config import DEFAULT_DTYPE
from spingap.core.decompositions import qr_stable
from spingap.mps.mps import MPS


def product_mps(
    levels: Sequence[int],
    d: int = 2,
    dtype: torch.dtype = DEFAULT_DTYPE,
    device: Optional[torch.device] = None,
) -> MPS:
    """
    Create product state MPS from per-site basis indices.

    |psi> = |k_1> tensor |k_2> tensor ... tensor |k_L>

    Args:
        levels: Local basis index of every site
        d: Physical dimension
        dtype: Data type
        device: Device

    Returns:
        MPS with bond dimension 1

    Example:
        >>> mps = product_mps([0, 1, 0, 1])  # |Up Dn Up Dn>
    """
    if device is None:
        device = torch.device('cpu')

    tensors = []
    for k in levels:
        if not 0 <= k < d:
            raise ValueError(f"Basis index {k} out of range for d={d}")
        A = torch.zeros(1, d, 1, dtype=dtype, device=device)
        A[0, k, 0] = 1.0
        tensors.append(A)

    return MPS(tensors, canonical_form='mixed', center=0)


def neel_levels(L: int, d: int = 2) -> List[int]:
    """Alternating maximal / minimal projection, starting with "Up"."""
    return [0 if i % 2 == 0 else d - 1 for i in range(L)]


def neel_mps(
    L: int,
    d: int = 2,
    dtype: torch.dtype = DEFAULT_DTYPE,
    device: Optional[torch.device] = None,
) -> MPS:
    """Neel product state |Up Dn Up Dn ...>."""
    return product_mps(neel_levels(L, d), d=d, dtype=dtype, device=device)


def twice_total_sz(levels: Sequence[int], d: int) -> int:
    """2 * total S^z of a product state given by basis indices."""
    return sum((d - 1) - 2 * k for k in levels)


def sector_levels(L: int, d: int, delta: int) -> List[int]:
    """
    Basis indices of a product state in a fixed total-S^z sector.

    Starts from the Neel state and raises (delta > 0) or lowers
    (delta < 0) single-site projections by one unit, cycling through the
    chain, until the total S^z equals the Neel baseline plus ``delta``.

    Args:
        L: Number of sites
        d: Physical dimension (2S + 1)
        delta: Change of total S^z relative to the Neel baseline

    Returns:
        List of basis indices

    Raises:
        ValueError: if the sector does not exist for this chain
    """
    levels = neel_levels(L, d)
    target = twice_total_sz(levels, d) + 2 * delta
    max_twice = L * (d - 1)
    if abs(target) > max_twice:
        raise ValueError(
            f"Sector delta={delta} infeasible for L={L}, d={d} "
            f"(|2Sz|={abs(target)} > {max_twice})"
        )

    step = -1 if delta > 0 else 1
    remaining = abs(delta)
    while remaining > 0:
        for i in range(L):
            if remaining == 0:
                break
            k = levels[i] + step
            if 0 <= k < d:
                levels[i] = k
                remaining -= 1

    return levels


def sector_mps(
    L: int,
    d: int = 2,
    delta: int = 0,
    dtype: torch.dtype = DEFAULT_DTYPE,
    device: Optional[torch.device] = None,
) -> MPS:
    """Product state with total S^z = Neel baseline + delta."""
    return product_mps(sector_levels(L, d, delta), d=d, dtype=dtype, device=device)


def singlet_mps(
    dtype: torch.dtype = DEFAULT_DTYPE,
    device: Optional[torch.device] = None,
) -> MPS:
    """
    Two-site singlet (|Up Dn> - |Dn Up>) / sqrt(2) as MPS.

    Ground state of the two-site antiferromagnetic Heisenberg chain,
    with entanglement entropy log(2) across its bond.
    """
    if device is None:
        device = torch.device('cpu')

    psi = torch.zeros(2, 2, dtype=dtype, device=device)
    psi[0, 1] = 1.0 / math.sqrt(2)
    psi[1, 0] = -1.0 / math.sqrt(2)

    return MPS.from_tensor(psi)


def random_mps(
    L: int,
    d: int = 2,
    chi: int = 8,
    dtype: torch.dtype = DEFAULT_DTYPE,
    device: Optional[torch.device] = None,
    normalize: bool = True,
    generator: Optional[torch.Generator] = None,
) -> MPS:
    """
    Create random MPS.

    Alias for MPS.random().
    """
    return MPS.random(
        L=L, d=d, chi=chi, dtype=dtype, device=device,
        normalize=normalize, generator=generator,
    )


def random_two_site_gate(
    d: int = 2,
    dtype: torch.dtype = DEFAULT_DTYPE,
    device: Optional[torch.device] = None,
    generator: Optional[torch.Generator] = None,
) -> Tensor:
    """
    Random orthogonal (unitary for complex dtypes) two-site gate.

    QR of a Gaussian matrix with the sign gauge fixed gives a
    Haar-distributed gate.

    Returns:
        Gate of shape (d*d, d*d)
    """
    if device is None:
        device = torch.device('cpu')

    n = d * d
    M = torch.randn(n, n, dtype=dtype, device=device, generator=generator)
    Q, _ = qr_stable(M)

    return Q


def perturb_with_gates(
    mps: MPS,
    num_gates: int,
    generator: Optional[torch.Generator] = None,
    chi_max: Optional[int] = None,
) -> MPS:
    """
    Apply ``num_gates`` random two-site gates at random bonds, in-place.

    The state is renormalized afterwards.

    Args:
        mps: State to perturb
        num_gates: Number of gates
        generator: Pseudo-random source for gates and positions
        chi_max: Bond dimension cap after each gate

    Returns:
        The perturbed MPS
    """
    if mps.L < 2:
        return mps

    for _ in range(num_gates):
        site = int(torch.randint(0, mps.L - 1, (1,), generator=generator).item())
        gate = random_two_site_gate(mps.d, dtype=mps.dtype, device=mps.device, generator=generator)
        mps.apply_two_site_gate(gate, site, chi_max=chi_max)

    return mps.normalize_()
