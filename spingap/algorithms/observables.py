"""
Observables of a converged spin-chain state.

Profiles use 1-based indices: site i is the i-th site of the chain and
bond b is the cut between sites b and b+1.
"""

from typing import Optional, Tuple
import math
import torch
from torch import Tensor

from spingap.config import SCHMIDT_FLOOR
from spingap.errors import InvalidBond, InvalidSite
from spingap.mps.mps import MPS
from spingap.mps.hamiltonians import spin_operators


class ObservableProfile(tuple):
    """
    Immutable sequence of (index, value) pairs, one per site or bond.

    Example:
        >>> profile = magnetization_profile(psi)
        >>> profile.indices(), profile.values()
    """

    def __new__(cls, pairs=()):
        return super().__new__(cls, tuple((int(i), float(v)) for i, v in pairs))

    def indices(self) -> Tuple[int, ...]:
        return tuple(i for i, _ in self)

    def values(self) -> Tuple[float, ...]:
        return tuple(v for _, v in self)

    def as_tensor(self) -> Tensor:
        return torch.tensor(self.values(), dtype=torch.float64)

    def __repr__(self) -> str:
        return f"ObservableProfile({list(self)!r})"


def valid_bond_range(length: int) -> Tuple[int, int]:
    """
    Bonds accepted by entanglement_entropy for a chain of given length.

    Interior bonds run over [2, L-1]. A two-site chain has no such bond,
    so its single cut (bond 1) is accepted instead.
    """
    if length == 2:
        return 1, 1
    return 2, length - 1


def _sz(psi: MPS) -> Tensor:
    spin = (psi.d - 1) / 2
    Sz, _, _ = spin_operators(spin, dtype=psi.dtype, device=psi.device)
    return Sz


def _check_site(psi: MPS, site: int):
    if not 1 <= site <= psi.L:
        raise InvalidSite(site, psi.L)


def entanglement_entropy(psi: MPS, bond_index: int, floor: float = SCHMIDT_FLOOR) -> float:
    """
    Von Neumann entropy of the bipartition at ``bond_index``.

    Moves the orthogonality center of ``psi`` to the bond, takes the
    Schmidt spectrum from a bond-local SVD, drops singular values below
    ``floor``, renormalizes and returns -sum p log p with p = s^2.

    Raises:
        InvalidBond: if the bond is outside valid_bond_range(L)
    """
    lo, hi = valid_bond_range(psi.L)
    if not lo <= bond_index <= hi:
        raise InvalidBond(bond_index, (lo, hi), psi.L)

    return psi.entanglement_entropy(bond_index - 1, floor=floor).item()


def entropy_profile(psi: MPS, floor: float = SCHMIDT_FLOOR) -> ObservableProfile:
    """(bond, entropy) over every valid bond."""
    lo, hi = valid_bond_range(psi.L)
    return ObservableProfile(
        (b, entanglement_entropy(psi, b, floor=floor)) for b in range(lo, hi + 1)
    )


def correlation_profile(
    psi: MPS,
    reference_site: int,
    op: Optional[Tensor] = None,
) -> ObservableProfile:
    """
    <O(reference_site) O(j)> for every site j.

    The default operator is S^z. Evaluated on a copy of ``psi`` so the
    caller's handle is left exactly as it was.

    Raises:
        InvalidSite: if reference_site is outside [1, L]
    """
    _check_site(psi, reference_site)
    if op is None:
        op = _sz(psi)

    state = psi.copy()
    r = reference_site - 1
    return ObservableProfile(
        (j + 1, state.correlation(op, r, op, j).real.item()) for j in range(state.L)
    )


def connected_correlation_profile(
    psi: MPS,
    reference_site: int,
    op: Optional[Tensor] = None,
) -> ObservableProfile:
    """<O_r O_j> - <O_r><O_j> for every site j."""
    if op is None:
        op = _sz(psi)

    state = psi.copy()
    full = correlation_profile(state, reference_site, op)
    local = magnetization_profile(state, op).values()
    m_ref = local[reference_site - 1]
    return ObservableProfile(
        (j, value - m_ref * local[j - 1]) for j, value in full
    )


def magnetization_profile(psi: MPS, op: Optional[Tensor] = None) -> ObservableProfile:
    """
    <O(i)> for every site i (default O = S^z).

    The orthogonality center is moved onto each site before it is
    measured; only then is the center tensor alone the reduced state of
    that site.
    """
    if op is None:
        op = _sz(psi)

    return ObservableProfile(
        (i + 1, psi.expectation_local(op, i).real.item()) for i in range(psi.L)
    )


def total_magnetization(profile: ObservableProfile) -> float:
    """Sum of a magnetization profile."""
    return math.fsum(profile.values())

