"""
Spin-chain Hamiltonians as MPOs.

Provides the chain description and the analytical MPO construction of the
nearest-neighbour Heisenberg model for arbitrary spin S.
"""

from __future__ import annotations
from dataclasses import dataclass
from fractions import Fraction
from typing import Optional, Tuple
import torch
from torch import Tensor

from spingap.config import DEFAULT_DTYPE
from spingap.mps.mpo import MPO


def parse_spin(label) -> Fraction:
    """
    Parse a spin label such as "1/2", "1" or "3/2".

    Raises:
        ValueError: if the label is not a positive half-integer
    """
    try:
        S = Fraction(str(label))
    except (ValueError, ZeroDivisionError):
        raise ValueError(f"Invalid spin label: {label!r}") from None

    if S <= 0 or (2 * S).denominator != 1:
        raise ValueError(f"Spin must be a positive half-integer, got {label!r}")

    return S


@dataclass(frozen=True)
class ChainSpec:
    """
    Open Heisenberg chain H = J * sum_i S_i . S_{i+1}.

    Attributes:
        length: Number of sites L
        J: Exchange coupling (J > 0 antiferromagnetic)
        spin: Local spin label ("1/2", "1", ...)
    """
    length: int
    J: float = 1.0
    spin: str = "1/2"

    def __post_init__(self):
        if int(self.length) != self.length or self.length < 1:
            raise ValueError(f"Chain length must be a positive integer, got {self.length}")
        parse_spin(self.spin)

    @property
    def spin_value(self) -> float:
        return float(parse_spin(self.spin))

    @property
    def local_dim(self) -> int:
        return int(2 * parse_spin(self.spin)) + 1


def spin_operators(
    S: float = 0.5,
    dtype: torch.dtype = DEFAULT_DTYPE,
    device: Optional[torch.device] = None,
) -> Tuple[Tensor, Tensor, Tensor]:
    """
    Return spin operators S_z, S_+, S_- for spin S.

    The basis is ordered by decreasing projection: index k carries
    m = S - k. All three operators are real.

    Args:
        S: Spin value (0.5, 1, 1.5, ...)

    Returns:
        (S_z, S_p, S_m), each of shape (2S+1, 2S+1)
    """
    if device is None:
        device = torch.device('cpu')

    d = int(round(2 * S)) + 1

    m_values = [S - k for k in range(d)]
    S_z = torch.diag(torch.tensor(m_values, dtype=dtype, device=device))

    # S_+ |S, m> = sqrt(S(S+1) - m(m+1)) |S, m+1>
    S_p = torch.zeros(d, d, dtype=dtype, device=device)
    for k in range(d - 1):
        m = m_values[k + 1]  # m of the state we're raising FROM
        S_p[k, k + 1] = (S * (S + 1) - m * (m + 1)) ** 0.5
    S_m = S_p.T.clone()

    return S_z, S_p, S_m


def heisenberg_mpo(
    L: int,
    J: float = 1.0,
    Jz: Optional[float] = None,
    h: float = 0.0,
    spin: float = 0.5,
    dtype: torch.dtype = DEFAULT_DTYPE,
    device: Optional[torch.device] = None,
) -> MPO:
    """
    Heisenberg XXZ chain Hamiltonian as MPO.

    H = J * sum_i (S^x_i S^x_{i+1} + S^y_i S^y_{i+1}) + Jz * sum_i S^z_i S^z_{i+1} + h * sum_i S^z_i

    The XY part is written as (S^+ S^- + S^- S^+) / 2 so the MPO stays
    real. For the isotropic model leave Jz as None.

    Args:
        L: Number of sites
        J: XY coupling strength
        Jz: Z coupling strength (defaults to J)
        h: Magnetic field
        spin: Local spin S
        dtype: Data type
        device: Device

    Returns:
        MPO representation of Hamiltonian
    """
    if L < 1:
        raise ValueError(f"Need at least one site, got L={L}")

    if device is None:
        device = torch.device('cpu')

    if Jz is None:
        Jz = J

    Sz, Sp, Sm = spin_operators(spin, dtype=dtype, device=device)
    d = Sz.shape[0]
    D = 5
    I = torch.eye(d, dtype=dtype, device=device)

    if L == 1:
        return MPO([(h * Sz).reshape(1, d, d, 1)])

    # Bulk:
    # W = [[I,  Sp,    Sm,    Sz,    h*Sz  ],
    #      [0,  0,     0,     0,     J/2*Sm],
    #      [0,  0,     0,     0,     J/2*Sp],
    #      [0,  0,     0,     0,     Jz*Sz ],
    #      [0,  0,     0,     0,     I     ]]
    W = torch.zeros(D, d, d, D, dtype=dtype, device=device)
    W[0, :, :, 0] = I
    W[0, :, :, 1] = Sp
    W[0, :, :, 2] = Sm
    W[0, :, :, 3] = Sz
    W[0, :, :, 4] = h * Sz
    W[1, :, :, 4] = (J / 2) * Sm
    W[2, :, :, 4] = (J / 2) * Sp
    W[3, :, :, 4] = Jz * Sz
    W[4, :, :, 4] = I

    tensors = []
    for i in range(L):
        if i == 0:
            # First row
            tensors.append(W[0:1].clone())
        elif i == L - 1:
            # Last column
            tensors.append(W[:, :, :, 4:5].clone())
        else:
            tensors.append(W.clone())

    return MPO(tensors)


def sz_penalty_mpo(
    L: int,
    target_sz: float,
    weight: float,
    spin: float = 0.5,
    dtype: torch.dtype = DEFAULT_DTYPE,
    device: Optional[torch.device] = None,
) -> MPO:
    """
    Sector penalty weight * (S^z_tot - target_sz)^2 as MPO.

    Expanded as weight * (sum_i (S^z_i)^2 - 2 M S^z_i + M^2 / L
    + 2 sum_{i<j} S^z_i S^z_j), which needs bond dimension 3.

    Args:
        L: Number of sites
        target_sz: Total S^z of the favoured sector
        weight: Energy cost per unit of (S^z_tot - target_sz)^2
        spin: Local spin S
    """
    if L < 1:
        raise ValueError(f"Need at least one site, got L={L}")

    if device is None:
        device = torch.device('cpu')

    Sz, _, _ = spin_operators(spin, dtype=dtype, device=device)
    d = Sz.shape[0]
    I = torch.eye(d, dtype=dtype, device=device)
    M = float(target_sz)

    local = weight * (Sz @ Sz - 2 * M * Sz + (M * M / L) * I)

    if L == 1:
        return MPO([local.reshape(1, d, d, 1)])

    # W = [[I,  2w*Sz,  local],
    #      [0,  I,      Sz   ],
    #      [0,  0,      I    ]]
    W = torch.zeros(3, d, d, 3, dtype=dtype, device=device)
    W[0, :, :, 0] = I
    W[0, :, :, 1] = 2 * weight * Sz
    W[0, :, :, 2] = local
    W[1, :, :, 1] = I
    W[1, :, :, 2] = Sz
    W[2, :, :, 2] = I

    tensors = [W[0:1].clone()]
    tensors += [W.clone() for _ in range(L - 2)]
    tensors.append(W[:, :, :, 2:3].clone())

    return MPO(tensors)


def build_hamiltonian(
    chain: ChainSpec,
    dtype: torch.dtype = DEFAULT_DTYPE,
    device: Optional[torch.device] = None,
) -> MPO:
    """Isotropic Heisenberg MPO for a chain description."""
    return heisenberg_mpo(
        L=chain.length,
        J=chain.J,
        spin=chain.spin_value,
        dtype=dtype,
        device=device,
    )
