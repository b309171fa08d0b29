"""
DMRG (Density Matrix Renormalization Group) algorithm.

Two-site DMRG for ground states of 1D chains, with optional energy
penalties against reference states (for excited states) and optional
noise to help the sweep escape poor local minima.
"""

from typing import Tuple, Optional, Dict, Any, List, Sequence
import logging
import torch
from torch import Tensor

from spingap.config import chi_for_sweep
from spingap.mps.mps import MPS
from spingap.mps.mpo import MPO
from spingap.core.decompositions import svd_truncated
from spingap.algorithms.lanczos import lanczos_ground_state

logger = logging.getLogger(__name__)


def dmrg(
    mps: MPS,
    mpo: MPO,
    num_sweeps: int = 10,
    chi_max: int = 64,
    cutoff: float = 1e-10,
    tol: float = 1e-8,
    lanczos_iterations: int = 50,
    **kwargs,
) -> Tuple[MPS, float, Dict[str, Any]]:
    """
    Run two-site DMRG.

    Alias for dmrg_two_site().
    """
    return dmrg_two_site(
        mps=mps,
        mpo=mpo,
        num_sweeps=num_sweeps,
        chi_max=chi_max,
        cutoff=cutoff,
        tol=tol,
        lanczos_iterations=lanczos_iterations,
        **kwargs,
    )


def dmrg_two_site(
    mps: MPS,
    mpo: MPO,
    num_sweeps: int = 10,
    chi_max: int = 64,
    cutoff: float = 1e-10,
    tol: float = 1e-8,
    lanczos_iterations: int = 50,
    penalty_states: Sequence[MPS] = (),
    penalty_weight: float = 0.0,
    noise: float = 0.0,
    chi_schedule: Optional[Sequence[int]] = None,
    generator: Optional[torch.Generator] = None,
) -> Tuple[MPS, float, Dict[str, Any]]:
    """
    Two-site DMRG algorithm.

    Minimizes <psi|H|psi> + w * sum_k |<phi_k|psi>|^2 over MPS of bounded
    bond dimension. With no penalty states this is the plain ground state
    search; with the ground state as penalty it targets the first
    excited state.

    Args:
        mps: Initial MPS (will be modified)
        mpo: Hamiltonian as MPO
        num_sweeps: Number of sweeps
        chi_max: Maximum bond dimension
        cutoff: SVD truncation cutoff
        tol: Energy convergence tolerance
        lanczos_iterations: Max Lanczos iterations per site
        penalty_states: Reference states phi_k to penalize
        penalty_weight: Weight w of the penalty
        noise: Amplitude of Gaussian noise added to each optimized
            two-site tensor, on every sweep except the last
        chi_schedule: Per-sweep bond dimension ramp (last entry repeated)
        generator: Pseudo-random source for the noise

    Returns:
        (optimized_mps, energy, info_dict), where energy is <psi|H|psi>
        without the penalty term

    Example:
        >>> mps = MPS.random(L=10, d=2, chi=4)
        >>> H = heisenberg_mpo(L=10)
        >>> psi, E, info = dmrg_two_site(mps, H, num_sweeps=8, chi_max=32)
    """
    L = mps.L

    if mpo.L != L:
        raise ValueError(f"Length mismatch: MPS has {L} sites, MPO has {mpo.L}")
    if L < 2:
        raise ValueError("Two-site DMRG needs at least two sites")
    for phi in penalty_states:
        if phi.L != L:
            raise ValueError(f"Penalty state has {phi.L} sites, expected {L}")
    if penalty_states and penalty_weight <= 0:
        raise ValueError("penalty_weight must be > 0 when penalty states are given")

    penalties = [phi.copy().normalize_() for phi in penalty_states]

    # Orthonormal right block for the first right sweep
    mps.canonicalize('right')

    energy = float('nan')
    energy_history = []
    max_truncation = 0.0
    converged = False

    for sweep in range(num_sweeps):
        chi = chi_for_sweep(chi_max, chi_schedule, sweep)
        sweep_noise = noise if sweep < num_sweeps - 1 else 0.0

        # Right sweep: sites 0 to L-2
        L_env = _init_left_environments(mps)
        R_env = _build_right_environments(mps, mpo)
        L_ovl = [_init_left_overlaps(mps) for _ in penalties]
        R_ovl = [_build_right_overlaps(phi, mps) for phi in penalties]

        for i in range(L - 1):
            _, trunc = _update_two_site(
                mps, mpo, i, L_env, R_env, penalties, L_ovl, R_ovl,
                penalty_weight, chi, cutoff, lanczos_iterations,
                sweep_noise, generator, direction='right',
            )
            max_truncation = max(max_truncation, trunc)

        # Left sweep: sites L-2 to 0
        L_env = _build_left_environments(mps, mpo)
        R_env = _init_right_environments(mps)
        L_ovl = [_build_left_overlaps(phi, mps) for phi in penalties]
        R_ovl = [_init_right_overlaps(mps) for _ in penalties]

        for i in range(L - 2, -1, -1):
            _, trunc = _update_two_site(
                mps, mpo, i, L_env, R_env, penalties, L_ovl, R_ovl,
                penalty_weight, chi, cutoff, lanczos_iterations,
                sweep_noise, generator, direction='left',
            )
            max_truncation = max(max_truncation, trunc)

        # After a left sweep the center sits on site 0
        mps._canonical_form = 'mixed'
        mps._center = 0

        # True energy from full contraction, without penalty
        energy = _compute_energy(mps, mpo)
        energy_history.append(energy)

        logger.debug(
            "sweep %d: E=%.12f chi=%d truncation=%.2e", sweep, energy, mps.chi, max_truncation
        )

        if energy != energy:
            # NaN: nothing to gain from further sweeps
            break

        schedule_done = chi_schedule is None or sweep >= len(chi_schedule) - 1
        if (
            sweep > 0
            and sweep_noise == 0.0
            and schedule_done
            and abs(energy_history[-1] - energy_history[-2]) < tol
        ):
            converged = True
            break

    info = {
        'num_sweeps': len(energy_history),
        'converged': converged,
        'energy_history': energy_history,
        'final_chi': mps.chi,
        'max_truncation_error': max_truncation,
    }

    return mps, energy, info


def _compute_energy(mps: MPS, mpo: MPO) -> float:
    """Compute <psi|H|psi> / <psi|psi> via environment contraction."""
    return mpo.expectation(mps).real.item()


def _ones(mps: MPS, *shape: int) -> Tensor:
    return torch.ones(*shape, dtype=mps.dtype, device=mps.device)


def _init_left_environments(mps: MPS) -> list:
    """Left environment list with only the boundary filled in."""
    L_env = [None] * (mps.L + 1)
    L_env[0] = _ones(mps, 1, 1, 1)
    return L_env


def _init_right_environments(mps: MPS) -> list:
    """Right environment list with only the boundary filled in."""
    R_env = [None] * (mps.L + 1)
    R_env[mps.L] = _ones(mps, 1, 1, 1)
    return R_env


def _build_left_environments(mps: MPS, mpo: MPO) -> list:
    """Build all left environment tensors from current MPS."""
    L_env = _init_left_environments(mps)
    for i in range(mps.L):
        L_env[i + 1] = _contract_left_env(mps.tensors[i], mpo.tensors[i], L_env[i])
    return L_env


def _build_right_environments(mps: MPS, mpo: MPO) -> list:
    """Build all right environment tensors from current MPS."""
    R_env = _init_right_environments(mps)
    for i in range(mps.L - 1, -1, -1):
        R_env[i] = _contract_right_env(mps.tensors[i], mpo.tensors[i], R_env[i + 1])
    return R_env


def _contract_right_env(A: Tensor, W: Tensor, R: Tensor) -> Tensor:
    """
    Contract right environment.

    A: MPS tensor (chi_l, d, chi_r)
    W: MPO tensor (D_l, d_out, d_in, D_r)
    R: Right environment (chi_r, D_r, chi_r')

    Returns: New right environment (chi_l, D_l, chi_l')

    Computes: R'[a,w,b] = sum_{c,d,d',x,c'} A*[a,d,c] W[w,d,d',x] A[b,d',c'] R[c,x,c']
    """
    W = W.to(A.dtype)
    temp1 = torch.einsum('adc,cxe->adxe', A.conj(), R)
    temp2 = torch.einsum('adxe,wdfx->awfe', temp1, W)
    return torch.einsum('awfe,bfe->awb', temp2, A)


def _contract_left_env(A: Tensor, W: Tensor, L: Tensor) -> Tensor:
    """
    Contract left environment.

    L: Left environment (chi_l, D_l, chi_l')
    A: MPS tensor (chi_l, d, chi_r)
    W: MPO tensor (D_l, d_out, d_in, D_r)

    Returns: New left environment (chi_r, D_r, chi_r')

    Computes: L'[c,x,c'] = sum_{a,d,d',w,b} L[a,w,b] A*[a,d,c] W[w,d,d',x] A[b,d',c']
    """
    W = W.to(A.dtype)
    temp1 = torch.einsum('awb,adc->wdbc', L, A.conj())
    temp2 = torch.einsum('wdbc,wdfx->bfcx', temp1, W)
    return torch.einsum('bfcx,bfe->cxe', temp2, A)


def _init_left_overlaps(mps: MPS) -> list:
    ovl = [None] * (mps.L + 1)
    ovl[0] = _ones(mps, 1, 1)
    return ovl


def _init_right_overlaps(mps: MPS) -> list:
    ovl = [None] * (mps.L + 1)
    ovl[mps.L] = _ones(mps, 1, 1)
    return ovl


def _build_left_overlaps(phi: MPS, mps: MPS) -> list:
    """O[i][p, k]: <phi| and |psi> contracted over sites 0..i-1."""
    ovl = _init_left_overlaps(mps)
    for i in range(mps.L):
        ovl[i + 1] = _contract_left_overlap(phi.tensors[i], mps.tensors[i], ovl[i])
    return ovl


def _build_right_overlaps(phi: MPS, mps: MPS) -> list:
    """O[i][p, k]: <phi| and |psi> contracted over sites i..L-1."""
    ovl = _init_right_overlaps(mps)
    for i in range(mps.L - 1, -1, -1):
        ovl[i] = _contract_right_overlap(phi.tensors[i], mps.tensors[i], ovl[i + 1])
    return ovl


def _contract_left_overlap(B: Tensor, A: Tensor, O: Tensor) -> Tensor:
    # O[p,k] B*[p,s,q] A[k,s,r] -> O'[q,r]
    return torch.einsum('pk,psq,ksr->qr', O, B.to(A.dtype).conj(), A)


def _contract_right_overlap(B: Tensor, A: Tensor, O: Tensor) -> Tensor:
    # B*[p,s,q] A[k,s,r] O[q,r] -> O'[p,k]
    return torch.einsum('psq,ksr,qr->pk', B.to(A.dtype).conj(), A, O)


def _update_two_site(
    mps: MPS,
    mpo: MPO,
    site: int,
    L_env: list,
    R_env: list,
    penalties: List[MPS],
    L_ovl: List[list],
    R_ovl: List[list],
    penalty_weight: float,
    chi_max: int,
    cutoff: float,
    lanczos_iterations: int,
    noise: float,
    generator: Optional[torch.Generator],
    direction: str,
) -> Tuple[float, float]:
    """
    Update two sites in DMRG.

    Returns the local (penalized) energy and the discarded weight.
    """
    i = site

    A1 = mps.tensors[i]      # (chi_l, d, chi_m)
    A2 = mps.tensors[i + 1]  # (chi_m, d, chi_r)

    chi_l = A1.shape[0]
    d = A1.shape[1]
    chi_r = A2.shape[2]

    # (chi_l, d, chi_m) x (chi_m, d, chi_r) -> (chi_l, d, d, chi_r)
    theta = torch.einsum('idk,klj->idlj', A1, A2)
    theta_shape = theta.shape

    Le = L_env[i]
    Re = R_env[i + 2]

    W1 = mpo.tensors[i].to(theta.dtype)      # (D_l, d_out, d_in, D_m)
    W2 = mpo.tensors[i + 1].to(theta.dtype)  # (D_m, d_out, d_in, D_r)

    # Projections of the reference states onto the two-site basis:
    # <phi|theta> = sum(c * theta)
    projections = []
    for k, phi in enumerate(penalties):
        B1 = phi.tensors[i].to(theta.dtype)
        B2 = phi.tensors[i + 1].to(theta.dtype)
        c = torch.einsum(
            'pk,psm,mtq,qr->kstr',
            L_ovl[k][i], B1.conj(), B2.conj(), R_ovl[k][i + 2],
        )
        projections.append(c)

    def apply_Heff(v):
        """Apply effective Hamiltonian (plus penalty) to two-site tensor.

        Index convention:
        - Le[bra_l, w, ket_l]: left environment
        - Re[bra_r, x, ket_r]: right environment
        - theta[ket_l, s, t, ket_r]: two-site ket wavefunction
        - W1[w, p_out, p_in, w']: left MPO tensor
        - W2[w', q_out, q_in, x]: right MPO tensor
        """
        v_2site = v.reshape(theta_shape)

        temp1 = torch.einsum('bwk,kstr->bwstr', Le, v_2site)
        temp2 = torch.einsum('bwstr,wpsm->bpmtr', temp1, W1)
        temp3 = torch.einsum('bpmtr,mqtx->bpqxr', temp2, W2)
        result = torch.einsum('bpqxr,cxr->bpqc', temp3, Re)

        for c in projections:
            result = result + penalty_weight * torch.sum(c * v_2site) * c.conj()

        return result.reshape(-1)

    E, theta_opt = lanczos_ground_state(
        apply_Heff,
        theta.reshape(-1),
        num_iterations=lanczos_iterations,
    )

    theta_opt = theta_opt.reshape(theta_shape)

    if noise > 0.0:
        kick = torch.randn(
            theta_shape, dtype=theta_opt.dtype, device=theta_opt.device, generator=generator
        )
        theta_opt = theta_opt + noise * kick
        theta_opt = theta_opt / torch.linalg.vector_norm(theta_opt)

    # (chi_l, d, d, chi_r) -> (chi_l * d, d * chi_r)
    theta_mat = theta_opt.reshape(chi_l * d, d * chi_r)

    U, S, Vh = svd_truncated(theta_mat, max_rank=chi_max, cutoff=cutoff)
    chi_new = len(S)

    kept = torch.sum(S ** 2).item()
    truncation = max(0.0, 1.0 - kept)
    S = S / torch.sqrt(torch.sum(S ** 2))
    S = torch.diag(S).to(Vh.dtype)

    if direction == 'right':
        # U becomes left tensor, S @ Vh becomes right tensor
        mps.tensors[i] = U.reshape(chi_l, d, chi_new)
        mps.tensors[i + 1] = (S @ Vh).reshape(chi_new, d, chi_r)

        L_env[i + 1] = _contract_left_env(mps.tensors[i], mpo.tensors[i], L_env[i])
        for k, phi in enumerate(penalties):
            L_ovl[k][i + 1] = _contract_left_overlap(phi.tensors[i], mps.tensors[i], L_ovl[k][i])

    else:
        # U @ S becomes left tensor, Vh becomes right tensor
        mps.tensors[i] = (U @ S).reshape(chi_l, d, chi_new)
        mps.tensors[i + 1] = Vh.reshape(chi_new, d, chi_r)

        R_env[i + 1] = _contract_right_env(mps.tensors[i + 1], mpo.tensors[i + 1], R_env[i + 2])
        for k, phi in enumerate(penalties):
            R_ovl[k][i + 1] = _contract_right_overlap(
                phi.tensors[i + 1], mps.tensors[i + 1], R_ovl[k][i + 2]
            )

    mps._update_chi()
    mps._canonical_form = None
    mps._center = None

    return (E.item() if isinstance(E, Tensor) else E), truncation
