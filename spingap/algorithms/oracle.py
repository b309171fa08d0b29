"""
Variational eigenstate oracle.

The gap engine only talks to the solver through two calls,
``solve_ground_state`` and ``solve_excited_state``. ``DMRGOracle``
implements them with two-site DMRG; anything exposing the same two
methods can be swapped in (exact diagonalization for tiny chains, a
stub in tests).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Sequence
import logging
import math
import torch

from spingap.config import SolverConfig
from spingap.errors import SolverDivergence
from spingap.mps.mps import MPS
from spingap.mps.mpo import MPO
from spingap.algorithms.dmrg import dmrg_two_site

logger = logging.getLogger(__name__)


@dataclass
class EigenResult:
    """
    Energy and state returned by one solver call.

    Ownership of ``state`` passes to the caller.
    """
    energy: float
    state: MPS
    info: Dict[str, Any] = field(default_factory=dict)


class Oracle(Protocol):
    """Interface the gap engine expects from a solver."""

    def solve_ground_state(
        self,
        operator: MPO,
        initial_guess: MPS,
        config: SolverConfig,
        generator: Optional[torch.Generator] = None,
    ) -> EigenResult:
        ...

    def solve_excited_state(
        self,
        operator: MPO,
        penalized_against: Sequence[MPS],
        initial_guess: MPS,
        config: SolverConfig,
        generator: Optional[torch.Generator] = None,
    ) -> EigenResult:
        ...


class DMRGOracle:
    """
    Two-site DMRG behind the oracle interface.

    The initial guess is copied, never modified. The number of sweeps and
    the bond dimension cap in ``config`` bound every call.
    """

    def solve_ground_state(
        self,
        operator: MPO,
        initial_guess: MPS,
        config: SolverConfig,
        generator: Optional[torch.Generator] = None,
    ) -> EigenResult:
        return self._solve(operator, initial_guess, config, generator)

    def solve_excited_state(
        self,
        operator: MPO,
        penalized_against: Sequence[MPS],
        initial_guess: MPS,
        config: SolverConfig,
        generator: Optional[torch.Generator] = None,
    ) -> EigenResult:
        penalized_against = tuple(penalized_against)
        if not penalized_against:
            raise ValueError("solve_excited_state needs at least one state to penalize")
        if config.penalty_weight <= 0:
            raise ValueError("solve_excited_state needs a positive penalty_weight")
        return self._solve(
            operator,
            initial_guess,
            config.with_references(penalized_against),
            generator,
        )

    def _solve(
        self,
        operator: MPO,
        initial_guess: MPS,
        config: SolverConfig,
        generator: Optional[torch.Generator],
    ) -> EigenResult:
        if generator is None and config.noise > 0:
            generator = torch.Generator().manual_seed(0)

        psi = initial_guess.copy()
        try:
            psi, energy, info = dmrg_two_site(
                psi,
                operator,
                num_sweeps=config.num_sweeps,
                chi_max=config.chi_max,
                cutoff=config.cutoff,
                tol=config.tol,
                lanczos_iterations=config.lanczos_iterations,
                penalty_states=config.reference_states,
                penalty_weight=config.penalty_weight,
                noise=config.noise,
                chi_schedule=config.chi_schedule,
                generator=generator,
            )
        except (FloatingPointError, torch.linalg.LinAlgError) as exc:
            raise SolverDivergence(f"Solver failed numerically: {exc}") from exc

        _check_finite(energy, psi)

        logger.debug(
            "DMRG finished: E=%.12f sweeps=%d converged=%s chi=%d penalties=%d",
            energy, info['num_sweeps'], info['converged'], info['final_chi'],
            len(config.reference_states),
        )

        return EigenResult(energy=energy, state=psi, info=info)


def _check_finite(energy: float, psi: MPS):
    if not math.isfinite(energy):
        raise SolverDivergence(f"Solver returned non-finite energy {energy}", energy=energy)
    for tensor in psi.tensors:
        if not torch.isfinite(tensor).all():
            raise SolverDivergence("Solver returned a state with non-finite entries", energy=energy)


_default_oracle = DMRGOracle()


def solve_ground_state(
    operator: MPO,
    initial_guess: MPS,
    config: SolverConfig,
    generator: Optional[torch.Generator] = None,
) -> EigenResult:
    """
    Lowest-energy state reachable from ``initial_guess``.

    Raises:
        SolverDivergence: if the energy or the state is not finite
    """
    return _default_oracle.solve_ground_state(operator, initial_guess, config, generator)


def solve_excited_state(
    operator: MPO,
    penalized_against: Sequence[MPS],
    initial_guess: MPS,
    config: SolverConfig,
    generator: Optional[torch.Generator] = None,
) -> EigenResult:
    """
    Lowest-energy state of H + w * sum_k |phi_k><phi_k|.

    The penalty weight comes from ``config.penalty_weight``; the reported
    energy is <psi|H|psi> without the penalty.

    Raises:
        SolverDivergence: if the energy or the state is not finite
    """
    return _default_oracle.solve_excited_state(
        operator, penalized_against, initial_guess, config, generator
    )
