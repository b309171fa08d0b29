"""
Solver and engine configuration.

All configuration objects are frozen dataclasses validated on
construction; rebuild them with ``dataclasses.replace`` (or the helpers
below) instead of mutating.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Optional, Sequence, Tuple
import torch


DEFAULT_DTYPE = torch.float64

# Schmidt values below this are dropped before taking log(p)
SCHMIDT_FLOOR = 1e-12

# Gap candidates must exceed this to count as a genuine excitation
NOISE_FLOOR = 1e-10

# Empirical thresholds, tunable per model
ORTHOGONALITY_THRESHOLD = 0.1
SECTOR_OVERLAP_THRESHOLD = 0.99


def chi_for_sweep(chi_max: int, chi_schedule: Optional[Sequence[int]], sweep: int) -> int:
    """Entry of a bond dimension ramp for a sweep; the last entry repeats."""
    if not chi_schedule:
        return chi_max
    return min(chi_schedule[min(sweep, len(chi_schedule) - 1)], chi_max)


@dataclass(frozen=True)
class SolverConfig:
    """
    Settings for a single variational solver call.

    Attributes:
        num_sweeps: Maximum number of DMRG sweeps
        chi_max: Hard cap on the MPS bond dimension
        cutoff: Relative discarded-weight cutoff for SVD truncation
        noise: Amplitude of the random perturbation added to the two-site
            tensor on every sweep except the last
        penalty_weight: Weight w of the w * |phi><phi| penalty terms
        reference_states: States to penalize against
        chi_schedule: Optional per-sweep bond dimension ramp; the last entry
            is reused for the remaining sweeps, every entry capped by chi_max
        tol: Energy change between sweeps below which the solve stops
        lanczos_iterations: Krylov dimension of the local eigensolver
    """
    num_sweeps: int = 10
    chi_max: int = 64
    cutoff: float = 1e-10
    noise: float = 0.0
    penalty_weight: float = 0.0
    reference_states: Tuple = ()
    chi_schedule: Optional[Tuple[int, ...]] = None
    tol: float = 1e-10
    lanczos_iterations: int = 40

    def __post_init__(self):
        if self.num_sweeps < 1:
            raise ValueError(f"num_sweeps must be positive, got {self.num_sweeps}")
        if self.chi_max < 1:
            raise ValueError(f"chi_max must be positive, got {self.chi_max}")
        if not self.cutoff > 0:
            raise ValueError(f"cutoff must be positive, got {self.cutoff}")
        if self.noise < 0:
            raise ValueError(f"noise must be non-negative, got {self.noise}")
        if self.penalty_weight < 0:
            raise ValueError(f"penalty_weight must be non-negative, got {self.penalty_weight}")
        if self.lanczos_iterations < 1:
            raise ValueError(f"lanczos_iterations must be positive, got {self.lanczos_iterations}")

        object.__setattr__(self, 'reference_states', tuple(self.reference_states))
        if self.reference_states and self.penalty_weight <= 0:
            raise ValueError("penalty_weight must be > 0 when reference_states is non-empty")

        if self.chi_schedule is not None:
            schedule = tuple(int(c) for c in self.chi_schedule)
            if not schedule or min(schedule) < 1:
                raise ValueError(f"chi_schedule must hold positive entries, got {self.chi_schedule}")
            object.__setattr__(self, 'chi_schedule', schedule)

    def chi_for_sweep(self, sweep: int) -> int:
        """Bond dimension cap used on the given (0-based) sweep."""
        return chi_for_sweep(self.chi_max, self.chi_schedule, sweep)

    def with_references(
        self,
        states: Sequence,
        penalty_weight: Optional[float] = None,
    ) -> SolverConfig:
        """Copy of this config penalizing against ``states``."""
        weight = self.penalty_weight if penalty_weight is None else penalty_weight
        return replace(self, reference_states=tuple(states), penalty_weight=weight)

    def without_noise(self) -> SolverConfig:
        return replace(self, noise=0.0)


@dataclass(frozen=True)
class GapSettings:
    """
    Heuristics of the gap estimation engine.

    The two overlap thresholds are empirical; keep them configurable.

    Attributes:
        penalty_weight: Penalty weight in units of |J|
        orthogonality_threshold: Max |<psi0|psi1>| for an accepted
            orthogonal-penalty candidate
        sector_overlap_threshold: Sector solves with overlap to the ground
            state above this collapsed back and are discarded
        noise_floor: Candidates must exceed this to be a genuine gap
        retry_trials: Trial budget of the orthogonal-penalty retry loop
        perturbation_gates: Random two-site gates applied per retry guess
        sector_deltas: Total Sz offsets (relative to the Neel baseline)
            scanned by the sector strategy
        initial_chi: Bond dimension of random initial guesses
        max_workers: Thread pool size for independent strategies/trials
    """
    penalty_weight: float = 10.0
    orthogonality_threshold: float = ORTHOGONALITY_THRESHOLD
    sector_overlap_threshold: float = SECTOR_OVERLAP_THRESHOLD
    noise_floor: float = NOISE_FLOOR
    retry_trials: int = 3
    perturbation_gates: int = 4
    sector_deltas: Tuple[int, ...] = (-1, 1)
    initial_chi: int = 4
    max_workers: int = 1

    def __post_init__(self):
        if self.penalty_weight <= 0:
            raise ValueError(f"penalty_weight must be positive, got {self.penalty_weight}")
        if not 0 < self.orthogonality_threshold < 1:
            raise ValueError("orthogonality_threshold must lie in (0, 1)")
        if not 0 < self.sector_overlap_threshold <= 1:
            raise ValueError("sector_overlap_threshold must lie in (0, 1]")
        if self.noise_floor < 0:
            raise ValueError(f"noise_floor must be non-negative, got {self.noise_floor}")
        if self.retry_trials < 0:
            raise ValueError(f"retry_trials must be non-negative, got {self.retry_trials}")
        if self.perturbation_gates < 0:
            raise ValueError(f"perturbation_gates must be non-negative, got {self.perturbation_gates}")
        if self.initial_chi < 1 or self.max_workers < 1:
            raise ValueError("initial_chi and max_workers must be positive")
        object.__setattr__(self, 'sector_deltas', tuple(int(s) for s in self.sector_deltas))

    @property
    def max_solver_calls(self) -> int:
        """Upper bound on oracle calls per chain length."""
        return 2 + self.retry_trials + len(self.sector_deltas)
