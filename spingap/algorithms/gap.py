"""
Spectral gap estimation.

Drives the variational oracle to a validated ground state and a
validated first-excited-state energy with two independent strategies:

    1. Orthogonal penalty: minimize H + w |psi0><psi0| from a random
       guess, retrying from gate-perturbed guesses when the result is not
       orthogonal enough to psi0.
    2. Sector scan: minimize H inside total-S^z sectors next to the
       ground state sector, starting from product states.

The smallest candidate that is positive beyond the noise floor wins.
Each chain length is an independent unit of work.
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union
import logging
import math
import torch

from spingap.config import GapSettings, SolverConfig, NOISE_FLOOR
from spingap.errors import NonConvergent, SolverDivergence
from spingap.mps.mps import MPS
from spingap.mps.mpo import MPO
from spingap.mps.hamiltonians import ChainSpec, build_hamiltonian, sz_penalty_mpo
from spingap.mps.states import (
    perturb_with_gates,
    product_mps,
    random_mps,
    sector_levels,
    twice_total_sz,
)
from spingap.algorithms.oracle import DMRGOracle, EigenResult, Oracle

logger = logging.getLogger(__name__)


class GapMethod(Enum):
    ORTHOGONAL_PENALTY = "orthogonal-penalty"
    SECTOR_SCAN = "sector-scan"


class GapStatus(Enum):
    RESOLVED = "resolved"
    CLAMPED = "clamped"
    NON_CONVERGENT = "non-convergent"


class GapStage(Enum):
    NOT_STARTED = 0
    GROUND_SOLVED = 1
    EXCITED_CANDIDATE_SEARCH = 2
    RECONCILED = 3
    DONE = 4


@dataclass(frozen=True)
class GapCandidate:
    """One strategy's proposal for E1 - E0."""
    value: float
    method: GapMethod
    valid: bool
    detail: str = ""
    energy: Optional[float] = None
    overlap: Optional[float] = None


@dataclass
class GapResult:
    """
    Outcome of one gap estimation.

    ``gap`` is 0.0 for both CLAMPED and NON_CONVERGENT; ``status`` tells
    them apart from a resolved gap.
    """
    gap: float
    status: GapStatus
    ground_energy: float
    candidates: List[GapCandidate] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    solver_calls: int = 0
    stage: GapStage = GapStage.NOT_STARTED
    ground_state: Optional[MPS] = None

    @property
    def is_warning(self) -> bool:
        return self.status is not GapStatus.RESOLVED


def reconcile_candidates(
    candidates: Iterable[Union[GapCandidate, float]],
    noise_floor: float = NOISE_FLOOR,
) -> Tuple[float, GapStatus, List[str]]:
    """
    Pick the accepted gap from a set of candidates.

    Plain floats are treated as valid candidates.

    Returns:
        (gap, status, warnings). The gap is the minimum valid candidate
        above ``noise_floor``. Without one, a valid candidate below
        ``-noise_floor`` means an inverted energy ordering and the gap is
        clamped to zero (CLAMPED); otherwise NON_CONVERGENT with gap zero.

    Example:
        >>> reconcile_candidates([0.5, 0.3, -1e-12])[0]
        0.3
    """
    values = []
    for c in candidates:
        if isinstance(c, GapCandidate):
            if c.valid:
                values.append(c.value)
        else:
            values.append(float(c))
    values = [v for v in values if math.isfinite(v)]

    warnings = []
    negative = [v for v in values if v < -noise_floor]
    if negative:
        warnings.append(
            f"negative gap candidate {min(negative):.3e} (energy ordering inverted)"
        )

    positive = [v for v in values if v > noise_floor]
    if positive:
        return min(positive), GapStatus.RESOLVED, warnings

    if negative:
        warnings.append("no positive gap candidate; gap clamped to zero")
        return 0.0, GapStatus.CLAMPED, warnings

    warnings.append(f"no gap candidate above noise floor {noise_floor:.1e}; reporting zero gap")
    return 0.0, GapStatus.NON_CONVERGENT, warnings


def _spawn(master: torch.Generator) -> torch.Generator:
    """Child generator seeded from the master stream."""
    seed = int(torch.randint(0, 2 ** 62, (1,), generator=master).item())
    return torch.Generator().manual_seed(seed)


def scaled_penalty_weight(chain: ChainSpec, scale: float) -> float:
    """``scale`` in units of |J| (2S)^2, the energy scale of one bond."""
    unit = abs(chain.J) * (2 * chain.spin_value) ** 2
    return scale * (unit if unit > 0 else 1.0)


def sector_ground_state(
    chain: ChainSpec,
    delta: int,
    solver_config: SolverConfig,
    oracle: Optional[Oracle] = None,
    operator: Optional[MPO] = None,
    sector_weight: Optional[float] = None,
) -> EigenResult:
    """
    Lowest state in the sector with total S^z = Neel baseline + delta.

    Solves H + w (S^z_tot - M)^2 from a product state in the sector,
    without noise. Truncated bond bases need not carry definite S^z, so
    the sector is held by the penalty rather than by the starting state.
    The penalty vanishes inside the sector; for w above the gap to the
    neighbouring sectors the reported energy is the sector ground energy.

    Args:
        chain: Chain to solve
        delta: Sector offset from the Neel total S^z
        solver_config: Oracle settings
        oracle: Solver (two-site DMRG by default)
        operator: Prebuilt Hamiltonian of ``chain``
        sector_weight: Penalty weight w; defaults to the engine's scaled
            penalty weight

    Raises:
        ValueError: if the sector does not exist for this chain
    """
    levels = sector_levels(chain.length, chain.local_dim, delta)

    oracle = oracle or DMRGOracle()
    H = operator if operator is not None else build_hamiltonian(chain)
    if sector_weight is None:
        sector_weight = scaled_penalty_weight(chain, GapSettings().penalty_weight)

    target = twice_total_sz(levels, chain.local_dim) / 2
    penalty = sz_penalty_mpo(
        chain.length, target, sector_weight, spin=chain.spin_value, dtype=H.dtype, device=H.device
    )

    guess = product_mps(levels, d=chain.local_dim, dtype=H.dtype, device=H.device)
    config = replace(solver_config.without_noise(), reference_states=(), penalty_weight=0.0)
    return oracle.solve_ground_state(H + penalty, guess, config)


class GapEstimator:
    """
    Gap estimation engine for one chain length at a time.

    Args:
        settings: Engine heuristics (thresholds, budgets)
        oracle: Solver implementing solve_ground_state / solve_excited_state
        seed: Seed of the master pseudo-random generator; ignored when
            ``generator`` is given
        generator: Master pseudo-random generator

    Example:
        >>> estimator = GapEstimator(seed=3)
        >>> result = estimator.run(ChainSpec(length=6), SolverConfig(chi_max=16))
        >>> result.status, result.gap
    """

    def __init__(
        self,
        settings: Optional[GapSettings] = None,
        oracle: Optional[Oracle] = None,
        seed: int = 0,
        generator: Optional[torch.Generator] = None,
    ):
        self.settings = settings or GapSettings()
        self.oracle = oracle or DMRGOracle()
        self.generator = generator if generator is not None else torch.Generator().manual_seed(seed)
        self.stage = GapStage.NOT_STARTED

    def penalty_weight(self, chain: ChainSpec, solver_config: SolverConfig) -> float:
        """Absolute penalty weight: explicit config value, else scaled by |J| and S."""
        if solver_config.penalty_weight > 0:
            return solver_config.penalty_weight
        return scaled_penalty_weight(chain, self.settings.penalty_weight)

    def run(self, chain: ChainSpec, solver_config: Optional[SolverConfig] = None) -> GapResult:
        """
        Estimate E1 - E0 for one chain.

        Raises:
            SolverDivergence: if any solver call diverges; the evaluation
                of this chain is abandoned
        """
        solver_config = solver_config or SolverConfig()
        settings = self.settings
        self._set_stage(GapStage.NOT_STARTED, chain)

        if chain.length < 2:
            raise ValueError(f"Gap estimation needs at least two sites, got L={chain.length}")

        H = build_hamiltonian(chain)
        base = replace(solver_config, reference_states=(), penalty_weight=0.0)
        weight = self.penalty_weight(chain, solver_config)

        # Child generators are drawn up front so results do not depend on
        # task scheduling
        ground_gen = _spawn(self.generator)
        penalty_gens = [_spawn(self.generator) for _ in range(1 + settings.retry_trials)]

        # Ground state
        guess = random_mps(chain.length, d=chain.local_dim, chi=settings.initial_chi, generator=ground_gen)
        ground = self.oracle.solve_ground_state(H, guess, base, _spawn(ground_gen))
        E0, psi0 = ground.energy, ground.state
        self._set_stage(GapStage.GROUND_SOLVED, chain)
        logger.info("L=%d: ground state E0=%.12f", chain.length, E0)

        # Excited-state candidates; the two strategies share only psi0,
        # which neither of them modifies
        self._set_stage(GapStage.EXCITED_CANDIDATE_SEARCH, chain)
        excited_config = replace(base, penalty_weight=weight)
        with ThreadPoolExecutor(max_workers=settings.max_workers) as pool:
            penalty_future = pool.submit(
                self._orthogonal_penalty, chain, H, excited_config, psi0, E0, penalty_gens
            )
            sector_future = pool.submit(self._sector_scan, chain, H, base, psi0, E0, weight)
            penalty_candidate, penalty_calls = penalty_future.result()
            sector_candidate, sector_calls = sector_future.result()

        candidates = [penalty_candidate, sector_candidate]
        for c in candidates:
            logger.info(
                "L=%d: %s candidate %s (%.6e) %s",
                chain.length, c.method.value, "valid" if c.valid else "invalid", c.value, c.detail,
            )

        gap, status, warnings = reconcile_candidates(candidates, settings.noise_floor)
        self._set_stage(GapStage.RECONCILED, chain)
        for message in warnings:
            logger.warning("L=%d: %s", chain.length, message)

        result = GapResult(
            gap=gap,
            status=status,
            ground_energy=E0,
            candidates=candidates,
            warnings=warnings,
            solver_calls=1 + penalty_calls + sector_calls,
            ground_state=psi0,
        )
        self._set_stage(GapStage.DONE, chain)
        result.stage = self.stage
        return result

    def _set_stage(self, stage: GapStage, chain: ChainSpec):
        self.stage = stage
        logger.debug("L=%d: stage %s", chain.length, stage.name)

    def _random_guess(self, chain: ChainSpec, generator: torch.Generator) -> MPS:
        return random_mps(
            chain.length, d=chain.local_dim, chi=self.settings.initial_chi, generator=generator
        )

    def _orthogonal_penalty(
        self,
        chain: ChainSpec,
        H: MPO,
        config: SolverConfig,
        psi0: MPS,
        E0: float,
        generators: Sequence[torch.Generator],
    ) -> Tuple[GapCandidate, int]:
        """Penalty solve with a bounded retry loop. Returns (candidate, solver calls)."""
        settings = self.settings
        threshold = settings.orthogonality_threshold

        first = self.oracle.solve_excited_state(
            H, [psi0], self._random_guess(chain, generators[0]), config, _spawn(generators[0])
        )
        overlap = psi0.overlap(first.state)
        if overlap <= threshold:
            return GapCandidate(
                value=first.energy - E0,
                method=GapMethod.ORTHOGONAL_PENALTY,
                valid=True,
                detail=f"overlap={overlap:.3e}",
                energy=first.energy,
                overlap=overlap,
            ), 1

        logger.info(
            "L=%d: penalty solve not orthogonal (overlap=%.3e > %.3e), retrying with %d trials",
            chain.length, overlap, threshold, settings.retry_trials,
        )

        trial_gens = generators[1:1 + settings.retry_trials]
        with ThreadPoolExecutor(max_workers=settings.max_workers) as pool:
            futures = [
                pool.submit(self._penalty_trial, chain, H, config, psi0, gen)
                for gen in trial_gens
            ]
            trials = [f.result() for f in futures]

        accepted = [t for t in trials if t[1] < threshold]
        if not accepted:
            return GapCandidate(
                value=first.energy - E0,
                method=GapMethod.ORTHOGONAL_PENALTY,
                valid=False,
                detail=f"no trial below overlap {threshold} after {len(trials)} retries",
                energy=first.energy,
                overlap=overlap,
            ), 1 + len(trials)

        energy, best_overlap = min(accepted, key=lambda t: t[0])
        return GapCandidate(
            value=energy - E0,
            method=GapMethod.ORTHOGONAL_PENALTY,
            valid=True,
            detail=f"overlap={best_overlap:.3e} after retry",
            energy=energy,
            overlap=best_overlap,
        ), 1 + len(trials)

    def _penalty_trial(
        self,
        chain: ChainSpec,
        H: MPO,
        config: SolverConfig,
        psi0: MPS,
        generator: torch.Generator,
    ) -> Tuple[float, float]:
        guess = self._random_guess(chain, generator)
        perturb_with_gates(guess, self.settings.perturbation_gates, generator, chi_max=config.chi_max)
        result = self.oracle.solve_excited_state(H, [psi0], guess, config, _spawn(generator))
        return result.energy, psi0.overlap(result.state)

    def _sector_scan(
        self,
        chain: ChainSpec,
        H: MPO,
        config: SolverConfig,
        psi0: MPS,
        E0: float,
        weight: float,
    ) -> Tuple[GapCandidate, int]:
        """Sector solves next to the ground sector. Returns (candidate, solver calls)."""
        threshold = self.settings.sector_overlap_threshold
        energies = []
        calls = 0

        for delta in self.settings.sector_deltas:
            try:
                sector_levels(chain.length, chain.local_dim, delta)
            except ValueError as exc:
                logger.info("L=%d: skipping sector %+d: %s", chain.length, delta, exc)
                continue

            result = sector_ground_state(
                chain, delta, config, oracle=self.oracle, operator=H, sector_weight=weight
            )
            calls += 1

            overlap = psi0.overlap(result.state)
            if overlap > threshold:
                logger.warning(
                    "L=%d: sector %+d collapsed onto the ground state (overlap=%.4f), discarded",
                    chain.length, delta, overlap,
                )
                continue
            energies.append(result.energy)

        if not energies:
            return GapCandidate(
                value=float('nan'),
                method=GapMethod.SECTOR_SCAN,
                valid=False,
                detail="no sector solve survived",
            ), calls

        energy = min(energies)
        return GapCandidate(
            value=energy - E0,
            method=GapMethod.SECTOR_SCAN,
            valid=True,
            detail=f"{len(energies)} sector(s)",
            energy=energy,
        ), calls


def estimate_gap(
    chain_spec: ChainSpec,
    solver_config: Optional[SolverConfig] = None,
    settings: Optional[GapSettings] = None,
    seed: int = 0,
    oracle: Optional[Oracle] = None,
    strict: bool = False,
) -> float:
    """
    Estimate the lowest excitation gap E1 - E0 of a chain.

    Never negative. When no strategy finds a gap above the noise floor,
    the default is to log a warning and return 0.0; use ``strict=True``
    (or ``GapEstimator.run`` for the full status) to tell that apart from
    a genuinely small gap.

    Args:
        chain_spec: Chain to evaluate
        solver_config: Oracle settings
        settings: Engine heuristics
        seed: Seed of the pseudo-random source
        oracle: Solver to drive (two-site DMRG by default)
        strict: Raise NonConvergent instead of returning a bare zero

    Raises:
        NonConvergent: with ``strict=True``, if no candidate is accepted
        SolverDivergence: if a solver call diverges
    """
    result = GapEstimator(settings=settings, oracle=oracle, seed=seed).run(chain_spec, solver_config)

    if result.status is GapStatus.NON_CONVERGENT and strict:
        raise NonConvergent(
            f"No gap candidate above the noise floor for L={chain_spec.length}", result=result
        )

    return result.gap


@dataclass
class GapSweep:
    """Gap results over a range of chain lengths."""
    results: Dict[int, GapResult] = field(default_factory=dict)
    failures: Dict[int, Exception] = field(default_factory=dict)

    def pairs(self) -> List[Tuple[int, float]]:
        """Ordered (chain_length, gap) pairs of the lengths that completed."""
        return [(L, self.results[L].gap) for L in sorted(self.results)]

    def warnings(self) -> Dict[int, GapStatus]:
        """Lengths whose gap is a clamped or non-convergent zero."""
        return {L: r.status for L, r in self.results.items() if r.is_warning}


def gap_sweep(
    lengths: Iterable[int],
    solver_config: Optional[SolverConfig] = None,
    J: float = 1.0,
    spin: str = "1/2",
    settings: Optional[GapSettings] = None,
    seed: int = 0,
    oracle: Optional[Oracle] = None,
    max_workers: int = 1,
) -> GapSweep:
    """
    Estimate the gap for every chain length independently.

    A length whose solver diverges is recorded in ``failures`` and the
    sweep continues with the others.

    Example:
        >>> sweep = gap_sweep(range(4, 17, 2), SolverConfig(chi_max=32))
        >>> sweep.pairs()
    """
    lengths = list(lengths)
    sweep = GapSweep()

    def evaluate(L: int) -> GapResult:
        # Seed per length so each unit of work is reproducible on its own
        estimator = GapEstimator(settings=settings, oracle=oracle, seed=seed * 1_000_003 + L)
        return estimator.run(ChainSpec(length=L, J=J, spin=spin), solver_config)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {L: pool.submit(evaluate, L) for L in lengths}
        for L, future in futures.items():
            try:
                sweep.results[L] = future.result()
            except SolverDivergence as exc:
                logger.error("L=%d: solver diverged, skipping length: %s", L, exc)
                sweep.failures[L] = exc

    return sweep
