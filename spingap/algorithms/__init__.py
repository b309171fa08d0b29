"""Algorithms module."""

from spingap.algorithms.dmrg import dmrg, dmrg_two_site
from spingap.algorithms.lanczos import lanczos_ground_state
from spingap.algorithms.oracle import (
    DMRGOracle,
    EigenResult,
    solve_ground_state,
    solve_excited_state,
)
from spingap.algorithms.gap import (
    GapCandidate,
    GapEstimator,
    GapMethod,
    GapResult,
    GapStage,
    GapStatus,
    GapSweep,
    estimate_gap,
    gap_sweep,
    reconcile_candidates,
    scaled_penalty_weight,
    sector_ground_state,
)
from spingap.algorithms.observables import (
    ObservableProfile,
    connected_correlation_profile,
    correlation_profile,
    entanglement_entropy,
    entropy_profile,
    magnetization_profile,
    total_magnetization,
    valid_bond_range,
)

__all__ = [
    "dmrg",
    "dmrg_two_site",
    "lanczos_ground_state",
    "DMRGOracle",
    "EigenResult",
    "solve_ground_state",
    "solve_excited_state",
    "GapCandidate",
    "GapEstimator",
    "GapMethod",
    "GapResult",
    "GapStage",
    "GapStatus",
    "GapSweep",
    "estimate_gap",
    "gap_sweep",
    "reconcile_candidates",
    "scaled_penalty_weight",
    "sector_ground_state",
    "ObservableProfile",
    "connected_correlation_profile",
    "correlation_profile",
    "entanglement_entropy",
    "entropy_profile",
    "magnetization_profile",
    "total_magnetization",
    "valid_bond_range",
]
