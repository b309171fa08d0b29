#!/usr/bin/env python3
"""
Proof 22: Finite-Size Spectral Gap of the Heisenberg Chain
==========================================================

Demonstrates that the gap engine reproduces exact diagonalization on
small open chains and that the spin-1/2 gap closes with system size.

Physics:
    The open spin-1/2 Heisenberg chain is gapless in the thermodynamic
    limit; on L sites the singlet-triplet gap scales roughly as 1/L.

    The first excited state sits in the total S^z = ±1 sector, so the
    penalty solve and the sector scan must agree.

Test:
    - Compare estimate_gap with the exact gap for L = 4, 6, 8
    - Sweep L = 4..12 and check the gap decreases monotonically
    - Measure entropy / correlations / magnetization of the L=12 ground state

Criterion: |Δ_DMRG - Δ_exact| < 1e-6, Δ(L) strictly decreasing
"""

import math
import torch
from spingap import ChainSpec, SolverConfig, estimate_gap, gap_sweep
from spingap.logging_config import setup_logging
from spingap.mps.hamiltonians import heisenberg_mpo
from spingap.mps.states import neel_mps
from spingap.algorithms.oracle import solve_ground_state
from spingap.algorithms.observables import (
    correlation_profile,
    entropy_profile,
    magnetization_profile,
    total_magnetization,
)


def test_gap_matches_exact():
    """Test gap engine against exact diagonalization."""
    config = SolverConfig(num_sweeps=12, chi_max=32, cutoff=1e-12)

    for L in [4, 6, 8]:
        H = heisenberg_mpo(L=L, J=1.0)
        spectrum = torch.linalg.eigvalsh(H.to_matrix())
        exact = (spectrum[1] - spectrum[0]).item()

        gap = estimate_gap(ChainSpec(length=L), config, seed=L)
        error = abs(gap - exact)

        print(f"L={L:2d}  Δ_DMRG={gap:.10f}  Δ_exact={exact:.10f}  error={error:.2e}")
        assert error < 1e-6, f"Gap error {error:.2e} exceeds tolerance at L={L}"

    print(f"✓ Gap engine matches exact diagonalization")

    return True


def test_gap_closes():
    """Test the gap decreases with chain length."""
    config = SolverConfig(num_sweeps=10, chi_schedule=(10, 20, 40), chi_max=40, cutoff=1e-10)

    sweep = gap_sweep(range(4, 13, 2), config, seed=7)
    pairs = sweep.pairs()

    print()
    for L, gap in pairs:
        print(f"L={L:2d}  Δ={gap:.6f}  L·Δ={L * gap:.4f}")

    gaps = [g for _, g in pairs]
    assert not sweep.failures, f"Diverged lengths: {sorted(sweep.failures)}"
    assert all(a > b for a, b in zip(gaps, gaps[1:])), "Gap not decreasing with L"

    print(f"✓ Gap closes with system size")

    return True


def test_ground_state_observables():
    """Test observables of a Neel-seeded ground state."""
    L = 12
    H = heisenberg_mpo(L=L, J=1.0)
    config = SolverConfig(num_sweeps=10, chi_schedule=(10, 20, 100), chi_max=100, cutoff=1e-8)
    result = solve_ground_state(H, neel_mps(L), config)
    psi = result.state

    entropies = entropy_profile(psi)
    correlations = correlation_profile(psi, L // 2)
    magnetization = magnetization_profile(psi)

    print(f"\nE0/site:        {result.energy / L:.8f}")
    print(f"Entropy (bonds): {[f'{s:.3f}' for s in entropies.values()]}")
    print(f"<Sz_6 Sz_j>:     {[f'{c:+.3f}' for c in correlations.values()]}")
    print(f"Total Sz:        {total_magnetization(magnetization):+.2e}")

    assert max(entropies.values()) < math.log(psi.chi) + 1e-8
    assert abs(total_magnetization(magnetization)) < 1e-6
    assert correlations.values()[L // 2] < 0, "Nearest neighbours should anti-align"

    print(f"✓ Observables consistent with an antiferromagnetic singlet")

    return True


if __name__ == "__main__":
    setup_logging()

    print("=" * 60)
    print("Proof 22: Finite-Size Spectral Gap of the Heisenberg Chain")
    print("=" * 60)
    print()

    success1 = test_gap_matches_exact()
    success2 = test_gap_closes()
    success3 = test_ground_state_observables()

    print()
    print("=" * 60)
    print("PROOF PASSED" if (success1 and success2 and success3) else "PROOF FAILED")
    print("=" * 60)
