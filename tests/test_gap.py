"""
Tests for the spectral gap estimation engine.

Control-flow tests drive the engine with a scripted oracle so retry
budgets, reconciliation and error paths are exercised deterministically;
the end-to-end tests use the DMRG oracle on chains small enough to
diagonalize exactly.
"""

import pytest

from spingap.config import GapSettings, SolverConfig
from spingap.errors import NonConvergent, SolverDivergence
from spingap.mps.hamiltonians import ChainSpec
from spingap.mps.states import neel_mps, sector_mps
from spingap.algorithms.gap import (
    GapCandidate,
    GapEstimator,
    GapMethod,
    GapStage,
    GapStatus,
    estimate_gap,
    gap_sweep,
    reconcile_candidates,
    sector_ground_state,
)
from spingap.algorithms.oracle import EigenResult
from spingap.algorithms.observables import magnetization_profile, total_magnetization

from tests.helpers import exact_spectrum


E0 = -1.0


class ScriptedOracle:
    """
    Oracle stub returning scripted energies.

    The ground state is always the Neel state. Sector solves (recognized
    by their product-state guess) return the guess itself, or the Neel
    state when ``sector_collapse`` is set. Excited solves consume
    ``excited`` entries of (energy, collapsed); a collapsed result is the
    penalized state itself, otherwise a state orthogonal to it.
    """

    def __init__(self, excited=((E0 + 0.3, False),), sector_energy=E0 + 0.4,
                 sector_collapse=False, diverge_for=(), sector_error=None):
        self.excited = list(excited)
        self.sector_energy = sector_energy
        self.sector_collapse = sector_collapse
        self.diverge_for = set(diverge_for)
        self.sector_error = sector_error
        self.ground_calls = 0
        self.sector_calls = 0
        self.excited_calls = 0

    def solve_ground_state(self, operator, initial_guess, config, generator=None):
        if operator.L in self.diverge_for:
            raise SolverDivergence("scripted divergence", energy=float('inf'))
        if initial_guess.chi == 1:
            self.sector_calls += 1
            if self.sector_error is not None:
                raise self.sector_error
            state = neel_mps(operator.L) if self.sector_collapse else initial_guess.copy()
            return EigenResult(self.sector_energy, state)
        self.ground_calls += 1
        return EigenResult(E0, neel_mps(operator.L))

    def solve_excited_state(self, operator, penalized_against, initial_guess, config, generator=None):
        assert config.penalty_weight > 0
        entry = self.excited[min(self.excited_calls, len(self.excited) - 1)]
        self.excited_calls += 1
        energy, collapsed = entry
        state = penalized_against[0].copy() if collapsed else sector_mps(operator.L, delta=1)
        return EigenResult(energy, state)


@pytest.fixture
def chain():
    return ChainSpec(length=6, J=1.0)


class TestReconciliation:

    def test_minimum_positive_candidate_wins(self):
        gap, status, _ = reconcile_candidates([0.5, 0.3, -1e-12])
        assert gap == 0.3
        assert status is GapStatus.RESOLVED

    def test_invalid_and_nan_candidates_are_ignored(self):
        candidates = [
            GapCandidate(0.1, GapMethod.ORTHOGONAL_PENALTY, valid=False),
            GapCandidate(float('nan'), GapMethod.SECTOR_SCAN, valid=True),
            GapCandidate(0.7, GapMethod.SECTOR_SCAN, valid=True),
        ]
        gap, status, _ = reconcile_candidates(candidates)
        assert gap == 0.7
        assert status is GapStatus.RESOLVED

    def test_negative_only_is_clamped(self):
        gap, status, warnings = reconcile_candidates([-0.2, 1e-13])
        assert gap == 0.0
        assert status is GapStatus.CLAMPED
        assert warnings

    def test_noise_only_is_non_convergent(self):
        gap, status, warnings = reconcile_candidates([1e-12, -1e-12])
        assert gap == 0.0
        assert status is GapStatus.NON_CONVERGENT
        assert warnings

    def test_empty_is_non_convergent(self):
        assert reconcile_candidates([])[1] is GapStatus.NON_CONVERGENT

    def test_negative_alongside_positive_warns(self):
        gap, status, warnings = reconcile_candidates([0.4, -0.1])
        assert gap == 0.4
        assert status is GapStatus.RESOLVED
        assert len(warnings) == 1


class TestEngineControlFlow:

    def test_penalty_accepted_without_retry(self, chain):
        oracle = ScriptedOracle()
        result = GapEstimator(oracle=oracle).run(chain, SolverConfig())

        assert oracle.excited_calls == 1
        assert result.status is GapStatus.RESOLVED
        assert result.gap == pytest.approx(0.3)
        assert result.ground_energy == E0
        assert result.stage is GapStage.DONE

    @pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
    def test_retry_loop_is_bounded(self, chain, seed):
        settings = GapSettings()
        oracle = ScriptedOracle(excited=((E0 + 0.3, True),))
        result = GapEstimator(settings=settings, oracle=oracle, seed=seed).run(chain, SolverConfig())

        assert oracle.excited_calls == 1 + settings.retry_trials
        assert result.solver_calls == settings.max_solver_calls
        penalty = result.candidates[0]
        assert penalty.method is GapMethod.ORTHOGONAL_PENALTY
        assert not penalty.valid
        # Sector scan still provides the gap
        assert result.gap == pytest.approx(0.4)
        assert result.status is GapStatus.RESOLVED

    def test_retry_keeps_lowest_orthogonal_trial(self, chain):
        oracle = ScriptedOracle(
            excited=[(E0 + 0.1, True), (E0 + 0.6, False), (E0 + 0.35, False), (E0 + 0.05, True)],
            sector_energy=E0 + 0.9,
        )
        result = GapEstimator(oracle=oracle).run(chain, SolverConfig())

        penalty = result.candidates[0]
        assert penalty.valid
        assert penalty.value == pytest.approx(0.35)
        assert result.gap == pytest.approx(0.35)

    def test_zero_retry_budget(self, chain):
        oracle = ScriptedOracle(excited=((E0 + 0.3, True),))
        settings = GapSettings(retry_trials=0)
        result = GapEstimator(settings=settings, oracle=oracle).run(chain, SolverConfig())

        assert oracle.excited_calls == 1
        assert result.solver_calls == 1 + 1 + 2

    def test_sector_collapse_is_discarded(self, chain):
        oracle = ScriptedOracle(excited=((E0 + 0.3, False),), sector_collapse=True)
        result = GapEstimator(oracle=oracle).run(chain, SolverConfig())

        sector = result.candidates[1]
        assert sector.method is GapMethod.SECTOR_SCAN
        assert not sector.valid
        assert result.gap == pytest.approx(0.3)

    def test_non_convergent_is_flagged(self, chain):
        oracle = ScriptedOracle(excited=((E0 + 0.3, True),), sector_collapse=True)
        result = GapEstimator(oracle=oracle).run(chain, SolverConfig())

        assert result.gap == 0.0
        assert result.status is GapStatus.NON_CONVERGENT
        assert result.is_warning
        assert result.warnings

    def test_estimate_gap_fallback_and_strict(self, chain):
        def oracle():
            return ScriptedOracle(excited=((E0 + 0.3, True),), sector_collapse=True)

        assert estimate_gap(chain, SolverConfig(), oracle=oracle()) == 0.0

        with pytest.raises(NonConvergent) as excinfo:
            estimate_gap(chain, SolverConfig(), oracle=oracle(), strict=True)
        assert excinfo.value.result.status is GapStatus.NON_CONVERGENT

    def test_inverted_ordering_is_clamped(self, chain):
        oracle = ScriptedOracle(excited=((E0 - 0.2, False),), sector_collapse=True)
        result = GapEstimator(oracle=oracle).run(chain, SolverConfig())

        assert result.gap == 0.0
        assert result.status is GapStatus.CLAMPED
        assert any("clamped" in w for w in result.warnings)

    def test_clamped_is_not_strict_failure(self, chain):
        oracle = ScriptedOracle(excited=((E0 - 0.2, False),), sector_collapse=True)
        assert estimate_gap(chain, SolverConfig(), oracle=oracle, strict=True) == 0.0

    def test_parallel_workers(self, chain):
        oracle = ScriptedOracle(excited=((E0 + 0.3, True),))
        settings = GapSettings(max_workers=4)
        result = GapEstimator(settings=settings, oracle=oracle).run(chain, SolverConfig())

        assert result.solver_calls == settings.max_solver_calls
        assert result.gap == pytest.approx(0.4)

    def test_divergence_propagates(self, chain):
        with pytest.raises(SolverDivergence):
            GapEstimator(oracle=ScriptedOracle(diverge_for={6})).run(chain, SolverConfig())

    def test_sector_solver_errors_propagate(self, chain):
        oracle = ScriptedOracle(sector_error=ValueError("Lanczos needs a non-zero starting vector"))
        with pytest.raises(ValueError, match="non-zero starting vector"):
            GapEstimator(oracle=oracle).run(chain, SolverConfig())

    def test_infeasible_sector_is_skipped(self):
        oracle = ScriptedOracle()
        settings = GapSettings(sector_deltas=(1, 5))
        result = GapEstimator(settings=settings, oracle=oracle).run(ChainSpec(length=4), SolverConfig())

        assert oracle.sector_calls == 1
        assert result.candidates[1].valid
        assert result.solver_calls == 1 + 1 + 1

    def test_single_site_chain_rejected(self):
        with pytest.raises(ValueError):
            GapEstimator(oracle=ScriptedOracle()).run(ChainSpec(length=1), SolverConfig())

    def test_penalty_weight_scaling(self):
        estimator = GapEstimator(settings=GapSettings(penalty_weight=10.0))
        assert estimator.penalty_weight(ChainSpec(4, J=2.0), SolverConfig()) == 20.0
        assert estimator.penalty_weight(ChainSpec(4, J=1.0, spin="1"), SolverConfig()) == 40.0
        assert estimator.penalty_weight(ChainSpec(4), SolverConfig(penalty_weight=3.0)) == 3.0


class TestGapSweep:

    def test_sweep_continues_past_divergence(self):
        oracle = ScriptedOracle(diverge_for={6})
        sweep = gap_sweep([4, 6, 8], SolverConfig(), oracle=oracle)

        assert [L for L, _ in sweep.pairs()] == [4, 8]
        assert set(sweep.failures) == {6}
        assert all(gap == pytest.approx(0.3) for _, gap in sweep.pairs())

    def test_sweep_reports_warnings(self):
        oracle = ScriptedOracle(excited=((E0 + 0.3, True),), sector_collapse=True)
        sweep = gap_sweep([4, 6], SolverConfig(), oracle=oracle)

        assert sweep.warnings() == {4: GapStatus.NON_CONVERGENT, 6: GapStatus.NON_CONVERGENT}


class TestSettings:

    def test_default_call_budget(self):
        assert GapSettings().max_solver_calls == 7

    @pytest.mark.parametrize("kwargs", [
        {"penalty_weight": 0.0},
        {"orthogonality_threshold": 1.5},
        {"sector_overlap_threshold": 0.0},
        {"retry_trials": -1},
        {"max_workers": 0},
    ])
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            GapSettings(**kwargs)


class TestHeisenbergGap:
    """End-to-end with the DMRG oracle."""

    @pytest.fixture
    def config(self):
        return SolverConfig(num_sweeps=12, chi_max=16, cutoff=1e-12, tol=1e-12)

    def test_four_site_singlet_triplet_gap(self, config):
        spectrum = exact_spectrum(4)
        exact_gap = (spectrum[1] - spectrum[0]).item()

        result = GapEstimator(seed=0).run(ChainSpec(length=4, J=1.0), config)

        assert result.gap > 0
        assert result.status is GapStatus.RESOLVED
        assert result.gap == pytest.approx(exact_gap, abs=1e-6)
        assert result.solver_calls <= GapSettings().max_solver_calls

        sector = result.candidates[1]
        assert sector.method is GapMethod.SECTOR_SCAN
        assert sector.valid
        assert sector.value == pytest.approx(exact_gap, abs=1e-6)

    def test_estimate_gap_is_non_negative_and_reproducible(self, config):
        chain = ChainSpec(length=6, J=1.0)
        first = estimate_gap(chain, config, seed=5)
        second = estimate_gap(chain, config, seed=5)

        assert first >= 0.0
        assert first == pytest.approx(second, abs=1e-12)
        spectrum = exact_spectrum(6)
        assert first == pytest.approx((spectrum[1] - spectrum[0]).item(), abs=1e-6)

    @pytest.mark.parametrize("L", [4, 6, 8])
    @pytest.mark.parametrize("delta", [1, -1])
    def test_sector_state_stays_in_sector(self, config, L, delta):
        result = sector_ground_state(ChainSpec(length=L), delta, config)

        magnetization = total_magnetization(magnetization_profile(result.state))
        assert magnetization == pytest.approx(delta, abs=1e-8)
        # Lowest S^z = ±1 state of the even open chain is the lowest triplet
        assert result.energy == pytest.approx(exact_spectrum(L)[1].item(), abs=1e-7)

    def test_spin_one_sector_state(self, config):
        result = sector_ground_state(ChainSpec(length=4, spin="1"), 1, config)
        assert total_magnetization(magnetization_profile(result.state)) == pytest.approx(1.0, abs=1e-8)

    @pytest.mark.parametrize("chain", [ChainSpec(length=6), ChainSpec(length=4, spin="1")])
    def test_sector_candidate_is_valid(self, config, chain):
        spectrum = exact_spectrum(chain.length, spin=chain.spin_value)
        exact_gap = (spectrum[1] - spectrum[0]).item()

        result = GapEstimator(seed=0).run(chain, config)

        sector = result.candidates[1]
        assert sector.valid, sector.detail
        assert sector.value == pytest.approx(exact_gap, abs=1e-6)

    @pytest.mark.slow
    def test_gap_sweep_decreases_with_length(self, config):
        sweep = gap_sweep(range(4, 11, 2), config, seed=1)
        gaps = [gap for _, gap in sweep.pairs()]

        assert len(gaps) == 4
        assert all(g > 0 for g in gaps)
        assert all(a > b for a, b in zip(gaps, gaps[1:]))
