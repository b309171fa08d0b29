"""
Tests for the Heisenberg chain model and initial states.
"""

import pytest
import torch

from spingap.mps.hamiltonians import (
    ChainSpec,
    build_hamiltonian,
    heisenberg_mpo,
    parse_spin,
    spin_operators,
    sz_penalty_mpo,
)
from spingap.mps.mpo import MPO
from spingap.mps.states import (
    neel_levels,
    perturb_with_gates,
    product_mps,
    random_mps,
    sector_levels,
    sector_mps,
    twice_total_sz,
)

from tests.helpers import dense_vector, embed_operator


class TestChainSpec:

    def test_defaults(self):
        chain = ChainSpec(length=8)
        assert chain.J == 1.0
        assert chain.spin_value == 0.5
        assert chain.local_dim == 2

    def test_spin_one(self):
        chain = ChainSpec(length=4, spin="1")
        assert chain.local_dim == 3

    @pytest.mark.parametrize("length", [0, -3, 2.5])
    def test_invalid_length(self, length):
        with pytest.raises(ValueError):
            ChainSpec(length=length)

    @pytest.mark.parametrize("label", ["1/3", "0", "abc", "-1/2"])
    def test_invalid_spin(self, label):
        with pytest.raises(ValueError):
            parse_spin(label)


class TestSpinOperators:

    @pytest.mark.parametrize("S", [0.5, 1.0, 1.5])
    def test_commutation(self, S):
        Sz, Sp, Sm = spin_operators(S)
        assert torch.allclose(Sp @ Sm - Sm @ Sp, 2 * Sz, atol=1e-12)
        assert torch.allclose(Sz @ Sp - Sp @ Sz, Sp, atol=1e-12)

    @pytest.mark.parametrize("S", [0.5, 1.0])
    def test_casimir(self, S):
        Sz, Sp, Sm = spin_operators(S)
        casimir = Sz @ Sz + (Sp @ Sm + Sm @ Sp) / 2
        d = Sz.shape[0]
        assert torch.allclose(casimir, S * (S + 1) * torch.eye(d, dtype=Sz.dtype), atol=1e-12)


class TestHeisenbergMPO:

    def test_two_site_matches_dense(self):
        J = 1.3
        Sz, Sp, Sm = spin_operators(0.5)
        expected = J * (torch.kron(Sz, Sz) + 0.5 * (torch.kron(Sp, Sm) + torch.kron(Sm, Sp)))

        H = heisenberg_mpo(L=2, J=J).to_matrix()
        assert torch.allclose(H, expected, atol=1e-12)

    def test_field_and_anisotropy(self):
        L, J, Jz, h = 3, 0.7, 1.9, 0.4
        Sz, Sp, Sm = spin_operators(0.5)

        expected = torch.zeros(8, 8, dtype=torch.float64)
        for i in range(L - 1):
            expected += J / 2 * embed_operator(Sp, i, L) @ embed_operator(Sm, i + 1, L)
            expected += J / 2 * embed_operator(Sm, i, L) @ embed_operator(Sp, i + 1, L)
            expected += Jz * embed_operator(Sz, i, L) @ embed_operator(Sz, i + 1, L)
        for i in range(L):
            expected += h * embed_operator(Sz, i, L)

        H = heisenberg_mpo(L=L, J=J, Jz=Jz, h=h).to_matrix()
        assert torch.allclose(H, expected, atol=1e-12)

    def test_singlet_energy(self):
        eigvals = torch.linalg.eigvalsh(heisenberg_mpo(L=2, J=1.0).to_matrix())
        assert abs(eigvals[0].item() + 0.75) < 1e-12

    def test_build_from_chain(self):
        H = build_hamiltonian(ChainSpec(length=5, J=2.0, spin="1"))
        assert isinstance(H, MPO)
        assert H.L == 5
        assert H.d == 3

    def test_expectation_matches_dense(self, random_state):
        H = heisenberg_mpo(L=6)
        v = dense_vector(random_state)
        expected = v @ H.to_matrix() @ v
        assert abs(H.expectation(random_state).item() - expected.item()) < 1e-10

    def test_sum_matches_dense(self):
        A = heisenberg_mpo(L=4, J=1.0)
        B = heisenberg_mpo(L=4, J=0.5, h=0.3)
        total = A + B
        assert total.D == A.D + B.D
        assert torch.allclose(total.to_matrix(), A.to_matrix() + B.to_matrix(), atol=1e-12)

    def test_sum_rejects_mismatched_chains(self):
        with pytest.raises(ValueError):
            heisenberg_mpo(L=4) + heisenberg_mpo(L=5)

    @pytest.mark.parametrize("L, spin, target", [(1, 0.5, 0.5), (4, 0.5, 1.0), (3, 1.0, -1.0)])
    def test_sector_penalty_matches_dense(self, L, spin, target):
        Sz, _, _ = spin_operators(spin)
        d = Sz.shape[0]
        Sz_tot = sum(embed_operator(Sz, i, L) for i in range(L))
        shifted = Sz_tot - target * torch.eye(d ** L, dtype=torch.float64)

        P = sz_penalty_mpo(L, target, weight=2.5, spin=spin)
        assert torch.allclose(P.to_matrix(), 2.5 * shifted @ shifted, atol=1e-12)

    def test_sector_penalty_vanishes_in_sector(self):
        P = sz_penalty_mpo(4, 1.0, weight=10.0)
        assert P.expectation(sector_mps(4, delta=1)).item() == pytest.approx(0.0, abs=1e-12)
        assert P.expectation(sector_mps(4, delta=0)).item() == pytest.approx(10.0)

    def test_identity(self, random_state):
        I = MPO.identity(L=6)
        assert torch.equal(I.to_matrix(), torch.eye(64, dtype=torch.float64))
        assert I.expectation(random_state).item() == pytest.approx(1.0)


class TestStates:

    def test_neel_levels(self):
        assert neel_levels(5) == [0, 1, 0, 1, 0]
        assert neel_levels(4, d=3) == [0, 2, 0, 2]

    @pytest.mark.parametrize("L,d,delta", [(4, 2, 1), (4, 2, -1), (6, 3, 1), (6, 3, -2), (5, 2, 1)])
    def test_sector_total_sz(self, L, d, delta):
        baseline = twice_total_sz(neel_levels(L, d), d)
        levels = sector_levels(L, d, delta)
        assert twice_total_sz(levels, d) == baseline + 2 * delta

    def test_sector_state_is_product_in_sector(self):
        mps = sector_mps(4, d=2, delta=1)
        Sz, _, _ = spin_operators(0.5)
        total = sum(mps.expectation_local(Sz, i).item() for i in range(4))
        assert abs(total - 1.0) < 1e-12

    def test_infeasible_sector(self):
        with pytest.raises(ValueError):
            sector_levels(2, 2, 2)

    def test_product_rejects_bad_level(self):
        with pytest.raises(ValueError):
            product_mps([0, 2], d=2)

    def test_perturbation_keeps_norm(self, generator):
        mps = random_mps(6, chi=2, generator=generator)
        perturb_with_gates(mps, 5, generator=generator, chi_max=8)
        assert abs(mps.norm().item() - 1.0) < 1e-10
        assert mps.chi <= 8
