"""
Matrix Product State (MPS) implementation.

An MPS represents a spin-chain wavefunction of shape (d, d, ..., d) as a
product of matrices:
    psi[s1, s2, ..., sL] = A1[s1] @ A2[s2] @ ... @ AL[sL]

where each A_i[s_i] is a matrix of shape (chi_{i-1}, chi_i).

Sites and bonds are 0-based here; bond i joins sites i and i+1.
"""

from __future__ import annotations
from typing import List, Optional, Literal
import torch
from torch import Tensor

from spingap.config import DEFAULT_DTYPE, SCHMIDT_FLOOR
from spingap.core.decompositions import svd_truncated, qr_stable


class MPS:
    """
    Matrix Product State representation.

    Each tensor has shape (chi_left, d, chi_right) where:
        - chi_left: left bond dimension
        - d: physical dimension
        - chi_right: right bond dimension

    For boundary tensors:
        - First tensor: shape (1, d, chi)
        - Last tensor: shape (chi, d, 1)

    The canonical form is bookkeeping only: every operation that edits
    tensors clears it, and bond-local reads (Schmidt values, local
    expectations) always move the orthogonality center themselves.

    Attributes:
        tensors: List of MPS tensors
        L: Number of sites
        d: Physical dimension (assumed uniform)
        chi: Maximum bond dimension

    Example:
        >>> gen = torch.Generator().manual_seed(7)
        >>> mps = MPS.random(L=6, d=2, chi=4, generator=gen)
        >>> print(mps.L, mps.chi)
        6 4
    """

    def __init__(
        self,
        tensors: List[Tensor],
        canonical_form: Optional[str] = None,
        center: Optional[int] = None,
    ):
        """
        Initialize MPS from list of tensors.

        Args:
            tensors: List of tensors with shapes (chi_l, d, chi_r)
            canonical_form: 'left', 'right', 'mixed', or None
            center: Canonical center site (for mixed canonical form)
        """
        if len(tensors) == 0:
            raise ValueError("MPS needs at least one tensor")

        self.tensors = list(tensors)
        self.L = len(tensors)
        self._canonical_form = canonical_form
        self._center = center

        # Infer physical dimension (assumed uniform)
        self.d = tensors[0].shape[1]

        self._update_chi()

        # Dtype and device from first tensor
        self.dtype = tensors[0].dtype
        self.device = tensors[0].device

    @classmethod
    def random(
        cls,
        L: int,
        d: int = 2,
        chi: int = 8,
        dtype: torch.dtype = DEFAULT_DTYPE,
        device: Optional[torch.device] = None,
        normalize: bool = True,
        generator: Optional[torch.Generator] = None,
    ) -> MPS:
        """
        Create random MPS.

        Args:
            L: Number of sites
            d: Physical dimension
            chi: Bond dimension
            dtype: Data type
            device: Device
            normalize: Whether to normalize the state
            generator: Pseudo-random source; draws are reproducible for a
                seeded generator

        Returns:
            Random MPS
        """
        if device is None:
            device = torch.device('cpu')

        # chi[i] is the bond dimension between site i and i+1
        bond_dims = []
        for i in range(L - 1):
            max_left = d ** (i + 1)
            max_right = d ** (L - i - 1)
            bond_dims.append(min(chi, max_left, max_right))

        tensors = []
        for i in range(L):
            chi_l = 1 if i == 0 else bond_dims[i - 1]
            chi_r = 1 if i == L - 1 else bond_dims[i]

            tensor = torch.randn(
                chi_l, d, chi_r, dtype=dtype, device=device, generator=generator
            )
            tensors.append(tensor)

        mps = cls(tensors)

        if normalize:
            mps.normalize_()

        return mps

    @classmethod
    def from_tensor(
        cls,
        tensor: Tensor,
        chi_max: Optional[int] = None,
        cutoff: float = 0.0,
    ) -> MPS:
        """
        Convert dense wavefunction to MPS via successive SVDs.

        Args:
            tensor: Dense tensor of shape (d_1, d_2, ..., d_L)
            chi_max: Maximum bond dimension
            cutoff: Singular value cutoff

        Returns:
            Left-canonical MPS approximation of tensor
        """
        if tensor.ndim < 2:
            raise ValueError(f"Need at least 2D tensor, got {tensor.ndim}D")

        L = tensor.ndim
        tensors = []

        remaining = tensor.reshape(tensor.shape[0], -1)
        chi_l = 1

        for i in range(L - 1):
            d_i = tensor.shape[i]

            U, S, Vh = svd_truncated(remaining, max_rank=chi_max, cutoff=cutoff)
            chi_r = len(S)

            tensors.append(U.reshape(chi_l, d_i, chi_r))

            remaining = torch.diag(S).to(Vh.dtype) @ Vh

            if i < L - 2:
                d_next = tensor.shape[i + 1]
                rest = remaining.shape[1] // d_next
                remaining = remaining.reshape(chi_r * d_next, rest)
            chi_l = chi_r

        tensors.append(remaining.reshape(chi_l, tensor.shape[-1], 1))

        return cls(tensors, canonical_form='mixed', center=L - 1)

    def to_tensor(self) -> Tensor:
        """
        Contract MPS to dense tensor.

        Warning:
            Exponential in L - only use for small systems!
        """
        result = self.tensors[0]

        for i in range(1, self.L):
            result = torch.einsum('...i,ijk->...jk', result, self.tensors[i])

        return result.reshape([self.d] * self.L)

    @property
    def canonical_center(self) -> Optional[int]:
        """Orthogonality center if the MPS is in known mixed form, else None."""
        if self._canonical_form == 'mixed':
            return self._center
        if self._canonical_form == 'left':
            return self.L - 1
        if self._canonical_form == 'right':
            return 0
        return None

    def _invalidate(self):
        self._canonical_form = None
        self._center = None

    def _update_chi(self):
        self.chi = max(t.shape[2] for t in self.tensors[:-1]) if self.L > 1 else 1

    def norm(self) -> Tensor:
        """
        Compute norm of MPS without full contraction.

        Returns:
            ||psi||
        """
        return torch.sqrt(self.inner(self).real)

    def normalize_(self) -> MPS:
        """Normalize MPS in-place."""
        n = self.norm()
        if n > 0:
            # Rescaling the center keeps any canonical form intact
            site = self.canonical_center
            if site is None:
                site = 0
            self.tensors[site] = self.tensors[site] / n
        return self

    def inner(self, other: MPS) -> Tensor:
        """
        Compute inner product <self|other>.

        Args:
            other: Another MPS

        Returns:
            Scalar inner product
        """
        if self.L != other.L:
            raise ValueError(f"MPS lengths don't match: {self.L} vs {other.L}")

        E = torch.ones(1, 1, dtype=self.dtype, device=self.device)

        for i in range(self.L):
            # E[a,b] A*[a,s,c] B[b,s,d] -> E'[c,d]
            E = torch.einsum(
                'ab,asc,bsd->cd',
                E,
                self.tensors[i].conj(),
                other.tensors[i].to(self.dtype),
            )

        return E.squeeze()

    def overlap(self, other: MPS) -> float:
        """
        Fidelity-style overlap |<self|other>| / (||self|| ||other||).
        """
        norms = self.norm() * other.norm()
        if norms == 0:
            raise ValueError("Overlap undefined for a zero-norm MPS")
        return (torch.abs(self.inner(other)) / norms).item()

    def canonicalize(
        self,
        form: Literal['left', 'right', 'mixed'] = 'right',
        center: Optional[int] = None,
    ) -> MPS:
        """
        Transform to canonical form.

        Args:
            form: 'left', 'right', or 'mixed'
            center: Orthogonality center for mixed form

        Returns:
            self (modified in-place)
        """
        if form == 'left':
            self._sweep_left_to(self.L - 1)
        elif form == 'right':
            self._sweep_right_to(0)
        elif form == 'mixed':
            if center is None:
                center = self.L // 2
            if not 0 <= center < self.L:
                raise ValueError(f"Center {center} out of range [0, {self.L - 1}]")
            self._sweep_left_to(center)
            self._sweep_right_to(center)
        else:
            raise ValueError(f"Unknown form: {form}")

        self._canonical_form = form
        self._center = center
        self._update_chi()
        return self

    def _sweep_left_to(self, center: int):
        """Left-orthonormalize sites 0..center-1 with QR."""
        for i in range(center):
            A = self.tensors[i]
            chi_l, d, chi_r = A.shape

            Q, R = qr_stable(A.reshape(chi_l * d, chi_r))

            chi_new = Q.shape[1]
            self.tensors[i] = Q.reshape(chi_l, d, chi_new)
            self.tensors[i + 1] = torch.einsum('ij,jkl->ikl', R, self.tensors[i + 1])

    def _sweep_right_to(self, center: int):
        """Right-orthonormalize sites L-1..center+1 with QR on the transpose."""
        for i in range(self.L - 1, center, -1):
            A = self.tensors[i]
            chi_l, d, chi_r = A.shape

            Q, R = qr_stable(A.reshape(chi_l, d * chi_r).T)

            # Q is (d * chi_r, chi_new), R is (chi_new, chi_l)
            chi_new = Q.shape[1]
            self.tensors[i] = Q.T.reshape(chi_new, d, chi_r)
            self.tensors[i - 1] = torch.einsum('ijk,kl->ijl', self.tensors[i - 1], R.T)

    def schmidt_values(self, bond: int) -> Tensor:
        """
        Singular values across bond (between sites bond and bond+1).

        Moves the orthogonality center to ``bond`` first, so the SVD of the
        center tensor is the Schmidt decomposition of the whole state.

        Args:
            bond: Bond index (0 to L-2)

        Returns:
            Singular values in descending order (not normalized)
        """
        if bond < 0 or bond >= self.L - 1:
            raise ValueError(f"Bond {bond} out of range [0, {self.L - 2}]")

        self.canonicalize('mixed', center=bond)

        A = self.tensors[bond]
        chi_l, d, chi_r = A.shape

        return torch.linalg.svdvals(A.reshape(chi_l * d, chi_r))

    def entanglement_entropy(self, bond: int, floor: float = SCHMIDT_FLOOR) -> Tensor:
        """
        Compute von Neumann entanglement entropy at a bond.

        Singular values below ``floor`` are discarded and the remaining
        spectrum is renormalized before taking p log p.

        Args:
            bond: Bond index (0 to L-2)
            floor: Numerical floor on singular values

        Returns:
            S = -sum_k p_k log(p_k), p_k = s_k^2
        """
        S = self.schmidt_values(bond)

        S = S[S > floor]
        S = S / torch.norm(S)

        p = S ** 2
        p = p[p > 0]
        entropy = -torch.sum(p * torch.log(p))

        return torch.clamp(entropy, min=0.0)

    def expectation_local(self, op: Tensor, site: int) -> Tensor:
        """
        Compute expectation value of local operator.

        The center is moved to ``site`` before measuring; with the rest of
        the chain orthonormal, <psi|O|psi> reduces to the center tensor.

        Args:
            op: Local operator of shape (d, d)
            site: Site index

        Returns:
            <psi|O|psi> / <psi|psi>
        """
        if not 0 <= site < self.L:
            raise ValueError(f"Site {site} out of range [0, {self.L - 1}]")

        self.canonicalize('mixed', center=site)

        A = self.tensors[site]  # (chi_l, d, chi_r)
        op = op.to(dtype=A.dtype, device=A.device)

        # O|A>
        OA = torch.einsum('ij,kjl->kil', op, A)

        # <A|O|A> / <A|A>
        result = torch.einsum('ijk,ijk->', A.conj(), OA)
        norm2 = torch.einsum('ijk,ijk->', A.conj(), A)

        return result / norm2

    def correlation(self, op_a: Tensor, site_a: int, op_b: Tensor, site_b: int) -> Tensor:
        """
        Two-point function <psi|O_a(site_a) O_b(site_b)|psi> / <psi|psi>.

        Contracted with transfer matrices from the left; works in any gauge
        and leaves the tensors untouched. For site_a == site_b the product
        O_a @ O_b is measured on that site.

        Args:
            op_a: Local operator of shape (d, d)
            site_a: Site of op_a
            op_b: Local operator of shape (d, d)
            site_b: Site of op_b

        Returns:
            Normalized two-point expectation value
        """
        for site in (site_a, site_b):
            if not 0 <= site < self.L:
                raise ValueError(f"Site {site} out of range [0, {self.L - 1}]")

        op_a = op_a.to(dtype=self.dtype, device=self.device)
        op_b = op_b.to(dtype=self.dtype, device=self.device)

        inserted = {}
        if site_a == site_b:
            inserted[site_a] = op_a @ op_b
        else:
            inserted[site_a] = op_a
            inserted[site_b] = op_b

        E = torch.ones(1, 1, dtype=self.dtype, device=self.device)
        N = torch.ones(1, 1, dtype=self.dtype, device=self.device)

        for i in range(self.L):
            A = self.tensors[i]
            N = torch.einsum('ab,asc,bsd->cd', N, A.conj(), A)
            if i in inserted:
                OA = torch.einsum('st,btd->bsd', inserted[i], A)
                E = torch.einsum('ab,asc,bsd->cd', E, A.conj(), OA)
            else:
                E = torch.einsum('ab,asc,bsd->cd', E, A.conj(), A)

        return E.squeeze() / N.squeeze()

    def apply_two_site_gate(
        self,
        gate: Tensor,
        site: int,
        chi_max: Optional[int] = None,
        cutoff: float = 0.0,
    ) -> MPS:
        """
        Apply a two-site gate to sites (site, site+1) in-place.

        Args:
            gate: Matrix of shape (d*d, d*d), or tensor (d, d, d, d) indexed
                [out1, out2, in1, in2]
            site: Left site of the pair
            chi_max: Maximum bond dimension after the split
            cutoff: Singular value cutoff

        Returns:
            self (modified in-place)
        """
        if site < 0 or site >= self.L - 1:
            raise ValueError(f"Gate site {site} out of range [0, {self.L - 2}]")

        d = self.d
        gate = gate.to(dtype=self.dtype, device=self.device).reshape(d, d, d, d)

        A1 = self.tensors[site]
        A2 = self.tensors[site + 1]
        chi_l = A1.shape[0]
        chi_r = A2.shape[2]

        theta = torch.einsum('isk,ktj->istj', A1, A2)
        theta = torch.einsum('uvst,istj->iuvj', gate, theta)

        U, S, Vh = svd_truncated(theta.reshape(chi_l * d, d * chi_r), max_rank=chi_max, cutoff=cutoff)
        chi_new = len(S)

        self.tensors[site] = U.reshape(chi_l, d, chi_new)
        self.tensors[site + 1] = (torch.diag(S).to(Vh.dtype) @ Vh).reshape(chi_new, d, chi_r)

        self._invalidate()
        self._update_chi()
        return self

    def bond_dimensions(self) -> List[int]:
        """Return list of bond dimensions."""
        return [t.shape[2] for t in self.tensors[:-1]]

    def copy(self) -> MPS:
        """Create a deep copy."""
        return MPS(
            [t.clone() for t in self.tensors],
            canonical_form=self._canonical_form,
            center=self._center,
        )

    def __repr__(self) -> str:
        return (
            f"MPS(L={self.L}, d={self.d}, chi={self.chi}, "
            f"dtype={self.dtype}, device={self.device})"
        )
