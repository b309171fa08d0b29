"""
Exception types raised by gap estimation and observable extraction.
"""

from typing import Optional, Tuple


class SpinGapError(Exception):
    """Base class for spingap errors."""


class NonConvergent(SpinGapError):
    """
    No strategy produced a gap candidate above the numerical-noise floor.

    The partial result (ground energy, rejected candidates, warnings) is
    attached as ``result`` so callers can still inspect what was found.
    """

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class InvalidBond(SpinGapError, ValueError):
    """Observable requested at a boundary or non-existent bond."""

    def __init__(self, bond: int, valid_range: Tuple[int, int], length: int):
        lo, hi = valid_range
        super().__init__(
            f"Bond {bond} is not a valid interior bond of a {length}-site chain "
            f"(valid range [{lo}, {hi}])"
        )
        self.bond = bond
        self.valid_range = valid_range
        self.length = length


class InvalidSite(SpinGapError, IndexError):
    """Site index outside [1, L]."""

    def __init__(self, site: int, length: int):
        super().__init__(f"Site {site} out of range [1, {length}]")
        self.site = site
        self.length = length


class SolverDivergence(SpinGapError, ArithmeticError):
    """The variational solver returned a non-finite energy or state."""

    def __init__(self, message: str, energy: Optional[float] = None):
        super().__init__(message)
        self.energy = energy
