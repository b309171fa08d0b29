"""Core tensor operations."""

from spingap.core.decompositions import (
    svd_truncated,
    qr_stable,
)

__all__ = [
    "svd_truncated",
    "qr_stable",
]
