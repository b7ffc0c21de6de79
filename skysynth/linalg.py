"""
Small dense linear algebra helpers.

Provides the symmetric-matrix building blocks used by the synthesizer and the
dipole estimator:

- ``try_cholesky``: factorization attempt returning a tagged result
- ``symmetric_sqrt``: eigendecomposition-based square root of a symmetric matrix
- ``UpperSymmetricMatrix``: symmetric matrix stored through its upper triangle
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.linalg import LinAlgError, cholesky, eigh, solve

logger = logging.getLogger(__name__)

__all__ = [
    'CholeskyResult',
    'hermitian_view',
    'try_cholesky',
    'symmetric_sqrt',
    'UpperSymmetricMatrix',
]


def hermitian_view(matrix):
    """Symmetric matrix built from the upper triangle of ``matrix``."""
    matrix = np.asarray(matrix)
    upper = np.triu(matrix)
    return upper + np.triu(matrix, k=1).T


@dataclass(frozen=True)
class CholeskyResult:
    """
    Outcome of a Cholesky attempt.

    ``factor`` is the lower-triangular L with L @ L.T equal to the input, or
    None if the input is not positive definite.
    """
    factor: Optional[np.ndarray] = None

    @property
    def is_posdef(self) -> bool:
        return self.factor is not None


def try_cholesky(matrix) -> CholeskyResult:
    """
    Attempt a Cholesky factorization of the symmetric view of ``matrix``.

    Only the upper triangle is read. A matrix that is singular, indefinite or
    only semi-definite yields ``CholeskyResult(None)``; no partially factored
    array is ever handed back.
    """
    matrix = np.asarray(matrix, dtype=float)
    try:
        upper_factor = cholesky(matrix, lower=False, check_finite=True)
    except LinAlgError:
        return CholeskyResult(None)
    return CholeskyResult(np.ascontiguousarray(upper_factor.T))


def symmetric_sqrt(matrix, negative_eigenvalue_rtol=1e-10):
    """
    Symmetric square root S of a symmetric matrix C, with S @ S == C.

    Computed from the eigendecomposition of the symmetric view of ``matrix``.
    Negative eigenvalues (from rounding or a genuinely indefinite input) are
    clipped to zero, so S is always real, symmetric and positive semi-definite.

    Parameters
    ----------
    matrix : array_like
        Square matrix; only the upper triangle is read.
    negative_eigenvalue_rtol : float
        Relative size (compared to the largest absolute eigenvalue) above which
        a clipped negative eigenvalue is reported as a warning.

    Returns
    -------
    ndarray
        The symmetric square root.
    """
    sym = hermitian_view(np.asarray(matrix, dtype=float))
    eigvals, eigvecs = eigh(sym)

    scale = np.max(np.abs(eigvals)) if eigvals.size else 0.0
    min_eigval = eigvals.min() if eigvals.size else 0.0
    if min_eigval < 0:
        if -min_eigval > negative_eigenvalue_rtol * scale:
            logger.warning(f"Matrix is indefinite: clipping eigenvalue {min_eigval:.3e} "
                           f"(largest |eigenvalue| {scale:.3e}) to zero")
        else:
            logger.debug(f"Clipping negative eigenvalue from rounding: {min_eigval:.2e}")
        eigvals = np.maximum(eigvals, 0.0)

    root = (eigvecs * np.sqrt(eigvals)) @ eigvecs.T
    return 0.5 * (root + root.T)


class UpperSymmetricMatrix:
    """
    Symmetric matrix stored through its upper triangle.

    Writes below the diagonal are rejected; reads below the diagonal are served
    by reflection, so mirrored entries can never disagree.

    Parameters
    ----------
    n : int
        Matrix dimension.
    dtype : numpy dtype, optional
        Entry type. Default float64.
    """

    def __init__(self, n, dtype=np.float64):
        if n <= 0:
            raise ValueError("Matrix dimension must be positive")
        self.n = n
        self._upper = np.zeros((n, n), dtype=dtype)

    @classmethod
    def from_upper(cls, array):
        """Build from the upper triangle of a square array; the lower triangle is ignored."""
        array = np.asarray(array)
        if array.ndim != 2 or array.shape[0] != array.shape[1]:
            raise ValueError(f"Expected a square matrix, got shape {array.shape}")
        new = cls(array.shape[0], dtype=np.result_type(array.dtype, np.float64))
        new._upper[...] = np.triu(array)
        return new

    def _check_index(self, key):
        i, j = key
        if not (0 <= i < self.n and 0 <= j < self.n):
            raise IndexError(f"Index {key} out of range for a {self.n}x{self.n} matrix")
        return i, j

    def __getitem__(self, key):
        i, j = self._check_index(key)
        if i > j:
            i, j = j, i
        return self._upper[i, j]

    def __setitem__(self, key, value):
        i, j = self._check_index(key)
        if i > j:
            raise ValueError(f"Cannot write lower-triangle entry {key}; write ({j}, {i}) instead")
        self._upper[i, j] = value

    @property
    def shape(self):
        return (self.n, self.n)

    def to_dense(self):
        """Return the full symmetric matrix as a new array."""
        return hermitian_view(self._upper)

    def condition_number(self):
        return np.linalg.cond(self.to_dense())

    def solve(self, b):
        """
        Solve ``A x = b`` using the symmetric structure of A.

        Raises
        ------
        numpy.linalg.LinAlgError
            If A is singular to working precision.
        """
        b = np.asarray(b)
        if b.shape[0] != self.n:
            raise ValueError(f"Right-hand side of length {b.shape[0]} does not match matrix dimension {self.n}")

        cond = self.condition_number()
        if not np.isfinite(cond) or cond * np.finfo(self._upper.dtype).eps >= 1.0:
            raise LinAlgError(f"Matrix is singular to working precision (condition number {cond:.3e})")

        return solve(self._upper, b, assume_a='sym', lower=False)

    def __repr__(self):
        return f"UpperSymmetricMatrix(n={self.n})"
