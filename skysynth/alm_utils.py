"""
Addressing of spherical harmonic coefficient arrays.

Coefficient sets use the healpy ``Alm`` layout with mmax == lmax: a 1-D complex
array holding only m >= 0, ordered m-major, i.e. the coefficient (l, m) sits
at ``m * (2 * lmax + 1 - m) // 2 + l``.
"""

import numpy as np
import healpy as hp

__all__ = [
    'alm_size',
    'alm_lmax',
    'alm_index',
    'degree_indices',
    'allocate_alms',
]


def alm_size(lmax):
    """Number of stored coefficients for a band limit ``lmax``."""
    if lmax < 0:
        raise ValueError(f"lmax must be non-negative, got {lmax}")
    return hp.Alm.getsize(lmax)


def alm_lmax(alm):
    """
    Band limit of a coefficient set, inferred from its length.

    Raises
    ------
    ValueError
        If the array is empty or its length is not a valid alm size.
    """
    size = np.shape(alm)[-1]
    if size == 0:
        raise ValueError("Coefficient set is empty")
    lmax = hp.Alm.getlmax(size)
    if lmax < 0:
        raise ValueError(f"Length {size} is not a valid alm size")
    return lmax


def alm_index(lmax, ell, m):
    """Slot of coefficient (ell, m) in a set with band limit ``lmax``."""
    return hp.Alm.getidx(lmax, ell, m)


def degree_indices(lmax, ell):
    """Slots of all stored orders m = 0..ell at degree ``ell``."""
    return hp.Alm.getidx(lmax, ell, np.arange(ell + 1))


def allocate_alms(ncomp, lmax, dtype=np.complex128):
    """Zeroed ``(ncomp, nalm)`` array of coefficient sets."""
    if ncomp <= 0:
        raise ValueError(f"Number of components must be positive, got {ncomp}")
    return np.zeros((ncomp, alm_size(lmax)), dtype=dtype)
