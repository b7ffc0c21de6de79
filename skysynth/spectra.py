"""
Power spectrum helpers.

Utilities to assemble cross-power-spectrum tensors of shape
(ncomp, ncomp, lmax+1) from lists of auto and cross spectra, to bin spectra,
and small resolution conversions.
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)

__all__ = [
    'nside2lmax',
    'binning_matrix',
    'spectra_to_tensor',
    'n_spectra_to_n_components',
    'ConstantWeights',
]


def nside2lmax(nside):
    """Band limit of a HEALPix map, 3 * nside - 1."""
    return 3 * nside - 1


def n_spectra_to_n_components(n_spectra):
    """Number of components for n(n+1)/2 auto and cross spectra."""
    ncomp = int(round((np.sqrt(8 * n_spectra + 1) - 1) / 2))
    if ncomp * (ncomp + 1) // 2 != n_spectra:
        raise ValueError(f"{n_spectra} spectra do not describe a full set of auto and cross spectra")
    return ncomp


def spectra_to_tensor(cls_list, ncomp=None, new=True):
    """
    Assemble a symmetric cross-spectrum tensor from a list of spectra.

    Parameters
    ----------
    cls_list : sequence of array_like or None
        Auto and cross spectra, n(n+1)/2 of them. None entries stand for a
        spectrum that is zero everywhere. Shorter spectra are zero-padded.
    ncomp : int, optional
        Number of components. Inferred from the list length if omitted.
    new : bool
        Ordering of ``cls_list``, following the healpy convention.
        True (diagonal-major): TT, EE, BB, TE, EB, TB for three components.
        False (row-major): TT, TE, TB, EE, EB, BB.

    Returns
    -------
    ndarray
        Array of shape (ncomp, ncomp, lmax+1) with tensor[i, j] == tensor[j, i].
    """
    if ncomp is None:
        ncomp = n_spectra_to_n_components(len(cls_list))
    elif len(cls_list) != ncomp * (ncomp + 1) // 2:
        raise ValueError(f"Expected {ncomp * (ncomp + 1) // 2} spectra for {ncomp} components, got {len(cls_list)}")

    lengths = [len(cl) for cl in cls_list if cl is not None]
    if not lengths:
        raise ValueError("At least one spectrum must be given")
    nl = max(lengths)

    if new:
        pairs = [(i, i + k) for k in range(ncomp) for i in range(ncomp - k)]
    else:
        pairs = [(i, j) for i in range(ncomp) for j in range(i, ncomp)]

    tensor = np.zeros((ncomp, ncomp, nl))
    for (i, j), cl in zip(pairs, cls_list):
        if cl is None:
            continue
        cl = np.asarray(cl, dtype=float)
        tensor[i, j, :len(cl)] = cl
        tensor[j, i, :len(cl)] = cl
    return tensor


def binning_matrix(left_bins, right_bins, weight_function, lmax=None):
    """
    Matrix that bins a power spectrum.

    Row b holds ``weight_function(l)`` for left_bins[b] <= l <= right_bins[b],
    normalized to sum to one, and zeros elsewhere; ``P @ cl`` is then the
    binned spectrum.

    Parameters
    ----------
    left_bins, right_bins : array_like of int
        Inclusive bin edges in multipole.
    weight_function : callable
        Weight per multipole, vectorized over numpy arrays, e.g. ``lambda l: 2 * l + 1``.
    lmax : int, optional
        Maximum multipole. Defaults to the last right edge. Bins reaching
        beyond lmax are dropped.

    Returns
    -------
    ndarray
        Array of shape (nbins, lmax+1).
    """
    left_bins = np.asarray(left_bins, dtype=int)
    right_bins = np.asarray(right_bins, dtype=int)
    if left_bins.shape != right_bins.shape:
        raise ValueError("left_bins and right_bins must have the same length")
    if np.any(left_bins > right_bins):
        raise ValueError("Every left bin edge must not exceed its right edge")

    lmax = right_bins[-1] if lmax is None else lmax
    bincut = right_bins <= lmax
    if not np.all(bincut):
        logger.debug(f"Dropping {np.sum(~bincut)} bins beyond lmax={lmax}")
    left_bins = left_bins[bincut]
    right_bins = right_bins[bincut]

    P = np.zeros((len(left_bins), lmax + 1))
    for b, (left, right) in enumerate(zip(left_bins, right_bins)):
        ells = np.arange(left, right + 1)
        weights = np.asarray(weight_function(ells), dtype=float) * np.ones(len(ells))
        norm = np.sum(weights)
        if norm == 0:
            raise ValueError(f"Weights of bin {b} ({left}-{right}) sum to zero")
        P[b, left:right + 1] = weights / norm
    return P


class ConstantWeights:
    """
    A weight map that returns the same value for every pixel.

    Indexing with a pixel index, slice or index array gives the constant with
    the matching shape, so it can stand in for a weight array without
    allocating one.
    """

    def __init__(self, value=1.0, npix=None):
        self.value = float(value)
        self.npix = npix

    def __getitem__(self, pixels):
        if isinstance(pixels, slice):
            if self.npix is None:
                raise ValueError("Slicing ConstantWeights requires npix")
            n = len(range(*pixels.indices(self.npix)))
            return np.full(n, self.value)
        return np.full(np.shape(pixels), self.value)

    def __len__(self):
        if self.npix is None:
            raise TypeError("ConstantWeights without npix has no length")
        return self.npix

    def __repr__(self):
        return f"ConstantWeights({self.value}, npix={self.npix})"
