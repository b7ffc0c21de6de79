"""
Monopole and dipole fitting for full-sky HEALPix maps.

The fit minimizes the weighted squared residuals of the model

    m(p) = monopole + dipole . n(p)

with n(p) the unit vector of pixel p. The 4x4 normal equations are summed with
compensated (Kahan-Babuska-Neumaier) summation so that maps with tens of
millions of pixels keep their accuracy.

Main Functions
--------------
fit_monopole_dipole : Weighted least-squares monopole and dipole
subtract_monopole_dipole : Remove a given monopole and dipole in place
remove_monopole_dipole : Fit, then subtract in place

Examples
--------
>>> nside = 16
>>> x, y, z = hp.pix2vec(nside, np.arange(hp.nside2npix(nside)))
>>> m = 5.0 + 1.0 * x
>>> fit = fit_monopole_dipole(m)
>>> monopole, dipole = fit
>>> m = subtract_monopole_dipole(m, monopole, dipole)
"""

import logging
from dataclasses import dataclass, replace
from typing import Tuple

import numpy as np
import healpy as hp
from scipy.linalg import LinAlgError

from .core_utils import FitConfig, computation_phase
from .linalg import UpperSymmetricMatrix
from .spectra import ConstantWeights
from .summation import CompensatedSum

__all__ = [
    'HealpixPixelization',
    'DipoleFit',
    'accumulate_normal_equations',
    'fit_monopole_dipole',
    'subtract_monopole_dipole',
    'remove_monopole_dipole',
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealpixPixelization:
    """HEALPix pixel geometry: pixel count and pixel-center directions."""

    nside: int
    nest: bool = False

    def __post_init__(self):
        if not hp.isnsideok(self.nside, nest=self.nest):
            raise ValueError(f"Invalid nside {self.nside} (nest={self.nest})")

    @classmethod
    def from_map(cls, m, nest=False):
        """Pixelization matching the length of map ``m``."""
        return cls(hp.npix2nside(len(m)), nest=nest)

    @property
    def npix(self) -> int:
        return hp.nside2npix(self.nside)

    def directions(self, pixels):
        """Unit vectors of ``pixels`` as an array of shape (3, len(pixels))."""
        return np.array(hp.pix2vec(self.nside, pixels, nest=self.nest))

    def chunks(self, chunk_size):
        """Yield consecutive (start, stop) pixel ranges covering the map."""
        for start in range(0, self.npix, chunk_size):
            yield start, min(start + chunk_size, self.npix)


@dataclass(frozen=True)
class DipoleFit:
    """Result of a monopole/dipole fit. Unpacks as ``monopole, dipole``."""

    monopole: float
    dipole: Tuple[float, float, float]

    def __iter__(self):
        yield self.monopole
        yield self.dipole

    @property
    def amplitude(self) -> float:
        return float(np.sqrt(np.sum(np.square(self.dipole))))

    def direction(self, lonlat=True):
        """Direction of the dipole, (lon, lat) in degrees by default, else (theta, phi) in radians."""
        if self.amplitude == 0:
            raise ValueError("Zero dipole has no direction")
        return hp.vec2dir(np.asarray(self.dipole), lonlat=lonlat)


def _usable(values, bad):
    """Pixels with a finite value that is not flagged as bad."""
    good = np.isfinite(values)
    if bad is not None:
        good &= values != bad
    return good


def _resolve_weights(weights, m):
    if weights is None:
        return ConstantWeights(1.0, npix=len(m))
    weights = np.asarray(weights)
    if weights.shape != m.shape:
        raise ValueError(f"Weight map shape {weights.shape} does not match map shape {m.shape}")
    return weights


def accumulate_normal_equations(m, weights=None, nest=False, bad=hp.UNSEEN, chunk_size=None):
    """
    Accumulate the 4x4 normal equations of the monopole/dipole fit.

    Every pixel contributes ``w s s^T`` to ``A`` and ``w s m`` to ``b``, with
    ``s = (1, x, y, z)``. The contributions of each chunk of pixels are summed
    exactly and folded into Kahan-Babuska-Neumaier accumulators, so the result
    does not depend on the chunk size beyond the final rounding.

    Parameters
    ----------
    m : array_like
        HEALPix map.
    weights : array_like, optional
        Non-negative weight per pixel. Defaults to uniform weights of one.
    nest : bool
        True for NESTED pixel ordering, False for RING.
    bad : float or None
        Sentinel marking unobserved pixels.
    chunk_size : int, optional
        Pixels per accumulation step. Defaults to ``FitConfig().chunk_size``.

    Returns
    -------
    tuple
        (UpperSymmetricMatrix A, ndarray b, number of pixels used)
    """
    chunk_size = FitConfig().chunk_size if chunk_size is None else chunk_size
    m = np.asarray(m)
    if m.ndim != 1:
        raise ValueError(f"Expected a single map (1-D array), got shape {m.shape}")
    pixelization = HealpixPixelization.from_map(m, nest=nest)
    weights = _resolve_weights(weights, m)

    upper = np.triu(np.ones((4, 4), dtype=bool))
    upper_A = CompensatedSum((4, 4))
    b = CompensatedSum(4)
    n_used = 0

    with computation_phase(f"monopole/dipole accumulation over {pixelization.npix} pixels"):
        for start, stop in pixelization.chunks(chunk_size):
            values = np.asarray(m[start:stop], dtype=float)
            w = np.asarray(weights[start:stop], dtype=float)
            if np.any(w < 0):
                raise ValueError("Weights must be non-negative")

            w = np.where(_usable(values, bad) & np.isfinite(w), w, 0.0)
            values = np.where(w != 0, values, 0.0)
            n_used += np.count_nonzero(w)

            s = np.ones((4, stop - start))
            s[1:] = pixelization.directions(np.arange(start, stop))
            ws = w * s

            # per-pixel terms along the last axis, lower triangle left at zero
            terms_A = np.where(upper[:, :, None], ws[:, None, :] * s[None, :, :], 0.0)
            upper_A.merge(CompensatedSum((4, 4)).add_many(terms_A))
            b.merge(CompensatedSum(4).add_many(ws * values))

    return UpperSymmetricMatrix.from_upper(upper_A.value()), b.value(), n_used


def fit_monopole_dipole(m, weights=None, nest=False, bad=hp.UNSEEN, chunk_size=None, config=None):
    """
    Fit the monopole and dipole of a full-sky map.

    Parameters
    ----------
    m : array_like
        HEALPix map of length 12 * nside**2.
    weights : array_like, optional
        Non-negative weight per pixel. Defaults to uniform weights of one.
    nest : bool
        True for NESTED pixel ordering, False for RING.
    bad : float or None
        Sentinel marking unobserved pixels (healpy UNSEEN by default). Such
        pixels, and pixels with a non-finite value or weight, are left out.
    chunk_size : int, optional
        Pixels per accumulation step; overrides ``config.chunk_size``.
    config : FitConfig, optional
        Fit settings.

    Returns
    -------
    DipoleFit
        monopole and (dipole_x, dipole_y, dipole_z).

    Raises
    ------
    ValueError
        For malformed input or fewer than four usable pixels.
    numpy.linalg.LinAlgError
        If the normal equations are singular.
    """
    config = FitConfig() if config is None else config
    if chunk_size is not None:
        config = replace(config, chunk_size=chunk_size)

    A, b, n_used = accumulate_normal_equations(m, weights=weights, nest=nest, bad=bad,
                                               chunk_size=config.chunk_size)
    if n_used < 4:
        raise ValueError(f"Need at least 4 usable pixels to fit monopole and dipole, got {n_used}")

    cond = A.condition_number()
    if np.isfinite(cond) and cond > config.condition_warning:
        logger.warning(f"Normal equations are ill-conditioned (condition number {cond:.2e})")

    try:
        f = A.solve(b)
    except LinAlgError as e:
        logger.error(f"Monopole/dipole normal equations cannot be solved: {e}")
        raise

    fit = DipoleFit(float(f[0]), (float(f[1]), float(f[2]), float(f[3])))
    logger.debug(f"Fitted monopole {fit.monopole:.6e}, dipole {fit.dipole} from {n_used} pixels")
    return fit


def subtract_monopole_dipole(m, monopole, dipole, nest=False, bad=hp.UNSEEN, chunk_size=None):
    """
    Subtract ``monopole + dipole . n(p)`` from every pixel of ``m`` in place.

    Pixels that are non-finite or equal to ``bad`` are left untouched.

    Parameters
    ----------
    m : ndarray
        Writable floating point HEALPix map; modified in place.
    monopole : float
        Monopole value.
    dipole : sequence of 3 floats
        Dipole vector (x, y, z).
    nest : bool
        True for NESTED pixel ordering, False for RING.
    bad : float or None
        Sentinel marking unobserved pixels.
    chunk_size : int, optional
        Pixels processed per step. Defaults to ``FitConfig().chunk_size``.

    Returns
    -------
    ndarray
        The same array ``m``.
    """
    if not isinstance(m, np.ndarray) or not np.issubdtype(m.dtype, np.floating):
        raise TypeError("Map must be a floating point numpy array to be modified in place")
    if not m.flags.writeable:
        raise TypeError("Map is read-only")
    if m.ndim != 1:
        raise ValueError(f"Expected a single map (1-D array), got shape {m.shape}")

    dipole = np.asarray(dipole, dtype=float)
    if dipole.shape != (3,):
        raise ValueError(f"Dipole must have 3 components, got shape {dipole.shape}")

    chunk_size = FitConfig().chunk_size if chunk_size is None else chunk_size
    pixelization = HealpixPixelization.from_map(m, nest=nest)
    for start, stop in pixelization.chunks(chunk_size):
        segment = m[start:stop]
        model = monopole + dipole @ pixelization.directions(np.arange(start, stop))
        good = _usable(segment, bad)
        segment[good] -= model[good]
    return m


def remove_monopole_dipole(m, weights=None, nest=False, bad=hp.UNSEEN, config=None):
    """
    Fit the monopole and dipole of ``m`` and subtract them in place.

    Returns
    -------
    tuple
        (m, DipoleFit)
    """
    fit = fit_monopole_dipole(m, weights=weights, nest=nest, bad=bad, config=config)
    chunk_size = None if config is None else config.chunk_size
    subtract_monopole_dipole(m, fit.monopole, fit.dipole, nest=nest, bad=bad, chunk_size=chunk_size)
    return m, fit
