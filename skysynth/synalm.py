"""
Correlated spherical harmonic coefficient synthesis.

Generates one Gaussian random alm set per component such that the coefficients
of components i and j at multipole l have covariance Cl[i, j, l], independently
for every (l, m).

Main Functions
--------------
synalm : Allocate and synthesize alm sets from a cross-spectrum tensor
synalm_inplace : Fill caller-provided alm sets

Examples
--------
>>> nside = 16
>>> C0 = np.array([[3.0, 2.0], [2.0, 5.0]])
>>> cls = np.repeat(C0[:, :, None], 3 * nside, axis=2)  # spectra constant with l
>>> alms = synalm(cls, nside=nside, rng=42)
>>> alms.shape
(2, 1176)
"""

import logging
from dataclasses import replace

import numpy as np

from .alm_utils import alm_lmax, alm_size, allocate_alms, degree_indices
from .core_utils import SynthesisConfig, check_property_equal, resolve_rng
from .linalg import symmetric_sqrt, try_cholesky
from .spectra import nside2lmax

__all__ = ['synalm', 'synalm_inplace', 'validate_spectrum_tensor']

logger = logging.getLogger(__name__)


def validate_spectrum_tensor(cls):
    """
    Check the shape and content of a cross-spectrum tensor.

    Returns the tensor as a float array of shape (ncomp, ncomp, nl).
    """
    cls = np.asarray(cls, dtype=float)
    if cls.ndim != 3:
        raise ValueError(f"Spectrum tensor must have 3 dimensions (comp, comp, l), got shape {cls.shape}")
    if cls.shape[0] < 1:
        raise ValueError("Spectrum tensor must describe at least one component")
    if cls.shape[0] != cls.shape[1]:
        raise ValueError(f"Spectrum tensor must be square in its first two dimensions, got shape {cls.shape}")
    if not np.all(np.isfinite(cls)):
        raise ValueError("Spectrum tensor contains non-finite values")
    if not np.allclose(cls, cls.transpose(1, 0, 2)):
        max_asymmetry = np.max(np.abs(cls - cls.transpose(1, 0, 2)))
        logger.warning(f"Spectrum tensor is not symmetric (max asymmetry {max_asymmetry:.2e}); "
                       "only the upper triangle is used")
    return cls


def _draw_unit_alms(rng, lmax, nalm):
    """
    Independent alms with unit variance E|a|^2 = 1.

    Consumes 2 * nalm standard normals. For m > 0 the real and imaginary parts
    each carry variance 1/2; for m = 0 the coefficient is real with variance 1.
    """
    draws = rng.standard_normal((2, nalm))
    alm = (draws[0] + 1j * draws[1]) * np.sqrt(0.5)
    # m = 0 occupies the first lmax + 1 slots
    alm[:lmax + 1] = draws[0, :lmax + 1]
    return alm


def synalm_inplace(cls, alms, rng=None, method=None, config=None):
    """
    Fill alm sets with a correlated Gaussian realization of ``cls``.

    Parameters
    ----------
    cls : array_like
        Cross-spectrum tensor of shape (ncomp, ncomp, nl), nl >= lmax + 1.
        Each slice cls[:, :, l] is read through its upper triangle.
    alms : ndarray or sequence of ndarray
        ncomp complex alm arrays (healpy layout, mmax == lmax) of equal size,
        e.g. a (ncomp, nalm) array. Overwritten in place.
    rng : numpy.random.Generator, int or None
        Random source. None uses the process-level default generator.
    method : {'auto', 'sqrt'}, optional
        'auto' uses a Cholesky factor for positive definite slices and the
        symmetric square root otherwise; 'sqrt' always uses the square root.
        Overrides ``config.method``.
    config : SynthesisConfig, optional
        Synthesis settings.

    Returns
    -------
    alms
        The same object that was passed in.

    Notes
    -----
    Degrees whose slice is exactly zero get exactly zero coefficients. The
    random source is advanced by 2 * nalm * ncomp draws regardless of the
    spectrum.
    """
    config = SynthesisConfig() if config is None else config
    if method is not None:
        config = replace(config, method=method)

    cls = validate_spectrum_tensor(cls)
    ncomp = cls.shape[0]

    if len(alms) != ncomp:
        raise ValueError(f"Expected {ncomp} alm sets for a {ncomp}-component spectrum, got {len(alms)}")
    for comp in range(ncomp):
        if not isinstance(alms[comp], np.ndarray) or not np.iscomplexobj(alms[comp]):
            raise ValueError("alm sets must be complex numpy arrays")
    if not check_property_equal(alms, "size"):
        raise ValueError("All alm sets must have the same size")

    lmax = alm_lmax(alms[0])
    nalm = alm_size(lmax)
    if cls.shape[2] < lmax + 1:
        raise ValueError(f"Spectrum tensor covers l <= {cls.shape[2] - 1}, but alms need lmax={lmax}")

    rng = resolve_rng(rng)

    # independent unit-variance baseline, adjusted per degree below
    for comp in range(ncomp):
        alms[comp][:] = _draw_unit_alms(rng, lmax, nalm)

    # scratch buffers shared by all degrees
    alm_in = np.zeros((ncomp, lmax + 1), dtype=np.complex128)
    alm_out = np.zeros((ncomp, lmax + 1), dtype=np.complex128)

    n_zero = 0
    n_sqrt = 0
    for ell in range(lmax + 1):
        cov = cls[:, :, ell]
        idx = degree_indices(lmax, ell)

        if not np.any(cov):
            for comp in range(ncomp):
                alms[comp][idx] = 0.0
            n_zero += 1
            continue

        transform = None
        if config.method == "auto":
            result = try_cholesky(cov)
            if result.is_posdef:
                transform = result.factor
        if transform is None:
            transform = symmetric_sqrt(cov, config.negative_eigenvalue_rtol)
            n_sqrt += 1
            if config.method == "auto":
                logger.debug(f"l={ell}: spectrum slice not positive definite, using matrix square root")

        block_in = alm_in[:, :ell + 1]
        block_out = alm_out[:, :ell + 1]
        block_in[...] = 0.0
        block_out[...] = 0.0
        for comp in range(ncomp):
            block_in[comp] = alms[comp][idx]
        np.matmul(transform, block_in, out=block_out)
        for comp in range(ncomp):
            alms[comp][idx] = block_out[comp]

    logger.debug(f"Synthesized {ncomp} alm sets up to lmax={lmax}: "
                 f"{n_zero} zero degrees, {n_sqrt} square-root degrees")
    return alms


def synalm(cls, lmax=None, nside=None, rng=None, method=None, config=None):
    """
    Synthesize correlated alm sets from a cross-spectrum tensor.

    Parameters
    ----------
    cls : array_like
        Cross-spectrum tensor of shape (ncomp, ncomp, nl).
    lmax : int, optional
        Band limit of the output. Defaults to nl - 1.
    nside : int, optional
        HEALPix resolution; sets lmax = 3 * nside - 1. Cannot be combined with lmax.
    rng : numpy.random.Generator, int or None
        Random source. None uses the process-level default generator.
    method : {'auto', 'sqrt'}, optional
        Factorization choice, see ``synalm_inplace``.
    config : SynthesisConfig, optional
        Synthesis settings.

    Returns
    -------
    ndarray
        Complex array of shape (ncomp, nalm), one healpy-ordered alm set per row.
    """
    shape = np.shape(cls)
    if len(shape) != 3:
        raise ValueError(f"Spectrum tensor must have 3 dimensions (comp, comp, l), got shape {shape}")
    if lmax is not None and nside is not None:
        raise ValueError("Specify either lmax or nside, not both")
    if nside is not None:
        lmax = nside2lmax(nside)
    elif lmax is None:
        lmax = shape[2] - 1

    alms = allocate_alms(shape[0], lmax)
    logger.info(f"Synthesizing {shape[0]} correlated alm sets up to lmax={lmax}")
    return synalm_inplace(cls, alms, rng=rng, method=method, config=config)
