# tests/conftest.py
import pytest
import numpy as np
import healpy as hp


@pytest.fixture
def two_component_cls():
    """Spectrum tensor constant in l with covariance [[3, 2], [2, 5]]."""
    C0 = np.array([[3.0, 2.0], [2.0, 5.0]])
    return np.repeat(C0[:, :, None], 12, axis=2)


@pytest.fixture
def small_nside():
    return 8


@pytest.fixture
def pixel_vectors(small_nside):
    """Unit vectors (x, y, z) of all RING-ordered pixels at small_nside."""
    npix = hp.nside2npix(small_nside)
    return np.array(hp.pix2vec(small_nside, np.arange(npix)))


@pytest.fixture
def dipole_map(pixel_vectors):
    """Map equal to 5 + x in every pixel."""
    x, y, z = pixel_vectors
    return 5.0 + 1.0 * x
