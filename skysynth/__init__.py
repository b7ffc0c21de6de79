# skysynth/__init__.py
"""
skysynth: correlated alm synthesis and robust monopole/dipole fitting for HEALPix skies.
"""

__version__ = "0.1.0"

# Core user-facing functions
from .synalm import synalm, synalm_inplace
from .dipole import (
    DipoleFit,
    HealpixPixelization,
    fit_monopole_dipole,
    remove_monopole_dipole,
    subtract_monopole_dipole,
)
from .core_utils import SynthesisConfig, FitConfig, default_rng
from .spectra import nside2lmax, binning_matrix, spectra_to_tensor, ConstantWeights

# Advanced users can access submodules
from . import alm_utils
from . import linalg
from . import summation
from . import diagnostics

__all__ = [
    # Main workflow functions
    'synalm',
    'synalm_inplace',
    'fit_monopole_dipole',
    'subtract_monopole_dipole',
    'remove_monopole_dipole',

    # Essential objects
    'DipoleFit',
    'HealpixPixelization',
    'SynthesisConfig',
    'FitConfig',
    'ConstantWeights',

    # Key utilities
    'default_rng',
    'nside2lmax',
    'binning_matrix',
    'spectra_to_tensor',

    # Advanced submodules
    'alm_utils',
    'linalg',
    'summation',
    'diagnostics',

    # Package info
    '__version__',
]
