"""
Core utilities for the skysynth package.

Configuration dataclasses, the process-level random source and context
managers for logging computation phases.
"""

import time
import logging

from contextlib import contextmanager
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)

# ============================================================================
# Configuration
# ============================================================================

SYNTHESIS_METHODS = ("auto", "sqrt")


@dataclass
class SynthesisConfig:
    """Configuration parameters for correlated alm synthesis."""

    # "auto": Cholesky where possible, square root otherwise. "sqrt": always square root
    method: str = "auto"

    # Negative eigenvalues below this fraction of the largest |eigenvalue| are rounding noise
    negative_eigenvalue_rtol: float = 1e-10

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.method not in SYNTHESIS_METHODS:
            raise ValueError(f"Unknown method: {self.method}. Must be one of {SYNTHESIS_METHODS}.")
        if self.negative_eigenvalue_rtol < 0:
            raise ValueError("negative_eigenvalue_rtol must be non-negative")


@dataclass
class FitConfig:
    """Configuration parameters for monopole/dipole fitting."""

    # Pixels per accumulation chunk; 1 accumulates strictly pixel by pixel
    chunk_size: int = 65536

    # Warn when the normal equations are worse conditioned than this
    condition_warning: float = 1e12

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.condition_warning <= 1.0:
            raise ValueError("condition_warning must be larger than 1")


# ============================================================================
# Random source
# ============================================================================

_DEFAULT_RNG = np.random.default_rng()


def default_rng():
    """Return the process-level default random generator."""
    return _DEFAULT_RNG


def resolve_rng(rng=None):
    """
    Turn the user-facing ``rng`` argument into a Generator.

    None selects the process-level default instance, an existing Generator is
    passed through unchanged and anything else is used as a seed.
    """
    if rng is None:
        return _DEFAULT_RNG
    if isinstance(rng, np.random.Generator):
        return rng
    return np.random.default_rng(rng)


# ============================================================================
# Context Managers
# ============================================================================

@contextmanager
def computation_phase(phase_name: str):
    """Context manager for logging the start, end and failure of a computation phase."""
    logger.info(f"Starting {phase_name}...")
    start_time = time.time()

    try:
        yield
    except Exception as e:
        logger.error(f"Error in {phase_name}: {e}")
        raise
    finally:
        elapsed = time.time() - start_time
        logger.info(f"Completed {phase_name} in {elapsed:.2f}s")


# ============================================================================
# Utility Functions
# ============================================================================

def check_property_equal(instances, property_name):
    """
    Check if a specific property of all instances is equal.

    Parameters:
        instances (list): A list of instances to check.
        property_name (str): The name of the property to check.

    Returns:
        bool: True if the property is equal for all instances, False otherwise.
    """
    if len(instances) == 0:
        return True

    first_value = getattr(instances[0], property_name)
    return all(getattr(instance, property_name) == first_value for instance in instances)


__all__ = [
    'SynthesisConfig',
    'FitConfig',
    'default_rng',
    'resolve_rng',
    'computation_phase',
    'check_property_equal',
]
