"""
Tests for correlated alm synthesis.

Tests cover:
- Output layout and argument handling
- Reproducibility and random draw accounting
- Zero spectrum degrees
- Covariance recovery for the Cholesky and square-root branches
- Singular and indefinite spectra
"""

import logging

import numpy as np
import healpy as hp
import pytest

import skysynth
from skysynth import synalm, synalm_inplace
from skysynth.alm_utils import alm_index, alm_size, degree_indices
from skysynth.diagnostics import empirical_cross_spectra
from skysynth.linalg import try_cholesky


def sample_covariance(cls, n_real, ell, m, seed, method=None):
    """Sample covariance of the (ell, m) coefficients over independent realizations."""
    rng = np.random.default_rng(seed)
    lmax = cls.shape[2] - 1
    idx = alm_index(lmax, ell, m)
    samples = np.empty((n_real, cls.shape[0]), dtype=complex)
    for k in range(n_real):
        samples[k] = synalm(cls, rng=rng, method=method)[:, idx]
    return np.mean(samples[:, :, None] * np.conj(samples[:, None, :]), axis=0).real


class TestSynalmLayout:

    def test_output_shape(self, two_component_cls):
        alms = synalm(two_component_cls, rng=0)
        assert alms.shape == (2, alm_size(11))
        assert np.iscomplexobj(alms)

    def test_nside_sets_lmax(self, two_component_cls):
        alms = synalm(two_component_cls, nside=4, rng=0)
        assert alms.shape == (2, hp.Alm.getsize(11))

    def test_explicit_lmax(self, two_component_cls):
        alms = synalm(two_component_cls, lmax=5, rng=0)
        assert alms.shape == (2, hp.Alm.getsize(5))

    def test_lmax_and_nside_exclusive(self, two_component_cls):
        with pytest.raises(ValueError):
            synalm(two_component_cls, lmax=5, nside=2)

    def test_m0_coefficients_real(self, two_component_cls):
        alms = synalm(two_component_cls, rng=1)
        lmax = two_component_cls.shape[2] - 1
        m0 = [alm_index(lmax, ell, 0) for ell in range(lmax + 1)]
        assert np.all(alms[:, m0].imag == 0.0)

    def test_inplace_returns_same_object(self, two_component_cls):
        alms = [np.zeros(alm_size(11), dtype=complex) for _ in range(2)]
        result = synalm_inplace(two_component_cls, alms, rng=3)
        assert result is alms
        assert all(np.any(alm != 0) for alm in alms)

    def test_inplace_on_array_rows(self, two_component_cls):
        alms = np.zeros((2, alm_size(11)), dtype=complex)
        synalm_inplace(two_component_cls, alms, rng=3)
        expected = synalm(two_component_cls, rng=3)
        assert np.array_equal(alms, expected)

    def test_spectrum_longer_than_alms(self, two_component_cls):
        alms = np.zeros((2, alm_size(4)), dtype=complex)
        synalm_inplace(two_component_cls, alms, rng=0)
        assert np.all(np.isfinite(alms))


class TestSynalmPreconditions:

    def test_two_dimensional_spectrum(self):
        with pytest.raises(ValueError):
            synalm(np.ones((2, 2)))

    def test_non_square_spectrum(self):
        with pytest.raises(ValueError):
            synalm(np.ones((2, 3, 5)))

    def test_no_components(self):
        with pytest.raises(ValueError):
            synalm(np.ones((0, 0, 5)))

    def test_non_finite_spectrum(self, two_component_cls):
        two_component_cls[0, 0, 3] = np.nan
        with pytest.raises(ValueError):
            synalm(two_component_cls)

    def test_wrong_number_of_alm_sets(self, two_component_cls):
        alms = np.zeros((3, alm_size(11)), dtype=complex)
        with pytest.raises(ValueError):
            synalm_inplace(two_component_cls, alms)

    def test_mismatched_alm_sizes(self, two_component_cls):
        alms = [np.zeros(alm_size(11), dtype=complex), np.zeros(alm_size(10), dtype=complex)]
        with pytest.raises(ValueError):
            synalm_inplace(two_component_cls, alms)

    def test_empty_alm_sets(self):
        cls = np.ones((1, 1, 4))
        with pytest.raises(ValueError):
            synalm_inplace(cls, [np.zeros(0, dtype=complex)])

    def test_real_alm_sets(self, two_component_cls):
        alms = np.zeros((2, alm_size(11)))
        with pytest.raises(ValueError):
            synalm_inplace(two_component_cls, alms)

    def test_spectrum_too_short(self, two_component_cls):
        alms = np.zeros((2, alm_size(20)), dtype=complex)
        with pytest.raises(ValueError):
            synalm_inplace(two_component_cls, alms)

    def test_unknown_method(self, two_component_cls):
        with pytest.raises(ValueError):
            synalm(two_component_cls, method="eigen")


class TestSynalmRandomness:

    def test_reproducible_with_seed(self, two_component_cls):
        a = synalm(two_component_cls, rng=42)
        b = synalm(two_component_cls, rng=42)
        assert np.array_equal(a, b)

    def test_different_seeds_differ(self, two_component_cls):
        a = synalm(two_component_cls, rng=1)
        b = synalm(two_component_cls, rng=2)
        assert not np.allclose(a, b)

    def test_draw_count(self, two_component_cls):
        """The generator advances by exactly two normals per coefficient and component."""
        rng = np.random.default_rng(7)
        synalm(two_component_cls, rng=rng)

        reference = np.random.default_rng(7)
        reference.standard_normal(2 * alm_size(11) * 2)
        assert rng.standard_normal() == reference.standard_normal()

    def test_draw_count_independent_of_spectrum(self):
        zero_cls = np.zeros((2, 2, 6))
        rng = np.random.default_rng(11)
        synalm(zero_cls, rng=rng)

        reference = np.random.default_rng(11)
        reference.standard_normal(2 * alm_size(5) * 2)
        assert rng.standard_normal() == reference.standard_normal()

    def test_default_generator_is_used(self, two_component_cls):
        state = skysynth.default_rng().bit_generator.state
        synalm(two_component_cls)
        assert skysynth.default_rng().bit_generator.state != state

    def test_single_component_scaling(self):
        """For one component the Cholesky factor is sqrt(C_l)."""
        ones = np.ones((1, 1, 10))
        a = synalm(ones, rng=5)
        b = synalm(4.0 * ones, rng=5)
        assert np.allclose(b, 2.0 * a)


class TestZeroDegrees:

    def test_zero_block(self, two_component_cls):
        cls = two_component_cls.copy()
        cls[:, :, 3] = 0.0
        cls[:, :, 7] = 0.0
        lmax = cls.shape[2] - 1
        alms = synalm(cls, rng=0)

        for ell in (3, 7):
            assert np.all(alms[:, degree_indices(lmax, ell)] == 0.0)
        for ell in (2, 4, 8):
            assert np.all(alms[:, degree_indices(lmax, ell)] != 0.0)

    def test_monopole_dipole_free_spectrum(self, two_component_cls):
        cls = two_component_cls.copy()
        cls[:, :, :2] = 0.0
        alms = synalm(cls, rng=0)
        lmax = cls.shape[2] - 1
        assert np.all(alms[:, degree_indices(lmax, 0)] == 0.0)
        assert np.all(alms[:, degree_indices(lmax, 1)] == 0.0)

    def test_zero_auto_spectrum_only(self):
        """A component without power gives zero coefficients, the other is untouched."""
        cls = np.zeros((2, 2, 6))
        cls[0, 0] = 2.0
        alms = synalm(cls, rng=4)
        assert np.allclose(alms[1], 0.0)
        assert np.all(np.abs(alms[0]) > 0)


class TestCovarianceRecovery:

    def test_two_component_covariance(self):
        C0 = np.array([[3.0, 2.0], [2.0, 5.0]])
        cls = np.repeat(C0[:, :, None], 2, axis=2)
        cov = sample_covariance(cls, n_real=20000, ell=1, m=1, seed=2024)
        assert np.allclose(cov, C0, rtol=0.05)

    def test_covariance_at_m0(self):
        C0 = np.array([[3.0, 2.0], [2.0, 5.0]])
        cls = np.repeat(C0[:, :, None], 2, axis=2)
        cov = sample_covariance(cls, n_real=20000, ell=1, m=0, seed=99)
        assert np.allclose(cov, C0, rtol=0.05)

    def test_fallback_equivalence_near_singular(self):
        eps = 1e-6
        C0 = np.array([[1.0, 1.0 - eps], [1.0 - eps, 1.0]])
        assert try_cholesky(C0).is_posdef
        cls = np.repeat(C0[:, :, None], 2, axis=2)

        cov_cholesky = sample_covariance(cls, n_real=20000, ell=1, m=1, seed=5)
        cov_sqrt = sample_covariance(cls, n_real=20000, ell=1, m=1, seed=6, method="sqrt")

        assert np.allclose(cov_cholesky, C0, rtol=0.05)
        assert np.allclose(cov_sqrt, C0, rtol=0.05)
        assert np.allclose(cov_cholesky, cov_sqrt, rtol=0.05)

    def test_empirical_spectra_match_input(self):
        C0 = np.array([[3.0, 2.0], [2.0, 5.0]])
        cls = np.repeat(C0[:, :, None], 201, axis=2)
        alms = synalm(cls, rng=12)
        measured = empirical_cross_spectra(alms)
        ell = np.arange(measured.shape[2])
        mean = np.average(measured[:, :, 2:], axis=2, weights=2 * ell[2:] + 1)
        assert np.allclose(mean, C0, rtol=0.05)


class TestDegenerateSpectra:

    def test_rank_one_spectrum_gives_identical_components(self):
        C0 = np.array([[1.0, 1.0], [1.0, 1.0]])
        assert not try_cholesky(C0).is_posdef
        cls = np.repeat(C0[:, :, None], 8, axis=2)
        alms = synalm(cls, rng=8)
        assert np.allclose(alms[0], alms[1])
        assert np.all(np.isfinite(alms))

    def test_rounding_indefinite_spectrum(self, caplog):
        C0 = np.array([[1.0, 1.0 + 1e-12], [1.0 + 1e-12, 1.0]])
        cls = np.repeat(C0[:, :, None], 8, axis=2)
        with caplog.at_level(logging.WARNING):
            alms = synalm(cls, rng=8)
        assert np.all(np.isfinite(alms))
        assert not any("indefinite" in record.message for record in caplog.records)

    def test_indefinite_spectrum_warns(self, caplog):
        C0 = np.array([[1.0, 2.0], [2.0, 1.0]])
        cls = np.repeat(C0[:, :, None], 4, axis=2)
        with caplog.at_level(logging.WARNING):
            alms = synalm(cls, rng=8)
        assert np.all(np.isfinite(alms))
        assert any("indefinite" in record.message for record in caplog.records)

    def test_three_components_with_duplicate(self):
        C0 = np.array([
            [2.0, 2.0, 0.5],
            [2.0, 2.0, 0.5],
            [0.5, 0.5, 1.0],
        ])
        cls = np.repeat(C0[:, :, None], 6, axis=2)
        alms = synalm(cls, rng=21)
        assert np.allclose(alms[0], alms[1])
        assert not np.allclose(alms[0], alms[2])
