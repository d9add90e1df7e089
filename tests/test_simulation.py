"""
Tests for synthetic calibrations and simulated counts.
"""

import pytest
import numpy as np

from specdecomp.core.errors import ConfigurationError
from specdecomp.physics.forward_model import forward_model
from specdecomp.physics.simulation import (
    basis_attenuations,
    gaussian_fine_response,
    klein_nishina,
    photoelectric,
    synthesize_counts,
    synthetic_calibration,
)


class TestAttenuationBasis:
    """Tests for the photoelectric/Compton basis functions."""

    def test_photoelectric_reference(self):
        assert photoelectric(np.array([30.0]))[0] == pytest.approx(1.0)
        assert photoelectric(np.array([60.0]))[0] == pytest.approx(0.125)

    def test_klein_nishina_decreases(self):
        values = klein_nishina(np.linspace(20.0, 150.0, 30))
        assert np.all(values > 0)
        assert np.all(np.diff(values) < 0)

    def test_basis_shape(self):
        energies = np.linspace(20.0, 100.0, 9)
        table = basis_attenuations(energies, [1.0, 0.1, 0.0], [0.2, 0.3, 1.0])
        assert table.shape == (3, 9)
        assert np.all(table > 0)

    def test_mismatched_coefficients(self):
        with pytest.raises(ConfigurationError):
            basis_attenuations(np.linspace(20.0, 100.0, 9), [1.0, 0.1], [0.2])


class TestGaussianResponse:
    """Tests for the fine-grid detector response."""

    def test_perfect_detector(self):
        np.testing.assert_array_equal(gaussian_fine_response(5, fwhm_bins=0.0), np.eye(5))

    def test_columns_normalized(self):
        response = gaussian_fine_response(20, fwhm_bins=3.0)
        np.testing.assert_allclose(response.sum(axis=0), np.ones(20))
        assert np.argmax(response[:, 10]) == 10

    def test_efficiency_scales_columns(self):
        efficiency = np.linspace(0.5, 1.0, 8)
        response = gaussian_fine_response(8, fwhm_bins=2.0, efficiency=efficiency)
        np.testing.assert_allclose(response.sum(axis=0), efficiency)


class TestSyntheticCalibration:
    """Tests for the default synthetic setup."""

    def test_default_setup(self):
        calibration = synthetic_calibration()
        assert calibration.n_materials == 2
        assert calibration.n_bins == 2
        assert calibration.n_energies == 10
        assert calibration.thresholds.tolist() == [0, 5, 10]
        np.testing.assert_array_equal(calibration.incident_spectrum, np.full(10, 1.0e5))

    def test_materials_have_distinct_signatures(self):
        calibration = synthetic_calibration()
        ratio = calibration.material_attenuations[0] / calibration.material_attenuations[1]
        assert ratio[0] > 5 * ratio[-1]

    def test_names(self):
        calibration = synthetic_calibration(material_names=["iodine", "water"])
        assert calibration.material_names == ["iodine", "water"]

    def test_too_many_bins(self):
        with pytest.raises(ConfigurationError):
            synthetic_calibration(n_bins=12, n_energies=10)


class TestSynthesizeCounts:
    """Tests for simulated measurements."""

    def test_noiseless_matches_forward_model(self):
        calibration = synthetic_calibration()
        a = np.array([1.0, 0.5])
        np.testing.assert_array_equal(synthesize_counts(a, calibration), forward_model(a, calibration))

    def test_poisson_is_reproducible(self):
        calibration = synthetic_calibration()
        a = np.tile([1.0, 0.5], (10, 1))
        first = synthesize_counts(a, calibration, noise="poisson", rng=7)
        second = synthesize_counts(a, calibration, noise="poisson", rng=7)
        np.testing.assert_array_equal(first, second)
        assert np.all(first == np.round(first))

    def test_poisson_mean(self):
        calibration = synthetic_calibration()
        a = np.tile([1.0, 0.5], (2000, 1))
        counts = synthesize_counts(a, calibration, noise="poisson", rng=np.random.default_rng(1))
        expected = forward_model(a[0], calibration)
        np.testing.assert_allclose(counts.mean(axis=0), expected, rtol=5e-3)

    def test_unknown_noise_model(self):
        with pytest.raises(ValueError, match="Unknown noise model"):
            synthesize_counts(np.zeros(2), synthetic_calibration(), noise="gaussian")

    def test_wrong_material_count(self):
        with pytest.raises(ConfigurationError):
            synthesize_counts(np.zeros(3), synthetic_calibration())
