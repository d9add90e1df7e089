"""
Tests for decomposition plotting helpers.
"""

import pytest
import numpy as np

matplotlib = pytest.importorskip("matplotlib")
matplotlib.use("Agg")

from specdecomp.physics.forward_model import forward_model
from specdecomp.physics.simulation import synthetic_calibration
from specdecomp.plots.decomposition import (
    plot_attenuation_curves,
    plot_counts_fit,
    plot_detector_response,
    plot_material_maps,
)
from specdecomp.workflows.decomposition import decompose_projections


@pytest.fixture
def calibration():
    return synthetic_calibration(n_bins=3, n_energies=12, fwhm_bins=2.0, material_names=["iodine", "water"])


class TestMaterialMaps:
    """Tests for plot_material_maps."""

    def test_maps_with_precision(self, calibration, tmp_path):
        import matplotlib.pyplot as plt

        truth = np.stack(np.meshgrid(np.linspace(0.5, 1.5, 3), np.linspace(0.2, 0.8, 2)), axis=-1)
        result = decompose_projections(forward_model(truth, calibration), calibration)

        output = tmp_path / "maps.png"
        fig, axes = plot_material_maps(result, save_path=output)

        assert axes.shape == (2, 2)
        assert axes[0, 0].get_title() == "iodine"
        assert output.exists()
        plt.close(fig)

    def test_rejects_one_dimensional_grid(self, calibration):
        result = decompose_projections(forward_model(np.array([[1.0, 0.5]]), calibration), calibration)
        with pytest.raises(ValueError, match="2-D"):
            plot_material_maps(result)


class TestDiagnosticPlots:
    """Tests for the remaining diagnostic plots."""

    def test_counts_fit(self):
        import matplotlib.pyplot as plt

        fig, ax = plot_counts_fit(np.array([10.0, 20.0, 5.0]), np.array([11.0, 19.0, 5.5]))
        assert ax.get_xlabel() == "Spectral bin"
        plt.close(fig)

    def test_attenuation_curves(self, calibration):
        import matplotlib.pyplot as plt

        fig, ax = plot_attenuation_curves(calibration)
        assert len(ax.get_lines()) >= 2
        assert ax.get_yscale() == "log"
        plt.close(fig)

    def test_detector_response(self, calibration, tmp_path):
        import matplotlib.pyplot as plt

        output = tmp_path / "response.png"
        fig, ax = plot_detector_response(calibration, save_path=output)
        assert ax.get_title() == "Detector Response"
        assert output.exists()
        plt.close(fig)
