"""Plotting helpers for decomposition diagnostics."""

from specdecomp.plots.decomposition import (
    HAS_MATPLOTLIB,
    plot_attenuation_curves,
    plot_counts_fit,
    plot_detector_response,
    plot_material_maps,
)

__all__ = [
    "HAS_MATPLOTLIB",
    "plot_attenuation_curves",
    "plot_counts_fit",
    "plot_detector_response",
    "plot_material_maps",
]
