"""
Decomposition Visualization Module

Diagnostic plots for spectral decomposition:
- Material line-integral maps with precision maps
- Measured vs predicted bin counts for a pixel
- Material attenuation curves and binned detector response
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np

try:
    import matplotlib.pyplot as plt
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False

from specdecomp.core.calibration import DecompositionCalibration
from specdecomp.workflows.decomposition import DecompositionResult


PLOT_STYLE = {
    "figure.figsize": (10, 7),
    "font.size": 12,
    "axes.labelsize": 14,
    "axes.titlesize": 14,
    "legend.fontsize": 11,
    "lines.linewidth": 1.5,
    "axes.grid": True,
    "grid.alpha": 0.3,
    "grid.linestyle": "--",
}

COLORS = {
    "measured": "#1f77b4",
    "predicted": "#d62728",
}


def apply_plot_style():
    """Apply publication-quality plot style."""
    if HAS_MATPLOTLIB:
        plt.rcParams.update(PLOT_STYLE)


def _require_matplotlib() -> None:
    if not HAS_MATPLOTLIB:
        raise ImportError("matplotlib required for plotting")


def _finish(fig: Any, save_path: Optional[Union[str, Path]]) -> None:
    plt.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=300, bbox_inches="tight")


def plot_material_maps(
    result: DecompositionResult,
    show_precision: bool = True,
    cmap: str = "gray",
    figsize: Optional[Tuple[float, float]] = None,
    save_path: Optional[Union[str, Path]] = None,
) -> Any:
    """
    Show each material's line-integral image, optionally with its CRLB
    precision (inverse variance) image underneath.

    The result must hold a 2-D pixel grid. Invalid pixels show as NaN.

    Returns
    -------
    fig, axes
    """
    _require_matplotlib()
    if len(result.pixel_shape) != 2:
        raise ValueError(f"Material maps need a 2-D pixel grid, got shape {result.pixel_shape}")

    apply_plot_style()

    n_materials = result.line_integrals.shape[-1]
    names = result.material_names or [f"material_{m}" for m in range(n_materials)]
    rows = 2 if show_precision and result.inverse_variances is not None else 1
    fig, axes = plt.subplots(
        rows, n_materials, figsize=figsize or (4 * n_materials, 4 * rows), squeeze=False
    )

    for m, name in enumerate(names):
        image = axes[0, m].imshow(result.line_integrals[..., m], cmap=cmap)
        axes[0, m].set_title(name)
        fig.colorbar(image, ax=axes[0, m], fraction=0.046)
        if rows == 2:
            precision = axes[1, m].imshow(result.inverse_variances[..., m], cmap="viridis")
            axes[1, m].set_title(f"{name} inverse variance")
            fig.colorbar(precision, ax=axes[1, m], fraction=0.046)

    for ax in axes.ravel():
        ax.grid(False)
        ax.set_xticks([])
        ax.set_yticks([])

    _finish(fig, save_path)
    return fig, axes


def plot_counts_fit(
    measured: np.ndarray,
    predicted: np.ndarray,
    title: str = "Measured vs Predicted Bin Counts",
    figsize: Tuple[float, float] = (8, 6),
    save_path: Optional[Union[str, Path]] = None,
) -> Any:
    """
    Compare one pixel's measured counts to the forward-model prediction.

    Parameters
    ----------
    measured : np.ndarray
        Measured counts per spectral bin
    predicted : np.ndarray
        Predicted counts at the decomposed solution
    title : str
        Plot title
    figsize : tuple
        Figure size
    save_path : str or Path, optional
        Save figure to path

    Returns
    -------
    fig, ax
    """
    _require_matplotlib()
    apply_plot_style()

    measured = np.asarray(measured, dtype=float)
    predicted = np.asarray(predicted, dtype=float)
    bins = np.arange(measured.size)

    fig, ax = plt.subplots(figsize=figsize)
    width = 0.4
    ax.bar(bins - width / 2, measured, width, color=COLORS["measured"], label="Measured")
    ax.bar(bins + width / 2, predicted, width, color=COLORS["predicted"], label="Predicted")
    ax.set_xticks(bins)
    ax.set_xlabel("Spectral bin")
    ax.set_ylabel("Counts")
    ax.set_title(title)
    ax.legend(loc="best")

    _finish(fig, save_path)
    return fig, ax


def plot_attenuation_curves(
    calibration: DecompositionCalibration,
    energies: Optional[Sequence[float]] = None,
    energy_units: str = "keV",
    log_y: bool = True,
    figsize: Tuple[float, float] = (10, 6),
    save_path: Optional[Union[str, Path]] = None,
) -> Any:
    """Plot each material's attenuation curve over the energy grid."""
    _require_matplotlib()
    apply_plot_style()

    x = np.arange(calibration.n_energies) if energies is None else np.asarray(energies, dtype=float)
    fig, ax = plt.subplots(figsize=figsize)
    for name, curve in zip(calibration.material_names, calibration.material_attenuations):
        ax.plot(x, curve, label=name)

    if calibration.thresholds is not None and energies is None:
        for edge in calibration.thresholds[1:-1]:
            ax.axvline(edge - 0.5, color="gray", linestyle=":", linewidth=1)

    if log_y:
        ax.set_yscale("log")
    ax.set_xlabel(f"Energy ({energy_units})" if energies is not None else "Energy index")
    ax.set_ylabel("Attenuation per unit line integral")
    ax.set_title("Material Attenuation")
    ax.legend(loc="best")

    _finish(fig, save_path)
    return fig, ax


def plot_detector_response(
    calibration: DecompositionCalibration,
    cmap: str = "viridis",
    figsize: Tuple[float, float] = (10, 4),
    save_path: Optional[Union[str, Path]] = None,
) -> Any:
    """Visualize the binned detector response matrix (bins x energies)."""
    _require_matplotlib()
    apply_plot_style()

    fig, ax = plt.subplots(figsize=figsize)
    image = ax.imshow(calibration.detector_response, aspect="auto", cmap=cmap, interpolation="nearest")
    ax.set_xlabel("Energy index")
    ax.set_ylabel("Spectral bin")
    ax.set_title("Detector Response")
    ax.grid(False)
    fig.colorbar(image, ax=ax)

    _finish(fig, save_path)
    return fig, ax
