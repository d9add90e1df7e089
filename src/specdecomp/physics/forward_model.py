"""
Polychromatic forward model for photon-counting spectral detectors.

For a vector of basis-material line integrals ``a`` the expected number of
counts in spectral bin ``b`` is

    lambda_b = sum_e R[b, e] * S[e] * exp(-sum_m a[m] * mu[m, e])

where ``S`` is the incident spectrum (already scaled for solid angle,
exposure and tube current), ``mu`` the material attenuation table and ``R``
the binned detector response.

All functions are pure and accept either a single line-integral vector of
shape (N_materials,) or a stack of shape (..., N_materials).
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from specdecomp.core.calibration import DecompositionCalibration


def attenuated_spectrum(
    line_integrals: np.ndarray,
    incident: np.ndarray,
    material_attenuations: np.ndarray,
) -> np.ndarray:
    """Incident spectrum after traversing the given material line integrals.

    Parameters
    ----------
    line_integrals : np.ndarray
        Shape (..., N_materials).
    incident : np.ndarray
        Shape (N_energies,) or broadcast-compatible (..., N_energies).
    material_attenuations : np.ndarray
        Shape (N_materials, N_energies).

    Returns
    -------
    np.ndarray
        Shape (..., N_energies).
    """
    total_attenuation = np.asarray(line_integrals, dtype=float) @ material_attenuations
    return incident * np.exp(-total_attenuation)


def predicted_counts(
    line_integrals: np.ndarray,
    incident: np.ndarray,
    detector_response: np.ndarray,
    material_attenuations: np.ndarray,
) -> np.ndarray:
    """Expected counts per spectral bin, shape (..., N_bins)."""
    attenuated = attenuated_spectrum(line_integrals, incident, material_attenuations)
    if attenuated.ndim == 1:
        return detector_response @ attenuated
    return attenuated @ detector_response.T


def forward_model(
    line_integrals: np.ndarray,
    calibration: DecompositionCalibration,
    incident: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Expected counts for ``line_integrals`` under ``calibration``.

    ``incident`` defaults to the calibration's global spectrum.
    """
    spectrum = calibration.resolve_incident_spectrum(incident)
    return predicted_counts(
        line_integrals,
        spectrum,
        calibration.detector_response,
        calibration.material_attenuations,
    )


def count_jacobian(
    line_integrals: np.ndarray,
    incident: np.ndarray,
    detector_response: np.ndarray,
    material_attenuations: np.ndarray,
) -> np.ndarray:
    """Derivative of the predicted counts with respect to each line integral.

    Returns J with ``J[b, a] = d lambda_b / d a``, shape (N_bins, N_materials)::

        J[b, a] = -sum_e R[b, e] * S_att[e] * mu[a, e]
    """
    attenuated = attenuated_spectrum(line_integrals, incident, material_attenuations)
    weighted = attenuated[np.newaxis, :] * material_attenuations  # (M, E)
    return -(detector_response @ weighted.T)
