"""
Cramer-Rao lower bound on decomposed line integrals.

The Fisher information of the Poisson spectral measurement with respect to
the material line integrals is

    F[a, a'] = sum_b w_b * (d lambda_b / d a) * (d lambda_b / d a')

with the observed-information weight ``w_b = y_b / lambda_b**2`` (or the
expected-information weight ``1 / lambda_b``). The diagonal of ``F^-1``
bounds the variance of any unbiased estimator; its reciprocal is the
precision used as an inverse-variance weight by downstream weighted
least-squares reconstruction.

References:
- E. Roessl and R. Proksa, "K-edge imaging in x-ray computed tomography
  using multi-bin photon counting detectors", Phys. Med. Biol. 52 (2007)
- J. P. Schlomka et al., "Experimental feasibility of multi-energy
  photon-counting K-edge imaging in pre-clinical computed tomography",
  Phys. Med. Biol. 53 (2008)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from specdecomp.core.calibration import DecompositionCalibration
from specdecomp.core.errors import ConfigurationError, NumericDegeneracyError
from specdecomp.physics.forward_model import attenuated_spectrum

DEFAULT_MAX_CONDITION = 1e12


@dataclass
class CRLBResult:
    """
    Cramer-Rao lower bound at a decomposed solution.

    Attributes:
        variances: Lower bound on each material's variance, diag(F^-1)
        inverse_variances: Reciprocal of ``variances`` (precision weights)
        snr: |line integral| / sqrt(variance) per material
        fisher: Fisher information matrix (N_materials x N_materials)
        condition_number: 2-norm condition number of ``fisher``
    """

    variances: np.ndarray
    inverse_variances: np.ndarray
    snr: np.ndarray
    fisher: np.ndarray
    condition_number: float

    @property
    def standard_deviations(self) -> np.ndarray:
        return np.sqrt(self.variances)

    @property
    def covariance(self) -> np.ndarray:
        return np.linalg.inv(self.fisher)


def fisher_information(
    line_integrals: np.ndarray,
    counts: np.ndarray,
    calibration: DecompositionCalibration,
    incident: Optional[np.ndarray] = None,
    use_expected_counts: bool = False,
) -> np.ndarray:
    """
    Fisher information matrix of one pixel at ``line_integrals``.

    Parameters
    ----------
    line_integrals : np.ndarray
        Solution at which to evaluate, shape (N_materials,).
    counts : np.ndarray
        Measured counts y_b, shape (N_bins,).
    calibration : DecompositionCalibration
        Calibration tables.
    incident : np.ndarray, optional
        Incident spectrum; defaults to the calibration's global spectrum.
    use_expected_counts : bool
        Use the expected information (weights 1 / lambda_b) instead of the
        observed weights y_b / lambda_b**2.

    Returns
    -------
    np.ndarray
        Symmetric matrix, shape (N_materials, N_materials).

    Raises
    ------
    NumericDegeneracyError
        If a predicted bin count is non-positive where it carries weight.
    """
    spectrum = calibration.resolve_incident_spectrum(incident)
    a = np.asarray(line_integrals, dtype=float).ravel()
    y = np.asarray(counts, dtype=float).ravel()
    if a.size != calibration.n_materials or y.size != calibration.n_bins:
        raise ConfigurationError(
            f"Expected {calibration.n_materials} line integrals and {calibration.n_bins} counts, "
            f"got {a.size} and {y.size}"
        )

    response = calibration.detector_response
    mu = calibration.material_attenuations

    attenuated = attenuated_spectrum(a, spectrum, mu)
    lambdas = response @ attenuated

    numerator = lambdas if use_expected_counts else y
    active = numerator > 0.0
    if not np.all(np.isfinite(lambdas)) or np.any(lambdas[active] <= 0.0):
        raise NumericDegeneracyError("Predicted counts must be positive to evaluate the Fisher information")
    weights = np.zeros_like(lambdas)
    weights[active] = numerator[active] / lambdas[active] ** 2

    # d lambda_b / d a for every material at once, shape (N_bins, N_materials)
    partials = response @ (attenuated[:, np.newaxis] * mu.T)
    return partials.T @ (weights[:, np.newaxis] * partials)


def cramer_rao_lower_bound(
    line_integrals: np.ndarray,
    counts: np.ndarray,
    calibration: DecompositionCalibration,
    incident: Optional[np.ndarray] = None,
    use_expected_counts: bool = False,
    max_condition: float = DEFAULT_MAX_CONDITION,
) -> CRLBResult:
    """Invert the Fisher information and report per-material bounds.

    Raises
    ------
    NumericDegeneracyError
        For a singular, ill-conditioned (condition number above
        ``max_condition``) or non-finite Fisher matrix, and when the
        inverse has a non-positive diagonal.
    """
    fisher = fisher_information(
        line_integrals, counts, calibration, incident, use_expected_counts=use_expected_counts
    )
    if not np.all(np.isfinite(fisher)):
        raise NumericDegeneracyError("Fisher information contains non-finite entries")

    condition_number = float(np.linalg.cond(fisher))
    if not np.isfinite(condition_number) or condition_number > max_condition:
        raise NumericDegeneracyError(
            f"Fisher information is singular or ill-conditioned (condition number {condition_number:.3g})"
        )

    try:
        inverse = np.linalg.inv(fisher)
    except np.linalg.LinAlgError as exc:
        raise NumericDegeneracyError(f"Fisher information is singular: {exc}") from exc

    variances = np.diag(inverse).copy()
    if np.any(variances <= 0.0) or not np.all(np.isfinite(variances)):
        raise NumericDegeneracyError("Inverse Fisher information has a non-positive diagonal")

    a = np.asarray(line_integrals, dtype=float).ravel()
    return CRLBResult(
        variances=variances,
        inverse_variances=1.0 / variances,
        snr=np.abs(a) / np.sqrt(variances),
        fisher=fisher,
        condition_number=condition_number,
    )
