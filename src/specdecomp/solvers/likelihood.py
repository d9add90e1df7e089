"""
Poisson negative log-likelihood for one pixel's spectral counts.

The objective drops the counts-only normalizing term by default:

    L(a) = sum_b [lambda_b(a) - y_b * ln(lambda_b(a))]

An analytic gradient is not provided; the objective is meant for
derivative-free (zero-order) minimization.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
from scipy.special import gammaln, xlogy

from specdecomp.core.calibration import DecompositionCalibration
from specdecomp.core.errors import ConfigurationError, NumericDegeneracyError
from specdecomp.physics.forward_model import predicted_counts


def _admissible(lambdas: np.ndarray, counts: np.ndarray) -> bool:
    if not np.all(np.isfinite(lambdas)) or np.any(lambdas < 0.0):
        return False
    return not np.any((lambdas == 0.0) & (counts > 0.0))


class NegativeLogLikelihood:
    """
    Cost function binding shared calibration to one pixel's measurement.

    Instances carry per-pixel state (the bound counts, the incident
    spectrum and evaluation counters) and must not be shared between
    threads. The calibration itself is read-only and may be shared.

    Parameters
    ----------
    calibration : DecompositionCalibration
        Detector response and material attenuation tables.
    counts : np.ndarray
        Measured counts y_b, shape (N_bins,).
    incident : np.ndarray, optional
        Incident spectrum, shape (N_energies,). Defaults to the
        calibration's global spectrum.
    include_constant : bool
        Add sum_b ln(y_b!) so the value is the full Poisson NLL.
    strict : bool
        Raise NumericDegeneracyError on non-positive predicted counts
        instead of returning +inf.
    """

    def __init__(
        self,
        calibration: DecompositionCalibration,
        counts: np.ndarray,
        incident: Optional[np.ndarray] = None,
        include_constant: bool = False,
        strict: bool = False,
    ) -> None:
        self._calibration = calibration
        self._incident = calibration.resolve_incident_spectrum(incident)
        if self._incident.ndim != 1:
            raise ConfigurationError("NegativeLogLikelihood needs a single incident spectrum, not a stack")

        y = np.asarray(counts, dtype=float).ravel()
        if y.size != calibration.n_bins:
            raise ConfigurationError(
                f"counts length {y.size} != number of spectral bins {calibration.n_bins}"
            )
        self._counts = y
        self._constant = float(np.sum(gammaln(y + 1.0))) if include_constant else 0.0
        self.strict = strict
        self.n_evaluations = 0
        self.n_guarded_evaluations = 0

    @property
    def n_parameters(self) -> int:
        return self._calibration.n_materials

    @property
    def counts(self) -> np.ndarray:
        return self._counts

    @property
    def incident(self) -> np.ndarray:
        return self._incident

    @property
    def calibration(self) -> DecompositionCalibration:
        return self._calibration

    def expected_counts(self, line_integrals: np.ndarray) -> np.ndarray:
        """Forward-model prediction lambda for a candidate."""
        return predicted_counts(
            np.asarray(line_integrals, dtype=float),
            self._incident,
            self._calibration.detector_response,
            self._calibration.material_attenuations,
        )

    def value(self, line_integrals: np.ndarray) -> float:
        """Objective value at ``line_integrals``.

        Returns +inf for candidates whose predicted counts underflow to
        zero in a bin with measured counts (or are negative or non-finite)
        unless ``strict`` is set. Empty bins predicted at zero contribute 0.
        """
        self.n_evaluations += 1
        lambdas = self.expected_counts(line_integrals)
        if not _admissible(lambdas, self._counts):
            self.n_guarded_evaluations += 1
            if self.strict:
                raise NumericDegeneracyError(
                    f"Non-positive predicted counts at line integrals {np.asarray(line_integrals).tolist()}"
                )
            return float("inf")
        # xlogy gives 0 for empty bins
        return float(np.sum(lambdas - xlogy(self._counts, lambdas)) + self._constant)

    __call__ = value

    def deviance(self, line_integrals: np.ndarray) -> float:
        """Poisson deviance 2 * sum[lambda - y + y ln(y / lambda)]."""
        lambdas = self.expected_counts(line_integrals)
        if not _admissible(lambdas, self._counts):
            raise NumericDegeneracyError("Deviance undefined for non-positive predicted counts")
        y = self._counts
        return float(2.0 * np.sum(lambdas - y + xlogy(y, y) - xlogy(y, lambdas)))
