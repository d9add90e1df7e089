"""Core calibration tables, errors and provenance helpers."""

from specdecomp.core.calibration import (
    DecompositionCalibration,
    bin_detector_response,
    validate_incident_spectrum,
    validate_thresholds,
)
from specdecomp.core.errors import (
    ConfigurationError,
    ConvergenceWarning,
    DecompositionError,
    NumericDegeneracyError,
)

__all__ = [
    "DecompositionCalibration",
    "bin_detector_response",
    "validate_incident_spectrum",
    "validate_thresholds",
    "ConfigurationError",
    "ConvergenceWarning",
    "DecompositionError",
    "NumericDegeneracyError",
]
