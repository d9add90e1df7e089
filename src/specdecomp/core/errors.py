"""Exception types raised by the decomposition engine."""

from __future__ import annotations


class DecompositionError(Exception):
    """Base class for all specdecomp errors."""
    pass


class ConfigurationError(DecompositionError, ValueError):
    """Invalid calibration, thresholds or configuration detected at setup.

    Always raised before any pixel is processed.
    """
    pass


class NumericDegeneracyError(DecompositionError, ArithmeticError):
    """Per-pixel numeric failure.

    Raised for a singular or ill-conditioned Fisher information matrix and
    for non-positive predicted counts reaching the likelihood logarithm.
    """
    pass


class ConvergenceWarning(UserWarning):
    """Emitted when pixels exhaust the simplex iteration budget."""
    pass
