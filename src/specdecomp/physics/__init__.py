"""Forward model and synthetic data generation."""

from specdecomp.physics.forward_model import (
    attenuated_spectrum,
    count_jacobian,
    forward_model,
    predicted_counts,
)
from specdecomp.physics.simulation import synthesize_counts, synthetic_calibration

__all__ = [
    "attenuated_spectrum",
    "count_jacobian",
    "forward_model",
    "predicted_counts",
    "synthesize_counts",
    "synthetic_calibration",
]
