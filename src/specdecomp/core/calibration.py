"""Calibration tables shared by every pixel of a decomposition.

The tables are validated once, when the calibration is built, and stored
as read-only float64 arrays so a single instance can be handed to any
number of worker threads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from specdecomp.core.errors import ConfigurationError


def _frozen(values, name: str, ndim: int) -> np.ndarray:
    try:
        arr = np.array(values, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be numeric: {exc}") from exc
    if arr.ndim != ndim:
        raise ConfigurationError(f"{name} must be {ndim}-D, got shape {arr.shape}")
    if arr.size == 0:
        raise ConfigurationError(f"{name} must not be empty")
    if not np.all(np.isfinite(arr)):
        raise ConfigurationError(f"{name} contains non-finite values")
    arr.flags.writeable = False
    return arr


def validate_thresholds(thresholds: Sequence[int], n_energies: int, n_bins: Optional[int] = None) -> np.ndarray:
    """Check threshold bin edges against the energy grid.

    Edges must be integers, non-decreasing, start at or above 0 and end at
    exactly ``n_energies``. When ``n_bins`` is given the sequence must hold
    ``n_bins + 1`` edges.

    Returns
    -------
    np.ndarray
        Read-only int64 copy of the thresholds.
    """
    try:
        raw = np.asarray(thresholds)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Thresholds must be a sequence of integers: {exc}") from exc
    if raw.ndim != 1 or raw.size < 2:
        raise ConfigurationError("Thresholds must be a 1-D sequence with at least two edges")
    if raw.dtype.kind == "f":
        if not np.all(np.isfinite(raw)) or np.any(raw != np.round(raw)):
            raise ConfigurationError("Thresholds must be integer energy indices")
    elif raw.dtype.kind not in "iu":
        raise ConfigurationError(f"Thresholds must be integer energy indices, got dtype {raw.dtype}")
    edges = raw.astype(np.int64)

    if n_bins is not None and edges.size != n_bins + 1:
        raise ConfigurationError(
            f"Expected {n_bins + 1} thresholds for {n_bins} spectral bins, got {edges.size}"
        )
    if edges[0] < 0:
        raise ConfigurationError(f"First threshold must be >= 0, got {edges[0]}")
    if edges[-1] != n_energies:
        raise ConfigurationError(
            f"Last threshold must equal the number of energies ({n_energies}), got {edges[-1]}"
        )
    if np.any(np.diff(edges) < 0):
        raise ConfigurationError("Thresholds must be non-decreasing")
    edges.flags.writeable = False
    return edges


def bin_detector_response(fine_response: np.ndarray, thresholds: Sequence[int]) -> np.ndarray:
    """Group a fine-grid detector response into spectral bins.

    Parameters
    ----------
    fine_response : np.ndarray
        Response tabulated on the fine energy grid, shape
        (N_deposited_energies, N_energies). Row ``i`` is the probability
        density of depositing energy ``i`` for each incident energy.
    thresholds : sequence of int
        Bin edges on the deposited-energy axis, length N_bins + 1.

    Returns
    -------
    np.ndarray
        Binned response, shape (N_bins, N_energies), where row ``b`` sums
        fine rows ``thresholds[b]`` to ``thresholds[b + 1] - 1``.
    """
    fine = _frozen(fine_response, "fine_response", 2)
    edges = validate_thresholds(thresholds, fine.shape[0])
    cumulative = np.vstack([np.zeros((1, fine.shape[1])), np.cumsum(fine, axis=0)])
    return cumulative[edges[1:]] - cumulative[edges[:-1]]


@dataclass
class DecompositionCalibration:
    """
    Calibration constants for one acquisition setup.

    Attributes:
        detector_response: Response matrix R[b, e], shape (N_bins, N_energies)
        material_attenuations: Attenuation mu[m, e], shape (N_materials, N_energies)
        thresholds: Optional bin edges on the energy grid, length N_bins + 1
        incident_spectrum: Optional global incident fluence, shape (N_energies,)
        material_names: Optional labels, one per material
    """

    detector_response: np.ndarray
    material_attenuations: np.ndarray
    thresholds: Optional[np.ndarray] = None
    incident_spectrum: Optional[np.ndarray] = None
    material_names: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.detector_response = _frozen(self.detector_response, "detector_response", 2)
        self.material_attenuations = _frozen(self.material_attenuations, "material_attenuations", 2)

        n_bins, n_energies = self.detector_response.shape
        if self.material_attenuations.shape[1] != n_energies:
            raise ConfigurationError(
                f"material_attenuations has {self.material_attenuations.shape[1]} energies, "
                f"detector_response has {n_energies}"
            )

        if self.thresholds is not None:
            self.thresholds = validate_thresholds(self.thresholds, n_energies, n_bins)

        if self.incident_spectrum is not None:
            self.incident_spectrum = validate_incident_spectrum(self.incident_spectrum, n_energies)

        if self.material_names:
            self.material_names = [str(name) for name in self.material_names]
            if len(self.material_names) != self.n_materials:
                raise ConfigurationError(
                    f"Got {len(self.material_names)} material names for {self.n_materials} materials"
                )
        else:
            self.material_names = [f"material_{m}" for m in range(self.n_materials)]

    @classmethod
    def from_fine_response(
        cls,
        fine_response: np.ndarray,
        thresholds: Sequence[int],
        material_attenuations: np.ndarray,
        incident_spectrum: Optional[np.ndarray] = None,
        material_names: Optional[List[str]] = None,
    ) -> "DecompositionCalibration":
        """Build a calibration from a fine-grid response and threshold edges."""
        return cls(
            detector_response=bin_detector_response(fine_response, thresholds),
            material_attenuations=material_attenuations,
            thresholds=np.asarray(thresholds),
            incident_spectrum=incident_spectrum,
            material_names=list(material_names or []),
        )

    @property
    def n_materials(self) -> int:
        return self.material_attenuations.shape[0]

    @property
    def n_bins(self) -> int:
        return self.detector_response.shape[0]

    @property
    def n_energies(self) -> int:
        return self.detector_response.shape[1]

    def resolve_incident_spectrum(self, incident: Optional[np.ndarray] = None) -> np.ndarray:
        """Return ``incident`` validated, or the global spectrum when omitted."""
        if incident is None:
            if self.incident_spectrum is None:
                raise ConfigurationError(
                    "No incident spectrum supplied and the calibration has no global spectrum"
                )
            return self.incident_spectrum
        return validate_incident_spectrum(incident, self.n_energies, allow_stack=True)


def validate_incident_spectrum(incident, n_energies: int, allow_stack: bool = False) -> np.ndarray:
    """Check an incident spectrum (or a per-pixel stack of them)."""
    try:
        arr = np.array(incident, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"incident_spectrum must be numeric: {exc}") from exc
    if arr.ndim == 0 or (arr.ndim > 1 and not allow_stack):
        raise ConfigurationError(f"incident_spectrum must be 1-D, got shape {arr.shape}")
    if arr.shape[-1] != n_energies:
        raise ConfigurationError(
            f"incident_spectrum has {arr.shape[-1]} energies, expected {n_energies}"
        )
    if arr.ndim == 1:
        if not np.all(np.isfinite(arr)) or np.any(arr < 0):
            raise ConfigurationError("incident_spectrum must be finite and nonnegative")
    arr.flags.writeable = False
    return arr
