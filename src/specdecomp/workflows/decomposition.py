"""
Per-pixel spectral decomposition workflow.

Each pixel is an independent inverse problem: bind a Poisson negative
log-likelihood to the pixel's counts and incident spectrum, minimize it
with the simplex optimizer from the pixel's initial guess, then bound the
variance of the solution with the Cramer-Rao lower bound.

Pixels are grouped into blocks and dispatched through :func:`parallel_map`.
Calibration tables are read-only and shared; every block builds its own
cost instances. Numeric trouble in one pixel is recorded in that pixel's
status and never interrupts the rest of the image.
"""

from __future__ import annotations

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from specdecomp.core.calibration import DecompositionCalibration
from specdecomp.core.errors import ConfigurationError, ConvergenceWarning, NumericDegeneracyError
from specdecomp.solvers.crlb import DEFAULT_MAX_CONDITION, cramer_rao_lower_bound
from specdecomp.solvers.likelihood import NegativeLogLikelihood
from specdecomp.solvers.simplex import SimplexOptimizer

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class DecompositionConfig:
    """
    Configuration for spectral decomposition.

    Attributes:
        number_of_iterations: Simplex iteration cap per pixel
        xatol: Simplex vertex-spread tolerance
        fatol: Simplex cost-spread tolerance
        initial_simplex_delta: Fixed simplex step (None = automatic)
        nonnegative: Constrain line integrals to be >= 0
        compute_variances: Evaluate the Cramer-Rao lower bound
        use_expected_fisher: CRLB with expected instead of observed information
        max_condition: Largest Fisher condition number accepted
        strict_likelihood: Fail a pixel on the first non-positive prediction
        max_workers: Worker threads (1 = run inline)
        block_size: Pixels per work item
    """

    number_of_iterations: int = 300
    xatol: float = 1e-6
    fatol: float = 1e-4
    initial_simplex_delta: Optional[float] = None
    nonnegative: bool = False
    compute_variances: bool = True
    use_expected_fisher: bool = False
    max_condition: float = DEFAULT_MAX_CONDITION
    strict_likelihood: bool = False
    max_workers: int = 1
    block_size: int = 256

    def __post_init__(self) -> None:
        if self.number_of_iterations < 1:
            raise ConfigurationError("number_of_iterations must be >= 1")
        if self.xatol <= 0 or self.fatol <= 0:
            raise ConfigurationError("xatol and fatol must be positive")
        if self.max_condition <= 1:
            raise ConfigurationError("max_condition must be > 1")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be >= 1")
        if self.block_size < 1:
            raise ConfigurationError("block_size must be >= 1")

    def make_optimizer(self) -> SimplexOptimizer:
        return SimplexOptimizer(
            number_of_iterations=self.number_of_iterations,
            xatol=self.xatol,
            fatol=self.fatol,
            initial_simplex_delta=self.initial_simplex_delta,
            nonnegative=self.nonnegative,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DecompositionConfig":
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**data)


# =============================================================================
# Results
# =============================================================================

class PixelStatus(IntEnum):
    """Outcome of one pixel's decomposition."""

    OK = 0
    NOT_CONVERGED = 1  # iteration budget exhausted, best point kept
    DEGENERATE_FISHER = 2  # solution kept, variance unavailable
    NONPOSITIVE_PREDICTION = 3  # log singularity, no solution
    INVALID_INPUT = 4  # negative or non-finite pixel inputs


@dataclass
class PixelResult:
    """Decomposition of a single pixel."""

    line_integrals: np.ndarray
    inverse_variances: Optional[np.ndarray]
    status: PixelStatus
    converged: bool = False
    iterations: int = 0
    cost: float = float("nan")

    @property
    def variances(self) -> Optional[np.ndarray]:
        if self.inverse_variances is None:
            return None
        return 1.0 / self.inverse_variances


@dataclass
class DecompositionResult:
    """
    Decomposition of a stack of pixels.

    Attributes:
        line_integrals: Decomposed line integrals, shape (..., N_materials)
        inverse_variances: CRLB precision weights, shape (..., N_materials),
            or None when variances were not requested
        status: PixelStatus codes, shape (...)
        converged: Whether the simplex met its tolerances, shape (...)
        iterations: Simplex iterations used, shape (...)
        cost: Final cost value, shape (...)
        material_names: Labels of the material axis
    """

    line_integrals: np.ndarray
    inverse_variances: Optional[np.ndarray]
    status: np.ndarray
    converged: np.ndarray
    iterations: np.ndarray
    cost: np.ndarray
    material_names: List[str] = field(default_factory=list)

    @property
    def pixel_shape(self) -> Tuple[int, ...]:
        return tuple(self.status.shape)

    @property
    def n_pixels(self) -> int:
        return int(self.status.size)

    @property
    def variances(self) -> Optional[np.ndarray]:
        if self.inverse_variances is None:
            return None
        return 1.0 / self.inverse_variances

    @property
    def failure_counts(self) -> Dict[str, int]:
        """Number of pixels per non-OK status."""
        counts: Dict[str, int] = {}
        for status in PixelStatus:
            if status is PixelStatus.OK:
                continue
            n = int(np.count_nonzero(self.status == status))
            if n:
                counts[status.name] = n
        return counts

    @property
    def n_failed(self) -> int:
        return int(np.count_nonzero(self.status != PixelStatus.OK))

    @property
    def valid_mask(self) -> np.ndarray:
        """Pixels with a usable line-integral estimate."""
        return np.all(np.isfinite(self.line_integrals), axis=-1)

    def to_dataframe(self):
        """Flatten the per-pixel results into a pandas DataFrame."""
        try:
            import pandas as pd
        except ImportError:
            raise ImportError("pandas required for DataFrame output")

        n_materials = self.line_integrals.shape[-1]
        names = self.material_names or [f"material_{m}" for m in range(n_materials)]
        flat_a = self.line_integrals.reshape(-1, n_materials)
        index = np.indices(self.pixel_shape).reshape(len(self.pixel_shape), -1).T

        columns: Dict[str, Any] = {}
        for axis in range(index.shape[1]):
            columns[f"index_{axis}"] = index[:, axis]
        for m, name in enumerate(names):
            columns[name] = flat_a[:, m]
        if self.inverse_variances is not None:
            flat_w = self.inverse_variances.reshape(-1, n_materials)
            for m, name in enumerate(names):
                columns[f"{name}_inverse_variance"] = flat_w[:, m]
        columns["status"] = [PixelStatus(code).name for code in self.status.ravel()]
        columns["converged"] = self.converged.ravel()
        columns["iterations"] = self.iterations.ravel()
        columns["cost"] = self.cost.ravel()
        return pd.DataFrame(columns)


# =============================================================================
# Parallel map
# =============================================================================

def parallel_map(function: Callable[[T], R], items: Sequence[T], max_workers: int = 1) -> List[R]:
    """Apply ``function`` to every item, preserving order.

    Runs inline for ``max_workers == 1``; otherwise dispatches the items to
    a thread pool. An exception raised by ``function`` propagates to the
    caller.
    """
    if max_workers <= 1 or len(items) <= 1:
        return [function(item) for item in items]

    results: List[Optional[R]] = [None] * len(items)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_index = {executor.submit(function, item): i for i, item in enumerate(items)}
        for future in as_completed(future_to_index):
            results[future_to_index[future]] = future.result()
    return results  # type: ignore[return-value]


# =============================================================================
# Per-pixel decomposition
# =============================================================================

def _invalid_pixel(n_materials: int, status: PixelStatus, with_variances: bool) -> PixelResult:
    nan = np.full(n_materials, np.nan)
    return PixelResult(
        line_integrals=nan,
        inverse_variances=nan.copy() if with_variances else None,
        status=status,
    )


def decompose_pixel(
    counts: np.ndarray,
    calibration: DecompositionCalibration,
    initial_guess: Optional[np.ndarray] = None,
    incident: Optional[np.ndarray] = None,
    config: Optional[DecompositionConfig] = None,
    optimizer: Optional[SimplexOptimizer] = None,
) -> PixelResult:
    """
    Decompose one pixel's spectral counts into material line integrals.

    Parameters
    ----------
    counts : np.ndarray
        Measured counts, shape (N_bins,).
    calibration : DecompositionCalibration
        Shared calibration tables.
    initial_guess : np.ndarray, optional
        Starting line integrals, shape (N_materials,). Defaults to zeros.
    incident : np.ndarray, optional
        Pixel incident spectrum; defaults to the calibration's global one.
    config : DecompositionConfig, optional
        Decomposition settings.
    optimizer : SimplexOptimizer, optional
        Pre-built optimizer (reentrant, may be shared between pixels).

    Returns
    -------
    PixelResult
        Per-pixel numeric failures are reported through ``status``.
    """
    if config is None:
        config = DecompositionConfig()
    if optimizer is None:
        optimizer = config.make_optimizer()

    n_materials = calibration.n_materials
    y = np.asarray(counts, dtype=float).ravel()
    x0 = np.zeros(n_materials) if initial_guess is None else np.asarray(initial_guess, dtype=float).ravel()
    if incident is None:
        spectrum = calibration.resolve_incident_spectrum(None)
    else:
        spectrum = np.asarray(incident, dtype=float).ravel()
    if x0.size != n_materials or y.size != calibration.n_bins or spectrum.size != calibration.n_energies:
        raise ConfigurationError(
            f"Pixel expects {calibration.n_bins} counts, {n_materials} initial values and "
            f"{calibration.n_energies} spectrum entries, got {y.size}, {x0.size} and {spectrum.size}"
        )

    if (
        not np.all(np.isfinite(y)) or np.any(y < 0)
        or not np.all(np.isfinite(x0))
        or not np.all(np.isfinite(spectrum)) or np.any(spectrum < 0)
    ):
        return _invalid_pixel(n_materials, PixelStatus.INVALID_INPUT, config.compute_variances)

    cost = NegativeLogLikelihood(calibration, y, spectrum, strict=config.strict_likelihood)
    try:
        solution = optimizer.minimize(cost, x0)
    except NumericDegeneracyError as exc:
        logger.debug(f"Likelihood singularity: {exc}")
        return _invalid_pixel(n_materials, PixelStatus.NONPOSITIVE_PREDICTION, config.compute_variances)

    if not np.isfinite(solution.fun):
        return _invalid_pixel(n_materials, PixelStatus.NONPOSITIVE_PREDICTION, config.compute_variances)

    status = PixelStatus.OK if solution.converged else PixelStatus.NOT_CONVERGED
    inverse_variances = None
    if config.compute_variances:
        try:
            bound = cramer_rao_lower_bound(
                solution.x,
                y,
                calibration,
                spectrum,
                use_expected_counts=config.use_expected_fisher,
                max_condition=config.max_condition,
            )
            inverse_variances = bound.inverse_variances
        except NumericDegeneracyError as exc:
            logger.debug(f"CRLB unavailable: {exc}")
            inverse_variances = np.full(n_materials, np.nan)
            status = PixelStatus.DEGENERATE_FISHER

    return PixelResult(
        line_integrals=solution.x,
        inverse_variances=inverse_variances,
        status=status,
        converged=solution.converged,
        iterations=solution.iterations,
        cost=solution.fun,
    )


# =============================================================================
# Image decomposition
# =============================================================================

def _pixel_stack(values: np.ndarray, pixel_shape: Tuple[int, ...], length: int, name: str) -> np.ndarray:
    """Broadcast a single vector or a per-pixel stack to (N_pixels, length)."""
    arr = np.asarray(values, dtype=float)
    if arr.shape == (length,):
        return np.broadcast_to(arr, (int(np.prod(pixel_shape, dtype=int)), length))
    if arr.shape != tuple(pixel_shape) + (length,):
        raise ConfigurationError(
            f"{name} must have shape ({length},) or {tuple(pixel_shape) + (length,)}, got {arr.shape}"
        )
    return arr.reshape(-1, length)


def decompose_projections(
    spectral_counts: np.ndarray,
    calibration: DecompositionCalibration,
    initial_guess: Optional[np.ndarray] = None,
    incident_spectrum: Optional[np.ndarray] = None,
    config: Optional[DecompositionConfig] = None,
) -> DecompositionResult:
    """
    Decompose a stack of spectral projections pixel by pixel.

    Parameters
    ----------
    spectral_counts : np.ndarray
        Measured counts, shape (..., N_bins).
    calibration : DecompositionCalibration
        Shared calibration tables.
    initial_guess : np.ndarray, optional
        Starting line integrals, shape (N_materials,) for every pixel or
        (..., N_materials) per pixel. Defaults to zeros.
    incident_spectrum : np.ndarray, optional
        Incident spectrum, shape (N_energies,) or (..., N_energies).
        Defaults to the calibration's global spectrum.
    config : DecompositionConfig, optional
        Decomposition settings.

    Returns
    -------
    DecompositionResult

    Raises
    ------
    ConfigurationError
        On any shape mismatch, before a single pixel is processed.
    """
    if config is None:
        config = DecompositionConfig()

    counts = np.asarray(spectral_counts, dtype=float)
    if counts.ndim < 1 or counts.shape[-1] != calibration.n_bins:
        raise ConfigurationError(
            f"spectral_counts must have {calibration.n_bins} bins on the last axis, got shape {counts.shape}"
        )
    pixel_shape = counts.shape[:-1]
    n_pixels = int(np.prod(pixel_shape, dtype=int))
    n_materials = calibration.n_materials

    flat_counts = counts.reshape(-1, calibration.n_bins)
    flat_initial = _pixel_stack(
        np.zeros(n_materials) if initial_guess is None else initial_guess,
        pixel_shape,
        n_materials,
        "initial_guess",
    )
    spectrum = calibration.resolve_incident_spectrum(incident_spectrum)
    flat_incident = _pixel_stack(spectrum, pixel_shape, calibration.n_energies, "incident_spectrum")

    optimizer = config.make_optimizer()
    logger.info(
        f"Decomposing {n_pixels} pixels into {n_materials} materials "
        f"({calibration.n_bins} bins, {calibration.n_energies} energies, "
        f"{config.number_of_iterations} iterations, {config.max_workers} workers)"
    )

    def process_block(block: range) -> List[PixelResult]:
        return [
            decompose_pixel(
                flat_counts[i],
                calibration,
                flat_initial[i],
                flat_incident[i],
                config=config,
                optimizer=optimizer,
            )
            for i in block
        ]

    blocks = [range(start, min(start + config.block_size, n_pixels)) for start in range(0, n_pixels, config.block_size)]
    block_results = parallel_map(process_block, blocks, config.max_workers)
    pixels = [pixel for block in block_results for pixel in block]

    line_integrals = np.full((n_pixels, n_materials), np.nan)
    inverse_variances = np.full((n_pixels, n_materials), np.nan) if config.compute_variances else None
    status = np.zeros(n_pixels, dtype=np.int8)
    converged = np.zeros(n_pixels, dtype=bool)
    iterations = np.zeros(n_pixels, dtype=np.int32)
    cost = np.full(n_pixels, np.nan)
    for i, pixel in enumerate(pixels):
        line_integrals[i] = pixel.line_integrals
        if inverse_variances is not None and pixel.inverse_variances is not None:
            inverse_variances[i] = pixel.inverse_variances
        status[i] = int(pixel.status)
        converged[i] = pixel.converged
        iterations[i] = pixel.iterations
        cost[i] = pixel.cost
        if pixel.status is not PixelStatus.OK:
            logger.debug(f"Pixel {np.unravel_index(i, pixel_shape) if pixel_shape else ()}: {pixel.status.name}")

    result = DecompositionResult(
        line_integrals=line_integrals.reshape(pixel_shape + (n_materials,)),
        inverse_variances=(
            inverse_variances.reshape(pixel_shape + (n_materials,)) if inverse_variances is not None else None
        ),
        status=status.reshape(pixel_shape),
        converged=converged.reshape(pixel_shape),
        iterations=iterations.reshape(pixel_shape),
        cost=cost.reshape(pixel_shape),
        material_names=list(calibration.material_names),
    )

    failures = result.failure_counts
    if failures:
        logger.warning(f"{result.n_failed} of {n_pixels} pixels flagged: {failures}")
    else:
        logger.info(f"Decomposed {n_pixels} pixels without failures")

    n_not_converged = int(np.count_nonzero(~result.converged & result.valid_mask))
    if n_not_converged:
        warnings.warn(
            f"{n_not_converged} of {n_pixels} pixels did not converge within "
            f"{config.number_of_iterations} iterations",
            ConvergenceWarning,
        )
    return result
