"""Derivative-free simplex (Nelder-Mead) minimization of per-pixel costs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Union

import numpy as np
from scipy import optimize

from specdecomp.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Amoeba-style automatic simplex: 5% of a nonzero coordinate, a fixed step
# for zero coordinates.
RELATIVE_SIMPLEX_STEP = 0.05
ZERO_SIMPLEX_STEP = 0.00025


@dataclass
class SimplexSolution:
    """Container for simplex optimizer results."""

    x: np.ndarray
    fun: float
    iterations: int
    evaluations: int
    converged: bool
    message: str = ""
    history: List[np.ndarray] = field(default_factory=list)


def initial_simplex(
    initial_guess: np.ndarray,
    delta: Union[float, Sequence[float], None] = None,
) -> np.ndarray:
    """Build the (N + 1, N) starting simplex around ``initial_guess``.

    With ``delta`` None each vertex moves one coordinate by 5% of its value,
    or by 0.00025 when the coordinate is zero. Otherwise vertex ``i`` is
    ``initial_guess + delta_i * e_i``.
    """
    x0 = np.asarray(initial_guess, dtype=float)
    n = x0.size
    if delta is None:
        steps = np.where(x0 != 0.0, RELATIVE_SIMPLEX_STEP * x0, ZERO_SIMPLEX_STEP)
    else:
        steps = np.broadcast_to(np.asarray(delta, dtype=float), (n,))
        if np.any(steps == 0.0) or not np.all(np.isfinite(steps)):
            raise ConfigurationError("initial_simplex_delta must be finite and nonzero")
    simplex = np.tile(x0, (n + 1, 1))
    simplex[1:] += np.diag(steps)
    return simplex


class SimplexOptimizer:
    """
    Nelder-Mead minimizer with a fixed iteration budget.

    The optimizer holds configuration only; each call to :meth:`minimize`
    owns its vertices and counters, so one instance can serve any number
    of threads.

    Parameters
    ----------
    number_of_iterations : int
        Iteration cap (default 300).
    xatol : float
        Absolute spread of the simplex vertices accepted as converged.
    fatol : float
        Absolute spread of the cost over the vertices accepted as converged.
    initial_simplex_delta : float or sequence, optional
        Fixed per-coordinate simplex step. Defaults to the amoeba rule.
    nonnegative : bool
        Bound every parameter to [0, inf).
    """

    def __init__(
        self,
        number_of_iterations: int = 300,
        xatol: float = 1e-6,
        fatol: float = 1e-4,
        initial_simplex_delta: Union[float, Sequence[float], None] = None,
        nonnegative: bool = False,
    ) -> None:
        if int(number_of_iterations) < 1:
            raise ConfigurationError("number_of_iterations must be >= 1")
        if xatol <= 0 or fatol <= 0:
            raise ConfigurationError("xatol and fatol must be positive")
        self.number_of_iterations = int(number_of_iterations)
        self.xatol = float(xatol)
        self.fatol = float(fatol)
        self.initial_simplex_delta = initial_simplex_delta
        self.nonnegative = nonnegative

    def minimize(
        self,
        cost: Callable[[np.ndarray], float],
        initial_guess: np.ndarray,
        record_history: bool = False,
    ) -> SimplexSolution:
        """Minimize ``cost`` starting from ``initial_guess``.

        Returns the best vertex found. ``converged`` is False when the
        iteration budget ran out before both tolerances were met.
        """
        x0 = np.asarray(initial_guess, dtype=float).ravel()
        n_parameters = getattr(cost, "n_parameters", x0.size)
        if x0.size != n_parameters:
            raise ConfigurationError(
                f"initial guess has {x0.size} parameters, cost expects {n_parameters}"
            )
        if not np.all(np.isfinite(x0)):
            raise ConfigurationError("initial guess must be finite")

        bounds = None
        if self.nonnegative:
            x0 = np.maximum(x0, 0.0)
            bounds = optimize.Bounds(np.zeros(x0.size), np.full(x0.size, np.inf))

        history: List[np.ndarray] = []
        callback = (lambda xk: history.append(np.array(xk, copy=True))) if record_history else None

        result = optimize.minimize(
            cost,
            x0,
            method="Nelder-Mead",
            bounds=bounds,
            callback=callback,
            options={
                "maxiter": self.number_of_iterations,
                "xatol": self.xatol,
                "fatol": self.fatol,
                "initial_simplex": initial_simplex(x0, self.initial_simplex_delta),
                "adaptive": False,
            },
        )
        if not result.success:
            logger.debug(f"Simplex stopped without convergence: {result.message}")

        return SimplexSolution(
            x=np.asarray(result.x, dtype=float),
            fun=float(result.fun),
            iterations=int(result.nit),
            evaluations=int(result.nfev),
            converged=bool(result.success),
            message=str(result.message),
            history=history,
        )
