"""
Tests for the Nelder-Mead simplex optimizer.
"""

import pytest
import numpy as np

from specdecomp.core.errors import ConfigurationError
from specdecomp.physics.forward_model import forward_model
from specdecomp.physics.simulation import synthetic_calibration
from specdecomp.solvers.likelihood import NegativeLogLikelihood
from specdecomp.solvers.simplex import (
    RELATIVE_SIMPLEX_STEP,
    ZERO_SIMPLEX_STEP,
    SimplexOptimizer,
    initial_simplex,
)


def _bowl(x):
    return (x[0] - 1.0) ** 2 + 4.0 * (x[1] + 2.0) ** 2


class TestInitialSimplex:
    """Tests for the starting simplex."""

    def test_automatic_steps(self):
        simplex = initial_simplex(np.array([2.0, 0.0]))
        assert simplex.shape == (3, 2)
        np.testing.assert_array_equal(simplex[0], [2.0, 0.0])
        np.testing.assert_allclose(simplex[1], [2.0 * (1 + RELATIVE_SIMPLEX_STEP), 0.0])
        np.testing.assert_allclose(simplex[2], [2.0, ZERO_SIMPLEX_STEP])

    def test_fixed_delta(self):
        simplex = initial_simplex(np.zeros(3), delta=0.1)
        np.testing.assert_allclose(simplex[1:], 0.1 * np.eye(3))

    def test_zero_delta_rejected(self):
        with pytest.raises(ConfigurationError):
            initial_simplex(np.zeros(2), delta=0.0)


class TestSimplexOptimizer:
    """Tests for minimization."""

    def test_minimizes_quadratic(self):
        solution = SimplexOptimizer().minimize(_bowl, np.zeros(2))
        assert solution.converged
        np.testing.assert_allclose(solution.x, [1.0, -2.0], atol=1e-4)
        assert solution.fun == pytest.approx(0.0, abs=1e-4)
        assert 0 < solution.iterations <= 300
        assert solution.evaluations > solution.iterations

    def test_deterministic(self):
        optimizer = SimplexOptimizer()
        first = optimizer.minimize(_bowl, np.array([0.3, 0.3]))
        second = optimizer.minimize(_bowl, np.array([0.3, 0.3]))
        np.testing.assert_array_equal(first.x, second.x)
        assert first.iterations == second.iterations

    def test_budget_exhaustion_flagged(self):
        solution = SimplexOptimizer(number_of_iterations=5).minimize(_bowl, np.zeros(2))
        assert not solution.converged
        assert solution.iterations <= 5
        assert np.all(np.isfinite(solution.x))
        assert solution.fun <= _bowl(np.zeros(2))

    def test_history(self):
        solution = SimplexOptimizer(number_of_iterations=20).minimize(_bowl, np.zeros(2), record_history=True)
        assert len(solution.history) == solution.iterations

    def test_nonnegative_bound(self):
        optimizer = SimplexOptimizer(nonnegative=True)
        solution = optimizer.minimize(lambda x: (x[0] + 1.0) ** 2 + (x[1] - 2.0) ** 2, np.array([0.5, 0.5]))
        assert np.all(solution.x >= 0.0)
        assert solution.x[0] == pytest.approx(0.0, abs=1e-4)
        assert solution.x[1] == pytest.approx(2.0, abs=1e-3)

    def test_optimizer_is_reusable(self):
        optimizer = SimplexOptimizer()
        a = optimizer.minimize(_bowl, np.zeros(2))
        b = optimizer.minimize(lambda x: (x[0] - 3.0) ** 2 + (x[1] - 3.0) ** 2, np.zeros(2))
        np.testing.assert_allclose(a.x, [1.0, -2.0], atol=1e-4)
        np.testing.assert_allclose(b.x, [3.0, 3.0], atol=1e-4)

    def test_decomposes_noiseless_pixel(self):
        calibration = synthetic_calibration()
        truth = np.array([1.0, 0.5])
        cost = NegativeLogLikelihood(calibration, forward_model(truth, calibration))
        solution = SimplexOptimizer().minimize(cost, np.zeros(2))
        np.testing.assert_allclose(solution.x, truth, atol=1e-3)


class TestSimplexValidation:
    """Tests for configuration errors."""

    def test_guess_size_checked_against_cost(self):
        cost = NegativeLogLikelihood(synthetic_calibration(), np.ones(2))
        with pytest.raises(ConfigurationError, match="parameters"):
            SimplexOptimizer().minimize(cost, np.zeros(3))

    def test_non_finite_guess(self):
        with pytest.raises(ConfigurationError):
            SimplexOptimizer().minimize(_bowl, np.array([np.nan, 0.0]))

    @pytest.mark.parametrize(
        "kwargs",
        [{"number_of_iterations": 0}, {"xatol": 0.0}, {"fatol": -1.0}],
    )
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ConfigurationError):
            SimplexOptimizer(**kwargs)
