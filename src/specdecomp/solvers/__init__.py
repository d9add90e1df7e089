"""Solver package."""

from specdecomp.solvers.crlb import CRLBResult, cramer_rao_lower_bound, fisher_information
from specdecomp.solvers.likelihood import NegativeLogLikelihood
from specdecomp.solvers.simplex import SimplexOptimizer, SimplexSolution, initial_simplex

__all__ = [
    "CRLBResult",
    "cramer_rao_lower_bound",
    "fisher_information",
    "NegativeLogLikelihood",
    "SimplexOptimizer",
    "SimplexSolution",
    "initial_simplex",
]
