"""
Iterative Refinement Module
===========================

Improves the solution of a linear system A x = b obtained from an
inexact (e.g. perturbed) factorization.

Each pass computes the residual r = b - A x against the true matrix,
solves for a correction with the available factorization and updates
x <- x + d. Passes stop once the relative residual ||r|| / ||b|| drops
below the tolerance, when a pass no longer improves the residual, or after
the maximum number of passes. The best solution seen is returned.
"""

from dataclasses import dataclass
from typing import Callable

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray

from core.definitions import (
    DEFAULT_REFINEMENT_EPS,
    DEFAULT_REFINEMENT_MAX_ITER,
    DEFAULT_REFINEMENT_THRESHOLD,
)


@dataclass(frozen=True)
class RefinementParameters:
    """
    Configuration of the iterative refinement.

    Attributes
    ----------
    threshold : float
        Refinement only runs if the initial relative residual exceeds this.
    max_iterations : int
        Maximum number of refinement passes.
    tolerance : float
        Relative residual at which refinement stops.
    """
    threshold: float = DEFAULT_REFINEMENT_THRESHOLD
    max_iterations: int = DEFAULT_REFINEMENT_MAX_ITER
    tolerance: float = DEFAULT_REFINEMENT_EPS

    def __post_init__(self) -> None:
        """Validate parameters after initialisation."""
        if self.threshold < 0:
            raise ValueError(f"threshold must be non-negative, got {self.threshold}")
        if self.max_iterations < 0:
            raise ValueError(f"max_iterations must be non-negative, got {self.max_iterations}")
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance}")


@dataclass(frozen=True)
class RefinementResult:
    """
    Outcome of the iterative refinement.

    Attributes
    ----------
    x : NDArray[np.float64]
        Refined solution.
    n_passes : int
        Number of refinement passes performed (0 if none was needed).
    residual_norm : float
        Relative residual ||b - A x|| / ||b|| of the returned solution.
    """
    x: NDArray[np.float64]
    n_passes: int
    residual_norm: float


def _relative_residual(A, x: NDArray[np.float64], b: NDArray[np.float64], b_norm: float):
    r = b - A @ x
    return r, np.linalg.norm(r) / b_norm


def iterative_refinement(
    A: sp.spmatrix,
    solve: Callable[[NDArray[np.float64]], NDArray[np.float64]],
    b: NDArray[np.float64],
    x: NDArray[np.float64],
    params: RefinementParameters = RefinementParameters(),
) -> RefinementResult:
    """
    Refine an approximate solution of A x = b.

    Parameters
    ----------
    A : scipy.sparse matrix or ndarray
        True system matrix used for the residual.
    solve : Callable
        Approximate solver for A d = r (e.g. a perturbed LU factorization).
    b : NDArray[np.float64]
        Right-hand side.
    x : NDArray[np.float64]
        Initial approximate solution.
    params : RefinementParameters, optional
        Thresholds and pass limit.

    Returns
    -------
    result : RefinementResult
    """
    b_norm = np.linalg.norm(b)
    if b_norm == 0.0:
        return RefinementResult(x=np.zeros_like(x), n_passes=0, residual_norm=0.0)

    r, rel = _relative_residual(A, x, b, b_norm)
    if not rel > params.threshold:
        return RefinementResult(x=x, n_passes=0, residual_norm=float(rel))

    best_x, best_rel = x, rel
    n_passes = 0
    for _ in range(params.max_iterations):
        if best_rel < params.tolerance:
            break
        d = solve(r)
        candidate = best_x + d
        n_passes += 1
        r_new, rel_new = _relative_residual(A, candidate, b, b_norm)
        if not np.isfinite(rel_new) or rel_new >= best_rel:
            break
        best_x, best_rel, r = candidate, rel_new, r_new

    return RefinementResult(x=best_x, n_passes=n_passes, residual_norm=float(best_rel))
