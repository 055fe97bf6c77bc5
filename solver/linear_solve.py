"""
Linear Solve Module
===================

Solution of the Newton correction equation J Δx = -F with a fallback for
singular Jacobians.

The Jacobian is factorized with SuperLU. A factorization that fails
(exactly singular) or whose U factor has a pivot ratio
min|U_ii| / max|U_ii| below NEAR_SINGULAR_PIVOT_RATIO is retried once on
the perturbed matrix

    J + NR_SINGULAR_SCALING · max(1, max|J|) · I

and the resulting solution is improved by iterative refinement against
the unperturbed J.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray
from scipy.sparse.linalg import splu

from core.definitions import NEAR_SINGULAR_PIVOT_RATIO, NR_SINGULAR_SCALING
from solver.refinement import RefinementParameters, iterative_refinement


@dataclass(frozen=True)
class LinearSolveResult:
    """
    Solution of a linear system.

    Attributes
    ----------
    x : NDArray[np.float64]
        Solution vector.
    perturbed : bool
        True if the singular-Jacobian fallback was used.
    refinement_passes : int
        Number of iterative refinement passes applied.
    """
    x: NDArray[np.float64]
    perturbed: bool = False
    refinement_passes: int = 0


def _factorize(A: sp.csc_matrix):
    """Return the SuperLU factorization of A, or None if it is (near) singular."""
    try:
        lu = splu(A)
    except RuntimeError:
        return None
    pivots = np.abs(lu.U.diagonal())
    if len(pivots) == 0:
        return lu
    max_pivot = pivots.max()
    if max_pivot == 0.0 or pivots.min() / max_pivot < NEAR_SINGULAR_PIVOT_RATIO:
        return None
    return lu


def solve_linear_system(
    J: sp.spmatrix,
    b: NDArray[np.float64],
    refinement: RefinementParameters = RefinementParameters(),
) -> Optional[LinearSolveResult]:
    """
    Solve J x = b.

    Parameters
    ----------
    J : scipy.sparse matrix
        Square system matrix.
    b : NDArray[np.float64]
        Right-hand side.
    refinement : RefinementParameters, optional
        Settings of the iterative refinement applied to the solution.

    Returns
    -------
    result : LinearSolveResult or None
        None if J contains non-finite entries or the perturbed retry fails
        as well.
    """
    J = sp.csc_matrix(J, dtype=np.float64)
    if not np.all(np.isfinite(J.data)) or not np.all(np.isfinite(b)):
        return None
    n = J.shape[0]
    if n == 0:
        return LinearSolveResult(x=np.zeros(0, dtype=np.float64))

    perturbed = False
    lu = _factorize(J)
    if lu is None:
        perturbed = True
        scale = max(1.0, float(np.abs(J.data).max(initial=0.0)))
        J_perturbed = (J + NR_SINGULAR_SCALING * scale * sp.identity(n, format="csc")).tocsc()
        try:
            lu = splu(J_perturbed)
        except RuntimeError:
            return None

    x = lu.solve(b)
    if not np.all(np.isfinite(x)):
        return None

    refined = iterative_refinement(J, lu.solve, b, x, refinement)
    return LinearSolveResult(
        x=refined.x,
        perturbed=perturbed,
        refinement_passes=refined.n_passes,
    )
