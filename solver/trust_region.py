"""
Trust Region Module
===================

Dogleg trust-region globalization of the Newton-Raphson iteration.

Mathematical Background
-----------------------
The merit function is m(x) = ||F(x)||². Around the current iterate the
linear model F(x + p) ≈ F + J p is trusted within a radius Δ. With the
gradient g = Jᵀ F the Cauchy point is

    p_c = -(||g||² / ||J g||²) · g

and the dogleg step is

    - the Newton step p_n if ||p_n|| <= Δ,
    - the scaled steepest descent step -Δ g / ||g|| if ||p_c|| >= Δ,
    - otherwise p_c + τ (p_n - p_c) with τ chosen so that ||p|| = Δ.

A step is accepted if the ratio of actual to predicted reduction

    ρ = (||F||² - ||F(x + p)||²) / (||F||² - ||F + J p||²)

reaches η. The radius is halved when ρ < HALVE_TRUST_REGION, doubled
(up to the maximum) when ρ > DOUBLE_TRUST_REGION and kept at least at the
step length when ρ > MAX_DOUBLE_TRUST_REGION.

References
----------
[1] Nocedal, Wright, "Numerical Optimization", 2nd ed., Ch. 4
"""

from dataclasses import dataclass
from typing import Callable

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray

from core.definitions import (
    DOUBLE_TRUST_REGION,
    HALVE_TRUST_REGION,
    MAX_DOUBLE_TRUST_REGION,
)


@dataclass(frozen=True)
class TrustRegionStep:
    """
    Outcome of one trust-region step.

    Attributes
    ----------
    x : NDArray[np.float64]
        New iterate (unchanged if the step was rejected).
    F : NDArray[np.float64]
        Mismatch at ``x``.
    radius : float
        Updated trust-region radius.
    accepted : bool
        Whether the step was accepted.
    ratio : float
        Actual over predicted reduction of the merit function.
    step_norm : float
        Euclidean norm of the trial step.
    """
    x: NDArray[np.float64]
    F: NDArray[np.float64]
    radius: float
    accepted: bool
    ratio: float
    step_norm: float


def dogleg_step(
    F: NDArray[np.float64],
    J: sp.spmatrix,
    newton_step: NDArray[np.float64],
    radius: float,
) -> NDArray[np.float64]:
    """
    Return the dogleg step for the given radius.

    Parameters
    ----------
    F : NDArray[np.float64]
        Mismatch at the current iterate.
    J : scipy.sparse matrix
        Jacobian at the current iterate.
    newton_step : NDArray[np.float64]
        Solution of J p = -F.
    radius : float
        Trust-region radius.
    """
    if np.linalg.norm(newton_step) <= radius:
        return newton_step

    g = J.T @ F
    g_norm = np.linalg.norm(g)
    if g_norm == 0.0:
        return newton_step * (radius / np.linalg.norm(newton_step))
    Jg_norm_sq = float(np.dot(J @ g, J @ g))
    if Jg_norm_sq == 0.0:
        return -radius * g / g_norm

    cauchy = -(g_norm ** 2 / Jg_norm_sq) * g
    cauchy_norm = np.linalg.norm(cauchy)
    if cauchy_norm >= radius:
        return -radius * g / g_norm

    # Solve ||p_c + tau (p_n - p_c)|| = radius for tau in [0, 1]
    d = newton_step - cauchy
    a = float(np.dot(d, d))
    b = 2.0 * float(np.dot(cauchy, d))
    c = cauchy_norm ** 2 - radius ** 2
    tau = (-b + np.sqrt(b ** 2 - 4.0 * a * c)) / (2.0 * a)
    return cauchy + tau * d


def update_radius(radius: float, ratio: float, step_norm: float, max_radius: float) -> float:
    """Return the trust-region radius after a step with the given ratio."""
    if ratio < HALVE_TRUST_REGION:
        return 0.5 * min(radius, step_norm)
    if ratio > DOUBLE_TRUST_REGION:
        return min(max(radius, 2.0 * step_norm), max_radius)
    if ratio > MAX_DOUBLE_TRUST_REGION:
        return min(max(radius, step_norm), max_radius)
    return radius


def trust_region_step(
    residual_fn: Callable[[NDArray[np.float64]], NDArray[np.float64]],
    x: NDArray[np.float64],
    F: NDArray[np.float64],
    J: sp.spmatrix,
    newton_step: NDArray[np.float64],
    radius: float,
    eta: float,
    max_radius: float,
) -> TrustRegionStep:
    """
    Take one dogleg trust-region step.

    Parameters
    ----------
    residual_fn : Callable
        Returns the mismatch F(x) for a state vector.
    x : NDArray[np.float64]
        Current iterate.
    F : NDArray[np.float64]
        Mismatch at ``x``.
    J : scipy.sparse matrix
        Jacobian at ``x``.
    newton_step : NDArray[np.float64]
        Solution of J p = -F.
    radius : float
        Current trust-region radius.
    eta : float
        Acceptance threshold of the reduction ratio.
    max_radius : float
        Upper bound of the radius.

    Returns
    -------
    step : TrustRegionStep
        Rejected steps return ``x`` and ``F`` unchanged with a reduced radius.
    """
    p = dogleg_step(F, J, newton_step, radius)
    step_norm = float(np.linalg.norm(p))

    x_new = x + p
    F_new = residual_fn(x_new)

    merit = float(np.dot(F, F))
    predicted_F = F + J @ p
    predicted = merit - float(np.dot(predicted_F, predicted_F))
    if np.all(np.isfinite(F_new)):
        actual = merit - float(np.dot(F_new, F_new))
        ratio = actual / predicted if predicted > 0.0 else -np.inf
    else:
        ratio = -np.inf

    new_radius = update_radius(radius, ratio, step_norm, max_radius)
    if ratio >= eta:
        return TrustRegionStep(x_new, F_new, new_radius, True, ratio, step_norm)
    return TrustRegionStep(x, F, new_radius, False, ratio, step_norm)
