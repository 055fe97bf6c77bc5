"""
Loss Factors Module
===================

Marginal loss factors of the buses at a converged AC operating point.

Mathematical Background
-----------------------
The REF bus covers the network losses. Injecting one additional unit of
active power at bus i changes the REF-bus injection by

    ∂P_ref/∂P_i = (J^{-T} g)_i,   with g = ∂P_ref/∂x

where J is the power flow Jacobian at the solution and x its state
vector. The loss factor of bus i is the change of the total losses,

    LF_i = ∂P_loss/∂P_i = 1 + (J^{-T} g)_i

For a lossless network all loss factors are zero. The REF bus itself has
loss factor zero by definition; PV and PQ buses take the value above.
"""

from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy.sparse.linalg import splu

from solver.jacobian import PowerFlowJacobian


def calculate_loss_factors(
    jacobian: PowerFlowJacobian,
    V: NDArray[np.complex128],
) -> Optional[NDArray[np.float64]]:
    """
    Compute the loss factor of every bus.

    Parameters
    ----------
    jacobian : PowerFlowJacobian
        Jacobian whose bus classification matches the solution.
    V : NDArray[np.complex128]
        Converged complex bus voltages.

    Returns
    -------
    loss_factors : NDArray[np.float64] or None
        One value per bus, or None if the transposed Jacobian is singular.
    """
    n_buses = len(V)
    loss_factors = np.zeros(n_buses, dtype=np.float64)
    if jacobian.x_size == 0:
        return loss_factors

    J = jacobian.build(V)
    g = jacobian.ref_active_power_gradient(V)
    try:
        lam = splu(J.T.tocsc()).solve(g)
    except RuntimeError:
        return None

    loss_factors[jacobian.pvpq] = 1.0 + lam[:jacobian.n_theta]
    return loss_factors
