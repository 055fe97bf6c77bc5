"""
DC Power Flow Module
====================

Linearized (DC) power flow through a PTDF matrix adapter.

Mathematical Background
-----------------------
With the net active injection P = P_inj - P_wd of every bus and timestep,
the active branch flows are

    f_from_to = PTDF · P,    f_to_from = -f_from_to

Reactive flows are zero in the DC approximation. If a bus susceptance
matrix B is available, the bus angles follow from

    B[¬r, ¬r] θ[¬r] = P[¬r],   θ[r] = 0

with r the REF buses. Voltage magnitudes are left untouched.
"""

from typing import Optional, Sequence

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray
from scipy.sparse.linalg import splu

from core.definitions import BusType
from core.powerflow_data import PowerFlowData
from matrices.adapter import MatrixAdapter, multiply


def solve_dc_power_flow(
    data: PowerFlowData,
    time_steps: Optional[Sequence[int]] = None,
) -> NDArray[np.float64]:
    """
    Solve the DC power flow of the given timesteps in place.

    All requested timesteps are computed with a single matrix-matrix
    product and are marked converged.

    Parameters
    ----------
    data : PowerFlowData
        Container built by make_dc_powerflow_data.
    time_steps : Sequence[int], optional
        Timesteps to solve. Defaults to all of them.

    Returns
    -------
    flows : NDArray[np.float64]
        Active from-to flows, shape (n_branches, len(time_steps)).

    Raises
    ------
    ValueError
        If the container holds no MatrixAdapter or a timestep is out of range.
    """
    ptdf = data.power_network_matrix
    if not isinstance(ptdf, MatrixAdapter):
        raise ValueError("DC power flow needs a MatrixAdapter as power_network_matrix.")
    if time_steps is None:
        time_steps = range(data.time_steps)
    steps = np.asarray(list(time_steps), dtype=np.int64)
    for t in steps:
        data.check_timestep(int(t))
    if len(steps) == 0:
        return np.zeros((data.n_branches, 0), dtype=np.float64)

    P = data.bus_activepower_injection[:, steps] - data.bus_activepower_withdrawals[:, steps]
    flows = multiply(ptdf, P)

    data.branch_activepower_flow_from_to[:, steps] = flows
    data.branch_activepower_flow_to_from[:, steps] = -flows
    data.branch_reactivepower_flow_from_to[:, steps] = 0.0
    data.branch_reactivepower_flow_to_from[:, steps] = 0.0

    if data.aux_network_matrix is not None:
        _calculate_angles(data, steps, P)

    data.converged[steps] = True
    data.valid_ix[steps] = True
    return flows


def _calculate_angles(
    data: PowerFlowData,
    steps: NDArray[np.int64],
    P: NDArray[np.float64],
) -> None:
    """Write the DC bus angles of the given timesteps."""
    B = sp.csc_matrix(data.aux_network_matrix, dtype=np.float64)
    if B.shape != (data.n_buses, data.n_buses):
        raise ValueError(
            f"Bus susceptance matrix shape {B.shape} does not match {data.n_buses} buses."
        )

    # bus types are static across timesteps, factorize once per REF set
    factorizations = {}
    for k, t in enumerate(steps):
        non_ref = np.flatnonzero(data.bus_type[:, t] != BusType.REF)
        key = non_ref.tobytes()
        if key not in factorizations:
            factorizations[key] = splu(B[non_ref][:, non_ref].tocsc()) if len(non_ref) else None
        lu = factorizations[key]

        angles = np.zeros(data.n_buses, dtype=np.float64)
        if lu is not None:
            angles[non_ref] = lu.solve(P[non_ref, k])
        data.bus_angles[:, t] = angles
