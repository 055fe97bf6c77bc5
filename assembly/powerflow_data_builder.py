"""
Power Flow Data Builder Module
==============================

Assembles a PowerFlowData container from a network model.

The builder orchestrates the indexer, the aggregators and the bus state
initializer, allocates the multi-timestep arrays and seeds the first
timestep column. It performs no iterative computation and has no side
effects apart from diagnostics.

Seeding rules
-------------
- bus type: replicated into every timestep column
- injections, withdrawals, voltage state, bounds: column 0 only
- remaining columns: zero injections/withdrawals, flat start voltages
  (magnitude 1, angle 0) and unbounded (-inf, inf) bounds
- branch flows: zero everywhere
"""

from typing import Any, Optional, Sequence

import numpy as np

from assembly.aggregation import (
    get_active_power_bounds,
    get_injections,
    get_reactive_power_bounds,
    get_withdrawals,
)
from assembly.bus_state import initialize_bus_data
from assembly.indexer import NetworkIndex, index_network
from core.diagnostics import Diagnostics
from core.powerflow_data import PowerFlowData
from matrices.adapter import MatrixAdapter
from matrices.branch_admittance import BranchAdmittances
from network.accessor import NetworkAccessor


def make_powerflow_data(
    network: NetworkAccessor,
    time_steps: int,
    power_network_matrix: Any,
    aux_network_matrix: Any = None,
    timestep_names: Optional[Sequence[str]] = None,
    calculate_loss_factors: bool = False,
    diagnostics: Optional[Diagnostics] = None,
    index: Optional[NetworkIndex] = None,
) -> PowerFlowData:
    """
    Build the PowerFlowData container of a network.

    Parameters
    ----------
    network : NetworkAccessor
        Source network model.
    time_steps : int
        Number of timesteps (columns) to allocate.
    power_network_matrix : Any
        Admittance matrix (AC) or sensitivity matrix (DC), stored by reference.
    aux_network_matrix : Any, optional
        Auxiliary matrix, stored by reference.
    timestep_names : Sequence[str], optional
        Label of each timestep. Defaults to "0", "1", ...
    calculate_loss_factors : bool, optional
        Whether the AC solver shall compute loss factors.
    diagnostics : Diagnostics, optional
        Sink for input-correction diagnostics. A fresh collector is created
        if omitted, so corrections are always reported as warnings.
    index : NetworkIndex, optional
        Precomputed lookups of ``network``. Computed if omitted.

    Returns
    -------
    data : PowerFlowData

    Raises
    ------
    ValueError
        If time_steps is not positive, the number of timestep names does not
        match, or the network is structurally invalid.
    """
    if time_steps < 1:
        raise ValueError(f"time_steps must be positive, got {time_steps}")
    if timestep_names is None:
        timestep_names = [str(t) for t in range(time_steps)]
    if len(timestep_names) != time_steps:
        raise ValueError(
            f"Got {len(timestep_names)} timestep names for {time_steps} timesteps."
        )
    if diagnostics is None:
        diagnostics = Diagnostics()
    if index is None:
        index = index_network(network)

    n_buses = index.n_buses
    n_branches = index.n_branches

    bus_type, bus_angles, bus_magnitude = initialize_bus_data(network, index, diagnostics)
    p_injection, q_injection = get_injections(network, index)
    p_withdrawal, q_withdrawal = get_withdrawals(network, index)
    q_bounds = get_reactive_power_bounds(network, index, diagnostics)
    p_bounds = get_active_power_bounds(network, index, diagnostics)

    # Define fields as matrices whose number of columns is equal to the number of time_steps
    bus_activepower_injection = np.zeros((n_buses, time_steps), dtype=np.float64)
    bus_reactivepower_injection = np.zeros((n_buses, time_steps), dtype=np.float64)
    bus_activepower_withdrawals = np.zeros((n_buses, time_steps), dtype=np.float64)
    bus_reactivepower_withdrawals = np.zeros((n_buses, time_steps), dtype=np.float64)
    bus_magnitude_t = np.ones((n_buses, time_steps), dtype=np.float64)
    bus_angles_t = np.zeros((n_buses, time_steps), dtype=np.float64)
    bus_reactivepower_bounds = np.empty((n_buses, time_steps, 2), dtype=np.float64)
    bus_reactivepower_bounds[..., 0] = -np.inf
    bus_reactivepower_bounds[..., 1] = np.inf
    bus_activepower_bounds = bus_reactivepower_bounds.copy()

    # Initial values related to first timestep allocated in the first column
    bus_activepower_injection[:, 0] = p_injection
    bus_reactivepower_injection[:, 0] = q_injection
    bus_activepower_withdrawals[:, 0] = p_withdrawal
    bus_reactivepower_withdrawals[:, 0] = q_withdrawal
    bus_magnitude_t[:, 0] = bus_magnitude
    bus_angles_t[:, 0] = bus_angles
    bus_reactivepower_bounds[:, 0, :] = q_bounds
    bus_activepower_bounds[:, 0, :] = p_bounds

    # Initial bus types are the same for every time period
    bus_type_t = np.repeat(bus_type[:, np.newaxis], time_steps, axis=1)

    return PowerFlowData(
        bus_lookup=dict(index.bus_lookup),
        branch_lookup=dict(index.branch_lookup),
        bus_names=list(index.bus_names),
        branch_names=list(index.branch_names),
        bus_activepower_injection=bus_activepower_injection,
        bus_reactivepower_injection=bus_reactivepower_injection,
        bus_activepower_withdrawals=bus_activepower_withdrawals,
        bus_reactivepower_withdrawals=bus_reactivepower_withdrawals,
        bus_reactivepower_bounds=bus_reactivepower_bounds,
        bus_activepower_bounds=bus_activepower_bounds,
        bus_type=bus_type_t,
        branch_type=list(index.branch_types),
        bus_magnitude=bus_magnitude_t,
        bus_angles=bus_angles_t,
        branch_activepower_flow_from_to=np.zeros((n_branches, time_steps), dtype=np.float64),
        branch_reactivepower_flow_from_to=np.zeros((n_branches, time_steps), dtype=np.float64),
        branch_activepower_flow_to_from=np.zeros((n_branches, time_steps), dtype=np.float64),
        branch_reactivepower_flow_to_from=np.zeros((n_branches, time_steps), dtype=np.float64),
        timestep_map=dict(enumerate(timestep_names)),
        valid_ix=np.ones(time_steps, dtype=bool),
        power_network_matrix=power_network_matrix,
        aux_network_matrix=aux_network_matrix,
        converged=np.zeros(time_steps, dtype=bool),
        loss_factors=np.zeros((n_buses, time_steps), dtype=np.float64) if calculate_loss_factors else None,
        calculate_loss_factors=calculate_loss_factors,
    )


def make_ac_powerflow_data(
    network: NetworkAccessor,
    admittance_matrix: Any,
    branch_admittances: Optional[BranchAdmittances] = None,
    time_steps: int = 1,
    timestep_names: Optional[Sequence[str]] = None,
    calculate_loss_factors: bool = False,
    diagnostics: Optional[Diagnostics] = None,
    index: Optional[NetworkIndex] = None,
) -> PowerFlowData:
    """
    Build PowerFlowData for the AC solver.

    Parameters
    ----------
    admittance_matrix : scipy.sparse matrix or ndarray
        Complex bus admittance matrix ordered by the dense bus index.
    branch_admittances : BranchAdmittances, optional
        Branch admittance matrices used to compute branch flows.

    See ``make_powerflow_data`` for the remaining parameters.
    """
    if index is None:
        index = index_network(network)
    if admittance_matrix.shape != (index.n_buses, index.n_buses):
        raise ValueError(
            f"Admittance matrix shape {admittance_matrix.shape} does not match "
            f"{index.n_buses} buses."
        )
    if branch_admittances is not None and branch_admittances.n_branches != index.n_branches:
        raise ValueError(
            f"Branch admittances cover {branch_admittances.n_branches} branches, "
            f"network has {index.n_branches}."
        )
    return make_powerflow_data(
        network,
        time_steps,
        admittance_matrix,
        branch_admittances,
        timestep_names=timestep_names,
        calculate_loss_factors=calculate_loss_factors,
        diagnostics=diagnostics,
        index=index,
    )


def make_dc_powerflow_data(
    network: NetworkAccessor,
    ptdf: MatrixAdapter,
    bus_susceptance: Any = None,
    time_steps: int = 1,
    timestep_names: Optional[Sequence[str]] = None,
    diagnostics: Optional[Diagnostics] = None,
    index: Optional[NetworkIndex] = None,
) -> PowerFlowData:
    """
    Build PowerFlowData for the DC solver.

    Parameters
    ----------
    ptdf : MatrixAdapter
        PTDF matrix with one row per branch and one column per bus, both in
        dense index order.
    bus_susceptance : scipy.sparse matrix or ndarray, optional
        Bus susceptance matrix used to compute DC voltage angles.

    See ``make_powerflow_data`` for the remaining parameters.
    """
    if index is None:
        index = index_network(network)
    if ptdf.shape != (index.n_branches, index.n_buses):
        raise ValueError(
            f"PTDF shape {ptdf.shape} does not match "
            f"({index.n_branches} branches, {index.n_buses} buses)."
        )
    row_axis, col_axis = ptdf.axes
    if list(row_axis) != index.branch_names or list(col_axis) != index.bus_names:
        raise ValueError("PTDF axes must follow the branch and bus index order.")
    return make_powerflow_data(
        network,
        time_steps,
        ptdf,
        bus_susceptance,
        timestep_names=timestep_names,
        calculate_loss_factors=False,
        diagnostics=diagnostics,
        index=index,
    )
