"""
Assembly Module
===============

Turns a network model into the flat, time-indexed arrays of PowerFlowData.

Functions
---------
index_network
    Dense bus and branch lookups of a network.
get_injections
    Per-bus injection of generation-like devices.
get_withdrawals
    Per-bus withdrawal of loads.
get_reactive_power_bounds
    Per-bus aggregated reactive injection bounds.
get_active_power_bounds
    Per-bus aggregated active injection bounds.
initialize_bus_data
    Initial bus type, angle and magnitude.
make_powerflow_data
    Full PowerFlowData assembly.
make_ac_powerflow_data
    Assembly for the AC Newton-Raphson solver.
make_dc_powerflow_data
    Assembly for the DC (PTDF) solver.
"""

from assembly.indexer import NetworkIndex, index_network
from assembly.aggregation import (
    get_active_power_bounds,
    get_injections,
    get_reactive_power_bounds,
    get_withdrawals,
)
from assembly.bus_state import initialize_bus_data
from assembly.powerflow_data_builder import (
    make_ac_powerflow_data,
    make_dc_powerflow_data,
    make_powerflow_data,
)

__all__ = [
    "NetworkIndex",
    "index_network",
    "get_injections",
    "get_withdrawals",
    "get_reactive_power_bounds",
    "get_active_power_bounds",
    "initialize_bus_data",
    "make_powerflow_data",
    "make_ac_powerflow_data",
    "make_dc_powerflow_data",
]
