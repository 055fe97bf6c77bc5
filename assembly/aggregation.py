"""
Aggregation Module
==================

Per-bus aggregation of device data.

Functions
---------
get_injections
    Active/reactive injection of all available generation-like devices.
get_withdrawals
    Active/reactive withdrawal of all available loads.
get_reactive_power_bounds
    Aggregated reactive injection bounds per bus.
get_active_power_bounds
    Aggregated active injection bounds per bus.

All functions return freshly allocated arrays indexed by the dense bus
index of a NetworkIndex. Unavailable devices are skipped entirely.
"""

from typing import List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from assembly.indexer import NetworkIndex
from assembly.power_rules import (
    get_active_power_limits_for_power_flow,
    get_reactive_power_limits_for_power_flow,
    get_total_p,
    get_total_q,
)
from core.diagnostics import DiagnosticKind, Diagnostics
from network.accessor import NetworkAccessor
from network.devices import ElectricLoad, FixedAdmittance, StaticInjection


def _sources(network: NetworkAccessor) -> List[StaticInjection]:
    """Available static injections that are not loads."""
    return [
        d for d in network.available_devices(StaticInjection)
        if not isinstance(d, ElectricLoad)
    ]


def _loads(network: NetworkAccessor) -> List[ElectricLoad]:
    """Available loads that are not fixed admittances."""
    return [
        d for d in network.available_devices(ElectricLoad)
        if not isinstance(d, FixedAdmittance)
    ]


def _bus_ix(network: NetworkAccessor, index: NetworkIndex, device: StaticInjection) -> int:
    return index.bus_index(network.bus_of(device).number)


def get_injections(
    network: NetworkAccessor,
    index: NetworkIndex,
) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Sum the active and reactive power of all available non-load devices per bus.

    Returns
    -------
    p_injection : NDArray[np.float64]
        Active power injection per bus.
    q_injection : NDArray[np.float64]
        Reactive power injection per bus.
    """
    p = np.zeros(index.n_buses, dtype=np.float64)
    q = np.zeros(index.n_buses, dtype=np.float64)
    for source in _sources(network):
        bus_ix = _bus_ix(network, index, source)
        p[bus_ix] += network.active_power(source)
        q[bus_ix] += network.reactive_power(source)
    return p, q


def get_withdrawals(
    network: NetworkAccessor,
    index: NetworkIndex,
) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Sum the total active and reactive power of all available loads per bus.

    Fixed admittances are part of the admittance matrix and are not
    counted as withdrawals.

    Returns
    -------
    p_withdrawal : NDArray[np.float64]
        Active power withdrawal per bus.
    q_withdrawal : NDArray[np.float64]
        Reactive power withdrawal per bus.
    """
    p = np.zeros(index.n_buses, dtype=np.float64)
    q = np.zeros(index.n_buses, dtype=np.float64)
    for load in _loads(network):
        bus_ix = _bus_ix(network, index, load)
        p[bus_ix] += get_total_p(load, network)
        q[bus_ix] += get_total_q(load, network)
    return p, q


def get_reactive_power_bounds(
    network: NetworkAccessor,
    index: NetworkIndex,
    diagnostics: Optional[Diagnostics] = None,
) -> NDArray[np.float64]:
    """
    Aggregate the reactive injection bounds per bus.

    Each device contributes ``min(0, q_min)`` to the bus minimum and
    ``max(0, q_max)`` to the bus maximum, so the bus interval always
    contains zero. If any device at a bus reports no limits, the whole bus
    interval becomes (-inf, inf) and a diagnostic naming the bus is raised.

    Returns
    -------
    bounds : NDArray[np.float64]
        Array of shape (n_buses, 2) with [:, 0] the minimum and [:, 1] the
        maximum.
    """
    if diagnostics is None:
        diagnostics = Diagnostics()
    bounds = np.zeros((index.n_buses, 2), dtype=np.float64)
    unbounded = np.zeros(index.n_buses, dtype=bool)
    for source in _sources(network):
        bus = network.bus_of(source)
        bus_ix = index.bus_index(bus.number)
        limits = get_reactive_power_limits_for_power_flow(source, network)
        if limits is None:
            unbounded[bus_ix] = True
            diagnostics.warn(
                DiagnosticKind.REACTIVE_LIMITS_UNBOUNDED,
                f"Reactive Power Bounds at Bus {bus.name} set to (-Inf, Inf)",
                component=bus.name,
                value=float("inf"),
            )
            continue
        bounds[bus_ix, 0] += min(0.0, limits[0])
        bounds[bus_ix, 1] += max(0.0, limits[1])
    bounds[unbounded, 0] = -np.inf
    bounds[unbounded, 1] = np.inf
    return bounds


def get_active_power_bounds(
    network: NetworkAccessor,
    index: NetworkIndex,
    diagnostics: Optional[Diagnostics] = None,
) -> NDArray[np.float64]:
    """
    Aggregate the active injection bounds per bus.

    Device limits are summed as reported. A device without limits makes the
    bus interval (-inf, inf) and raises a diagnostic naming the bus. Buses
    without devices get (0, 0).

    Returns
    -------
    bounds : NDArray[np.float64]
        Array of shape (n_buses, 2).
    """
    if diagnostics is None:
        diagnostics = Diagnostics()
    bounds = np.zeros((index.n_buses, 2), dtype=np.float64)
    unbounded = np.zeros(index.n_buses, dtype=bool)
    for source in _sources(network):
        bus = network.bus_of(source)
        bus_ix = index.bus_index(bus.number)
        limits = get_active_power_limits_for_power_flow(source, network)
        if limits is None:
            unbounded[bus_ix] = True
            diagnostics.warn(
                DiagnosticKind.ACTIVE_LIMITS_UNBOUNDED,
                f"Active Power Bounds at Bus {bus.name} set to (-Inf, Inf)",
                component=bus.name,
                value=float("inf"),
            )
            continue
        bounds[bus_ix, 0] += limits[0]
        bounds[bus_ix, 1] += limits[1]
    bounds[unbounded, 0] = -np.inf
    bounds[unbounded, 1] = np.inf
    return bounds
