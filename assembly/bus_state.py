"""
Bus State Module
================

Seeds the bus type, voltage angle and voltage magnitude of every bus.

REF buses get angle 0. Initial magnitudes at PQ buses are clamped into
[BUS_VOLTAGE_MAGNITUDE_CUTOFF_MIN, BUS_VOLTAGE_MAGNITUDE_CUTOFF_MAX] since
values outside are infeasible starting points; PV and REF magnitudes are
set-points and are kept as given.
"""

from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from assembly.indexer import NetworkIndex
from core.definitions import (
    BUS_VOLTAGE_MAGNITUDE_CUTOFF_MAX,
    BUS_VOLTAGE_MAGNITUDE_CUTOFF_MIN,
    BusType,
)
from core.diagnostics import DiagnosticKind, Diagnostics
from network.accessor import NetworkAccessor


def initialize_bus_data(
    network: NetworkAccessor,
    index: NetworkIndex,
    diagnostics: Optional[Diagnostics] = None,
) -> Tuple[NDArray[np.int8], NDArray[np.float64], NDArray[np.float64]]:
    """
    Compute the initial bus type, angle and magnitude of every bus.

    Parameters
    ----------
    network : NetworkAccessor
        Source network.
    index : NetworkIndex
        Dense bus lookup of the network.
    diagnostics : Diagnostics, optional
        Sink for clamping diagnostics. A fresh collector is created if omitted.

    Returns
    -------
    bus_type : NDArray[np.int8]
        BusType value per bus.
    bus_angles : NDArray[np.float64]
        Initial voltage angle per bus in radians.
    bus_magnitude : NDArray[np.float64]
        Initial voltage magnitude per bus in per-unit.
    """
    if diagnostics is None:
        diagnostics = Diagnostics()
    n = index.n_buses
    bus_type = np.zeros(n, dtype=np.int8)
    bus_angles = np.zeros(n, dtype=np.float64)
    bus_magnitude = np.ones(n, dtype=np.float64)

    for bus in network.buses():
        ix = index.bus_index(bus.number)
        bt = BusType(bus.bustype)
        bus_type[ix] = bt
        bus_angles[ix] = 0.0 if bt == BusType.REF else bus.angle

        vm = bus.magnitude
        if bt == BusType.PQ and vm < BUS_VOLTAGE_MAGNITUDE_CUTOFF_MIN:
            _warn_clamped(diagnostics, bus.name, vm, BUS_VOLTAGE_MAGNITUDE_CUTOFF_MIN, "below", "minimum")
            vm = BUS_VOLTAGE_MAGNITUDE_CUTOFF_MIN
        elif bt == BusType.PQ and vm > BUS_VOLTAGE_MAGNITUDE_CUTOFF_MAX:
            _warn_clamped(diagnostics, bus.name, vm, BUS_VOLTAGE_MAGNITUDE_CUTOFF_MAX, "above", "maximum")
            vm = BUS_VOLTAGE_MAGNITUDE_CUTOFF_MAX
        bus_magnitude[ix] = vm

    return bus_type, bus_angles, bus_magnitude


def _warn_clamped(
    diagnostics: Diagnostics,
    bus_name: str,
    vm: float,
    cutoff: float,
    side: str,
    which: str,
) -> None:
    diagnostics.warn(
        DiagnosticKind.VOLTAGE_MAGNITUDE_CLAMPED,
        f"Initial bus voltage magnitude of {vm} p.u. at PQ bus {bus_name} is {side} "
        f"the plausible {which} cut-off value of {cutoff} p.u. and has been set to "
        f"{cutoff} p.u.",
        component=bus_name,
        value=cutoff,
    )
