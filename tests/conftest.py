"""
Shared fixtures for the power flow tests.

Networks
--------
two_bus_network
    REF bus feeding a single PQ load over one line.
three_bus_network
    Meshed network with a REF bus, a PV generator bus and a PQ load bus.
lossless_network
    The three-bus network with zero branch resistance and charging.
"""

from typing import Optional

import pytest

from assembly import index_network, make_ac_powerflow_data
from core import BusType, Diagnostics, PowerFlowData
from matrices import build_admittance_matrices
from network import (
    Bus,
    Line,
    PowerLoad,
    PowerNetwork,
    Source,
    ThermalStandard,
)


# =============================================================================
# Network builders
# =============================================================================

def build_two_bus_network(load_p: float = 0.5, load_q: float = 0.2) -> PowerNetwork:
    """
    Bus 1 (REF) --- Line --- Bus 2 (PQ, load)
    """
    net = PowerNetwork(name="two_bus")
    b1 = net.add_bus(Bus(number=1, name="slack", bustype=BusType.REF, magnitude=1.0))
    b2 = net.add_bus(Bus(number=2, name="load", bustype=BusType.PQ))
    net.add_branch(Line(name="l12", from_bus=b1, to_bus=b2, r=0.01, x=0.1, b=0.02))
    net.add_device(Source(name="grid", bus=b1))
    net.add_device(PowerLoad(name="ld2", bus=b2, active_power=load_p, reactive_power=load_q))
    return net


def build_three_bus_network(
    r: float = 0.02,
    b: float = 0.04,
    gen_q_limits: Optional[tuple] = (-1.0, 1.0),
) -> PowerNetwork:
    """
    Meshed three-bus network.

        Bus 1 (REF) ---- Bus 2 (PV, gen 0.8 p.u.)
             \\            /
              \\          /
               Bus 3 (PQ, load 1.2 + j0.4)
    """
    net = PowerNetwork(name="three_bus")
    b1 = net.add_bus(Bus(number=1, name="bus1", bustype=BusType.REF, magnitude=1.02))
    b2 = net.add_bus(Bus(number=2, name="bus2", bustype=BusType.PV, magnitude=1.01))
    b3 = net.add_bus(Bus(number=3, name="bus3", bustype=BusType.PQ))
    net.add_branch(Line(name="l12", from_bus=b1, to_bus=b2, r=r, x=0.2, b=b))
    net.add_branch(Line(name="l23", from_bus=b2, to_bus=b3, r=r, x=0.25, b=b))
    net.add_branch(Line(name="l13", from_bus=b1, to_bus=b3, r=r, x=0.15, b=b))
    net.add_device(Source(name="grid", bus=b1))
    net.add_device(ThermalStandard(
        name="gen2", bus=b2, active_power=0.8,
        reactive_power_limits=gen_q_limits, active_power_limits=(0.0, 2.0),
    ))
    net.add_device(PowerLoad(name="ld3", bus=b3, active_power=1.2, reactive_power=0.4))
    return net


def make_ac_data(
    network: PowerNetwork,
    time_steps: int = 1,
    calculate_loss_factors: bool = False,
    diagnostics: Optional[Diagnostics] = None,
) -> PowerFlowData:
    """Assemble AC PowerFlowData with network matrices built from the branches."""
    index = index_network(network)
    Ybus, admittances = build_admittance_matrices(network, index)
    return make_ac_powerflow_data(
        network,
        Ybus,
        admittances,
        time_steps=time_steps,
        calculate_loss_factors=calculate_loss_factors,
        diagnostics=diagnostics,
        index=index,
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def diagnostics() -> Diagnostics:
    """Diagnostics collector that does not emit warnings."""
    return Diagnostics(emit_warnings=False)


@pytest.fixture
def two_bus_network() -> PowerNetwork:
    return build_two_bus_network()


@pytest.fixture
def three_bus_network() -> PowerNetwork:
    return build_three_bus_network()


@pytest.fixture
def lossless_network() -> PowerNetwork:
    return build_three_bus_network(r=0.0, b=0.0)
