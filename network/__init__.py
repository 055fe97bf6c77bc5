"""
Network Module
==============

Network model consumed by the power flow core.

Classes
-------
NetworkAccessor
    Read-only query interface of a network model.
PowerNetwork
    In-memory network model.
Bus, Branch, Line, Transformer2W, PhaseShiftingTransformer
    Topology entities.
StaticInjection and subclasses
    Generation-like devices and loads.

The pandapower conversion lives in ``network.pandapower_adapter`` and is
imported from there explicitly.
"""

from network.devices import (
    Branch,
    Bus,
    ElectricLoad,
    ExponentialLoad,
    FixedAdmittance,
    Generator,
    InterruptiblePowerLoad,
    Limits,
    Line,
    PhaseShiftingTransformer,
    PowerLoad,
    RenewableDispatch,
    RenewableNonDispatch,
    Source,
    StandardLoad,
    StaticInjection,
    Storage,
    ThermalStandard,
    Transformer2W,
)
from network.accessor import NetworkAccessor, PowerNetwork

__all__ = [
    "NetworkAccessor",
    "PowerNetwork",
    "Bus",
    "Branch",
    "Line",
    "Transformer2W",
    "PhaseShiftingTransformer",
    "StaticInjection",
    "Generator",
    "ThermalStandard",
    "RenewableDispatch",
    "RenewableNonDispatch",
    "Storage",
    "Source",
    "ElectricLoad",
    "PowerLoad",
    "InterruptiblePowerLoad",
    "ExponentialLoad",
    "StandardLoad",
    "FixedAdmittance",
    "Limits",
]
