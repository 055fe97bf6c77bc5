"""
Devices Module
==============

Network entities consumed by the power flow core.

The classes in this module form a small component catalogue: buses,
branches and static-injection devices (generation-like devices and loads).
All power quantities are in per-unit on the network base power, angles in
radians. Limits are (min, max) tuples; ``None`` means that the device does
not report the limit.

The concrete class of a device is its "device kind". Power flow rules that
depend on the kind (load totals, limits used for power flow) live in
``assembly.power_rules`` and dispatch on these classes.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from core.definitions import BusType

Limits = Tuple[float, float]


@dataclass(eq=False)
class Bus:
    """
    AC bus.

    Attributes
    ----------
    number : int
        Unique bus number.
    name : str
        Unique bus name.
    bustype : BusType
        Initial classification of the bus.
    angle : float
        Initial voltage angle in radians.
    magnitude : float
        Initial voltage magnitude in per-unit (set-point for PV and REF buses).
    voltage_limits : Tuple[float, float], optional
        Physical voltage magnitude bounds in per-unit.
    base_voltage : float, optional
        Nominal voltage in kV.
    """
    number: int
    name: str
    bustype: BusType = BusType.PQ
    angle: float = 0.0
    magnitude: float = 1.0
    voltage_limits: Optional[Limits] = None
    base_voltage: Optional[float] = None


# ==============================================================================
#  Branches
# ==============================================================================

@dataclass(eq=False)
class Branch:
    """AC branch connecting two buses."""
    name: str
    from_bus: Bus
    to_bus: Bus
    available: bool = True


@dataclass(eq=False)
class Line(Branch):
    """Transmission line."""
    r: float = 0.0
    x: float = 0.0
    b: float = 0.0


@dataclass(eq=False)
class Transformer2W(Branch):
    """Two-winding transformer."""
    r: float = 0.0
    x: float = 0.0
    tap: float = 1.0


@dataclass(eq=False)
class PhaseShiftingTransformer(Transformer2W):
    """Two-winding transformer with phase shift (radians)."""
    shift: float = 0.0


# ==============================================================================
#  Static injections
# ==============================================================================

@dataclass(eq=False)
class StaticInjection:
    """
    Device injecting (or withdrawing) power at a single bus.

    Attributes
    ----------
    name : str
        Unique device name.
    bus : Bus or None
        Bus the device is connected to.
    available : bool
        Availability flag. Unavailable devices are ignored by the core.
    active_power : float
        Active power output in per-unit.
    reactive_power : float
        Reactive power output in per-unit.
    """
    name: str
    bus: Optional[Bus] = None
    available: bool = True
    active_power: float = 0.0
    reactive_power: float = 0.0


@dataclass(eq=False)
class Generator(StaticInjection):
    """Generation-like device with native operating limits."""
    reactive_power_limits: Optional[Limits] = None
    active_power_limits: Optional[Limits] = None


@dataclass(eq=False)
class ThermalStandard(Generator):
    """Conventional dispatchable generator."""


@dataclass(eq=False)
class RenewableDispatch(Generator):
    """Curtailable renewable source with a rating."""
    rating: float = 0.0


@dataclass(eq=False)
class RenewableNonDispatch(StaticInjection):
    """Non-dispatchable renewable source (its output cannot be redispatched)."""


@dataclass(eq=False)
class Storage(StaticInjection):
    """Energy storage device."""
    reactive_power_limits: Optional[Limits] = None
    output_active_power_limits: Limits = (0.0, 0.0)


@dataclass(eq=False)
class Source(StaticInjection):
    """Equivalent of an external grid."""
    reactive_power_limits: Optional[Limits] = (float("-inf"), float("inf"))
    active_power_limits: Optional[Limits] = (float("-inf"), float("inf"))


# ==============================================================================
#  Loads
# ==============================================================================

@dataclass(eq=False)
class ElectricLoad(StaticInjection):
    """Base class of all loads. ``active_power`` is a withdrawal."""


@dataclass(eq=False)
class PowerLoad(ElectricLoad):
    """Constant power load."""


@dataclass(eq=False)
class InterruptiblePowerLoad(PowerLoad):
    """Constant power load that can be interrupted."""


@dataclass(eq=False)
class ExponentialLoad(ElectricLoad):
    """Voltage dependent load; the nominal active and reactive power are used."""


@dataclass(eq=False)
class StandardLoad(ElectricLoad):
    """
    Composite ZIP load.

    The total withdrawal is the sum of the constant-power, constant-current
    and constant-impedance components.
    """
    constant_active_power: float = 0.0
    constant_reactive_power: float = 0.0
    current_active_power: float = 0.0
    current_reactive_power: float = 0.0
    impedance_active_power: float = 0.0
    impedance_reactive_power: float = 0.0


@dataclass(eq=False)
class FixedAdmittance(ElectricLoad):
    """Shunt admittance. Modelled inside the admittance matrix, not as a withdrawal."""
    admittance: complex = 0j
