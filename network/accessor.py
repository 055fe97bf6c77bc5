"""
Network Accessor Module
=======================

This module defines the read-only query interface through which the power
flow core consumes a network model, and an in-memory implementation.

The core never touches device attributes directly. Every quantity is
obtained through a ``NetworkAccessor`` so that other network models (for
example a pandapower network, see ``network.pandapower_adapter``) can be
plugged in by implementing the same interface.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence, Type, TypeVar

from network.devices import (
    Branch,
    Bus,
    Limits,
    StandardLoad,
    StaticInjection,
)

D = TypeVar("D", bound=StaticInjection)


class NetworkAccessor(ABC):
    """
    Read-only query interface of a network model.

    Implementations must return devices and buses in a deterministic order
    so that repeated assembly from an unchanged network yields identical
    results.
    """

    @abstractmethod
    def buses(self) -> Sequence[Bus]:
        """Return all buses of the network."""

    @abstractmethod
    def branches(self) -> Sequence[Branch]:
        """Return all available AC branches of the network."""

    @abstractmethod
    def devices(self, kind: Type[D]) -> Sequence[D]:
        """Return all devices that are instances of ``kind``."""

    def available_devices(self, kind: Type[D]) -> List[D]:
        """Return all available devices that are instances of ``kind``."""
        return [d for d in self.devices(kind) if self.is_available(d)]

    @abstractmethod
    def is_available(self, device: StaticInjection) -> bool:
        """Return the availability flag of a device."""

    @abstractmethod
    def bus_of(self, device: StaticInjection) -> Bus:
        """
        Return the bus a device is connected to.

        Raises
        ------
        ValueError
            If the device is not connected to a bus.
        """

    @abstractmethod
    def active_power(self, device: StaticInjection) -> float:
        """Return the active power of a device in per-unit."""

    @abstractmethod
    def reactive_power(self, device: StaticInjection) -> float:
        """Return the reactive power of a device in per-unit."""

    @abstractmethod
    def active_power_limits(self, device: StaticInjection) -> Optional[Limits]:
        """Return the native active power limits of a device, or None."""

    @abstractmethod
    def reactive_power_limits(self, device: StaticInjection) -> Optional[Limits]:
        """Return the native reactive power limits of a device, or None."""

    @abstractmethod
    def rating(self, device: StaticInjection) -> float:
        """Return the rating of a device in per-unit."""

    @abstractmethod
    def output_active_power_limits(self, device: StaticInjection) -> Limits:
        """Return the output (discharge) active power limits of a storage device."""

    # --- Composite load components -------------------------------------------

    @abstractmethod
    def constant_active_power(self, load: StandardLoad) -> float:
        """Constant-power active component of a composite load."""

    @abstractmethod
    def constant_reactive_power(self, load: StandardLoad) -> float:
        """Constant-power reactive component of a composite load."""

    @abstractmethod
    def current_active_power(self, load: StandardLoad) -> float:
        """Constant-current active component of a composite load."""

    @abstractmethod
    def current_reactive_power(self, load: StandardLoad) -> float:
        """Constant-current reactive component of a composite load."""

    @abstractmethod
    def impedance_active_power(self, load: StandardLoad) -> float:
        """Constant-impedance active component of a composite load."""

    @abstractmethod
    def impedance_reactive_power(self, load: StandardLoad) -> float:
        """Constant-impedance reactive component of a composite load."""


class PowerNetwork(NetworkAccessor):
    """
    In-memory network model.

    Parameters
    ----------
    name : str, optional
        Identifier of the network.
    base_power : float, optional
        System base power in MVA (default 100).
    buses, branches, devices : Iterable, optional
        Initial components.
    """

    def __init__(
        self,
        name: str = "",
        base_power: float = 100.0,
        buses: Iterable[Bus] = (),
        branches: Iterable[Branch] = (),
        devices: Iterable[StaticInjection] = (),
    ) -> None:
        if base_power <= 0:
            raise ValueError(f"base_power must be positive, got {base_power}")
        self.name = name
        self.base_power = base_power
        self._buses: List[Bus] = []
        self._branches: List[Branch] = []
        self._devices: List[StaticInjection] = []
        for bus in buses:
            self.add_bus(bus)
        for branch in branches:
            self.add_branch(branch)
        for device in devices:
            self.add_device(device)

    def add_bus(self, bus: Bus) -> Bus:
        """Add a bus and return it."""
        self._buses.append(bus)
        return bus

    def add_branch(self, branch: Branch) -> Branch:
        """Add a branch and return it."""
        self._branches.append(branch)
        return branch

    def add_device(self, device: D) -> D:
        """Add a static-injection device and return it."""
        self._devices.append(device)
        return device

    def get_bus(self, name: str) -> Bus:
        """Return the bus with the given name."""
        for bus in self._buses:
            if bus.name == name:
                return bus
        raise KeyError(f"Bus '{name}' not found in network '{self.name}'.")

    # --- NetworkAccessor -----------------------------------------------------

    def buses(self) -> Sequence[Bus]:
        return list(self._buses)

    def branches(self) -> Sequence[Branch]:
        return [b for b in self._branches if b.available]

    def devices(self, kind: Type[D]) -> Sequence[D]:
        return [d for d in self._devices if isinstance(d, kind)]

    def is_available(self, device: StaticInjection) -> bool:
        return device.available

    def bus_of(self, device: StaticInjection) -> Bus:
        if device.bus is None:
            raise ValueError(f"Device '{device.name}' is not connected to a bus.")
        return device.bus

    def active_power(self, device: StaticInjection) -> float:
        return device.active_power

    def reactive_power(self, device: StaticInjection) -> float:
        return device.reactive_power

    def active_power_limits(self, device: StaticInjection) -> Optional[Limits]:
        return getattr(device, "active_power_limits", None)

    def reactive_power_limits(self, device: StaticInjection) -> Optional[Limits]:
        return getattr(device, "reactive_power_limits", None)

    def rating(self, device: StaticInjection) -> float:
        return getattr(device, "rating", 0.0)

    def output_active_power_limits(self, device: StaticInjection) -> Limits:
        return getattr(device, "output_active_power_limits", (0.0, 0.0))

    def constant_active_power(self, load: StandardLoad) -> float:
        return load.constant_active_power

    def constant_reactive_power(self, load: StandardLoad) -> float:
        return load.constant_reactive_power

    def current_active_power(self, load: StandardLoad) -> float:
        return load.current_active_power

    def current_reactive_power(self, load: StandardLoad) -> float:
        return load.current_reactive_power

    def impedance_active_power(self, load: StandardLoad) -> float:
        return load.impedance_active_power

    def impedance_reactive_power(self, load: StandardLoad) -> float:
        return load.impedance_reactive_power
