"""
Power Rules Module
==================

Device-kind specific rules used when aggregating device data per bus.

Each rule is a ``functools.singledispatch`` function dispatching on the
device class. Supporting a new device kind means registering an
implementation for it, e.g.::

    @get_total_p.register
    def _(load: MyLoad, network: NetworkAccessor) -> float:
        ...

The aggregation loops in ``assembly.aggregation`` never inspect device
types themselves.
"""

from functools import singledispatch
from typing import Optional

from network.accessor import NetworkAccessor
from network.devices import (
    Limits,
    RenewableDispatch,
    RenewableNonDispatch,
    Source,
    StandardLoad,
    StaticInjection,
    Storage,
)

_UNBOUNDED: Limits = (float("-inf"), float("inf"))


# ==============================================================================
#  Load totals
# ==============================================================================

@singledispatch
def get_total_p(load: StaticInjection, network: NetworkAccessor) -> float:
    """Return the total active power withdrawal of a load."""
    return network.active_power(load)


@get_total_p.register
def _(load: StandardLoad, network: NetworkAccessor) -> float:
    return (
        network.constant_active_power(load)
        + network.current_active_power(load)
        + network.impedance_active_power(load)
    )


@singledispatch
def get_total_q(load: StaticInjection, network: NetworkAccessor) -> float:
    """Return the total reactive power withdrawal of a load."""
    return network.reactive_power(load)


@get_total_q.register
def _(load: StandardLoad, network: NetworkAccessor) -> float:
    return (
        network.constant_reactive_power(load)
        + network.current_reactive_power(load)
        + network.impedance_reactive_power(load)
    )


# ==============================================================================
#  Limits used for power flow
# ==============================================================================

@singledispatch
def get_reactive_power_limits_for_power_flow(
    device: StaticInjection, network: NetworkAccessor
) -> Optional[Limits]:
    """
    Return the reactive power limits to be used in power flow calculations.

    Returns the native limits of the device in all but special cases.
    ``None`` means that the device reports no limits (e.g. a storage unit
    without reactive capability data); the aggregation then makes the bus
    unbounded and reports it.
    """
    return network.reactive_power_limits(device)


@get_reactive_power_limits_for_power_flow.register
def _(device: RenewableNonDispatch, network: NetworkAccessor) -> Optional[Limits]:
    # Cannot be redispatched: the interval degenerates to the current output.
    q = network.reactive_power(device)
    return (q, q)


@singledispatch
def get_active_power_limits_for_power_flow(
    device: StaticInjection, network: NetworkAccessor
) -> Optional[Limits]:
    """
    Return the active power limits to be used in power flow calculations.

    Returns the native limits of the device in all but special cases.
    """
    return network.active_power_limits(device)


@get_active_power_limits_for_power_flow.register
def _(device: Source, network: NetworkAccessor) -> Optional[Limits]:
    return _UNBOUNDED


@get_active_power_limits_for_power_flow.register
def _(device: RenewableNonDispatch, network: NetworkAccessor) -> Optional[Limits]:
    p = network.active_power(device)
    return (p, p)


@get_active_power_limits_for_power_flow.register
def _(device: RenewableDispatch, network: NetworkAccessor) -> Optional[Limits]:
    return (0.0, network.rating(device))


@get_active_power_limits_for_power_flow.register
def _(device: Storage, network: NetworkAccessor) -> Optional[Limits]:
    # TODO: include the charging range (negative output limit); only
    # discharge is modelled for now.
    return (0.0, network.output_active_power_limits(device)[1])
