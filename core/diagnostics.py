"""
Diagnostics Module
==================

This module defines the diagnostics sink through which all non-fatal
conditions of the power flow core are reported.

Components never write to a global logger directly. Instead, an explicit
``Diagnostics`` collector is passed in, records a structured event per
condition and (unless disabled) forwards a ``PowerFlowWarning`` through the
``warnings`` machinery. Callers drain the collected events when they are
done with an assembly or solve call.

Examples of conditions reported here:
    - An initial PQ-bus voltage magnitude outside the plausible range
      that was clamped to the cut-off value.
    - A bus whose reactive power bounds fell back to (-inf, inf).
    - A timestep that did not converge.
"""

import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional


class PowerFlowWarning(UserWarning):
    """Warning category for all diagnostics emitted by the power flow core."""


class DiagnosticKind(Enum):
    """Kind of a diagnostic event."""
    VOLTAGE_MAGNITUDE_CLAMPED = "voltage_magnitude_clamped"
    REACTIVE_LIMITS_UNBOUNDED = "reactive_limits_unbounded"
    ACTIVE_LIMITS_UNBOUNDED = "active_limits_unbounded"
    LARGE_INITIAL_RESIDUAL = "large_initial_residual"
    SINGULAR_JACOBIAN = "singular_jacobian"
    BUS_RECLASSIFIED = "bus_reclassified"
    NOT_CONVERGED = "not_converged"
    REF_ACTIVE_POWER_OUT_OF_BOUNDS = "ref_active_power_out_of_bounds"


@dataclass(frozen=True)
class Diagnostic:
    """
    A single non-fatal event.

    Attributes
    ----------
    kind : DiagnosticKind
        Category of the event.
    message : str
        Human readable description.
    component : str, optional
        Name of the bus or branch the event refers to.
    value : float, optional
        Corrected, defaulted or offending value.
    timestep : int, optional
        Timestep the event refers to (solver events only).
    """
    kind: DiagnosticKind
    message: str
    component: Optional[str] = None
    value: Optional[float] = None
    timestep: Optional[int] = None


class Diagnostics:
    """
    Collector for diagnostic events.

    Parameters
    ----------
    emit_warnings : bool, optional
        If True (default), every recorded event is also emitted as a
        ``PowerFlowWarning``.
    """

    def __init__(self, emit_warnings: bool = True) -> None:
        self.emit_warnings = emit_warnings
        self._events: List[Diagnostic] = []

    def warn(
        self,
        kind: DiagnosticKind,
        message: str,
        component: Optional[str] = None,
        value: Optional[float] = None,
        timestep: Optional[int] = None,
    ) -> Diagnostic:
        """Record an event and forward it as a warning."""
        event = Diagnostic(
            kind=kind,
            message=message,
            component=component,
            value=value,
            timestep=timestep,
        )
        self._events.append(event)
        if self.emit_warnings:
            warnings.warn(message, PowerFlowWarning, stacklevel=2)
        return event

    def of_kind(self, kind: DiagnosticKind) -> List[Diagnostic]:
        """Return all recorded events of the given kind."""
        return [e for e in self._events if e.kind == kind]

    def drain(self) -> List[Diagnostic]:
        """Return all recorded events and clear the collector."""
        events, self._events = self._events, []
        return events

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)
