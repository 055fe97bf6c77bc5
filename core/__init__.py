"""
Core Module
============

This module provides the core data structures of the power flow engine.

Classes
-------
BusType
    Classification of AC buses (PQ, PV, REF).
PowerFlowData
    Multi-timestep numeric container read and written by the solvers.
Diagnostics
    Collector for non-fatal diagnostic events.
Diagnostic
    A single diagnostic event.
DiagnosticKind
    Categories of diagnostic events.
PowerFlowWarning
    Warning category emitted for diagnostic events.
"""

from core.definitions import BusType
from core.diagnostics import Diagnostic, DiagnosticKind, Diagnostics, PowerFlowWarning
from core.powerflow_data import PowerFlowData

__all__ = [
    "BusType",
    "PowerFlowData",
    "Diagnostics",
    "Diagnostic",
    "DiagnosticKind",
    "PowerFlowWarning",
]
