"""
Power Flow Data Module
======================

This module defines the PowerFlowData class, the multi-timestep numeric
container that the power flow solvers read and write.

PowerFlowData holds no references to the source network model. It only
stores dense indices, name lookups, numeric arrays and (by reference) the
network matrices handed in at assembly time:

    - AC mode: the bus admittance matrix Y and a BranchAdmittances container
    - DC mode: a PTDF matrix adapter and, optionally, the bus susceptance matrix

Array layout
------------
Per-bus quantities are stored as arrays of shape (n_buses, time_steps),
per-branch quantities as (n_branches, time_steps). Bound pairs are stored
as (n_buses, time_steps, 2) with [..., 0] the minimum and [..., 1] the
maximum. Column 0 holds the values computed once at assembly time; the
other columns belong to the caller and the solver.
"""

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from core.definitions import BusType


class PowerFlowData:
    """
    Multi-timestep power flow data container.

    The shape of every array is fixed at construction; the contents are
    mutated in place by the solvers.

    Attributes
    ----------
    bus_lookup : Dict[int, int]
        Bus number -> dense bus index.
    branch_lookup : Dict[str, int]
        Branch name -> dense branch index.
    bus_names : List[str]
        Bus name of each dense bus index.
    branch_names : List[str]
        Branch name of each dense branch index.
    bus_activepower_injection : NDArray[np.float64]
        Active power injection of generation-like devices, (n_buses, T).
    bus_reactivepower_injection : NDArray[np.float64]
        Reactive power injection of generation-like devices, (n_buses, T).
    bus_activepower_withdrawals : NDArray[np.float64]
        Active power withdrawal of loads, (n_buses, T).
    bus_reactivepower_withdrawals : NDArray[np.float64]
        Reactive power withdrawal of loads, (n_buses, T).
    bus_reactivepower_bounds : NDArray[np.float64]
        Aggregated reactive injection bounds, (n_buses, T, 2).
    bus_activepower_bounds : NDArray[np.float64]
        Aggregated active injection bounds, (n_buses, T, 2).
    bus_type : NDArray[np.int8]
        BusType value of each bus, (n_buses, T).
    branch_type : List[type]
        Concrete device kind of each branch.
    bus_magnitude : NDArray[np.float64]
        Voltage magnitudes in per-unit, (n_buses, T).
    bus_angles : NDArray[np.float64]
        Voltage angles in radians, (n_buses, T).
    branch_activepower_flow_from_to, branch_reactivepower_flow_from_to,
    branch_activepower_flow_to_from, branch_reactivepower_flow_to_from : NDArray[np.float64]
        Branch flows, (n_branches, T). Valid only for converged timesteps.
    timestep_map : Dict[int, str]
        Timestep index -> timestep label.
    valid_ix : NDArray[np.bool_]
        Validity flag of each timestep.
    converged : NDArray[np.bool_]
        Convergence flag of each timestep.
    power_network_matrix : Any
        Admittance matrix (AC) or sensitivity matrix adapter (DC).
    aux_network_matrix : Any
        BranchAdmittances (AC) or bus susceptance matrix (DC), may be None.
    loss_factors : NDArray[np.float64] or None
        Loss factors, (n_buses, T), allocated if calculate_loss_factors.
    calculate_loss_factors : bool
        Whether the AC solver computes loss factors.
    """

    def __init__(
        self,
        bus_lookup: Dict[int, int],
        branch_lookup: Dict[str, int],
        bus_names: List[str],
        branch_names: List[str],
        bus_activepower_injection: NDArray[np.float64],
        bus_reactivepower_injection: NDArray[np.float64],
        bus_activepower_withdrawals: NDArray[np.float64],
        bus_reactivepower_withdrawals: NDArray[np.float64],
        bus_reactivepower_bounds: NDArray[np.float64],
        bus_activepower_bounds: NDArray[np.float64],
        bus_type: NDArray[np.int8],
        branch_type: List[type],
        bus_magnitude: NDArray[np.float64],
        bus_angles: NDArray[np.float64],
        branch_activepower_flow_from_to: NDArray[np.float64],
        branch_reactivepower_flow_from_to: NDArray[np.float64],
        branch_activepower_flow_to_from: NDArray[np.float64],
        branch_reactivepower_flow_to_from: NDArray[np.float64],
        timestep_map: Dict[int, str],
        valid_ix: NDArray[np.bool_],
        power_network_matrix: Any,
        aux_network_matrix: Any,
        converged: NDArray[np.bool_],
        loss_factors: Optional[NDArray[np.float64]],
        calculate_loss_factors: bool,
    ) -> None:
        n_buses, time_steps = bus_magnitude.shape
        if len(bus_lookup) != n_buses or len(bus_names) != n_buses:
            raise ValueError(
                f"Bus lookup ({len(bus_lookup)}) and bus arrays ({n_buses}) disagree."
            )
        if len(branch_lookup) != branch_activepower_flow_from_to.shape[0]:
            raise ValueError("Branch lookup and branch arrays disagree.")

        self.bus_lookup = bus_lookup
        self.branch_lookup = branch_lookup
        self.bus_names = bus_names
        self.branch_names = branch_names
        self.bus_activepower_injection = bus_activepower_injection
        self.bus_reactivepower_injection = bus_reactivepower_injection
        self.bus_activepower_withdrawals = bus_activepower_withdrawals
        self.bus_reactivepower_withdrawals = bus_reactivepower_withdrawals
        self.bus_reactivepower_bounds = bus_reactivepower_bounds
        self.bus_activepower_bounds = bus_activepower_bounds
        self.bus_type = bus_type
        self.branch_type = branch_type
        self.bus_magnitude = bus_magnitude
        self.bus_angles = bus_angles
        self.branch_activepower_flow_from_to = branch_activepower_flow_from_to
        self.branch_reactivepower_flow_from_to = branch_reactivepower_flow_from_to
        self.branch_activepower_flow_to_from = branch_activepower_flow_to_from
        self.branch_reactivepower_flow_to_from = branch_reactivepower_flow_to_from
        self.timestep_map = timestep_map
        self.valid_ix = valid_ix
        self.power_network_matrix = power_network_matrix
        self.aux_network_matrix = aux_network_matrix
        self.converged = converged
        self.loss_factors = loss_factors
        self.calculate_loss_factors = calculate_loss_factors

        self._bus_name_lookup = {name: ix for ix, name in enumerate(bus_names)}

    @property
    def n_buses(self) -> int:
        """Return the number of buses."""
        return self.bus_magnitude.shape[0]

    @property
    def n_branches(self) -> int:
        """Return the number of branches."""
        return self.branch_activepower_flow_from_to.shape[0]

    @property
    def time_steps(self) -> int:
        """Return the number of timesteps."""
        return self.bus_magnitude.shape[1]

    def bus_index(self, name: str) -> int:
        """Return the dense index of the bus with the given name."""
        try:
            return self._bus_name_lookup[name]
        except KeyError:
            raise KeyError(f"Unknown bus '{name}'.") from None

    def branch_index(self, name: str) -> int:
        """Return the dense index of the branch with the given name."""
        try:
            return self.branch_lookup[name]
        except KeyError:
            raise KeyError(f"Unknown branch '{name}'.") from None

    def bus_types_at(self, timestep: int) -> List[BusType]:
        """Return the bus types of a timestep as BusType members."""
        return [BusType(int(v)) for v in self.bus_type[:, timestep]]

    def fill_timestep_from(self, source: int, targets: Optional[Sequence[int]] = None) -> None:
        """
        Copy the bus inputs of one timestep into other timesteps.

        Injections, withdrawals, bounds, bus types and voltage state are
        copied. Branch flows and convergence flags are left untouched.

        Parameters
        ----------
        source : int
            Timestep to copy from.
        targets : Sequence[int], optional
            Timesteps to copy into. Defaults to every other timestep.
        """
        self.check_timestep(source)
        if targets is None:
            targets = [t for t in range(self.time_steps) if t != source]
        for t in targets:
            self.check_timestep(t)
            for arr in (
                self.bus_activepower_injection,
                self.bus_reactivepower_injection,
                self.bus_activepower_withdrawals,
                self.bus_reactivepower_withdrawals,
                self.bus_reactivepower_bounds,
                self.bus_activepower_bounds,
                self.bus_type,
                self.bus_magnitude,
                self.bus_angles,
            ):
                arr[:, t] = arr[:, source]

    def bus_results(self, timestep: int) -> pd.DataFrame:
        """
        Return the bus state of a timestep as a DataFrame indexed by bus name.
        """
        self.check_timestep(timestep)
        t = timestep
        return pd.DataFrame(
            {
                "bus_number": [
                    number for number, _ in sorted(self.bus_lookup.items(), key=lambda kv: kv[1])
                ],
                "bus_type": [BusType(int(v)).name for v in self.bus_type[:, t]],
                "vm_pu": self.bus_magnitude[:, t],
                "va_rad": self.bus_angles[:, t],
                "p_injection": self.bus_activepower_injection[:, t],
                "q_injection": self.bus_reactivepower_injection[:, t],
                "p_withdrawal": self.bus_activepower_withdrawals[:, t],
                "q_withdrawal": self.bus_reactivepower_withdrawals[:, t],
                "q_min": self.bus_reactivepower_bounds[:, t, 0],
                "q_max": self.bus_reactivepower_bounds[:, t, 1],
            },
            index=pd.Index(self.bus_names, name="bus"),
        )

    def branch_results(self, timestep: int) -> pd.DataFrame:
        """
        Return the branch flows of a timestep as a DataFrame indexed by branch name.
        """
        self.check_timestep(timestep)
        t = timestep
        return pd.DataFrame(
            {
                "branch_type": [kind.__name__ for kind in self.branch_type],
                "p_from_to": self.branch_activepower_flow_from_to[:, t],
                "q_from_to": self.branch_reactivepower_flow_from_to[:, t],
                "p_to_from": self.branch_activepower_flow_to_from[:, t],
                "q_to_from": self.branch_reactivepower_flow_to_from[:, t],
            },
            index=pd.Index(self.branch_names, name="branch"),
        )

    def check_timestep(self, timestep: int) -> None:
        """Raise ValueError if the timestep index is out of range."""
        if not 0 <= timestep < self.time_steps:
            raise ValueError(
                f"Timestep {timestep} out of range [0, {self.time_steps})."
            )
