"""
Pandapower Adapter Module
=========================

Converts a pandapower network into the in-memory PowerNetwork model and
extracts its admittance matrices in the dense bus and branch order of the
power flow core.

All power quantities are converted to per-unit on ``net.sn_mva`` and to
generator sign convention (positive = injection). Branch impedances and
taps are taken from pandapower's internal pypower case (``net._ppc``), so
the network must have been prepared by a pandapower power flow; one is run
if it is missing.

Element mapping
---------------
* ``ext_grid`` -> Source at a REF bus
* ``gen``      -> ThermalStandard at a PV bus
* ``sgen``     -> RenewableNonDispatch
* ``storage``  -> Storage (sign flipped, pandapower uses load convention)
* ``load``     -> PowerLoad, or StandardLoad if ZIP shares are configured
* ``shunt``    -> FixedAdmittance
* ``line``     -> Line, ``trafo`` -> Transformer2W / PhaseShiftingTransformer

Networks with out-of-service buses, merged buses (closed bus-bus switches)
or elements creating auxiliary buses (``trafo3w``, ``xward``) are rejected,
because their internal bus numbering does not match the user-facing one.
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import pandapower as pp
import scipy.sparse as sp
from pandapower.pypower.idx_brch import BR_B, BR_R, BR_X, SHIFT, TAP
from pandapower.pypower.makeYbus import makeYbus

from assembly.indexer import NetworkIndex, index_network
from core.definitions import BusType
from matrices.branch_admittance import BranchAdmittances
from network.accessor import PowerNetwork
from network.devices import (
    Bus,
    FixedAdmittance,
    Line,
    PhaseShiftingTransformer,
    PowerLoad,
    RenewableNonDispatch,
    Source,
    StandardLoad,
    Storage,
    ThermalStandard,
    Transformer2W,
)

# pandapower >= 3 splits the ZIP shares per active and reactive power
_ZIP_COLUMNS_V3 = ("const_z_p_percent", "const_i_p_percent", "const_z_q_percent", "const_i_q_percent")
_ZIP_COLUMNS_V2 = ("const_z_percent", "const_i_percent")


# =============================================================================
# Helpers
# =============================================================================

def _ensure_ppc(net: pp.pandapowerNet) -> None:
    """Run a power flow if the internal pypower case is missing."""
    if getattr(net, "_ppc", None) is None or getattr(net, "_pd2ppc_lookups", None) is None:
        pp.runpp(net, calculate_voltage_angles=True)
    if net._pd2ppc_lookups.get("bus") is None:
        raise ValueError("Bus lookup table not available in _pd2ppc_lookups.")


def _check_supported(net: pp.pandapowerNet) -> None:
    if not net.bus.in_service.all():
        raise ValueError("Networks with out-of-service buses are not supported.")
    for element in ("trafo3w", "xward"):
        if element in net and len(net[element]) > 0:
            raise ValueError(f"Networks with {element} elements are not supported.")


def _value(row: pd.Series, column: str, default: Optional[float] = None) -> Optional[float]:
    """Return a numeric column of a row, or ``default`` if missing or NaN."""
    if column not in row.index or pd.isna(row[column]):
        return default
    return float(row[column])


def _limits(row: pd.Series, min_col: str, max_col: str, base: float) -> Optional[Tuple[float, float]]:
    lo, hi = _value(row, min_col), _value(row, max_col)
    if lo is None or hi is None:
        return None
    return lo / base, hi / base


def _scaling(row: pd.Series) -> float:
    return _value(row, "scaling", 1.0)


def _bus_names(net: pp.pandapowerNet) -> Dict[int, str]:
    names = net.bus["name"] if "name" in net.bus else pd.Series(index=net.bus.index, dtype=object)
    valid = names.notna() & (names.astype(str) != "")
    if valid.all() and names.astype(str).is_unique:
        return {int(idx): str(name) for idx, name in names.items()}
    return {int(idx): f"bus_{idx}" for idx in net.bus.index}


def _zip_shares(row: pd.Series) -> Tuple[float, float, float, float]:
    """Return the (z_p, i_p, z_q, i_q) shares of a load in [0, 1]."""
    if all(c in row.index for c in _ZIP_COLUMNS_V3):
        return tuple(_value(row, c, 0.0) / 100.0 for c in _ZIP_COLUMNS_V3)
    z = _value(row, _ZIP_COLUMNS_V2[0], 0.0) / 100.0
    i = _value(row, _ZIP_COLUMNS_V2[1], 0.0) / 100.0
    return z, i, z, i


# =============================================================================
# Network conversion
# =============================================================================

def network_from_pandapower(net: pp.pandapowerNet, name: str = "") -> PowerNetwork:
    """
    Convert a pandapower network into a PowerNetwork.

    Parameters
    ----------
    net : pp.pandapowerNet
        Source network. A power flow is run on it if it carries no internal
        pypower case yet.
    name : str, optional
        Name of the resulting network.

    Returns
    -------
    network : PowerNetwork
        Network in per-unit on ``net.sn_mva``. Bus numbers are the pandapower
        bus indices.

    Raises
    ------
    ValueError
        If the network contains unsupported elements.
    """
    _check_supported(net)
    _ensure_ppc(net)
    base = float(net.sn_mva)
    network = PowerNetwork(name=name or str(net.name or ""), base_power=base)

    ref_buses = set(net.ext_grid.bus[net.ext_grid.in_service].astype(int))
    pv_buses = set(net.gen.bus[net.gen.in_service].astype(int)) - ref_buses
    setpoints: Dict[int, float] = {}
    angles: Dict[int, float] = {}
    for _, gen in net.gen[net.gen.in_service].iterrows():
        setpoints[int(gen.bus)] = float(gen.vm_pu)
    for _, ext in net.ext_grid[net.ext_grid.in_service].iterrows():
        setpoints[int(ext.bus)] = float(ext.vm_pu)
        angles[int(ext.bus)] = np.deg2rad(_value(ext, "va_degree", 0.0))

    names = _bus_names(net)
    buses: Dict[int, Bus] = {}
    for idx, row in net.bus.iterrows():
        idx = int(idx)
        if idx in ref_buses:
            bustype = BusType.REF
        elif idx in pv_buses:
            bustype = BusType.PV
        else:
            bustype = BusType.PQ
        limits = None
        if _value(row, "min_vm_pu") is not None and _value(row, "max_vm_pu") is not None:
            limits = (float(row.min_vm_pu), float(row.max_vm_pu))
        buses[idx] = network.add_bus(Bus(
            number=idx,
            name=names[idx],
            bustype=bustype,
            angle=angles.get(idx, 0.0),
            magnitude=setpoints.get(idx, 1.0),
            voltage_limits=limits,
            base_voltage=float(row.vn_kv),
        ))

    _add_branches(net, network, buses)
    _add_devices(net, network, buses, base)
    return network


def _add_branches(net: pp.pandapowerNet, network: PowerNetwork, buses: Dict[int, Bus]) -> None:
    branch = net._ppc["branch"]
    lookups = net._pd2ppc_lookups.get("branch", {}) or {}

    if len(net.line) > 0:
        start = lookups["line"][0]
        for pos, (idx, row) in enumerate(net.line.iterrows()):
            br = branch[start + pos]
            network.add_branch(Line(
                name=f"line_{idx}",
                from_bus=buses[int(row.from_bus)],
                to_bus=buses[int(row.to_bus)],
                available=bool(row.in_service),
                r=float(br[BR_R].real),
                x=float(br[BR_X].real),
                b=float(br[BR_B].real),
            ))

    if len(net.trafo) > 0:
        start = lookups["trafo"][0]
        for pos, (idx, row) in enumerate(net.trafo.iterrows()):
            br = branch[start + pos]
            tap = float(br[TAP].real) or 1.0
            shift = np.deg2rad(float(br[SHIFT].real))
            kwargs = dict(
                name=f"trafo_{idx}",
                from_bus=buses[int(row.hv_bus)],
                to_bus=buses[int(row.lv_bus)],
                available=bool(row.in_service),
                r=float(br[BR_R].real),
                x=float(br[BR_X].real),
                tap=tap,
            )
            if shift != 0.0:
                network.add_branch(PhaseShiftingTransformer(shift=shift, **kwargs))
            else:
                network.add_branch(Transformer2W(**kwargs))


def _add_devices(
    net: pp.pandapowerNet,
    network: PowerNetwork,
    buses: Dict[int, Bus],
    base: float,
) -> None:
    inf = float("inf")

    for idx, row in net.ext_grid.iterrows():
        network.add_device(Source(
            name=f"ext_grid_{idx}",
            bus=buses[int(row.bus)],
            available=bool(row.in_service),
            reactive_power_limits=_limits(row, "min_q_mvar", "max_q_mvar", base) or (-inf, inf),
            active_power_limits=_limits(row, "min_p_mw", "max_p_mw", base) or (-inf, inf),
        ))

    for idx, row in net.gen.iterrows():
        network.add_device(ThermalStandard(
            name=f"gen_{idx}",
            bus=buses[int(row.bus)],
            available=bool(row.in_service),
            active_power=float(row.p_mw) * _scaling(row) / base,
            reactive_power_limits=_limits(row, "min_q_mvar", "max_q_mvar", base),
            active_power_limits=_limits(row, "min_p_mw", "max_p_mw", base),
        ))

    for idx, row in net.sgen.iterrows():
        scaling = _scaling(row)
        network.add_device(RenewableNonDispatch(
            name=f"sgen_{idx}",
            bus=buses[int(row.bus)],
            available=bool(row.in_service),
            active_power=float(row.p_mw) * scaling / base,
            reactive_power=float(row.q_mvar) * scaling / base,
        ))

    for idx, row in net.storage.iterrows():
        scaling = _scaling(row)
        q_limits = _limits(row, "min_q_mvar", "max_q_mvar", base)
        p_charge_max = _value(row, "min_p_mw")
        network.add_device(Storage(
            name=f"storage_{idx}",
            bus=buses[int(row.bus)],
            available=bool(row.in_service),
            active_power=-float(row.p_mw) * scaling / base,
            reactive_power=-float(row.q_mvar) * scaling / base,
            reactive_power_limits=(-q_limits[1], -q_limits[0]) if q_limits else None,
            output_active_power_limits=(
                0.0, max(0.0, -p_charge_max) / base if p_charge_max is not None else inf
            ),
        ))

    for idx, row in net.load.iterrows():
        scaling = _scaling(row)
        p = float(row.p_mw) * scaling / base
        q = float(row.q_mvar) * scaling / base
        z_p, i_p, z_q, i_q = _zip_shares(row)
        common = dict(name=f"load_{idx}", bus=buses[int(row.bus)], available=bool(row.in_service))
        if z_p or i_p or z_q or i_q:
            network.add_device(StandardLoad(
                constant_active_power=(1.0 - z_p - i_p) * p,
                constant_reactive_power=(1.0 - z_q - i_q) * q,
                current_active_power=i_p * p,
                current_reactive_power=i_q * q,
                impedance_active_power=z_p * p,
                impedance_reactive_power=z_q * q,
                **common,
            ))
        else:
            network.add_device(PowerLoad(active_power=p, reactive_power=q, **common))

    for idx, row in net.shunt.iterrows():
        step = _value(row, "step", 1.0)
        # consumption p + jq at 1 p.u. corresponds to the admittance p - jq
        network.add_device(FixedAdmittance(
            name=f"shunt_{idx}",
            bus=buses[int(row.bus)],
            available=bool(row.in_service),
            admittance=complex(float(row.p_mw), -float(row.q_mvar)) * step / base,
        ))


# =============================================================================
# Network matrices
# =============================================================================

def _ppc_bus_order(net: pp.pandapowerNet, index: NetworkIndex) -> np.ndarray:
    bus_lookup = net._pd2ppc_lookups["bus"]
    ppc_ix = np.array([int(bus_lookup[number]) for number in index.bus_numbers], dtype=np.int64)
    if len(np.unique(ppc_ix)) != len(ppc_ix):
        raise ValueError("Buses merged by closed bus-bus switches are not supported.")
    return ppc_ix


def _ppc_branch_rows(net: pp.pandapowerNet, index: NetworkIndex) -> List[int]:
    lookups = net._pd2ppc_lookups.get("branch", {}) or {}
    positions = {
        "line": {f"line_{idx}": pos for pos, idx in enumerate(net.line.index)},
        "trafo": {f"trafo_{idx}": pos for pos, idx in enumerate(net.trafo.index)},
    }
    rows = []
    for name in index.branch_names:
        element = name.split("_", 1)[0]
        if element not in positions or name not in positions[element]:
            raise ValueError(f"Branch '{name}' is not a pandapower line or trafo.")
        rows.append(lookups[element][0] + positions[element][name])
    return rows


def admittance_matrices_from_pandapower(
    net: pp.pandapowerNet,
    index: Optional[NetworkIndex] = None,
) -> Tuple[sp.csr_matrix, BranchAdmittances]:
    """
    Return the bus admittance matrix and branch admittances of a pandapower
    network in the dense order of the power flow core.

    The matrices are built by pandapower's own ``makeYbus`` from the
    internal pypower case, so they include everything pandapower models
    (transformer magnetization, bus shunts).

    Parameters
    ----------
    net : pp.pandapowerNet
        Source network. A power flow is run on it if it carries no internal
        pypower case yet.
    index : NetworkIndex, optional
        Lookups of ``network_from_pandapower(net)``. Computed if omitted.

    Returns
    -------
    Ybus : scipy.sparse.csr_matrix
    admittances : BranchAdmittances
    """
    _check_supported(net)
    _ensure_ppc(net)
    if index is None:
        index = index_network(network_from_pandapower(net))

    ppc = net._ppc
    Ybus, Yf, Yt = makeYbus(ppc["baseMVA"], ppc["bus"], ppc["branch"])
    Ybus, Yf, Yt = sp.csr_matrix(Ybus), sp.csr_matrix(Yf), sp.csr_matrix(Yt)

    bus_order = _ppc_bus_order(net, index)
    rows = _ppc_branch_rows(net, index)
    admittances = BranchAdmittances(
        yf=Yf[rows][:, bus_order].tocsr(),
        yt=Yt[rows][:, bus_order].tocsr(),
        from_bus=np.asarray(index.branch_from, dtype=np.int64),
        to_bus=np.asarray(index.branch_to, dtype=np.int64),
    )
    return Ybus[bus_order][:, bus_order].tocsr(), admittances
