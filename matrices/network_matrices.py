"""
Network Matrices Module
=======================

Builds the network matrices consumed by the solvers from a network model:
the bus admittance matrix with its branch admittances (AC) and the bus
susceptance matrix and PTDF (DC).

Branch model
------------
Every branch is a π-model with series admittance y_s = 1 / (r + jx), total
shunt susceptance b and a complex tap N = τ·e^{jφ} on the from side:

    Y_ff = (y_s + jb/2) / |N|²     Y_ft = -y_s / conj(N)
    Y_tf = -y_s / N                Y_tt = y_s + jb/2

Lines have τ = 1 and φ = 0. FixedAdmittance devices enter the diagonal of
the bus admittance matrix.

The DC matrices use the series susceptance 1/x of every branch and ignore
taps and shunts.
"""

from typing import Optional, Tuple

import numpy as np
import scipy.sparse as sp

from assembly.indexer import NetworkIndex, index_network
from core.definitions import BusType
from matrices.adapter import VirtualPTDF
from matrices.branch_admittance import BranchAdmittances
from network.accessor import NetworkAccessor
from network.devices import Branch, FixedAdmittance, Line, PhaseShiftingTransformer, Transformer2W


def _branch_parameters(branch: Branch) -> Tuple[complex, float, complex]:
    """Return (series admittance, total shunt susceptance, complex tap)."""
    if isinstance(branch, Line):
        z = complex(branch.r, branch.x)
        b, tap = branch.b, 1.0 + 0j
    elif isinstance(branch, Transformer2W):
        z = complex(branch.r, branch.x)
        b = 0.0
        ratio = branch.tap if branch.tap != 0 else 1.0
        shift = branch.shift if isinstance(branch, PhaseShiftingTransformer) else 0.0
        tap = ratio * np.exp(1j * shift)
    else:
        raise ValueError(f"Branch '{branch.name}' of kind {type(branch).__name__} has no impedance model.")
    if z == 0:
        raise ValueError(f"Branch '{branch.name}' has zero impedance.")
    return 1.0 / z, b, tap


def build_admittance_matrices(
    network: NetworkAccessor,
    index: Optional[NetworkIndex] = None,
) -> Tuple[sp.csr_matrix, BranchAdmittances]:
    """
    Build the bus admittance matrix and the branch admittance matrices.

    Parameters
    ----------
    network : NetworkAccessor
        Network model.
    index : NetworkIndex, optional
        Lookups of ``network``. Computed if omitted.

    Returns
    -------
    Ybus : scipy.sparse.csr_matrix
        Complex bus admittance matrix (n_buses x n_buses).
    admittances : BranchAdmittances
        Yf, Yt and terminal buses in branch index order.
    """
    if index is None:
        index = index_network(network)
    n_buses, n_branches = index.n_buses, index.n_branches

    Yff = np.zeros(n_branches, dtype=np.complex128)
    Yft = np.zeros(n_branches, dtype=np.complex128)
    Ytf = np.zeros(n_branches, dtype=np.complex128)
    Ytt = np.zeros(n_branches, dtype=np.complex128)
    for branch in network.branches():
        ix = index.branch_lookup[branch.name]
        ys, b, tap = _branch_parameters(branch)
        Ytt[ix] = ys + 0.5j * b
        Yff[ix] = Ytt[ix] / (tap * np.conj(tap))
        Yft[ix] = -ys / np.conj(tap)
        Ytf[ix] = -ys / tap

    Ysh = np.zeros(n_buses, dtype=np.complex128)
    for shunt in network.available_devices(FixedAdmittance):
        Ysh[index.bus_index(network.bus_of(shunt).number)] += shunt.admittance

    f = np.asarray(index.branch_from, dtype=np.int64)
    t = np.asarray(index.branch_to, dtype=np.int64)
    i = np.r_[np.arange(n_branches), np.arange(n_branches)]
    Yf = sp.csr_matrix((np.r_[Yff, Yft], (i, np.r_[f, t])), shape=(n_branches, n_buses))
    Yt = sp.csr_matrix((np.r_[Ytf, Ytt], (i, np.r_[f, t])), shape=(n_branches, n_buses))

    Cf = sp.csr_matrix((np.ones(n_branches), (np.arange(n_branches), f)), shape=(n_branches, n_buses))
    Ct = sp.csr_matrix((np.ones(n_branches), (np.arange(n_branches), t)), shape=(n_branches, n_buses))
    Ybus = (Cf.T @ Yf + Ct.T @ Yt + sp.diags(Ysh)).tocsr()

    return Ybus, BranchAdmittances(yf=Yf, yt=Yt, from_bus=f, to_bus=t)


def _series_susceptance(network: NetworkAccessor, index: NetworkIndex) -> np.ndarray:
    b = np.zeros(index.n_branches, dtype=np.float64)
    for branch in network.branches():
        if getattr(branch, "x", 0.0) == 0.0:
            raise ValueError(f"Branch '{branch.name}' has zero reactance.")
        b[index.branch_lookup[branch.name]] = 1.0 / branch.x
    return b


def build_bus_susceptance(
    network: NetworkAccessor,
    index: Optional[NetworkIndex] = None,
) -> sp.csr_matrix:
    """Build the DC bus susceptance matrix B = Aᵀ diag(1/x) A."""
    if index is None:
        index = index_network(network)
    b = _series_susceptance(network, index)
    n_branches = index.n_branches
    rows = np.r_[np.arange(n_branches), np.arange(n_branches)]
    cols = np.r_[np.asarray(index.branch_from), np.asarray(index.branch_to)]
    A = sp.csr_matrix(
        (np.r_[np.ones(n_branches), -np.ones(n_branches)], (rows, cols)),
        shape=(n_branches, index.n_buses),
    )
    return (A.T @ sp.diags(b) @ A).tocsr()


def build_virtual_ptdf(
    network: NetworkAccessor,
    index: Optional[NetworkIndex] = None,
    max_cache_rows: Optional[int] = None,
) -> VirtualPTDF:
    """
    Build a lazily evaluated PTDF of the network.

    The REF buses of the network are the reference columns.
    """
    if index is None:
        index = index_network(network)
    reference = [
        index.bus_index(bus.number) for bus in network.buses() if bus.bustype == BusType.REF
    ]
    return VirtualPTDF(
        branch_names=index.branch_names,
        bus_names=index.bus_names,
        from_bus=index.branch_from,
        to_bus=index.branch_to,
        susceptance=_series_susceptance(network, index),
        reference_buses=reference,
        max_cache_rows=max_cache_rows,
    )
