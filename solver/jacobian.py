"""
Jacobian Module
===============

Power mismatch equations and their Jacobian for the AC Newton-Raphson
power flow.

Mathematical Background
-----------------------
With the complex bus voltage V = Vm·e^{jVa}, the admittance matrix Y and
the scheduled net injection S_bus, the complex power mismatch is

    ΔS = V · conj(Y V) - S_bus

The state vector and the mismatch vector are

    x = [Va(pv ∪ pq), Vm(pq)]
    F = [Re ΔS(pv ∪ pq), Im ΔS(pq)]

and the Jacobian J = ∂F/∂x is assembled from

    ∂S/∂Vm = diag(V) conj(Y diag(V/|V|)) + diag(conj(I)) diag(V/|V|)
    ∂S/∂Va = j diag(V) conj(diag(I) - Y diag(V)),   with I = Y V

as

    J = [Re ∂S/∂Va[pvpq, pvpq]   Re ∂S/∂Vm[pvpq, pq]]
        [Im ∂S/∂Va[pq,   pvpq]   Im ∂S/∂Vm[pq,   pq]]

References
----------
[1] Zimmerman, Murillo-Sánchez, "MATPOWER User's Manual", dSbus_dV
"""

from typing import Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray

from core.definitions import BusType


def bus_index_sets(
    bus_types: Sequence[int],
) -> Tuple[NDArray[np.int64], NDArray[np.int64], NDArray[np.int64]]:
    """
    Split the buses into REF, PV and PQ index sets.

    Returns
    -------
    ref, pv, pq : NDArray[np.int64]
        Dense bus indices of each class, in ascending order.
    """
    bus_types = np.asarray(bus_types)
    ref = np.flatnonzero(bus_types == BusType.REF)
    pv = np.flatnonzero(bus_types == BusType.PV)
    pq = np.flatnonzero(bus_types == BusType.PQ)
    return ref, pv, pq


def dSbus_dV(
    Ybus: sp.spmatrix,
    V: NDArray[np.complex128],
) -> Tuple[sp.csr_matrix, sp.csr_matrix]:
    """
    Partial derivatives of the complex bus power injection.

    Returns
    -------
    dS_dVm : scipy.sparse.csr_matrix
        ∂S/∂|V|.
    dS_dVa : scipy.sparse.csr_matrix
        ∂S/∂angle(V).
    """
    Ibus = Ybus @ V
    diagV = sp.diags(V)
    diagIbus = sp.diags(Ibus)
    diagVnorm = sp.diags(V / np.abs(V))

    dS_dVm = diagV @ (Ybus @ diagVnorm).conj() + diagIbus.conj() @ diagVnorm
    dS_dVa = 1j * diagV @ (diagIbus - Ybus @ diagV).conj()
    return sp.csr_matrix(dS_dVm), sp.csr_matrix(dS_dVa)


class PowerFlowJacobian:
    """
    Mismatch function and Jacobian of the AC power flow equations.

    The bus index sets depend on the bus classification, which can change
    during a solve (PV to PQ switching). They are recomputed only when the
    classification differs from the one seen last, so the same instance can
    be reused across iterations and timesteps.

    Parameters
    ----------
    Ybus : scipy.sparse matrix or ndarray
        Complex bus admittance matrix.

    Attributes
    ----------
    ref, pv, pq, pvpq : NDArray[np.int64]
        Current bus index sets.
    n_theta : int
        Number of angle state variables (len(pvpq)).
    n_v : int
        Number of magnitude state variables (len(pq)).
    """

    def __init__(self, Ybus) -> None:
        self.Ybus = sp.csr_matrix(Ybus, dtype=np.complex128)
        self._signature: Optional[bytes] = None
        self.ref = self.pv = self.pq = self.pvpq = np.array([], dtype=np.int64)
        self.n_theta = 0
        self.n_v = 0

    @property
    def x_size(self) -> int:
        """Return the size of the state vector."""
        return self.n_theta + self.n_v

    def update_bus_types(self, bus_types: Sequence[int]) -> bool:
        """
        Set the bus classification.

        Returns
        -------
        changed : bool
            True if the index sets were recomputed.
        """
        bus_types = np.asarray(bus_types, dtype=np.int8)
        signature = bus_types.tobytes()
        if signature == self._signature:
            return False
        self._signature = signature
        self.ref, self.pv, self.pq = bus_index_sets(bus_types)
        self.pvpq = np.r_[self.pv, self.pq].astype(np.int64)
        self.n_theta = len(self.pvpq)
        self.n_v = len(self.pq)
        return True

    def state(self, Vm: NDArray[np.float64], Va: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the state vector x = [Va(pvpq), Vm(pq)]."""
        return np.r_[Va[self.pvpq], Vm[self.pq]]

    def apply_state(
        self,
        x: NDArray[np.float64],
        Vm: NDArray[np.float64],
        Va: NDArray[np.float64],
    ) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Return copies of (Vm, Va) with the state vector x written in."""
        Vm = Vm.copy()
        Va = Va.copy()
        Va[self.pvpq] = x[:self.n_theta]
        Vm[self.pq] = x[self.n_theta:]
        return Vm, Va

    def calculated_power(self, V: NDArray[np.complex128]) -> NDArray[np.complex128]:
        """Return the calculated complex bus injection V · conj(Y V)."""
        return V * np.conj(self.Ybus @ V)

    def mismatch(
        self,
        V: NDArray[np.complex128],
        Sbus: NDArray[np.complex128],
    ) -> NDArray[np.float64]:
        """Return the mismatch vector F = [Re ΔS(pvpq), Im ΔS(pq)]."""
        mis = self.calculated_power(V) - Sbus
        return np.r_[mis[self.pvpq].real, mis[self.pq].imag]

    def build(self, V: NDArray[np.complex128]) -> sp.csc_matrix:
        """Return the Jacobian ∂F/∂x at V."""
        dS_dVm, dS_dVa = dSbus_dV(self.Ybus, V)
        pvpq, pq = self.pvpq, self.pq
        J11 = dS_dVa[pvpq][:, pvpq].real
        if len(pq) == 0:
            return sp.csc_matrix(J11)
        J12 = dS_dVm[pvpq][:, pq].real
        J21 = dS_dVa[pq][:, pvpq].imag
        J22 = dS_dVm[pq][:, pq].imag
        return sp.bmat([[J11, J12], [J21, J22]], format="csc")

    def ref_active_power_gradient(self, V: NDArray[np.complex128]) -> NDArray[np.float64]:
        """
        Return ∂P_ref/∂x, the derivative of the total REF-bus active
        injection with respect to the state vector.
        """
        dS_dVm, dS_dVa = dSbus_dV(self.Ybus, V)
        ref = self.ref
        g_theta = np.asarray(dS_dVa[ref][:, self.pvpq].real.sum(axis=0)).ravel()
        g_v = np.asarray(dS_dVm[ref][:, self.pq].real.sum(axis=0)).ravel()
        return np.r_[g_theta, g_v]
