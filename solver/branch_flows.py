"""
Branch Flows Module
===================

AC branch power flows from a solved bus voltage vector.
"""

from typing import Tuple

import numpy as np
from numpy.typing import NDArray

from matrices.branch_admittance import BranchAdmittances


def calculate_branch_flows(
    admittances: BranchAdmittances,
    V: NDArray[np.complex128],
) -> Tuple[NDArray[np.complex128], NDArray[np.complex128]]:
    """
    Compute the complex power flowing into each branch at both ends.

    Parameters
    ----------
    admittances : BranchAdmittances
        Branch admittance matrices and terminal buses.
    V : NDArray[np.complex128]
        Complex bus voltages in per-unit.

    Returns
    -------
    S_from_to : NDArray[np.complex128]
        Complex power entering each branch at its from-bus.
    S_to_from : NDArray[np.complex128]
        Complex power entering each branch at its to-bus.
    """
    S_from_to = V[admittances.from_bus] * np.conj(admittances.yf @ V)
    S_to_from = V[admittances.to_bus] * np.conj(admittances.yt @ V)
    return np.asarray(S_from_to), np.asarray(S_to_from)
