"""
Branch Admittance Module
========================

Container for the branch admittance matrices used to compute AC branch
flows from a bus voltage vector:

    S_from = V[f] · conj(Y_f V),    S_to = V[t] · conj(Y_t V)
"""

from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray


@dataclass(frozen=True)
class BranchAdmittances:
    """
    Branch admittance matrices of a network.

    Attributes
    ----------
    yf : scipy.sparse.csr_matrix
        Complex matrix (n_branches x n_buses) giving the current injected at
        the from-end of each branch.
    yt : scipy.sparse.csr_matrix
        Complex matrix (n_branches x n_buses) giving the current injected at
        the to-end of each branch.
    from_bus : NDArray[np.int64]
        Dense bus index of the from-bus of each branch.
    to_bus : NDArray[np.int64]
        Dense bus index of the to-bus of each branch.
    """
    yf: sp.csr_matrix
    yt: sp.csr_matrix
    from_bus: NDArray[np.int64]
    to_bus: NDArray[np.int64]

    def __post_init__(self) -> None:
        """Validate dimensions after initialisation."""
        if self.yf.shape != self.yt.shape:
            raise ValueError(f"yf {self.yf.shape} and yt {self.yt.shape} must have the same shape.")
        n_branches = self.yf.shape[0]
        if len(self.from_bus) != n_branches or len(self.to_bus) != n_branches:
            raise ValueError("from_bus and to_bus must have one entry per branch.")

    @property
    def n_branches(self) -> int:
        """Return the number of branches."""
        return self.yf.shape[0]
