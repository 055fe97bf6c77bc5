"""
Matrices Module
===============

Matrix-like collaborators consumed by the solvers and the builders that
derive them from a network model.

Classes
-------
MatrixAdapter
    Abstract matrix with named axes, row access and multiplication.
DenseMatrixAdapter
    Fully materialized MatrixAdapter.
VirtualPTDF
    PTDF matrix computing (and caching) its rows on demand.
BranchAdmittances
    Branch admittance matrices for AC branch flows.

Functions
---------
multiply
    Row-wise matrix-vector and matrix-matrix product of a MatrixAdapter.
build_admittance_matrices
    Bus admittance matrix and BranchAdmittances of a network.
build_bus_susceptance
    DC bus susceptance matrix of a network.
build_virtual_ptdf
    VirtualPTDF of a network.
"""

from matrices.adapter import DenseMatrixAdapter, MatrixAdapter, VirtualPTDF, multiply
from matrices.branch_admittance import BranchAdmittances
from matrices.network_matrices import (
    build_admittance_matrices,
    build_bus_susceptance,
    build_virtual_ptdf,
)

__all__ = [
    "MatrixAdapter",
    "DenseMatrixAdapter",
    "VirtualPTDF",
    "BranchAdmittances",
    "multiply",
    "build_admittance_matrices",
    "build_bus_susceptance",
    "build_virtual_ptdf",
]
