"""
Matrix Adapter Module
=====================

Uniform access to sensitivity matrices that may or may not be stored
densely.

A MatrixAdapter exposes named row and column axes, row access by name and
multiplication with a vector or a matrix. ``multiply`` only ever touches
one row at a time, so a lazily evaluated matrix (VirtualPTDF) and a fully
materialized one (DenseMatrixAdapter) can be used interchangeably.

Mathematical Background
-----------------------
For a network with incidence matrix A (branches x buses, +1 at the from
bus, -1 at the to bus) and branch susceptances b, the DC power flow is

    B_bus θ = P,   with B_bus = Aᵀ diag(b) A

and the branch flows are f = diag(b) A θ. Removing the reference bus r,

    PTDF = (diag(b) A)[:, ¬r] · (B_bus[¬r, ¬r])^{-1},   PTDF[:, r] = 0

A single PTDF row l is obtained by solving B_bus[¬r, ¬r] x = (diag(b) A)[l, ¬r]ᵀ
(the reduced susceptance matrix is symmetric).
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, Hashable, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray
from scipy.sparse.linalg import splu


class MatrixAdapter(ABC):
    """
    Matrix with named axes supporting row access and multiplication.
    """

    @property
    @abstractmethod
    def axes(self) -> Tuple[Sequence[Hashable], Sequence[Hashable]]:
        """Return the (row names, column names) of the matrix."""

    @abstractmethod
    def row(self, name: Hashable) -> NDArray[np.float64]:
        """Return the row with the given name as a dense vector."""

    @property
    def shape(self) -> Tuple[int, int]:
        """Return (n_rows, n_columns)."""
        rows, cols = self.axes
        return len(rows), len(cols)

    def __getitem__(self, name: Hashable) -> NDArray[np.float64]:
        return self.row(name)

    def multiply(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the product of this matrix with a vector or a matrix."""
        return multiply(self, x)


def multiply(matrix: MatrixAdapter, x: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Multiply a MatrixAdapter with a vector or a matrix, one row at a time.

    Parameters
    ----------
    matrix : MatrixAdapter
        Left operand.
    x : NDArray[np.float64]
        Vector of length n_columns or matrix of shape (n_columns, k).

    Returns
    -------
    y : NDArray[np.float64]
        Vector of length n_rows or matrix of shape (n_rows, k), ordered
        like the row axis of ``matrix``.

    Raises
    ------
    ValueError
        If the operand dimensions do not agree.
    """
    x = np.asarray(x, dtype=np.float64)
    rows, cols = matrix.axes
    if x.ndim not in (1, 2):
        raise ValueError(f"Expected a vector or a matrix, got {x.ndim} dimensions.")
    if x.shape[0] != len(cols):
        raise ValueError(
            f"Dimension mismatch: matrix has {len(cols)} columns, operand has {x.shape[0]} rows."
        )

    if x.ndim == 1:
        y = np.zeros(len(rows), dtype=np.float64)
        for i, name in enumerate(rows):
            y[i] = np.dot(matrix.row(name), x)
        return y

    if len(rows) == 0:
        return np.zeros((0, x.shape[1]), dtype=np.float64)
    return np.vstack([matrix.row(name) @ x for name in rows])


class DenseMatrixAdapter(MatrixAdapter):
    """
    Fully materialized matrix with named axes.

    Parameters
    ----------
    matrix : array-like
        Dense or sparse matrix of shape (len(row_names), len(col_names)).
    row_names, col_names : Sequence[Hashable]
        Axis labels.
    """

    def __init__(
        self,
        matrix,
        row_names: Sequence[Hashable],
        col_names: Sequence[Hashable],
    ) -> None:
        if sp.issparse(matrix):
            matrix = matrix.toarray()
        self.matrix = np.asarray(matrix, dtype=np.float64)
        if self.matrix.shape != (len(row_names), len(col_names)):
            raise ValueError(
                f"Matrix shape {self.matrix.shape} does not match axes "
                f"({len(row_names)}, {len(col_names)})."
            )
        self._rows = list(row_names)
        self._cols = list(col_names)
        self._row_lookup: Dict[Hashable, int] = {n: i for i, n in enumerate(self._rows)}

    @property
    def axes(self) -> Tuple[Sequence[Hashable], Sequence[Hashable]]:
        return self._rows, self._cols

    def row(self, name: Hashable) -> NDArray[np.float64]:
        try:
            return self.matrix[self._row_lookup[name]]
        except KeyError:
            raise KeyError(f"Unknown row '{name}'.") from None


class VirtualPTDF(MatrixAdapter):
    """
    PTDF matrix whose rows are computed on demand.

    Only the reduced bus susceptance matrix is factorized at construction.
    Each requested row costs one forward/backward substitution and is kept
    in a least-recently-used cache.

    Parameters
    ----------
    branch_names : Sequence[Hashable]
        Row axis, one entry per branch.
    bus_names : Sequence[Hashable]
        Column axis, one entry per bus.
    from_bus : Sequence[int]
        Column index of the from-bus of each branch.
    to_bus : Sequence[int]
        Column index of the to-bus of each branch.
    susceptance : Sequence[float]
        Series susceptance 1/x of each branch (per-unit).
    reference_buses : Sequence[int]
        Column indices of the reference buses. Their PTDF columns are zero.
    max_cache_rows : int, optional
        Maximum number of cached rows; None caches every row (default).

    Attributes
    ----------
    n_evaluated_rows : int
        Number of rows computed so far (cache misses).
    """

    def __init__(
        self,
        branch_names: Sequence[Hashable],
        bus_names: Sequence[Hashable],
        from_bus: Sequence[int],
        to_bus: Sequence[int],
        susceptance: Sequence[float],
        reference_buses: Sequence[int],
        max_cache_rows: Optional[int] = None,
    ) -> None:
        n_branches, n_buses = len(branch_names), len(bus_names)
        if not (len(from_bus) == len(to_bus) == len(susceptance) == n_branches):
            raise ValueError("Branch data must have one entry per branch.")
        if len(reference_buses) == 0:
            raise ValueError("At least one reference bus is required.")
        if max_cache_rows is not None and max_cache_rows < 1:
            raise ValueError(f"max_cache_rows must be positive, got {max_cache_rows}")

        self._rows = list(branch_names)
        self._cols = list(bus_names)
        self._row_lookup: Dict[Hashable, int] = {n: i for i, n in enumerate(self._rows)}
        self.max_cache_rows = max_cache_rows
        self.n_evaluated_rows = 0
        self._cache: "OrderedDict[Hashable, NDArray[np.float64]]" = OrderedDict()

        branch_ix = np.arange(n_branches)
        incidence = sp.csr_matrix(
            (
                np.r_[np.ones(n_branches), -np.ones(n_branches)],
                (np.r_[branch_ix, branch_ix], np.r_[np.asarray(from_bus), np.asarray(to_bus)]),
            ),
            shape=(n_branches, n_buses),
        )
        self._BA = (sp.diags(np.asarray(susceptance, dtype=np.float64)) @ incidence).tocsr()
        aba = (incidence.T @ self._BA).tocsc()

        self._non_ref = np.setdiff1d(np.arange(n_buses), np.asarray(reference_buses))
        if len(self._non_ref) > 0:
            self._lu = splu(aba[self._non_ref][:, self._non_ref].tocsc())
        else:
            self._lu = None

    @property
    def axes(self) -> Tuple[Sequence[Hashable], Sequence[Hashable]]:
        return self._rows, self._cols

    def row(self, name: Hashable) -> NDArray[np.float64]:
        if name in self._cache:
            self._cache.move_to_end(name)
            return self._cache[name]
        try:
            ix = self._row_lookup[name]
        except KeyError:
            raise KeyError(f"Unknown row '{name}'.") from None

        values = np.zeros(len(self._cols), dtype=np.float64)
        if self._lu is not None:
            rhs = self._BA[ix].toarray().ravel()[self._non_ref]
            values[self._non_ref] = self._lu.solve(rhs)
        self.n_evaluated_rows += 1

        # cached rows are shared with every caller
        values.flags.writeable = False
        self._cache[name] = values
        if self.max_cache_rows is not None and len(self._cache) > self.max_cache_rows:
            self._cache.popitem(last=False)
        return values
