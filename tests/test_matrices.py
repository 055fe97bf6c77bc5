"""
Tests for the matrix adapters and the network matrix builders.

Test Strategy
-------------
1. Compare VirtualPTDF rows against a dense PTDF computed with numpy.
2. Check vector and matrix multiplication and the row cache.
3. Check structural properties of the admittance matrices.
"""

import numpy as np
import pytest
import scipy.sparse as sp

from assembly import index_network
from matrices import (
    BranchAdmittances,
    DenseMatrixAdapter,
    VirtualPTDF,
    build_admittance_matrices,
    build_bus_susceptance,
    build_virtual_ptdf,
    multiply,
)
from network import Bus, Line, PhaseShiftingTransformer, PowerNetwork, Transformer2W
from network.devices import FixedAdmittance


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def four_bus_ptdf_data():
    """Branch data of a meshed four-bus network, reference bus 0."""
    branch_names = ["a", "b", "c", "d", "e"]
    bus_names = ["n0", "n1", "n2", "n3"]
    from_bus = [0, 0, 1, 1, 2]
    to_bus = [1, 2, 2, 3, 3]
    susceptance = [10.0, 5.0, 8.0, 4.0, 6.0]
    return branch_names, bus_names, from_bus, to_bus, susceptance


def dense_ptdf(from_bus, to_bus, susceptance, n_buses, ref=0):
    """Reference PTDF via explicit matrix inversion."""
    n_branches = len(from_bus)
    A = np.zeros((n_branches, n_buses))
    A[np.arange(n_branches), from_bus] = 1.0
    A[np.arange(n_branches), to_bus] = -1.0
    BA = np.diag(susceptance) @ A
    B = A.T @ BA
    keep = [i for i in range(n_buses) if i != ref]
    ptdf = np.zeros((n_branches, n_buses))
    ptdf[:, keep] = BA[:, keep] @ np.linalg.inv(B[np.ix_(keep, keep)])
    return ptdf


# =============================================================================
# Matrix adapters
# =============================================================================

class TestDenseMatrixAdapter:
    """Test the materialized adapter."""

    def test_axes_and_rows(self):
        m = DenseMatrixAdapter(np.arange(6.0).reshape(2, 3), ["r0", "r1"], ["c0", "c1", "c2"])

        assert m.shape == (2, 3)
        assert m.axes == (["r0", "r1"], ["c0", "c1", "c2"])
        np.testing.assert_array_equal(m["r1"], [3.0, 4.0, 5.0])

    def test_accepts_sparse(self):
        m = DenseMatrixAdapter(sp.eye(2, format="csr"), ["a", "b"], ["x", "y"])
        np.testing.assert_array_equal(m.row("b"), [0.0, 1.0])

    def test_shape_mismatch_raises(self):
        with pytest.raises(ValueError, match="does not match"):
            DenseMatrixAdapter(np.zeros((2, 2)), ["a"], ["x", "y"])

    def test_unknown_row_raises(self):
        m = DenseMatrixAdapter(np.zeros((1, 1)), ["a"], ["x"])
        with pytest.raises(KeyError):
            m.row("b")


class TestMultiply:
    """Test the row-wise multiplication."""

    def test_vector(self):
        M = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
        m = DenseMatrixAdapter(M, ["a", "b", "c"], ["x", "y"])
        x = np.array([0.5, -1.0])

        np.testing.assert_allclose(multiply(m, x), M @ x)
        np.testing.assert_allclose(m.multiply(x), M @ x)

    def test_matrix(self):
        M = np.array([[1.0, 2.0], [3.0, 4.0]])
        m = DenseMatrixAdapter(M, ["a", "b"], ["x", "y"])
        X = np.array([[1.0, 0.0, 2.0], [0.0, 1.0, -1.0]])

        result = multiply(m, X)

        assert result.shape == (2, 3)
        np.testing.assert_allclose(result, M @ X)

    def test_dimension_mismatch_raises(self):
        m = DenseMatrixAdapter(np.eye(2), ["a", "b"], ["x", "y"])
        with pytest.raises(ValueError, match="Dimension mismatch"):
            multiply(m, np.ones(3))

    def test_wrong_ndim_raises(self):
        m = DenseMatrixAdapter(np.eye(2), ["a", "b"], ["x", "y"])
        with pytest.raises(ValueError):
            multiply(m, np.ones((2, 2, 2)))

    def test_empty_row_axis(self):
        m = DenseMatrixAdapter(np.zeros((0, 2)), [], ["x", "y"])
        assert multiply(m, np.ones((2, 4))).shape == (0, 4)
        assert multiply(m, np.ones(2)).shape == (0,)


class TestVirtualPTDF:
    """Test the lazily evaluated PTDF."""

    def test_rows_match_dense_reference(self, four_bus_ptdf_data):
        branch_names, bus_names, f, t, b = four_bus_ptdf_data
        ptdf = VirtualPTDF(branch_names, bus_names, f, t, b, reference_buses=[0])
        reference = dense_ptdf(f, t, b, n_buses=4)

        for i, name in enumerate(branch_names):
            np.testing.assert_allclose(ptdf.row(name), reference[i], atol=1e-12)

    def test_reference_column_is_zero(self, four_bus_ptdf_data):
        branch_names, bus_names, f, t, b = four_bus_ptdf_data
        ptdf = VirtualPTDF(branch_names, bus_names, f, t, b, reference_buses=[2])
        for name in branch_names:
            assert ptdf[name][2] == 0.0

    def test_multiply_matches_dense(self, four_bus_ptdf_data):
        branch_names, bus_names, f, t, b = four_bus_ptdf_data
        ptdf = VirtualPTDF(branch_names, bus_names, f, t, b, reference_buses=[0])
        reference = dense_ptdf(f, t, b, n_buses=4)
        P = np.array([[0.0, 0.2], [0.5, -0.1], [-0.3, 0.4], [-0.2, -0.5]])

        np.testing.assert_allclose(ptdf.multiply(P), reference @ P, atol=1e-12)
        np.testing.assert_allclose(ptdf.multiply(P[:, 0]), reference @ P[:, 0], atol=1e-12)

    def test_rows_are_cached(self, four_bus_ptdf_data):
        branch_names, bus_names, f, t, b = four_bus_ptdf_data
        ptdf = VirtualPTDF(branch_names, bus_names, f, t, b, reference_buses=[0])

        ptdf.row("a")
        ptdf.row("a")
        ptdf.row("b")

        assert ptdf.n_evaluated_rows == 2

    def test_cache_is_bounded(self, four_bus_ptdf_data):
        branch_names, bus_names, f, t, b = four_bus_ptdf_data
        ptdf = VirtualPTDF(branch_names, bus_names, f, t, b, reference_buses=[0], max_cache_rows=1)

        ptdf.row("a")
        ptdf.row("b")
        ptdf.row("a")

        assert ptdf.n_evaluated_rows == 3

    def test_invalid_arguments_raise(self, four_bus_ptdf_data):
        branch_names, bus_names, f, t, b = four_bus_ptdf_data
        with pytest.raises(ValueError, match="reference bus"):
            VirtualPTDF(branch_names, bus_names, f, t, b, reference_buses=[])
        with pytest.raises(ValueError, match="one entry per branch"):
            VirtualPTDF(branch_names, bus_names, f[:-1], t, b, reference_buses=[0])
        with pytest.raises(ValueError, match="max_cache_rows"):
            VirtualPTDF(branch_names, bus_names, f, t, b, reference_buses=[0], max_cache_rows=0)

    def test_cached_rows_are_read_only(self, four_bus_ptdf_data):
        ptdf = VirtualPTDF(*four_bus_ptdf_data, reference_buses=[0])
        row = ptdf.row("a")
        expected = row.copy()

        with pytest.raises(ValueError):
            row[1] = 99.0
        np.testing.assert_array_equal(ptdf.row("a"), expected)

    def test_unknown_row_raises(self, four_bus_ptdf_data):
        ptdf = VirtualPTDF(*four_bus_ptdf_data, reference_buses=[0])
        with pytest.raises(KeyError):
            ptdf.row("zzz")


# =============================================================================
# Network matrices
# =============================================================================

class TestBuildAdmittanceMatrices:
    """Test the admittance matrices built from a network."""

    def test_shapes(self, three_bus_network):
        Ybus, admittances = build_admittance_matrices(three_bus_network)

        assert Ybus.shape == (3, 3)
        assert isinstance(admittances, BranchAdmittances)
        assert admittances.yf.shape == (3, 3)
        assert admittances.n_branches == 3

    def test_symmetric_without_taps(self, three_bus_network):
        Ybus, _ = build_admittance_matrices(three_bus_network)
        Y = Ybus.toarray()
        np.testing.assert_allclose(Y, Y.T)

    def test_row_sums_equal_shunts(self, three_bus_network):
        # each bus carries half of the charging of its two lines
        Ybus, _ = build_admittance_matrices(three_bus_network)
        np.testing.assert_allclose(Ybus.toarray().sum(axis=1), 1j * np.full(3, 0.04))

    def test_single_line_entries(self, two_bus_network):
        Ybus, admittances = build_admittance_matrices(two_bus_network)
        ys = 1.0 / complex(0.01, 0.1)

        Y = Ybus.toarray()
        assert Y[0, 1] == pytest.approx(-ys)
        assert Y[0, 0] == pytest.approx(ys + 0.01j)
        np.testing.assert_allclose(admittances.yf.toarray(), [[ys + 0.01j, -ys]])
        np.testing.assert_allclose(admittances.yt.toarray(), [[-ys, ys + 0.01j]])

    def test_transformer_tap_and_shift(self):
        net = PowerNetwork()
        hv = net.add_bus(Bus(number=1, name="hv"))
        lv = net.add_bus(Bus(number=2, name="lv"))
        net.add_branch(PhaseShiftingTransformer(
            name="t", from_bus=hv, to_bus=lv, r=0.0, x=0.1, tap=1.05, shift=0.1,
        ))
        Ybus, _ = build_admittance_matrices(net)
        ys = 1.0 / 0.1j
        N = 1.05 * np.exp(0.1j)

        Y = Ybus.toarray()
        assert Y[0, 0] == pytest.approx(ys / 1.05 ** 2)
        assert Y[0, 1] == pytest.approx(-ys / np.conj(N))
        assert Y[1, 0] == pytest.approx(-ys / N)
        assert Y[1, 1] == pytest.approx(ys)

    def test_fixed_admittance_on_diagonal(self, two_bus_network):
        bus = two_bus_network.get_bus("load")
        two_bus_network.add_device(FixedAdmittance(name="sh", bus=bus, admittance=0.05 - 0.2j))
        two_bus_network.add_device(
            FixedAdmittance(name="off", bus=bus, admittance=1.0, available=False)
        )
        Ybus, _ = build_admittance_matrices(two_bus_network)
        ys = 1.0 / complex(0.01, 0.1)

        assert Ybus[1, 1] == pytest.approx(ys + 0.01j + 0.05 - 0.2j)

    def test_zero_impedance_raises(self):
        net = PowerNetwork()
        a = net.add_bus(Bus(number=1, name="a"))
        b = net.add_bus(Bus(number=2, name="b"))
        net.add_branch(Transformer2W(name="t", from_bus=a, to_bus=b))
        with pytest.raises(ValueError, match="zero impedance"):
            build_admittance_matrices(net)


class TestDcMatrices:
    """Test the DC bus susceptance matrix and PTDF builders."""

    def test_bus_susceptance_is_laplacian(self, three_bus_network):
        B = build_bus_susceptance(three_bus_network).toarray()

        np.testing.assert_allclose(B.sum(axis=1), 0.0, atol=1e-12)
        assert B[0, 1] == pytest.approx(-1.0 / 0.2)
        assert B[0, 0] == pytest.approx(1.0 / 0.2 + 1.0 / 0.15)

    def test_virtual_ptdf_uses_ref_bus(self, three_bus_network):
        index = index_network(three_bus_network)
        ptdf = build_virtual_ptdf(three_bus_network, index)
        reference = dense_ptdf(index.branch_from, index.branch_to, [5.0, 4.0, 1.0 / 0.15], 3)

        assert ptdf.axes == (index.branch_names, index.bus_names)
        for i, name in enumerate(index.branch_names):
            np.testing.assert_allclose(ptdf.row(name), reference[i], atol=1e-12)

    def test_zero_reactance_raises(self):
        net = PowerNetwork()
        a = net.add_bus(Bus(number=1, name="a"))
        b = net.add_bus(Bus(number=2, name="b"))
        net.add_branch(Line(name="l", from_bus=a, to_bus=b, r=0.1, x=0.0))
        with pytest.raises(ValueError, match="zero reactance"):
            build_bus_susceptance(net)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
