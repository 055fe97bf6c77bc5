"""
Tests for the Newton-Raphson AC power flow.

Test Strategy
-------------
1. Check the analytical Jacobian against central finite differences.
2. Solve small networks and verify the power balance at every bus with
   the written-back injections.
3. Check PV to PQ switching, divergence handling, warm starts, branch
   flows and loss factors.
"""

from unittest.mock import patch

import numpy as np
import pytest
import scipy.sparse as sp

from assembly import make_powerflow_data
from core import BusType, DiagnosticKind, Diagnostics, PowerFlowWarning
from matrices import build_admittance_matrices
from network import Bus, Line, PowerLoad, PowerNetwork, ThermalStandard
from solver import (
    NewtonRaphsonParameters,
    NewtonRaphsonSolver,
    PowerFlowJacobian,
    RefinementParameters,
    SolverStatus,
    TrustRegionStep,
    solve_ac_power_flow,
    trust_region_step,
)

from conftest import build_three_bus_network, build_two_bus_network, make_ac_data

# upper limit lies below the reactive injection bus2 needs to hold 1.01 p.u.
TIGHT_Q_LIMITS = (-0.5, -0.4)


# =============================================================================
# Helpers
# =============================================================================

def build_isolated_bus_network() -> PowerNetwork:
    """Two-bus network plus an unloaded PQ bus without branches (singular Jacobian)."""
    net = build_two_bus_network()
    net.add_bus(Bus(number=3, name="isolated", bustype=BusType.PQ))
    return net


def build_limited_slack_network(p_max: float) -> PowerNetwork:
    """
    Bus 1 (REF, generator limited to p_max) --- Line --- Bus 2 (PQ, load 0.5)
    """
    net = PowerNetwork(name="limited_slack")
    b1 = net.add_bus(Bus(number=1, name="slack", bustype=BusType.REF, magnitude=1.0))
    b2 = net.add_bus(Bus(number=2, name="load", bustype=BusType.PQ))
    net.add_branch(Line(name="l12", from_bus=b1, to_bus=b2, r=0.01, x=0.1, b=0.02))
    net.add_device(ThermalStandard(
        name="g1", bus=b1, reactive_power_limits=(-1.0, 1.0), active_power_limits=(0.0, p_max),
    ))
    net.add_device(PowerLoad(name="ld2", bus=b2, active_power=0.5, reactive_power=0.2))
    return net


def bus_power_balance(data, t=0):
    """Return the complex mismatch of every bus using the written-back injections."""
    V = data.bus_magnitude[:, t] * np.exp(1j * data.bus_angles[:, t])
    S_calc = V * np.conj(data.power_network_matrix @ V)
    S_sched = (
        data.bus_activepower_injection[:, t] - data.bus_activepower_withdrawals[:, t]
        + 1j * (data.bus_reactivepower_injection[:, t] - data.bus_reactivepower_withdrawals[:, t])
    )
    return S_calc - S_sched


# =============================================================================
# Jacobian
# =============================================================================

class TestPowerFlowJacobian:
    """Test the mismatch function and its Jacobian."""

    def setup_method(self):
        Ybus, _ = build_admittance_matrices(build_three_bus_network())
        self.jac = PowerFlowJacobian(Ybus)
        self.jac.update_bus_types([BusType.REF, BusType.PV, BusType.PQ])
        self.Vm = np.array([1.02, 1.01, 0.97])
        self.Va = np.array([0.0, -0.03, -0.08])
        self.Sbus = np.array([0.0, 0.8, -1.2 - 0.4j])

    def test_index_sets(self):
        np.testing.assert_array_equal(self.jac.ref, [0])
        np.testing.assert_array_equal(self.jac.pvpq, [1, 2])
        np.testing.assert_array_equal(self.jac.pq, [2])
        assert self.jac.x_size == 3

    def test_update_is_cached(self):
        assert not self.jac.update_bus_types([BusType.REF, BusType.PV, BusType.PQ])
        assert self.jac.update_bus_types([BusType.REF, BusType.PQ, BusType.PQ])
        assert self.jac.x_size == 4

    def test_state_round_trip(self):
        x = self.jac.state(self.Vm, self.Va)
        Vm, Va = self.jac.apply_state(x, np.ones(3), np.zeros(3))

        np.testing.assert_allclose(Va[1:], self.Va[1:])
        assert Vm[2] == pytest.approx(self.Vm[2])
        assert Vm[1] == 1.0

    def test_jacobian_matches_finite_differences(self):
        x0 = self.jac.state(self.Vm, self.Va)

        def F(x):
            vm, va = self.jac.apply_state(x, self.Vm, self.Va)
            return self.jac.mismatch(vm * np.exp(1j * va), self.Sbus)

        h = 1e-7
        J_fd = np.zeros((len(x0), len(x0)))
        for k in range(len(x0)):
            e = np.zeros(len(x0))
            e[k] = h
            J_fd[:, k] = (F(x0 + e) - F(x0 - e)) / (2 * h)

        J = self.jac.build(self.Vm * np.exp(1j * self.Va)).toarray()
        np.testing.assert_allclose(J, J_fd, atol=1e-6)

    def test_jacobian_without_pq_buses(self):
        self.jac.update_bus_types([BusType.REF, BusType.PV, BusType.PV])
        J = self.jac.build(self.Vm * np.exp(1j * self.Va))
        assert J.shape == (2, 2)


# =============================================================================
# Convergence
# =============================================================================

class TestConvergence:
    """Test plain convergence on small networks."""

    def test_two_bus(self, two_bus_network, diagnostics):
        data = make_ac_data(two_bus_network)
        results = solve_ac_power_flow(data, diagnostics=diagnostics)

        assert results[0].status is SolverStatus.CONVERGED
        assert results[0].mismatch_norm <= 1e-9
        assert data.converged[0]
        assert data.valid_ix[0]
        assert 0.9 < data.bus_magnitude[1, 0] < 1.0
        assert data.bus_angles[1, 0] < 0.0
        assert data.bus_angles[0, 0] == 0.0
        assert len(diagnostics) == 0

    def test_three_bus_power_balance(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network)
        results = solve_ac_power_flow(data, diagnostics=diagnostics)

        assert results[0].converged
        assert results[0].iterations > 0
        np.testing.assert_allclose(bus_power_balance(data), 0.0, atol=1e-8)

    def test_setpoints_kept(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network)
        solve_ac_power_flow(data, diagnostics=diagnostics)

        assert data.bus_magnitude[0, 0] == pytest.approx(1.02)
        assert data.bus_magnitude[1, 0] == pytest.approx(1.01)
        assert data.bus_activepower_injection[1, 0] == pytest.approx(0.8)

    def test_plain_newton(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network)
        params = NewtonRaphsonParameters(method="newton")
        results = solve_ac_power_flow(data, params, diagnostics)

        assert results[0].converged
        np.testing.assert_allclose(bus_power_balance(data), 0.0, atol=1e-8)

    def test_methods_agree(self, three_bus_network, diagnostics):
        tr = make_ac_data(three_bus_network)
        nr = make_ac_data(three_bus_network)
        solve_ac_power_flow(tr, diagnostics=diagnostics)
        solve_ac_power_flow(nr, NewtonRaphsonParameters(method="newton"), diagnostics)

        np.testing.assert_allclose(tr.bus_magnitude, nr.bus_magnitude, atol=1e-8)
        np.testing.assert_allclose(tr.bus_angles, nr.bus_angles, atol=1e-8)

    def test_ref_injection_written_back(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network)
        solve_ac_power_flow(data, diagnostics=diagnostics)

        losses = np.sum(
            data.branch_activepower_flow_from_to[:, 0] + data.branch_activepower_flow_to_from[:, 0]
        )
        assert losses > 0.0
        assert data.bus_activepower_injection[0, 0] == pytest.approx(1.2 - 0.8 + losses)

    def test_solve_selected_timesteps(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network, time_steps=3)
        data.fill_timestep_from(0)
        results = solve_ac_power_flow(data, diagnostics=diagnostics, time_steps=[2])

        assert [r.timestep for r in results] == [2]
        assert data.converged.tolist() == [False, False, True]

    def test_out_of_range_timestep_raises(self, three_bus_network):
        data = make_ac_data(three_bus_network)
        with pytest.raises(ValueError, match="out of range"):
            solve_ac_power_flow(data, time_steps=[1])

    def test_ref_active_power_outside_bounds_reported(self, diagnostics):
        data = make_ac_data(build_limited_slack_network(p_max=0.3))
        results = solve_ac_power_flow(data, diagnostics=diagnostics)

        assert results[0].converged
        events = diagnostics.of_kind(DiagnosticKind.REF_ACTIVE_POWER_OUT_OF_BOUNDS)
        assert len(events) == 1
        assert events[0].component == "slack"
        assert events[0].timestep == 0
        assert events[0].value == pytest.approx(data.bus_activepower_injection[0, 0])
        assert events[0].value > 0.5

    def test_ref_active_power_within_bounds_not_reported(self, diagnostics):
        data = make_ac_data(build_limited_slack_network(p_max=1.0))
        solve_ac_power_flow(data, diagnostics=diagnostics)

        assert data.converged[0]
        assert diagnostics.of_kind(DiagnosticKind.REF_ACTIVE_POWER_OUT_OF_BOUNDS) == []

    def test_rejected_steps_not_counted(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network)
        calls = []

        def reject_first_step(residual_fn, x, F, J, newton_step, radius, eta, max_radius):
            if not calls:
                step = TrustRegionStep(x, F, 0.5 * radius, False, -1.0, radius)
            else:
                step = trust_region_step(residual_fn, x, F, J, newton_step, radius, eta, max_radius)
            calls.append((x.copy(), radius, step.accepted))
            return step

        with patch("solver.newton_raphson.trust_region_step", side_effect=reject_first_step):
            results = solve_ac_power_flow(data, diagnostics=diagnostics)

        assert results[0].converged
        n_accepted = sum(accepted for _, _, accepted in calls)
        assert results[0].iterations == n_accepted
        assert n_accepted < len(calls)
        # the retry starts from the unchanged state with the reduced radius
        np.testing.assert_array_equal(calls[1][0], calls[0][0])
        assert calls[1][1] == pytest.approx(0.5 * calls[0][1])
        np.testing.assert_allclose(bus_power_balance(data), 0.0, atol=1e-8)


# =============================================================================
# Reactive power limits
# =============================================================================

class TestReactivePowerLimits:
    """Test PV to PQ switching."""

    def test_pv_bus_switched_to_pq(self, diagnostics):
        network = build_three_bus_network(gen_q_limits=TIGHT_Q_LIMITS)
        data = make_ac_data(network, diagnostics=diagnostics)

        results = solve_ac_power_flow(data, diagnostics=diagnostics)

        assert results[0].converged
        assert results[0].reclassified_buses == ["bus2"]
        assert data.bus_reactivepower_injection[1, 0] == pytest.approx(-0.4)
        assert data.bus_magnitude[1, 0] < 1.01
        events = diagnostics.of_kind(DiagnosticKind.BUS_RECLASSIFIED)
        assert len(events) == 1
        assert events[0].component == "bus2"
        assert events[0].timestep == 0
        np.testing.assert_allclose(bus_power_balance(data), 0.0, atol=1e-8)

    def test_bus_type_not_modified(self, diagnostics):
        network = build_three_bus_network(gen_q_limits=TIGHT_Q_LIMITS)
        data = make_ac_data(network, diagnostics=diagnostics)
        solve_ac_power_flow(data, diagnostics=diagnostics)

        assert data.bus_type[1, 0] == BusType.PV

    def test_limits_not_checked_when_disabled(self, diagnostics):
        network = build_three_bus_network(gen_q_limits=TIGHT_Q_LIMITS)
        data = make_ac_data(network, diagnostics=diagnostics)
        params = NewtonRaphsonParameters(check_reactive_power_limits=False)

        results = solve_ac_power_flow(data, params, diagnostics)

        assert results[0].converged
        assert results[0].reclassified_buses == []
        assert data.bus_magnitude[1, 0] == pytest.approx(1.01)
        assert data.bus_reactivepower_injection[1, 0] > -0.4

    def test_switching_limit_diverges(self, diagnostics):
        network = build_three_bus_network(gen_q_limits=TIGHT_Q_LIMITS)
        data = make_ac_data(network, diagnostics=diagnostics)
        params = NewtonRaphsonParameters(max_reactive_power_iterations=0)

        results = solve_ac_power_flow(data, params, diagnostics)

        assert results[0].status is SolverStatus.DIVERGED
        assert not data.converged[0]
        assert not data.valid_ix[0]

    def test_within_limits_no_switching(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network)
        results = solve_ac_power_flow(data, diagnostics=diagnostics)

        assert results[0].reclassified_buses == []
        assert -1.0 <= data.bus_reactivepower_injection[1, 0] <= 1.0


# =============================================================================
# Failure handling
# =============================================================================

class TestDivergence:
    """Test timesteps without a solution."""

    def test_unsolvable_timestep_flagged(self, diagnostics):
        data = make_ac_data(build_two_bus_network(load_p=50.0))
        results = solve_ac_power_flow(data, diagnostics=diagnostics)

        assert not results[0].converged
        assert results[0].status in (SolverStatus.DIVERGED, SolverStatus.UNCONVERGED)
        assert not data.converged[0]
        assert not data.valid_ix[0]
        assert len(diagnostics.of_kind(DiagnosticKind.NOT_CONVERGED)) == 1
        assert len(diagnostics.of_kind(DiagnosticKind.LARGE_INITIAL_RESIDUAL)) >= 1

    def test_other_timesteps_still_solved(self, diagnostics):
        data = make_ac_data(build_two_bus_network(load_p=50.0), time_steps=2)
        data.fill_timestep_from(0)
        data.bus_activepower_withdrawals[1, 1] = 0.5

        results = solve_ac_power_flow(data, diagnostics=diagnostics)

        assert not results[0].converged
        assert results[1].converged
        assert data.converged.tolist() == [False, True]
        assert data.valid_ix.tolist() == [False, True]

    def test_iteration_limit_is_unconverged(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network)
        params = NewtonRaphsonParameters(max_iterations=1, method="newton")

        results = solve_ac_power_flow(data, params, diagnostics)

        assert results[0].status is SolverStatus.UNCONVERGED
        assert results[0].iterations == 1

    def test_warning_emitted(self):
        data = make_ac_data(build_two_bus_network(load_p=50.0), diagnostics=Diagnostics(False))
        with pytest.warns(PowerFlowWarning):
            solve_ac_power_flow(data)

    def test_resolved_timestep_is_valid_again(self, diagnostics):
        data = make_ac_data(build_two_bus_network(load_p=50.0))
        solve_ac_power_flow(data, diagnostics=diagnostics)
        assert not data.valid_ix[0]

        data.bus_activepower_withdrawals[1, 0] = 0.5
        data.bus_magnitude[1, 0] = 1.0
        data.bus_angles[1, 0] = 0.0
        results = solve_ac_power_flow(data, diagnostics=diagnostics)

        assert results[0].converged
        assert data.converged[0]
        assert data.valid_ix[0]

    def test_singular_jacobian_uses_perturbed_solve(self, diagnostics):
        data = make_ac_data(build_isolated_bus_network())
        results = solve_ac_power_flow(data, diagnostics=diagnostics)

        assert results[0].converged
        assert results[0].singular_fallback
        events = diagnostics.of_kind(DiagnosticKind.SINGULAR_JACOBIAN)
        assert len(events) == 1
        assert events[0].timestep == 0
        # the isolated bus keeps its flat start
        assert data.bus_magnitude[2, 0] == 1.0
        assert data.bus_angles[2, 0] == 0.0
        np.testing.assert_allclose(bus_power_balance(data), 0.0, atol=1e-8)

    def test_regular_jacobian_has_no_fallback(self, two_bus_network, diagnostics):
        data = make_ac_data(two_bus_network)
        results = solve_ac_power_flow(data, diagnostics=diagnostics)

        assert not results[0].singular_fallback
        assert diagnostics.of_kind(DiagnosticKind.SINGULAR_JACOBIAN) == []

    def test_refinement_passes_reported(self, diagnostics):
        data = make_ac_data(build_isolated_bus_network())
        refinement = RefinementParameters(threshold=1e-9, tolerance=1e-12)
        params = NewtonRaphsonParameters(refinement=refinement)

        results = solve_ac_power_flow(data, params, diagnostics)

        assert results[0].converged
        assert results[0].singular_fallback
        assert results[0].refinement_passes > 0


# =============================================================================
# Multi-period
# =============================================================================

class TestMultiPeriod:
    """Test independent timesteps and warm starts."""

    def test_timesteps_are_independent(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network, time_steps=3)
        data.fill_timestep_from(0)
        data.bus_activepower_withdrawals[2, 1] = 0.6

        results = solve_ac_power_flow(data, diagnostics=diagnostics)

        assert all(r.converged for r in results)
        np.testing.assert_allclose(data.bus_magnitude[:, 0], data.bus_magnitude[:, 2])
        assert data.bus_magnitude[2, 1] > data.bus_magnitude[2, 0]
        for t in range(3):
            np.testing.assert_allclose(bus_power_balance(data, t), 0.0, atol=1e-8)

    def test_warm_start_reuses_previous_solution(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network, time_steps=2)
        data.fill_timestep_from(0)
        params = NewtonRaphsonParameters(warm_start=True)

        results = solve_ac_power_flow(data, params, diagnostics)

        assert results[0].iterations > 0
        assert results[1].iterations == 0
        assert results[1].converged

    def test_cold_start_iterates(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network, time_steps=2)
        data.fill_timestep_from(0)

        results = solve_ac_power_flow(data, diagnostics=diagnostics)

        assert results[1].iterations == results[0].iterations


# =============================================================================
# Branch flows and loss factors
# =============================================================================

class TestBranchFlows:
    """Test the branch flows written after convergence."""

    def test_losses_match_injections(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network)
        solve_ac_power_flow(data, diagnostics=diagnostics)

        p_ft = data.branch_activepower_flow_from_to[:, 0]
        p_tf = data.branch_activepower_flow_to_from[:, 0]
        assert np.all(p_ft + p_tf >= 0.0)
        net_injection = data.bus_activepower_injection[:, 0] - data.bus_activepower_withdrawals[:, 0]
        assert np.sum(p_ft + p_tf) == pytest.approx(np.sum(net_injection))

    def test_lossless_flows_antisymmetric(self, lossless_network, diagnostics):
        data = make_ac_data(lossless_network)
        solve_ac_power_flow(data, diagnostics=diagnostics)

        np.testing.assert_allclose(
            data.branch_activepower_flow_from_to[:, 0],
            -data.branch_activepower_flow_to_from[:, 0],
            atol=1e-9,
        )

    def test_flows_balance_at_load_bus(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network)
        solve_ac_power_flow(data, diagnostics=diagnostics)

        # bus3 is the to-bus of l23 and l13
        l23, l13 = data.branch_index("l23"), data.branch_index("l13")
        into_bus3 = data.branch_activepower_flow_to_from[[l23, l13], 0].sum()
        assert into_bus3 == pytest.approx(-1.2)


class TestLossFactors:
    """Test the marginal loss factors."""

    def test_lossless_network_has_zero_loss_factors(self, lossless_network, diagnostics):
        data = make_ac_data(lossless_network, calculate_loss_factors=True)
        solve_ac_power_flow(data, diagnostics=diagnostics)

        np.testing.assert_allclose(data.loss_factors[:, 0], 0.0, atol=1e-9)

    def test_lossy_network(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network, calculate_loss_factors=True)
        solve_ac_power_flow(data, diagnostics=diagnostics)

        lf = data.loss_factors[:, 0]
        assert lf[0] == 0.0
        assert lf[2] < 0.0
        assert np.all(np.abs(lf) < 1.0)

    def test_not_computed_unless_requested(self, three_bus_network, diagnostics):
        data = make_ac_data(three_bus_network)
        solve_ac_power_flow(data, diagnostics=diagnostics)
        assert data.loss_factors is None


# =============================================================================
# Configuration
# =============================================================================

class TestNewtonRaphsonParameters:
    """Test parameter validation."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_iterations": 0},
            {"tolerance": 0.0},
            {"method": "gauss_seidel"},
            {"trust_region_eta": 1.0},
            {"trust_region_factor": 0.0},
            {"trust_region_max_radius": -1.0},
            {"max_reactive_power_iterations": -1},
        ],
    )
    def test_invalid_parameters_raise(self, kwargs):
        with pytest.raises(ValueError):
            NewtonRaphsonParameters(**kwargs)

    def test_defaults(self):
        params = NewtonRaphsonParameters()
        assert params.max_iterations == 30
        assert params.tolerance == 1e-9
        assert params.method == "trust_region"
        assert params.check_reactive_power_limits
        assert not params.warm_start

    def test_wrong_matrix_shape_raises(self, three_bus_network):
        data = make_powerflow_data(three_bus_network, 1, sp.eye(2, dtype=complex))
        with pytest.raises(ValueError, match="admittance matrix"):
            NewtonRaphsonSolver(data)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
