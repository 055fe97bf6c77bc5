"""
Newton-Raphson Solver Module
============================

Multi-period AC power flow by the Newton-Raphson method.

Each timestep of a PowerFlowData container is solved independently. The
scheduled complex injection of bus i at timestep t is

    S_i = (P_inj - P_wd) + j (Q_inj - Q_wd)

and the iteration drives the mismatch F(x) (see solver.jacobian) to zero,
globalized by a dogleg trust region (default) or as a plain Newton
iteration.

Reactive power limits
---------------------
After convergence the reactive injection demanded from every PV bus,

    Q_i = Q_calc,i + Q_wd,i

is compared with its aggregated bounds. A violating bus has its injection
fixed at the violated bound, is treated as PQ and the timestep is solved
again. The switching is repeated at most max_reactive_power_iterations
times. The reclassification is local to the solve; data.bus_type is not
modified.

Results written back on convergence
-----------------------------------
- bus magnitudes and angles of the timestep column
- REF-bus active and reactive injection, PV-bus reactive injection
- branch flows, if BranchAdmittances are available
- loss factors, if requested

A timestep that fails keeps its last attempted voltages and is flagged
converged[t] = False and valid_ix[t] = False; the other timesteps are
solved regardless. Solving it again successfully sets both flags back.

References
----------
[1] Tinney, Hart, "Power Flow Solution by Newton's Method", IEEE Trans.
    PAS-86, 1967
[2] Nocedal, Wright, "Numerical Optimization", 2nd ed., Ch. 4 and 11
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

import numpy as np
from numpy.typing import NDArray
from scipy.sparse.linalg import splu

from core.definitions import (
    BOUNDS_TOLERANCE,
    DEFAULT_NR_MAX_ITER,
    DEFAULT_NR_TOL,
    DEFAULT_TRUST_REGION_ETA,
    DEFAULT_TRUST_REGION_FACTOR,
    DEFAULT_TRUST_REGION_MAX_RADIUS,
    ISAPPROX_ZERO_TOLERANCE,
    LARGE_RESIDUAL,
    MAX_INIT_RESIDUAL,
    MAX_REACTIVE_POWER_ITERATIONS,
    MIN_TRUST_REGION_RADIUS,
    BusType,
)
from core.diagnostics import DiagnosticKind, Diagnostics
from core.powerflow_data import PowerFlowData
from matrices.branch_admittance import BranchAdmittances
from solver.branch_flows import calculate_branch_flows
from solver.jacobian import PowerFlowJacobian
from solver.linear_solve import solve_linear_system
from solver.loss_factors import calculate_loss_factors
from solver.refinement import RefinementParameters
from solver.trust_region import trust_region_step

_METHODS = ("trust_region", "newton")


@dataclass(frozen=True)
class NewtonRaphsonParameters:
    """
    Configuration of the Newton-Raphson solver.

    Attributes
    ----------
    max_iterations : int
        Maximum number of accepted Newton iterations per solve.
    tolerance : float
        Convergence threshold on the infinity norm of the mismatch.
    method : str
        "trust_region" (dogleg globalization) or "newton" (full steps).
    trust_region_eta : float
        Minimum ratio of actual to predicted reduction for a step to be
        accepted.
    trust_region_factor : float
        Initial radius relative to the norm of the initial state vector.
    trust_region_max_radius : float
        Upper bound of the trust-region radius.
    check_reactive_power_limits : bool
        Whether PV buses violating their reactive bounds are switched to PQ.
    max_reactive_power_iterations : int
        Maximum number of PV to PQ switching rounds.
    improve_initial_guess : bool
        Whether a DC angle estimate replaces an implausible initial guess.
    warm_start : bool
        Whether timestep t starts from the solution of timestep t-1.
    refinement : RefinementParameters
        Iterative refinement settings of the linear solves.
    """
    max_iterations: int = DEFAULT_NR_MAX_ITER
    tolerance: float = DEFAULT_NR_TOL
    method: str = "trust_region"
    trust_region_eta: float = DEFAULT_TRUST_REGION_ETA
    trust_region_factor: float = DEFAULT_TRUST_REGION_FACTOR
    trust_region_max_radius: float = DEFAULT_TRUST_REGION_MAX_RADIUS
    check_reactive_power_limits: bool = True
    max_reactive_power_iterations: int = MAX_REACTIVE_POWER_ITERATIONS
    improve_initial_guess: bool = True
    warm_start: bool = False
    refinement: RefinementParameters = field(default_factory=RefinementParameters)

    def __post_init__(self) -> None:
        """Validate parameters after initialisation."""
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance}")
        if self.method not in _METHODS:
            raise ValueError(f"method must be one of {_METHODS}, got '{self.method}'")
        if not 0 < self.trust_region_eta < 1:
            raise ValueError(f"trust_region_eta must be in (0, 1), got {self.trust_region_eta}")
        if self.trust_region_factor <= 0:
            raise ValueError(
                f"trust_region_factor must be positive, got {self.trust_region_factor}"
            )
        if self.trust_region_max_radius <= 0:
            raise ValueError(
                f"trust_region_max_radius must be positive, got {self.trust_region_max_radius}"
            )
        if self.max_reactive_power_iterations < 0:
            raise ValueError(
                "max_reactive_power_iterations must be non-negative, "
                f"got {self.max_reactive_power_iterations}"
            )


class SolverStatus(Enum):
    """Outcome of a timestep solve."""
    CONVERGED = "converged"
    DIVERGED = "diverged"
    UNCONVERGED = "unconverged"


@dataclass
class TimestepResult:
    """
    Result record of a single timestep.

    Attributes
    ----------
    timestep : int
        Timestep index.
    status : SolverStatus
        CONVERGED, DIVERGED (numerical failure or too many PV to PQ
        switching rounds) or UNCONVERGED (iteration limit reached).
    iterations : int
        Total number of accepted Newton iterations over all rounds.
    mismatch_norm : float
        Infinity norm of the final mismatch.
    reclassified_buses : List[str]
        Names of the PV buses switched to PQ.
    refinement_passes : int
        Total number of iterative refinement passes.
    singular_fallback : bool
        Whether a perturbed Jacobian had to be used.
    """
    timestep: int
    status: SolverStatus
    iterations: int = 0
    mismatch_norm: float = np.inf
    reclassified_buses: List[str] = field(default_factory=list)
    refinement_passes: int = 0
    singular_fallback: bool = False

    @property
    def converged(self) -> bool:
        """Return True if the timestep converged."""
        return self.status is SolverStatus.CONVERGED


@dataclass
class _NewtonOutcome:
    status: SolverStatus
    Vm: NDArray[np.float64]
    Va: NDArray[np.float64]
    iterations: int
    mismatch_norm: float
    refinement_passes: int = 0
    singular_fallback: bool = False


class NewtonRaphsonSolver:
    """
    AC Newton-Raphson power flow over the timesteps of a PowerFlowData.

    Parameters
    ----------
    data : PowerFlowData
        Container built by make_ac_powerflow_data. Results are written into
        it in place.
    params : NewtonRaphsonParameters, optional
        Solver configuration.
    diagnostics : Diagnostics, optional
        Sink for non-fatal events. A fresh collector is created if omitted.
    """

    def __init__(
        self,
        data: PowerFlowData,
        params: Optional[NewtonRaphsonParameters] = None,
        diagnostics: Optional[Diagnostics] = None,
    ) -> None:
        Ybus = data.power_network_matrix
        if Ybus is None or Ybus.shape != (data.n_buses, data.n_buses):
            raise ValueError(
                f"PowerFlowData needs an admittance matrix of shape "
                f"({data.n_buses}, {data.n_buses})."
            )
        self.data = data
        self.params = params if params is not None else NewtonRaphsonParameters()
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.jacobian = PowerFlowJacobian(Ybus)

    # =========================================================================
    # Public interface
    # =========================================================================

    def solve(self, time_steps: Optional[Sequence[int]] = None) -> List[TimestepResult]:
        """
        Solve the given timesteps in order.

        Parameters
        ----------
        time_steps : Sequence[int], optional
            Timestep indices to solve. Defaults to all of them.

        Returns
        -------
        results : List[TimestepResult]
            One record per solved timestep.
        """
        if time_steps is None:
            time_steps = range(self.data.time_steps)
        return [self.solve_timestep(t) for t in time_steps]

    def solve_timestep(self, t: int) -> TimestepResult:
        """
        Solve a single timestep and write its results into the data container.

        Parameters
        ----------
        t : int
            Timestep index.

        Returns
        -------
        result : TimestepResult
        """
        data = self.data
        data.check_timestep(t)
        params = self.params

        bus_types = data.bus_type[:, t].copy()
        Vm = data.bus_magnitude[:, t].copy()
        Va = data.bus_angles[:, t].copy()
        if params.warm_start and t > 0 and data.converged[t - 1]:
            pq = bus_types == BusType.PQ
            non_ref = bus_types != BusType.REF
            Vm[pq] = data.bus_magnitude[pq, t - 1]
            Va[non_ref] = data.bus_angles[non_ref, t - 1]

        Q_inj = data.bus_reactivepower_injection[:, t].copy()
        P_net = data.bus_activepower_injection[:, t] - data.bus_activepower_withdrawals[:, t]
        Q_wd = data.bus_reactivepower_withdrawals[:, t]

        self.jacobian.update_bus_types(bus_types)
        Sbus = P_net + 1j * (Q_inj - Q_wd)
        Va = self._check_initial_guess(t, Vm, Va, Sbus)

        result = TimestepResult(timestep=t, status=SolverStatus.UNCONVERGED)
        for switching_round in range(params.max_reactive_power_iterations + 1):
            Sbus = P_net + 1j * (Q_inj - Q_wd)
            outcome = self._newton(t, bus_types, Vm, Va, Sbus)
            Vm, Va = outcome.Vm, outcome.Va
            result.status = outcome.status
            result.iterations += outcome.iterations
            result.mismatch_norm = outcome.mismatch_norm
            result.refinement_passes += outcome.refinement_passes
            result.singular_fallback |= outcome.singular_fallback

            if outcome.status is not SolverStatus.CONVERGED or not params.check_reactive_power_limits:
                break
            violations = self._reactive_power_violations(t, bus_types, Vm, Va, Q_wd)
            if not violations:
                break
            if switching_round == params.max_reactive_power_iterations:
                result.status = SolverStatus.DIVERGED
                break
            for i, bound in violations:
                Q_inj[i] = bound
                bus_types[i] = BusType.PQ
                result.reclassified_buses.append(data.bus_names[i])
                self.diagnostics.warn(
                    DiagnosticKind.BUS_RECLASSIFIED,
                    f"PV bus {data.bus_names[i]} exceeds its reactive power limit at "
                    f"timestep {t}, reactive injection fixed at {bound:.6g} and bus set to PQ.",
                    component=data.bus_names[i],
                    value=bound,
                    timestep=t,
                )

        data.bus_magnitude[:, t] = Vm
        data.bus_angles[:, t] = Va
        if result.converged:
            self._write_results(t, bus_types, Vm, Va, Q_inj)
            data.converged[t] = True
            data.valid_ix[t] = True
        else:
            data.converged[t] = False
            data.valid_ix[t] = False
            self.diagnostics.warn(
                DiagnosticKind.NOT_CONVERGED,
                f"Power flow at timestep {t} ({data.timestep_map.get(t, t)}) "
                f"{result.status.value} after {result.iterations} iterations, "
                f"mismatch {result.mismatch_norm:.3e}.",
                value=result.mismatch_norm,
                timestep=t,
            )
        return result

    # =========================================================================
    # Newton iteration
    # =========================================================================

    def _residual_function(
        self,
        Vm: NDArray[np.float64],
        Va: NDArray[np.float64],
        Sbus: NDArray[np.complex128],
    ) -> Callable[[NDArray[np.float64]], NDArray[np.float64]]:
        jac = self.jacobian

        def residual(x: NDArray[np.float64]) -> NDArray[np.float64]:
            vm, va = jac.apply_state(x, Vm, Va)
            return jac.mismatch(vm * np.exp(1j * va), Sbus)

        return residual

    def _newton(
        self,
        t: int,
        bus_types: NDArray[np.int8],
        Vm: NDArray[np.float64],
        Va: NDArray[np.float64],
        Sbus: NDArray[np.complex128],
    ) -> _NewtonOutcome:
        """Run the Newton iteration for a fixed bus classification."""
        params = self.params
        jac = self.jacobian
        jac.update_bus_types(bus_types)
        residual = self._residual_function(Vm, Va, Sbus)

        x = jac.state(Vm, Va)
        F = residual(x)
        outcome = _NewtonOutcome(SolverStatus.UNCONVERGED, Vm, Va, 0, np.inf)
        if not np.all(np.isfinite(F)):
            outcome.status = SolverStatus.DIVERGED
            return outcome
        outcome.mismatch_norm = _norm_inf(F)
        if outcome.mismatch_norm <= params.tolerance:
            outcome.status = SolverStatus.CONVERGED
            return outcome

        x_norm = np.linalg.norm(x)
        radius = params.trust_region_factor * x_norm if x_norm > 0 else params.trust_region_factor

        J = None
        newton_step = None
        while outcome.iterations < params.max_iterations:
            if J is None:
                vm, va = jac.apply_state(x, Vm, Va)
                J = jac.build(vm * np.exp(1j * va))
                solved = solve_linear_system(J, -F, params.refinement)
                if solved is None:
                    self.diagnostics.warn(
                        DiagnosticKind.SINGULAR_JACOBIAN,
                        f"Jacobian at timestep {t} is singular and could not be regularized.",
                        timestep=t,
                    )
                    outcome.status = SolverStatus.DIVERGED
                    break
                if solved.perturbed and not outcome.singular_fallback:
                    self.diagnostics.warn(
                        DiagnosticKind.SINGULAR_JACOBIAN,
                        f"Jacobian at timestep {t} is singular, solved with a perturbed diagonal.",
                        timestep=t,
                    )
                outcome.singular_fallback |= solved.perturbed
                outcome.refinement_passes += solved.refinement_passes
                newton_step = solved.x

            if params.method == "newton":
                x = x + newton_step
                F = residual(x)
            else:
                step = trust_region_step(
                    residual, x, F, J, newton_step, radius,
                    params.trust_region_eta, params.trust_region_max_radius,
                )
                radius = step.radius
                if not step.accepted:
                    if radius < MIN_TRUST_REGION_RADIUS:
                        outcome.status = SolverStatus.DIVERGED
                        break
                    continue
                x, F = step.x, step.F

            outcome.iterations += 1
            J = None
            if not np.all(np.isfinite(F)):
                outcome.status = SolverStatus.DIVERGED
                break
            outcome.mismatch_norm = _norm_inf(F)
            outcome.Vm, outcome.Va = jac.apply_state(x, Vm, Va)
            if outcome.mismatch_norm <= params.tolerance:
                outcome.status = SolverStatus.CONVERGED
                break
        return outcome

    # =========================================================================
    # Initial guess
    # =========================================================================

    def _check_initial_guess(
        self,
        t: int,
        Vm: NDArray[np.float64],
        Va: NDArray[np.float64],
        Sbus: NDArray[np.complex128],
    ) -> NDArray[np.float64]:
        """
        Return the initial angles, replaced by a DC estimate if the initial
        guess is implausible and the estimate is better.
        """
        jac = self.jacobian
        if jac.x_size == 0:
            return Va
        F = jac.mismatch(Vm * np.exp(1j * Va), Sbus)
        residual = _mean_abs(F)
        if residual <= LARGE_RESIDUAL:
            return Va

        self.diagnostics.warn(
            DiagnosticKind.LARGE_INITIAL_RESIDUAL,
            f"Initial guess of timestep {t} has a large residual "
            f"(mean absolute mismatch {residual:.3e}).",
            value=residual,
            timestep=t,
        )
        if not self.params.improve_initial_guess:
            return Va

        Va_dc = self._dc_angle_estimate(Va, Sbus)
        if Va_dc is not None:
            F_dc = jac.mismatch(Vm * np.exp(1j * Va_dc), Sbus)
            residual_dc = _mean_abs(F_dc)
            if np.isfinite(residual_dc) and residual_dc < residual:
                Va, residual = Va_dc, residual_dc

        if residual > MAX_INIT_RESIDUAL:
            self.diagnostics.warn(
                DiagnosticKind.LARGE_INITIAL_RESIDUAL,
                f"Initial guess of timestep {t} could not be improved below "
                f"{MAX_INIT_RESIDUAL} (mean absolute mismatch {residual:.3e}).",
                value=residual,
                timestep=t,
            )
        return Va

    def _dc_angle_estimate(
        self,
        Va: NDArray[np.float64],
        Sbus: NDArray[np.complex128],
    ) -> Optional[NDArray[np.float64]]:
        """Solve B θ = P on the non-REF buses, with B = -Im(Y)."""
        jac = self.jacobian
        pvpq = jac.pvpq
        if len(pvpq) == 0:
            return None
        B = -jac.Ybus.imag.tocsr()[pvpq][:, pvpq].tocsc()
        ref_angle = Va[jac.ref[0]] if len(jac.ref) > 0 else 0.0
        try:
            theta = splu(B).solve(Sbus.real[pvpq])
        except RuntimeError:
            return None
        Va_dc = Va.copy()
        Va_dc[pvpq] = ref_angle + theta
        return Va_dc

    # =========================================================================
    # Post-processing
    # =========================================================================

    def _reactive_power_violations(
        self,
        t: int,
        bus_types: NDArray[np.int8],
        Vm: NDArray[np.float64],
        Va: NDArray[np.float64],
        Q_wd: NDArray[np.float64],
    ) -> List[tuple]:
        """Return (bus index, violated bound) for every PV bus out of bounds."""
        S_calc = self.jacobian.calculated_power(Vm * np.exp(1j * Va))
        bounds = self.data.bus_reactivepower_bounds[:, t, :]
        violations = []
        for i in np.flatnonzero(bus_types == BusType.PV):
            q = S_calc[i].imag + Q_wd[i]
            q_min, q_max = bounds[i]
            if q > q_max + BOUNDS_TOLERANCE:
                violations.append((int(i), float(q_max)))
            elif q < q_min - BOUNDS_TOLERANCE:
                violations.append((int(i), float(q_min)))
        return violations

    def _write_results(
        self,
        t: int,
        bus_types: NDArray[np.int8],
        Vm: NDArray[np.float64],
        Va: NDArray[np.float64],
        Q_inj: NDArray[np.float64],
    ) -> None:
        data = self.data
        V = Vm * np.exp(1j * Va)
        S_calc = self.jacobian.calculated_power(V)

        ref = np.flatnonzero(bus_types == BusType.REF)
        pv = np.flatnonzero(bus_types == BusType.PV)
        data.bus_reactivepower_injection[:, t] = Q_inj
        data.bus_activepower_injection[ref, t] = (
            S_calc[ref].real + data.bus_activepower_withdrawals[ref, t]
        )
        data.bus_reactivepower_injection[ref, t] = (
            S_calc[ref].imag + data.bus_reactivepower_withdrawals[ref, t]
        )
        data.bus_reactivepower_injection[pv, t] = (
            S_calc[pv].imag + data.bus_reactivepower_withdrawals[pv, t]
        )

        for i in ref:
            p = data.bus_activepower_injection[i, t]
            p_min, p_max = data.bus_activepower_bounds[i, t]
            if p < p_min - ISAPPROX_ZERO_TOLERANCE or p > p_max + ISAPPROX_ZERO_TOLERANCE:
                self.diagnostics.warn(
                    DiagnosticKind.REF_ACTIVE_POWER_OUT_OF_BOUNDS,
                    f"Active power {p:.6g} of reference bus {data.bus_names[i]} at timestep {t} "
                    f"is outside its limits ({p_min:.6g}, {p_max:.6g}).",
                    component=data.bus_names[i],
                    value=float(p),
                    timestep=t,
                )

        if isinstance(data.aux_network_matrix, BranchAdmittances):
            S_ft, S_tf = calculate_branch_flows(data.aux_network_matrix, V)
            data.branch_activepower_flow_from_to[:, t] = S_ft.real
            data.branch_reactivepower_flow_from_to[:, t] = S_ft.imag
            data.branch_activepower_flow_to_from[:, t] = S_tf.real
            data.branch_reactivepower_flow_to_from[:, t] = S_tf.imag

        if data.calculate_loss_factors and data.loss_factors is not None:
            self.jacobian.update_bus_types(bus_types)
            loss_factors = calculate_loss_factors(self.jacobian, V)
            if loss_factors is not None:
                data.loss_factors[:, t] = loss_factors


def _norm_inf(F: NDArray[np.float64]) -> float:
    return float(np.max(np.abs(F))) if len(F) > 0 else 0.0


def _mean_abs(F: NDArray[np.float64]) -> float:
    return float(np.linalg.norm(F, 1) / len(F)) if len(F) > 0 else 0.0


def solve_ac_power_flow(
    data: PowerFlowData,
    params: Optional[NewtonRaphsonParameters] = None,
    diagnostics: Optional[Diagnostics] = None,
    time_steps: Optional[Sequence[int]] = None,
) -> List[TimestepResult]:
    """
    Solve the AC power flow of a PowerFlowData container in place.

    Parameters
    ----------
    data : PowerFlowData
        Container built by make_ac_powerflow_data.
    params : NewtonRaphsonParameters, optional
        Solver configuration.
    diagnostics : Diagnostics, optional
        Sink for non-fatal events.
    time_steps : Sequence[int], optional
        Timesteps to solve. Defaults to all of them.

    Returns
    -------
    results : List[TimestepResult]
    """
    solver = NewtonRaphsonSolver(data, params, diagnostics)
    return solver.solve(time_steps)
