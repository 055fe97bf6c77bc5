"""
Solver Module
=============

AC Newton-Raphson and DC power flow solvers operating on PowerFlowData.

Classes
-------
NewtonRaphsonSolver
    Multi-period AC power flow with trust-region globalization and
    reactive power limit enforcement.
NewtonRaphsonParameters
    Solver configuration.
PowerFlowJacobian
    Mismatch equations and Jacobian.

Functions
---------
solve_ac_power_flow
    Convenience wrapper around NewtonRaphsonSolver.
solve_dc_power_flow
    PTDF based DC power flow.
solve_linear_system
    Sparse LU solve with singular-Jacobian fallback.
iterative_refinement
    Refinement of an approximate linear solution.
trust_region_step
    Single dogleg trust-region step.
calculate_branch_flows
    AC branch flows from bus voltages.
calculate_loss_factors
    Marginal loss factors at a converged operating point.
"""

from solver.branch_flows import calculate_branch_flows
from solver.dc_powerflow import solve_dc_power_flow
from solver.jacobian import PowerFlowJacobian, dSbus_dV
from solver.linear_solve import LinearSolveResult, solve_linear_system
from solver.loss_factors import calculate_loss_factors
from solver.newton_raphson import (
    NewtonRaphsonParameters,
    NewtonRaphsonSolver,
    SolverStatus,
    TimestepResult,
    solve_ac_power_flow,
)
from solver.refinement import RefinementParameters, RefinementResult, iterative_refinement
from solver.trust_region import TrustRegionStep, dogleg_step, trust_region_step, update_radius

__all__ = [
    "NewtonRaphsonSolver",
    "NewtonRaphsonParameters",
    "SolverStatus",
    "TimestepResult",
    "solve_ac_power_flow",
    "solve_dc_power_flow",
    "PowerFlowJacobian",
    "dSbus_dV",
    "solve_linear_system",
    "LinearSolveResult",
    "iterative_refinement",
    "RefinementParameters",
    "RefinementResult",
    "trust_region_step",
    "dogleg_step",
    "update_radius",
    "TrustRegionStep",
    "calculate_branch_flows",
    "calculate_loss_factors",
]
