"""
Definitions Module
==================

Numerical constants and the bus classification used throughout the
power flow core.

All power quantities handled by the core are in per-unit on the network
base power; voltage angles are in radians.
"""

from enum import IntEnum


class BusType(IntEnum):
    """
    Classification of an AC bus for power flow purposes.

    PQ buses have fixed active and reactive injection, PV buses fixed
    active injection and voltage magnitude, and the REF bus fixes the
    angle reference and absorbs the system imbalance.
    """
    PQ = 1
    PV = 2
    REF = 3
    ISOLATED = 4


# Initial-guess plausibility
MAX_INIT_RESIDUAL = 10.0  # diagnostic if the initial guess stays above this
LARGE_RESIDUAL = 10.0  # norm(residual, 1) / len(residual) above this triggers an improved guess

BUS_VOLTAGE_MAGNITUDE_CUTOFF_MIN = 0.8
BUS_VOLTAGE_MAGNITUDE_CUTOFF_MAX = 1.2

# Reactive power limit handling
BOUNDS_TOLERANCE = 1e-6
MAX_REACTIVE_POWER_ITERATIONS = 10

ISAPPROX_ZERO_TOLERANCE = 1e-6

# Newton-Raphson
DEFAULT_NR_MAX_ITER = 30
DEFAULT_NR_TOL = 1e-9
NR_SINGULAR_SCALING = 1e-6  # diagonal perturbation for a singular Jacobian
NEAR_SINGULAR_PIVOT_RATIO = 1e-14  # min |U_ii| / max |U_ii| of the LU factor

# Iterative refinement
DEFAULT_REFINEMENT_THRESHOLD = 5e-2  # refine if relative residual > 5 %
DEFAULT_REFINEMENT_MAX_ITER = 10
DEFAULT_REFINEMENT_EPS = 1e-6

# Trust region
DEFAULT_TRUST_REGION_ETA = 1e-4  # reject the step if actual/predicted improvement < eta
DEFAULT_TRUST_REGION_FACTOR = 1.0  # initial radius relative to the state norm
DEFAULT_TRUST_REGION_MAX_RADIUS = 1e3
MIN_TRUST_REGION_RADIUS = 1e-12
HALVE_TRUST_REGION = 0.1
MAX_DOUBLE_TRUST_REGION = 0.5
DOUBLE_TRUST_REGION = 0.9
